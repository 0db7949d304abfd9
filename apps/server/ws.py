from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from apps.server.pipeline import VoicePipeline
from apps.server.session import Session
from modules.core import events
from modules.core.config import AppConfig, ensure_project_dir
from modules.core.errors import TransportError

logger = logging.getLogger(__name__)


class WSApp:
    def __init__(self, config: AppConfig, pipeline: VoicePipeline):
        self.config = config
        self.pipeline = pipeline
        self.router = APIRouter()
        self.router.add_api_websocket_route(events.WS_PATH_VOICE, self.websocket_endpoint)

    async def websocket_endpoint(self, websocket: WebSocket) -> None:
        await websocket.accept()
        logger.info("WebSocket connected: client=%s", websocket.client)
        session = Session(
            pipeline=self.pipeline,
            config=self.config.session,
            send_json=websocket.send_json,
            close_transport=websocket.close,
            temp_root=ensure_project_dir(self.config, self.config.runtime.temp_dir),
            fallback_text=self.config.answer.fallback_text,
        )

        try:
            while not session.closed:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                raw = frame.get("text")
                if raw is None:
                    logger.warning("Binary frame ignored from client=%s", websocket.client)
                    continue
                try:
                    message: Any = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON payload from client=%s", websocket.client)
                    continue
                if not isinstance(message, dict):
                    logger.warning("Non-object JSON payload from client=%s", websocket.client)
                    continue

                msg_type = message.get("type")
                if msg_type != events.WS_TYPE_CHUNK:
                    logger.info("WS message: type=%s session=%s", msg_type, session.session_id)

                try:
                    await session.handle_message(message)
                except TransportError as exc:
                    logger.debug("Session[%s] ignored message: %s", session.session_id, exc)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected: client=%s", websocket.client)
        except RuntimeError:
            # receive after the session closed the socket itself
            if not session.closed:
                raise
        finally:
            await session.close()
            logger.info("Session closed: client=%s", websocket.client)
