from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Optional

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from apps.server.metrics import Metrics
from apps.server.pipeline import VoicePipeline
from modules.core.config import AppConfig, ensure_project_dir

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    query: Optional[str] = None


class TTSRequest(BaseModel):
    text: Optional[str] = None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _save_upload(src: BinaryIO, path: Path) -> None:
    with path.open("wb") as fh:
        shutil.copyfileobj(src, fh)


class HTTPApp:
    """Request/response routes sharing the streaming path's services."""

    def __init__(self, config: AppConfig, pipeline: VoicePipeline):
        self.config = config
        self.pipeline = pipeline
        self.router = APIRouter()
        self.router.add_api_route("/ask", self.ask, methods=["POST"])
        self.router.add_api_route("/tts", self.tts, methods=["POST"])
        self.router.add_api_route("/stt", self.stt, methods=["POST"])
        self.router.add_api_route("/health", self.health, methods=["GET"])

    async def ask(self, body: AskRequest):
        start = Metrics.now()
        query = (body.query or "").strip()
        if not query:
            return _error(400, "Query is required")

        try:
            reply = await self.pipeline.answer(query)
            answer = reply.text or self.config.answer.fallback_text
            spoken = await self.pipeline.speak(answer)
        except Exception:
            logger.exception("Error in /ask")
            return _error(500, "Internal server error")

        return {
            "answer": answer,
            "audio": spoken.audio_base64 if spoken else None,
            "subtitles": spoken.subtitles() if spoken else [],
            "durationSec": spoken.duration_s if spoken else None,
            "metadata": {
                **reply.metadata,
                "voiceGenerated": spoken is not None,
                "totalResponseTimeMs": Metrics.elapsed_ms(start),
            },
        }

    async def tts(self, body: TTSRequest):
        text = (body.text or "").strip()
        if not text:
            return _error(400, "Text required")

        try:
            spoken = await self.pipeline.speak(text)
        except Exception:
            logger.exception("Error in /tts")
            return _error(500, "Internal server error")
        if spoken is None:
            return _error(500, "Failed to generate audio")

        return {
            "audio": spoken.audio_base64,
            "subtitles": spoken.subtitles(),
            "durationSec": spoken.duration_s,
            "success": True,
        }

    async def stt(self, file: Optional[UploadFile] = File(None)):
        start = Metrics.now()
        if file is None:
            return _error(400, "No audio file uploaded")

        work_dir = Path(
            tempfile.mkdtemp(
                prefix=f"stt-{uuid.uuid4().hex[:8]}-",
                dir=ensure_project_dir(self.config, self.config.runtime.temp_dir),
            )
        )
        try:
            suffix = Path(file.filename or "").suffix or ".webm"
            input_path = work_dir / f"upload{suffix}"
            await asyncio.to_thread(_save_upload, file.file, input_path)

            normalized = await self.pipeline.transcode(input_path, work_dir / f"normalized{self.pipeline.output_suffix}")
            transcript = await self.pipeline.transcribe_with_retry(normalized)
        except Exception:
            logger.exception("Error in /stt")
            return _error(500, "Failed to transcribe audio")
        finally:
            await file.close()
            shutil.rmtree(work_dir, ignore_errors=True)

        return {
            "transcript": transcript,
            "language": getattr(self.pipeline.stt, "language", None),
            "provider": self.pipeline.stt.name,
            "model": getattr(self.pipeline.stt, "model", getattr(self.pipeline.stt, "model_size", None)),
            "processingTimeMs": Metrics.elapsed_ms(start),
        }

    async def health(self) -> dict:
        return {
            "status": "healthy",
            "services": self.pipeline.provider_status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
