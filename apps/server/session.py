from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import shutil
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from apps.server.metrics import Metrics, TurnTimings
from apps.server.pipeline import VoicePipeline
from modules.core import events
from modules.core.config import SessionConfig
from modules.core.errors import ResourceError, TransportError, VoiceError

logger = logging.getLogger(__name__)

SendJson = Callable[[dict[str, Any]], Awaitable[None]]
CloseTransport = Callable[[], Awaitable[None]]

MSG_TURN_IN_PROGRESS = "A turn is already in progress"
MSG_NO_AUDIO = "No audio received"
MSG_INTERNAL = "Something went wrong"


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING = "finalizing"
    RESPONDING = "responding"
    ERROR = "error"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.LISTENING, SessionState.CLOSED}),
    SessionState.LISTENING: frozenset(
        {
            SessionState.LISTENING,
            SessionState.FINALIZING,
            SessionState.RESPONDING,
            SessionState.ERROR,
            SessionState.CLOSED,
        }
    ),
    SessionState.FINALIZING: frozenset({SessionState.RESPONDING, SessionState.ERROR, SessionState.CLOSED}),
    SessionState.RESPONDING: frozenset({SessionState.IDLE, SessionState.ERROR, SessionState.CLOSED}),
    SessionState.ERROR: frozenset({SessionState.IDLE, SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}

_BUSY_STATES = (SessionState.FINALIZING, SessionState.RESPONDING, SessionState.ERROR)


def _decode_chunk(data: Any) -> bytes:
    if not data or not isinstance(data, str):
        raise TransportError("chunk without data")
    if data.startswith("data:"):
        data = data.split(",", 1)[-1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TransportError("chunk data is not valid base64") from exc


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise ResourceError(f"failed to remove {path}") from exc


class Session:
    """One live voice connection.

    Audio fragments are buffered while ``listening``; ``end`` runs one turn
    (transcode, transcribe, answer, synthesize, caption) in a background task
    so the connection keeps reading control messages meanwhile.
    """

    def __init__(
        self,
        pipeline: VoicePipeline,
        config: SessionConfig,
        send_json: SendJson,
        temp_root: str | Path,
        close_transport: CloseTransport | None = None,
        fallback_text: str = "Sorry, I couldn't find an answer.",
    ):
        self.pipeline = pipeline
        self.config = config
        self.send_json = send_json
        self.close_transport = close_transport
        self.fallback_text = fallback_text
        self.session_id = uuid.uuid4().hex[:8]
        self.workdir = Path(temp_root) / self.session_id
        self.workdir.mkdir(parents=True, exist_ok=True)

        self.state = SessionState.IDLE
        self._fragments: list[bytes] = []
        self._last_activity = time.monotonic()
        self._idle_timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._turn_seq = 0
        logger.info("Session[%s] created: workdir=%s", self.session_id, self.workdir)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def buffered_fragments(self) -> int:
        return len(self._fragments)

    def _set_state(self, new_state: SessionState) -> None:
        if self.state is SessionState.CLOSED:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid session transition {self.state.value} -> {new_state.value}")
        if new_state is not self.state:
            logger.info("Session[%s] state: %s -> %s", self.session_id, self.state.value, new_state.value)
        self.state = new_state

    async def handle_message(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise TransportError("session closed")

        msg_type = message.get("type")
        if msg_type == events.WS_TYPE_START:
            await self._on_start(message)
        elif msg_type == events.WS_TYPE_CHUNK:
            self._on_chunk(message)
        elif msg_type == events.WS_TYPE_END:
            await self._on_end()
        elif msg_type == events.WS_TYPE_STOP:
            logger.info("Session[%s] stop requested", self.session_id)
            await self.close(close_transport=True)
        else:
            raise TransportError(f"unknown message type: {msg_type!r}")

    async def _on_start(self, message: dict[str, Any]) -> None:
        if self.state in _BUSY_STATES:
            await self._send_error(MSG_TURN_IN_PROGRESS)
            return
        self._fragments.clear()
        self._last_activity = time.monotonic()
        self._set_state(SessionState.LISTENING)
        self._arm_idle_timer()
        logger.info("Session[%s] listening: meta=%s", self.session_id, message.get("meta"))
        await self._send({"type": events.WS_TYPE_OK, "message": "started"})

    def _on_chunk(self, message: dict[str, Any]) -> None:
        if self.state is not SessionState.LISTENING:
            raise TransportError(f"chunk while {self.state.value}")
        fragment = _decode_chunk(message.get("data"))
        self._fragments.append(fragment)
        self._last_activity = time.monotonic()

    async def _on_end(self) -> None:
        if self.state in _BUSY_STATES:
            await self._send_error(MSG_TURN_IN_PROGRESS)
            return
        if self.state is not SessionState.LISTENING:
            raise TransportError(f"end while {self.state.value}")

        self._cancel_idle_timer()
        if not self._fragments:
            self._set_state(SessionState.ERROR)
            await self._send_error(MSG_NO_AUDIO)
            self._set_state(SessionState.IDLE)
            return

        fragments, self._fragments = self._fragments, []
        self._set_state(SessionState.FINALIZING)
        self._spawn(self._finalize_turn(fragments))

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_timer = asyncio.create_task(self._idle_watch())

    def _cancel_idle_timer(self) -> None:
        timer = self._idle_timer
        self._idle_timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _idle_watch(self) -> None:
        window = float(self.config.idle_timeout_s)
        while self.state is SessionState.LISTENING:
            remaining = self._last_activity + window - time.monotonic()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            if self._fragments:
                # buffered speech is waiting for ``end``; no synthetic turn
                return
            self._set_state(SessionState.RESPONDING)
            self._spawn(self._heartbeat_turn())
            return

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(self._run_safe(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_safe(self, coro) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Session[%s] turn task crashed", self.session_id)

    async def _finalize_turn(self, fragments: list[bytes]) -> None:
        if self.closed:
            logger.info("Session[%s] turn dropped, session closed", self.session_id)
            return
        self._turn_seq += 1
        turn_dir = self.workdir / f"turn-{self._turn_seq}"
        timings = TurnTimings()
        try:
            # never recreate a workdir that close() already removed
            turn_dir.mkdir(exist_ok=True)
            utterance = b"".join(fragments)
            input_path = turn_dir / "utterance.webm"
            await asyncio.to_thread(input_path.write_bytes, utterance)
            logger.info(
                "Session[%s] utterance finalized: fragments=%s bytes=%s",
                self.session_id,
                len(fragments),
                len(utterance),
            )

            start = Metrics.now()
            normalized = await self.pipeline.transcode(
                input_path,
                turn_dir / f"utterance{self.pipeline.output_suffix}",
            )
            timings.record("transcode", start)

            start = Metrics.now()
            transcript = await self.pipeline.transcribe(normalized)
            timings.record("stt", start)
            logger.info("Session[%s] transcript: %s", self.session_id, transcript[:120])

            await self._send({"type": events.WS_TYPE_STT_RESULT, "transcript": transcript, "final": True})
            self._set_state(SessionState.RESPONDING)
            await self._respond(transcript, timings)
        except Exception as exc:
            await self._fail_turn(exc)
        finally:
            self._remove_quietly(turn_dir)
            await self._finish_turn(timings)

    async def _heartbeat_turn(self) -> None:
        timings = TurnTimings()
        placeholder = self.config.heartbeat_transcript
        logger.info("Session[%s] idle heartbeat: window_s=%s", self.session_id, self.config.idle_timeout_s)
        try:
            await self._send({"type": events.WS_TYPE_STT_RESULT, "transcript": placeholder, "final": False})
            await self._respond(placeholder, timings)
        except Exception as exc:
            await self._fail_turn(exc)
        finally:
            await self._finish_turn(timings)

    async def _respond(self, transcript: str, timings: TurnTimings) -> None:
        start = Metrics.now()
        reply = await self.pipeline.answer(transcript)
        timings.record("answer", start)
        answer = (reply.text or "").strip() or self.fallback_text

        start = Metrics.now()
        spoken = await self.pipeline.speak(answer)
        timings.record("tts", start)
        if spoken is None:
            logger.warning("Session[%s] no audio for answer, sending text only", self.session_id)

        await self._send(
            {
                "type": events.WS_TYPE_FINAL_RESPONSE,
                "answer": answer,
                "audio": spoken.audio_base64 if spoken else None,
                "subtitles": spoken.subtitles() if spoken else [],
            }
        )

    async def _fail_turn(self, exc: Exception) -> None:
        if isinstance(exc, VoiceError):
            logger.warning("Session[%s] turn failed: %s", self.session_id, exc)
            message = exc.public_message
        else:
            logger.error("Session[%s] turn failed unexpectedly", self.session_id, exc_info=exc)
            message = MSG_INTERNAL
        self._set_state(SessionState.ERROR)
        await self._send_error(message)

    async def _finish_turn(self, timings: TurnTimings) -> None:
        if self.closed:
            logger.info("Session[%s] turn result discarded, session closed", self.session_id)
            return
        logger.info("Session[%s] turn done: %s", self.session_id, timings.summary())
        self._set_state(SessionState.IDLE)
        if self.config.close_after_turn:
            await self.close(close_transport=True)

    async def _send(self, payload: dict[str, Any]) -> bool:
        if self.closed:
            return False
        async with self._send_lock:
            try:
                await self.send_json(payload)
            except Exception:
                logger.warning(
                    "Session[%s] send failed, transport gone: type=%s",
                    self.session_id,
                    payload.get("type"),
                )
                await self.close()
                return False
        return True

    async def _send_error(self, message: str) -> None:
        await self._send({"type": events.WS_TYPE_ERROR, "message": message})

    def _remove_quietly(self, path: Path) -> None:
        try:
            _remove_tree(path)
        except ResourceError:
            logger.warning("Session[%s] cleanup failed: path=%s", self.session_id, path, exc_info=True)

    async def close(self, close_transport: bool = False) -> None:
        if self.closed:
            return
        self._set_state(SessionState.CLOSED)
        self._cancel_idle_timer()
        self._fragments.clear()
        self._remove_quietly(self.workdir)
        logger.info("Session[%s] closed: in_flight_turns=%s", self.session_id, len(self._tasks))

        if close_transport and self.close_transport is not None:
            try:
                await self.close_transport()
            except Exception:
                logger.debug("Session[%s] transport already closed", self.session_id)
