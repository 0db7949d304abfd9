from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from modules.audio.duration import probe_duration_seconds
from modules.core.interfaces import TTSProvider
from modules.core.ratelimit import call_with_retry
from modules.core.schemas import SynthesisResult

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    text: str
    future: asyncio.Future


class SpeechSynthesisQueue:
    """Process-wide FIFO in front of the TTS provider.

    A single worker drains the queue, so the provider never sees two requests
    from this process at once. Each job waits ``spacing_s`` after the previous
    one finished. A failed job resolves to ``None`` for its own caller only.
    """

    def __init__(
        self,
        provider: TTSProvider,
        spacing_s: float = 0.2,
        attempts: int = 1,
        retry_delay_s: float = 1.0,
        duration_probe: Callable[[bytes], float] = probe_duration_seconds,
    ):
        self.provider = provider
        self.spacing_s = max(0.0, float(spacing_s))
        self.attempts = max(1, int(attempts))
        self.retry_delay_s = max(0.0, float(retry_delay_s))
        self.duration_probe = duration_probe
        self._queue: asyncio.Queue[_Job] | None = None
        self._worker: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.completed = 0
        self.failed = 0

    def _ensure_worker(self) -> asyncio.Queue[_Job]:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._worker is None or self._worker.done() or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run(self._queue))
            logger.info("TTS queue worker started: provider=%s spacing_s=%.2f", self.provider.name, self.spacing_s)
        return self._queue

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def enqueue(self, text: str) -> SynthesisResult | None:
        queue = self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        queue.put_nowait(_Job(text=text, future=future))
        logger.info("TTS job queued: text_len=%s pending=%s", len(text or ""), queue.qsize())
        return await future

    async def _run(self, queue: asyncio.Queue[_Job]) -> None:
        while True:
            job = await queue.get()
            try:
                if job.future.cancelled():
                    continue
                await asyncio.sleep(self.spacing_s)
                result = await self._synthesize(job.text)
                if not job.future.done():
                    job.future.set_result(result)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.set_result(None)
                raise
            finally:
                queue.task_done()

    async def _synthesize(self, text: str) -> SynthesisResult | None:
        try:
            audio = await call_with_retry(
                self.provider.synthesize,
                text,
                attempts=self.attempts,
                delay_s=self.retry_delay_s,
                label=f"TTS({self.provider.name})",
            )
            duration_s = await asyncio.to_thread(self.duration_probe, audio)
        except Exception:
            self.failed += 1
            logger.exception("TTS queue job failed: text_len=%s", len(text or ""))
            return None
        self.completed += 1
        logger.info("TTS job done: bytes=%s duration_s=%.3f", len(audio), duration_s)
        return SynthesisResult(audio=audio, duration_s=duration_s)

    async def close(self) -> None:
        """Stop the worker. Jobs still waiting resolve to ``None``."""
        worker = self._worker
        self._worker = None
        if worker is None or self._loop is not asyncio.get_running_loop():
            return
        if not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._drain()

    def _drain(self) -> None:
        queue = self._queue
        if queue is None:
            return
        dropped = 0
        while not queue.empty():
            job = queue.get_nowait()
            queue.task_done()
            if not job.future.done():
                job.future.set_result(None)
                dropped += 1
        if dropped:
            logger.warning("TTS queue closed with pending jobs: dropped=%s", dropped)
