from __future__ import annotations

import logging
from pathlib import Path

from apps.server.metrics import Metrics
from modules.answer.openai_compat.provider import OpenAICompatAnswerProvider
from modules.answer.rag_http.provider import RagServiceProvider
from modules.audio.transcoder import FfmpegTranscoder
from modules.captions.estimator import estimate_captions
from modules.core.config import AppConfig, ensure_project_dir
from modules.core.interfaces import AnswerProvider, STTProvider, TTSProvider
from modules.core.ratelimit import RateLimitedCaller, call_with_retry
from modules.core.schemas import AnswerResult, SpokenReply
from modules.stt.groq.provider import GroqWhisperProvider
from modules.stt.whisper_local.provider import FasterWhisperProvider
from modules.tts.cartesia.provider import CartesiaTTSProvider
from modules.tts.pyttsx3_local.provider import Pyttsx3Provider
from modules.tts.queue import SpeechSynthesisQueue

logger = logging.getLogger(__name__)


def _build_stt_provider(config: AppConfig) -> STTProvider:
    name = config.providers.stt
    if name == "groq":
        return GroqWhisperProvider(
            api_key=config.groq.api_key,
            endpoint=config.groq.endpoint,
            model=config.groq.model,
            language=config.groq.language,
            timeout_s=config.groq.timeout_s,
        )
    if name == "faster_whisper":
        return FasterWhisperProvider(
            model_size=config.faster_whisper.model_size,
            device=config.faster_whisper.device,
            compute_type=config.faster_whisper.compute_type,
            device_index=config.faster_whisper.device_index,
            language=config.faster_whisper.language,
        )
    raise ValueError(f"Unknown STT Provider: {name}")


def _build_tts_provider(config: AppConfig) -> TTSProvider:
    name = config.providers.tts
    if name == "cartesia":
        return CartesiaTTSProvider(
            api_key=config.cartesia.api_key,
            endpoint=config.cartesia.endpoint,
            api_version=config.cartesia.api_version,
            model_id=config.cartesia.model_id,
            voice_id=config.cartesia.voice_id,
            sample_rate=config.cartesia.sample_rate,
            language=config.cartesia.language,
            timeout_s=config.cartesia.timeout_s,
        )
    if name == "pyttsx3":
        return Pyttsx3Provider(
            rate=config.pyttsx3.rate,
            volume=config.pyttsx3.volume,
            temp_dir=ensure_project_dir(config, config.runtime.temp_dir),
        )
    raise ValueError(f"Unknown TTS Provider: {name}")


def _build_answer_provider(config: AppConfig) -> AnswerProvider:
    name = config.providers.answer
    if name == "rag_http":
        return RagServiceProvider(
            endpoint=config.answer.endpoint,
            api_key=config.answer.api_key,
            timeout_s=config.answer.timeout_s,
        )
    if name == "openai_compat":
        return OpenAICompatAnswerProvider(
            endpoint=config.answer.endpoint,
            model=config.answer.model,
            api_key=config.answer.api_key,
            timeout_s=config.answer.timeout_s,
            system_prompt=config.answer.system_prompt,
        )
    raise ValueError(f"Unknown Answer Provider: {name}")


class VoicePipeline:
    """Process-wide services shared by every session and HTTP route.

    Holds the only cross-session mutable state: the synthesis queue and the
    answer provider's rate-limit clock.
    """

    def __init__(
        self,
        transcoder: FfmpegTranscoder,
        stt: STTProvider,
        tts_queue: SpeechSynthesisQueue,
        answerer: AnswerProvider,
        answer_limiter: RateLimitedCaller,
        stt_retry_attempts: int = 3,
        stt_retry_delay_s: float = 1.0,
        output_suffix: str = ".mp3",
    ):
        self.transcoder = transcoder
        self.stt = stt
        self.tts_queue = tts_queue
        self.answerer = answerer
        self.answer_limiter = answer_limiter
        self.stt_retry_attempts = stt_retry_attempts
        self.stt_retry_delay_s = stt_retry_delay_s
        self.output_suffix = output_suffix

    async def transcode(self, input_path: str | Path, output_path: str | Path) -> Path:
        return await self.transcoder.transcode(input_path, output_path)

    async def transcribe(self, audio_path: str | Path) -> str:
        """Fire-once transcription used by the streaming path."""
        return await call_with_retry(self.stt.transcribe, str(audio_path), attempts=1, label=f"STT({self.stt.name})")

    async def transcribe_with_retry(self, audio_path: str | Path) -> str:
        return await call_with_retry(
            self.stt.transcribe,
            str(audio_path),
            attempts=self.stt_retry_attempts,
            delay_s=self.stt_retry_delay_s,
            label=f"STT({self.stt.name})",
        )

    async def answer(self, query: str) -> AnswerResult:
        return await self.answer_limiter.call(self.answerer.answer, query, label=f"answer({self.answerer.name})")

    async def speak(self, text: str) -> SpokenReply | None:
        start = Metrics.now()
        result = await self.tts_queue.enqueue(text)
        if result is None:
            return None
        captions = estimate_captions(text, result.duration_s)
        logger.info(
            "Speech ready: duration_s=%.3f captions=%s ms=%s",
            result.duration_s,
            len(captions),
            Metrics.elapsed_ms(start),
        )
        return SpokenReply(audio=result.audio, duration_s=result.duration_s, captions=captions)

    def provider_status(self) -> dict[str, str]:
        status: dict[str, str] = {}
        for kind, provider in (("stt", self.stt), ("tts", self.tts_queue.provider), ("answer", self.answerer)):
            if provider.name in ("pyttsx3", "faster_whisper"):
                status[kind] = "local"
            elif getattr(provider, "configured", True):
                status[kind] = "configured"
            else:
                status[kind] = "missing_api_key"
        return status

    async def close(self) -> None:
        await self.tts_queue.close()


def build_pipeline(config: AppConfig) -> VoicePipeline:
    transcoder = FfmpegTranscoder(
        ffmpeg_path=config.audio.ffmpeg_path,
        sample_rate=config.audio.sample_rate,
        channels=config.audio.channels,
        bitrate=config.audio.bitrate,
        max_concurrency=config.audio.max_concurrent_conversions,
        timeout_s=config.audio.conversion_timeout_s,
    )
    tts_queue = SpeechSynthesisQueue(
        provider=_build_tts_provider(config),
        spacing_s=config.synthesis.spacing_s,
        attempts=config.synthesis.attempts,
        retry_delay_s=config.synthesis.retry_delay_s,
    )
    limiter = RateLimitedCaller(
        min_spacing_s=config.rate_limit.min_spacing_s,
        attempts=config.rate_limit.attempts,
        retry_delay_s=config.rate_limit.retry_delay_s,
    )
    return VoicePipeline(
        transcoder=transcoder,
        stt=_build_stt_provider(config),
        tts_queue=tts_queue,
        answerer=_build_answer_provider(config),
        answer_limiter=limiter,
        stt_retry_attempts=config.stt_retry.attempts,
        stt_retry_delay_s=config.stt_retry.delay_s,
        output_suffix=f".{config.audio.output_format.lstrip('.')}",
    )
