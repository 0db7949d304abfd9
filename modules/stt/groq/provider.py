from __future__ import annotations

import logging
from pathlib import Path

import requests

from modules.core.errors import ProviderError, ProviderErrorCategory
from modules.core.interfaces import STTProvider

logger = logging.getLogger(__name__)


class GroqWhisperProvider(STTProvider):
    """Whisper transcription through Groq's OpenAI-compatible audio endpoint."""

    name = "groq"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://api.groq.com/openai/v1/audio/transcriptions",
        model: str = "whisper-large-v3-turbo",
        language: str = "en",
        timeout_s: float = 30.0,
    ):
        self.api_key = (api_key or "").strip()
        self.endpoint = endpoint
        self.model = model
        self.language = language
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def transcribe(self, audio_path: str) -> str:
        if not self.api_key:
            raise ProviderError(self.name, "api key is not configured", category=ProviderErrorCategory.MISCONFIGURED)

        path = Path(audio_path)
        logger.info("Groq STT request: model=%s file=%s bytes=%s", self.model, path.name, path.stat().st_size)
        try:
            with path.open("rb") as fh:
                response = requests.post(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    files={"file": (path.name, fh)},
                    data={
                        "model": self.model,
                        "language": self.language,
                        "response_format": "json",
                        "temperature": "0",
                    },
                    timeout=self.timeout_s,
                )
        except requests.RequestException as exc:
            logger.exception("Groq STT HTTP request failed: endpoint=%s", self.endpoint)
            raise ProviderError(self.name, str(exc)) from exc

        if not response.ok:
            logger.error(
                "Groq STT status error: status=%s body=%s",
                response.status_code,
                (response.text or "")[:500],
            )
            raise ProviderError(self.name, "transcription request rejected", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            logger.exception("Groq STT JSON decode failed: body=%s", (response.text or "")[:500])
            raise ProviderError(self.name, "invalid json body", status_code=response.status_code) from exc

        return (data.get("text") or "").strip()
