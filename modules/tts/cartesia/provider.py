from __future__ import annotations

import logging

import requests

from modules.core.errors import ProviderError, ProviderErrorCategory
from modules.core.interfaces import TTSProvider

logger = logging.getLogger(__name__)


class CartesiaTTSProvider(TTSProvider):
    name = "cartesia"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://api.cartesia.ai/tts/bytes",
        api_version: str = "2025-04-16",
        model_id: str = "sonic-2",
        voice_id: str = "",
        sample_rate: int = 44100,
        language: str = "en",
        timeout_s: float = 30.0,
    ):
        self.api_key = (api_key or "").strip()
        self.endpoint = endpoint
        self.api_version = api_version
        self.model_id = model_id
        self.voice_id = voice_id
        self.sample_rate = int(sample_rate)
        self.language = language
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _build_payload(self, text: str) -> dict:
        return {
            "model_id": self.model_id,
            "transcript": text,
            "voice": {"mode": "id", "id": self.voice_id},
            "output_format": {"container": "mp3", "encoding": "mp3", "sample_rate": self.sample_rate},
            "language": self.language,
        }

    def synthesize(self, text: str) -> bytes:
        if not self.api_key:
            raise ProviderError(self.name, "api key is not configured", category=ProviderErrorCategory.MISCONFIGURED)

        logger.info("Cartesia request: model=%s text_len=%s", self.model_id, len(text or ""))
        try:
            response = requests.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Cartesia-Version": self.api_version,
                },
                json=self._build_payload(text),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.exception("Cartesia HTTP request failed: endpoint=%s", self.endpoint)
            raise ProviderError(self.name, str(exc)) from exc

        if not response.ok:
            logger.error(
                "Cartesia HTTP status error: status=%s body=%s",
                response.status_code,
                (response.text or "")[:500],
            )
            raise ProviderError(self.name, "synthesis request rejected", status_code=response.status_code)

        audio = response.content or b""
        if not audio:
            raise ProviderError(self.name, "empty audio body", status_code=response.status_code)
        return audio
