from __future__ import annotations

import logging
import threading
from typing import Any

from modules.core.interfaces import STTProvider

logger = logging.getLogger(__name__)

try:
    from faster_whisper import WhisperModel
except ImportError:  # pragma: no cover
    WhisperModel = None


class FasterWhisperProvider(STTProvider):
    name = "faster_whisper"
    configured = True

    def __init__(
        self,
        model_size: str = "small",
        device: str = "cpu",
        compute_type: str = "int8",
        device_index: int = 0,
        language: str | None = "en",
    ):
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.device_index = int(device_index)
        self.language = language or None
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        if WhisperModel is None:
            raise RuntimeError("faster-whisper is not installed, run: pip install 'ragvoice[local]'")
        if self._model is None:
            with self._lock:
                if self._model is None:
                    kwargs: dict[str, Any] = {
                        "device": self.device,
                        "compute_type": self.compute_type,
                    }
                    if str(self.device).lower().startswith("cuda"):
                        kwargs["device_index"] = self.device_index
                    self._model = WhisperModel(self.model_size, **kwargs)
                    logger.info(
                        "FasterWhisper model loaded: model=%s device=%s compute_type=%s",
                        self.model_size,
                        self.device,
                        self.compute_type,
                    )
        return self._model

    def transcribe(self, audio_path: str) -> str:
        model = self._get_model()
        segments_iter, info = model.transcribe(
            str(audio_path),
            language=self.language,
            beam_size=1,
            vad_filter=True,
            condition_on_previous_text=False,
        )
        texts = [(segment.text or "").strip() for segment in segments_iter]
        text = " ".join(t for t in texts if t).strip()
        logger.info(
            "FasterWhisper done: lang=%s duration_s=%.2f text_len=%s",
            getattr(info, "language", None),
            float(getattr(info, "duration", 0.0) or 0.0),
            len(text),
        )
        return text
