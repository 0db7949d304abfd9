from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path

from modules.core.interfaces import TTSProvider

try:
    import pyttsx3
except ImportError:  # pragma: no cover
    pyttsx3 = None


class Pyttsx3Provider(TTSProvider):
    """Offline speech through the platform voice engine. Returns wav bytes."""

    name = "pyttsx3"
    configured = True

    def __init__(self, rate: int = 185, volume: float = 1.0, temp_dir: str | None = None):
        self.rate = rate
        self.volume = volume
        self.temp_dir = temp_dir
        self._engine = None
        self._lock = threading.Lock()
        if self.temp_dir:
            Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

    def _get_engine(self):
        if pyttsx3 is None:
            raise RuntimeError("pyttsx3 is not installed, run: pip install 'ragvoice[local]'")
        if self._engine is None:
            self._engine = pyttsx3.init()
        return self._engine

    def synthesize(self, text: str) -> bytes:
        text = (text or "").strip()
        if not text:
            return b""

        tmp_path = ""
        try:
            with tempfile.NamedTemporaryFile(suffix=".wav", delete=False, dir=self.temp_dir) as tmp:
                tmp_path = tmp.name

            with self._lock:
                engine = self._get_engine()
                engine.setProperty("rate", self.rate)
                engine.setProperty("volume", self.volume)
                engine.save_to_file(text, tmp_path)
                engine.runAndWait()

            return Path(tmp_path).read_bytes()
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
