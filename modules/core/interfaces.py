from __future__ import annotations

from abc import ABC, abstractmethod

from modules.core.schemas import AnswerResult


class STTProvider(ABC):
    name: str = "stt"

    @abstractmethod
    def transcribe(self, audio_path: str) -> str:
        """Return the plain-text transcript, empty when no speech was found."""


class TTSProvider(ABC):
    name: str = "tts"

    @abstractmethod
    def synthesize(self, text: str) -> bytes:
        """Return encoded audio (a complete container such as mp3 or wav)."""


class AnswerProvider(ABC):
    name: str = "answer"

    @abstractmethod
    def answer(self, query: str) -> AnswerResult:
        """Return the generated answer text plus provider metadata."""
