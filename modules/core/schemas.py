from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Caption:
    text: str
    start: float
    end: float

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start, "end": self.end}


@dataclass
class AnswerResult:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SynthesisResult:
    audio: bytes
    duration_s: float


@dataclass
class SpokenReply:
    audio: bytes
    duration_s: float
    captions: list[Caption]

    @property
    def audio_base64(self) -> str:
        return base64.b64encode(self.audio).decode("ascii")

    def subtitles(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.captions]
