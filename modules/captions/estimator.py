"""
Caption timing for synthesized answers.

The provider gives us one audio clip per answer and no word timings, so each
sentence gets a slice of the clip proportional to its character count. It is a
readable approximation of playback, not a forced alignment.
"""
from __future__ import annotations

import re

from modules.core.schemas import Caption

# A run of non-terminators closed by terminal punctuation, or the trailing
# remainder of the text when it has no closing punctuation.
_SENTENCE_PATTERN = re.compile(r"[^.!?]+(?:[.!?]+|$)")


def split_sentences(text: str) -> list[str]:
    if not text:
        return []
    pieces = [m.group(0) for m in _SENTENCE_PATTERN.finditer(text)]
    return [p for p in pieces if p.strip()]


def estimate_captions(text: str, duration_s: float) -> list[Caption]:
    if duration_s < 0:
        raise ValueError(f"duration must be >= 0, got {duration_s}")
    duration = float(duration_s)

    sentences = split_sentences(text or "")
    total_chars = sum(len(s) for s in sentences)
    if not sentences or total_chars == 0:
        return [Caption(text=(text or "").strip(), start=0.0, end=duration)]

    captions: list[Caption] = []
    current = 0.0
    for idx, sentence in enumerate(sentences):
        if idx == len(sentences) - 1:
            end = duration
        else:
            end = current + duration * (len(sentence) / total_chars)
        captions.append(Caption(text=sentence.strip(), start=current, end=end))
        current = end
    return captions
