from __future__ import annotations

import time
from dataclasses import dataclass, field


class Metrics:
    @staticmethod
    def now() -> float:
        return time.perf_counter()

    @staticmethod
    def elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)


@dataclass
class TurnTimings:
    """Per-stage latency of one turn, in milliseconds."""

    started: float = field(default_factory=Metrics.now)
    stages: dict[str, int] = field(default_factory=dict)

    def record(self, stage: str, start: float) -> int:
        ms = Metrics.elapsed_ms(start)
        self.stages[stage] = ms
        return ms

    @property
    def total_ms(self) -> int:
        return Metrics.elapsed_ms(self.started)

    def summary(self) -> str:
        parts = [f"{name}_ms={ms}" for name, ms in self.stages.items()]
        parts.append(f"total_ms={self.total_ms}")
        return " ".join(parts)
