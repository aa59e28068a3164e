"""Context manager and helpers for latency instrumentation."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator
from dataclasses import dataclass, field

from session_keeper.observability.logging import get_logger

logger = get_logger(__name__)


@contextlib.contextmanager
def timed(component: str) -> Generator[None, None, None]:
    """Context manager to measure and log elapsed time per component.

    Usage:
        with timed("refresh_cycle"):
            # do cycle work

    Logs structured entry with:
        - component: str (name of the measured component)
        - elapsed_ms: float (milliseconds elapsed)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "component_latency",
            extra={
                "component": component,
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )


@dataclass
class PhaseRecord:
    """Uma fase medida: nome, ms desde o início da execução e resultado opcional."""

    phase: str
    elapsed_ms: float
    outcome: str | None = None


@dataclass
class PhaseTimer:
    """Registra as fases de uma execução de renovação (lock, probe, login...)."""

    started_at: float = field(default_factory=time.perf_counter)
    phases: list[PhaseRecord] = field(default_factory=list)

    def mark(self, phase: str, outcome: str | None = None) -> None:
        elapsed_ms = (time.perf_counter() - self.started_at) * 1000
        self.phases.append(PhaseRecord(phase, round(elapsed_ms, 2), outcome))

    @property
    def total_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)

    def summary(self) -> str:
        """Cadeia legível para o log: lock(1.2ms) -> probe(230.0ms:ok)."""
        parts = []
        for record in self.phases:
            suffix = f":{record.outcome}" if record.outcome else ""
            parts.append(f"{record.phase}({record.elapsed_ms}ms{suffix})")
        return " -> ".join(parts)
