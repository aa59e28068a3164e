"""Modelos de domínio: sessão, snapshot, resultados de renovação e saúde."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from session_keeper.domain.cookies import Cookie
from session_keeper.domain.states import RenewalState


class Session(BaseModel):
    """Sessão persistida de uma identidade.

    Invariante: next_refresh_at < expiry_at.
    """

    identity: str
    cookies: list[Cookie] = Field(default_factory=list)
    saved_at: float
    expiry_at: float
    next_refresh_at: float

    def remaining_seconds(self, now: float) -> float:
        return self.expiry_at - now


class CachedSnapshot(BaseModel):
    """Último payload de dados obtido com sucesso para uma identidade."""

    identity: str
    data: dict[str, Any] = Field(default_factory=dict)
    saved_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.saved_at)

    def is_fresh(self, now: float, fresh_seconds: float) -> bool:
        return self.age(now) < fresh_seconds


class Credentials(BaseModel):
    """Credenciais de login (password nunca vai para logs)."""

    identity: str
    username: str
    password: str = Field(repr=False)


class ProbeStatus(StrEnum):
    OK = "ok"
    EXPIRED = "expired"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    new_cookies: list[Cookie] = field(default_factory=list)
    status_code: int | None = None
    error: str | None = None


class RenewalOutcome(StrEnum):
    """Resultado de uma execução do workflow por identidade."""

    RENEWED = "renewed"
    NOT_DUE = "not_due"
    SCHEDULED = "scheduled"
    SKIPPED = "skipped"
    FAILED = "failed"


class RenewalMethod(StrEnum):
    KEEP_ALIVE = "keep_alive"
    LOGIN = "login"


class SkipReason(StrEnum):
    LOCK_EXISTS = "lock-exists"
    MAX_CONCURRENCY = "max-concurrency"
    LOGIN_IN_PROGRESS = "login-in-progress"


@dataclass(frozen=True)
class RenewalResult:
    identity: str
    outcome: RenewalOutcome
    method: RenewalMethod | None = None
    reason: str | None = None
    rescheduled_at: float | None = None
    session: Session | None = None
    path: tuple[RenewalState, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome == RenewalOutcome.RENEWED

    @property
    def counts_for_health(self) -> bool:
        """Apenas RENEWED e FAILED entram na janela global de saúde."""
        return self.outcome in (RenewalOutcome.RENEWED, RenewalOutcome.FAILED)


@dataclass(frozen=True)
class HealthState:
    admission_rate: int
    failure_rate: float
    samples: int
    consecutive_failures: int


@dataclass(frozen=True)
class SnapshotRead:
    data: dict[str, Any]
    cached: bool
    stale: bool
    age_seconds: float


@dataclass
class CycleReport:
    due: int = 0
    admitted: int = 0
    renewed: int = 0
    failed: int = 0
    skipped: int = 0
    scheduled: int = 0
    not_due: int = 0
    consecutive_failures: int = 0
    next_sleep_seconds: float | None = None

    def add(self, result: RenewalResult) -> None:
        if result.outcome == RenewalOutcome.RENEWED:
            self.renewed += 1
        elif result.outcome == RenewalOutcome.FAILED:
            self.failed += 1
        elif result.outcome == RenewalOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == RenewalOutcome.SCHEDULED:
            self.scheduled += 1
        else:
            self.not_due += 1
