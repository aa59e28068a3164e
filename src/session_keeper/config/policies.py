"""Políticas imutáveis derivadas de Settings.

Componentes do core recebem políticas (dataclasses congeladas) em vez de
Settings, o que permite testes sem variáveis de ambiente.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from session_keeper.config.settings import Settings


@dataclass(frozen=True)
class SessionPolicy:
    """Cálculo de expiração/renovação e filtragem de cookies."""

    auth_cookie_names: frozenset[str] = field(default_factory=lambda: frozenset({"__ACCOUNT"}))
    session_cookie_denylist: frozenset[str] = field(
        default_factory=lambda: frozenset({"ASP.NET_SessionId", "JSESSIONID", "PHPSESSID"})
    )
    default_lifetime_seconds: float = 86400.0
    ttl_cap_seconds: int = 2592000
    buffer_ratio: float = 0.2
    buffer_min_seconds: float = 10.0
    buffer_max_seconds: float = 30.0
    min_lead_seconds: float = 10.0
    snapshot_stale_max_seconds: float = 7200.0
    snapshot_fresh_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionPolicy:
        return cls(
            auth_cookie_names=frozenset(settings.auth_cookie_names),
            session_cookie_denylist=frozenset(settings.session_cookie_denylist),
            default_lifetime_seconds=float(settings.default_session_lifetime_seconds),
            ttl_cap_seconds=settings.session_ttl_cap_seconds,
            buffer_ratio=settings.renewal_buffer_ratio,
            buffer_min_seconds=settings.renewal_buffer_min_seconds,
            buffer_max_seconds=settings.renewal_buffer_max_seconds,
            min_lead_seconds=settings.min_refresh_lead_seconds,
            snapshot_stale_max_seconds=settings.snapshot_stale_max_seconds,
            snapshot_fresh_seconds=settings.snapshot_fresh_seconds,
        )


@dataclass(frozen=True)
class WorkflowPolicy:
    """Locks, slots e reagendamentos do workflow por identidade."""

    refresh_lock_ttl_seconds: int = 300
    login_in_progress_ttl_seconds: int = 300
    max_concurrent_refreshes: int = 5
    max_concurrent_logins: int = 5
    login_slot_wait_seconds: float = 10.0
    slot_poll_interval_seconds: float = 0.5
    login_slot_retry_seconds: float = 5.0
    transient_retry_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkflowPolicy:
        return cls(
            refresh_lock_ttl_seconds=settings.refresh_lock_ttl_seconds,
            login_in_progress_ttl_seconds=settings.login_in_progress_ttl_seconds,
            max_concurrent_refreshes=settings.max_concurrent_refreshes,
            max_concurrent_logins=settings.max_concurrent_logins,
            login_slot_wait_seconds=settings.login_slot_wait_seconds,
            slot_poll_interval_seconds=settings.slot_poll_interval_seconds,
            login_slot_retry_seconds=settings.login_slot_retry_seconds,
            transient_retry_seconds=settings.transient_retry_seconds,
        )


@dataclass(frozen=True)
class HealthPolicy:
    """Circuit breaker por identidade e throttling global."""

    failure_threshold: int = 3
    window_seconds: int = 600
    penalty_seconds: float = 120.0
    outcome_window_size: int = 20
    min_samples: int = 10
    high_failure_rate: float = 0.5
    low_failure_rate: float = 0.2
    shrink_factor: float = 0.7
    grow_factor: float = 1.2
    base_rate: int = 10
    min_rate: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> HealthPolicy:
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            window_seconds=settings.breaker_window_seconds,
            penalty_seconds=settings.breaker_penalty_seconds,
            outcome_window_size=settings.health_window_size,
            min_samples=settings.health_min_samples,
            high_failure_rate=settings.health_high_failure_rate,
            low_failure_rate=settings.health_low_failure_rate,
            base_rate=settings.base_admissions_per_minute,
            min_rate=settings.min_admissions_per_minute,
        )


@dataclass(frozen=True)
class SchedulerPolicy:
    """Cálculo do sono adaptativo do orquestrador."""

    backoff_base_seconds: float = 60.0
    backoff_max_seconds: float = 900.0
    idle_sleep_seconds: float = 3600.0
    min_sleep_seconds: float = 1.0
    daily_renewal_hour: int | None = None
    timezone: str = "Asia/Beirut"

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerPolicy:
        return cls(
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            idle_sleep_seconds=settings.idle_sleep_seconds,
            min_sleep_seconds=settings.min_sleep_seconds,
            daily_renewal_hour=settings.daily_renewal_hour,
            timezone=settings.timezone,
        )


@dataclass(frozen=True)
class CachePolicy:
    """Camadas de frescor do cache-aside de snapshots."""

    fresh_seconds: float = 60.0
    stale_max_seconds: float = 7200.0
    background_jitter_seconds: float = 5.0
    lock_wait_seconds: float = 10.0
    lock_poll_seconds: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> CachePolicy:
        return cls(
            fresh_seconds=settings.snapshot_fresh_seconds,
            stale_max_seconds=settings.snapshot_stale_max_seconds,
            background_jitter_seconds=settings.background_refresh_jitter_seconds,
            lock_wait_seconds=settings.login_slot_wait_seconds,
            lock_poll_seconds=settings.slot_poll_interval_seconds,
        )
