"""Orquestrador adaptativo de renovações.

Um único loop re-armado após cada ciclo (sem intervalo fixo de polling):
1. Coleta identidades vencidas na agenda (+ identidades do diretório sem agenda)
2. Admite até a taxa ajustada pela saúde global
3. Despacha o workflow em ondas limitadas pelos slots globais
4. Atualiza a janela de saúde e o contador de falhas consecutivas
5. Dorme até o próximo vencimento (ou backoff) e repete
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from session_keeper.application.health import HealthTracker
from session_keeper.application.workflow import RenewalWorkflow
from session_keeper.config.policies import SchedulerPolicy
from session_keeper.domain.errors import SessionKeeperError
from session_keeper.domain.models import CycleReport, RenewalOutcome, RenewalResult
from session_keeper.domain.protocols import CredentialsProvider
from session_keeper.infra.session_store import SessionStore
from session_keeper.observability.context import bind_correlation_id, mask_identity
from session_keeper.observability.logging import get_logger
from session_keeper.observability.timing import timed

logger: logging.Logger = get_logger(__name__)

DAILY_RENEWAL_KEY = "scheduler:dailyRenewal"


def compute_next_sleep(
    consecutive_failures: int,
    earliest_at: float | None,
    now: float,
    policy: SchedulerPolicy,
) -> float:
    """Segundos até o próximo ciclo.

    - Com falhas consecutivas: backoff exponencial (base * 2^(n-1), teto max),
      a menos que o próximo vencimento da agenda seja anterior
    - Sem backoff: até o vencimento mais próximo (mínimo 1s, sem teto)
    - Agenda vazia: sono longo padrão
    """
    until_earliest: float | None = None
    if earliest_at is not None:
        until_earliest = max(policy.min_sleep_seconds, earliest_at - now)

    if consecutive_failures > 0:
        backoff = min(
            policy.backoff_base_seconds * 2 ** (consecutive_failures - 1),
            policy.backoff_max_seconds,
        )
        if until_earliest is not None and until_earliest < backoff:
            return until_earliest
        return backoff

    if until_earliest is None:
        return policy.idle_sleep_seconds
    return until_earliest


@dataclass(frozen=True)
class DueIdentity:
    identity: str
    expired: bool
    deadline: float


def _failed(identity: str, error: BaseException) -> RenewalResult:
    return RenewalResult(identity, RenewalOutcome.FAILED, reason=type(error).__name__)


class RefreshOrchestrator:
    """Loop de agendamento; dono do HealthState global."""

    def __init__(
        self,
        sessions: SessionStore,
        workflow: RenewalWorkflow,
        health: HealthTracker,
        credentials: CredentialsProvider,
        policy: SchedulerPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._workflow = workflow
        self._health = health
        self._credentials = credentials
        self._policy = policy or SchedulerPolicy()
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._stopping = False
        self._last_report: CycleReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    # ------------------------------------------------------------------
    # Seleção
    # ------------------------------------------------------------------

    async def _directory(self) -> list[str] | None:
        try:
            return await self._credentials.list_identities()
        except Exception as e:
            logger.warning(
                "Identity directory unavailable, using schedule only",
                extra={"error_type": type(e).__name__},
            )
            return None

    async def collect_due(self, now: float | None = None) -> list[DueIdentity]:
        """Identidades a renovar, expiradas primeiro e depois por prazo."""

        now = self._clock() if now is None else now
        directory = await self._directory()
        known = set(directory) if directory is not None else None

        candidates: dict[str, DueIdentity] = {}
        for identity, score in await self._sessions.due_identities(now):
            if known is not None and identity not in known:
                await self._sessions.unschedule(identity)
                logger.info(
                    "Identity left directory, unscheduled",
                    extra={"identity": mask_identity(identity)},
                )
                continue
            session = await self._sessions.get(identity)
            candidates[identity] = DueIdentity(
                identity, self._sessions.is_expired(session, now), score
            )

        # Fora da agenda (nunca renovado ou entrada perdida); entradas futuras,
        # inclusive as empurradas pelo circuit breaker, ficam com a agenda
        for identity in directory or []:
            if identity in candidates:
                continue
            if await self._sessions.get_next_refresh(identity) is not None:
                continue
            session = await self._sessions.get(identity)
            candidates[identity] = DueIdentity(
                identity, self._sessions.is_expired(session, now), now
            )

        due: list[DueIdentity] = []
        for item in candidates.values():
            if await self._sessions.has_lock(item.identity):
                continue
            due.append(item)
        return sorted(due, key=lambda d: (not d.expired, d.deadline))

    # ------------------------------------------------------------------
    # Ciclo
    # ------------------------------------------------------------------

    async def _dispatch(self, identities: Sequence[str]) -> list[RenewalResult]:
        """Executa em ondas do tamanho da capacidade de slots globais."""

        wave_size = max(1, self._workflow.refresh_slots.capacity)
        results: list[RenewalResult] = []
        for start in range(0, len(identities), wave_size):
            wave = identities[start : start + wave_size]
            outcomes = await asyncio.gather(
                *(
                    self._workflow.run(identity, trigger="scheduler")
                    for identity in wave
                ),
                return_exceptions=True,
            )
            for identity, outcome in zip(wave, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Workflow raised unexpectedly",
                        extra={"identity": mask_identity(identity), "error": str(outcome)},
                    )
                    results.append(_failed(identity, outcome))
                else:
                    results.append(outcome)
        return results

    async def _record(self, report: CycleReport, results: Sequence[RenewalResult]) -> None:
        for result in results:
            report.add(result)
            if result.counts_for_health:
                await self._health.record_outcome(result.succeeded)
        report.consecutive_failures = await self._health.record_cycle(
            report.failed, report.renewed
        )

    async def run_cycle(self) -> CycleReport:
        """Uma passada: seleciona, admite, despacha e registra saúde."""

        report = CycleReport()
        with bind_correlation_id(), timed("refresh_cycle"):
            now = self._clock()
            await self._schedule_daily_renewal(now)

            due = await self.collect_due(now)
            rate = await self._health.admission_rate()
            admitted = [d.identity for d in due[:rate]]
            report.due = len(due)
            report.admitted = len(admitted)

            results = await self._dispatch(admitted) if admitted else []
            await self._record(report, results)

            report.next_sleep_seconds = await self.next_sleep()
            logger.info(
                "Refresh cycle finished",
                extra={
                    "due": report.due,
                    "admitted": report.admitted,
                    "admission_rate": rate,
                    "renewed": report.renewed,
                    "failed": report.failed,
                    "skipped": report.skipped,
                    "scheduled": report.scheduled,
                    "consecutive_failures": report.consecutive_failures,
                    "next_sleep_seconds": round(report.next_sleep_seconds, 1),
                },
            )
        self._last_report = report
        return report

    async def next_sleep(self) -> float:
        now = self._clock()
        try:
            earliest = await self._sessions.earliest_refresh()
            failures = await self._health.consecutive_failures()
        except SessionKeeperError as e:
            logger.warning("Schedule unavailable, using backoff", extra={"error": str(e)})
            return self._policy.backoff_base_seconds

        sleep = compute_next_sleep(
            failures, earliest[1] if earliest else None, now, self._policy
        )
        daily_at = self._next_daily_renewal(now)
        if daily_at is not None:
            sleep = min(sleep, max(self._policy.min_sleep_seconds, daily_at - now))
        return sleep

    # ------------------------------------------------------------------
    # Login proativo diário
    # ------------------------------------------------------------------

    def _next_daily_renewal(self, now: float) -> float | None:
        hour = self._policy.daily_renewal_hour
        if hour is None:
            return None
        tz = ZoneInfo(self._policy.timezone)
        local = datetime.fromtimestamp(now, tz)
        target = local.replace(hour=hour, minute=0, second=0, microsecond=0)
        if target <= local:
            target += timedelta(days=1)
        return target.timestamp()

    async def _schedule_daily_renewal(self, now: float) -> list[str]:
        """Antecipa a agenda de todo o diretório para agora (uma vez por dia).

        As identidades passam pelo caminho normal: admissão limitada pela taxa
        global, probe de keep-alive e login só quando o probe indica expiração.
        Identidades com o circuit breaker aberto mantêm a penalidade.
        """

        hour = self._policy.daily_renewal_hour
        if hour is None:
            return []
        local = datetime.fromtimestamp(now, ZoneInfo(self._policy.timezone))
        if local.hour < hour:
            return []

        key = f"{DAILY_RENEWAL_KEY}:{local.date().isoformat()}"
        if not await self._sessions.state.set_if_absent(key, str(now), 26 * 3600):
            return []

        threshold = self._health.policy.failure_threshold
        pulled: list[str] = []
        for identity in await self._directory() or []:
            if await self._health.identity_failures(identity) >= threshold:
                continue
            score = await self._sessions.get_next_refresh(identity)
            if score is not None and score > now:
                await self._sessions.reschedule(identity, now)
                pulled.append(identity)
        logger.info("Daily proactive renewal", extra={"identities": len(pulled)})
        return pulled

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except TimeoutError:
            pass
        finally:
            self._wake.clear()

    async def _loop(self) -> None:
        logger.info("Refresh scheduler started")
        while not self._stopping:
            try:
                report = await self.run_cycle()
                sleep = report.next_sleep_seconds or self._policy.min_sleep_seconds
            except Exception:
                logger.exception("Refresh cycle failed")
                try:
                    await self._health.record_cycle_error()
                except SessionKeeperError as e:
                    logger.warning("Health update failed", extra={"error": str(e)})
                sleep = self._policy.backoff_base_seconds
            if self._stopping:
                break
            await self._sleep(sleep)
        logger.info("Refresh scheduler stopped")

    def start(self) -> None:
        """Arma o loop (idempotente)."""

        if self.running:
            return
        self._stopping = False
        self._wake.clear()
        self._task = asyncio.create_task(self._loop(), name="refresh-orchestrator")

    def wake(self) -> None:
        """Interrompe o sono atual para recalcular o próximo ciclo."""

        self._wake.set()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping = True
        self._wake.set()
        try:
            await self._task
        finally:
            self._task = None
