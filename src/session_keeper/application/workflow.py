"""Workflow de renovação por identidade (máquina de estados).

Fluxo:
    IDLE -> LOCK_ACQUIRED -> {KEEP_ALIVE_ATTEMPT | DIRECT_LOGIN}
         -> {RENEWED | LOGIN_IN_FALLBACK} -> RELEASED

Regras:
- No máximo uma renovação concorrente por identidade (refresh lock)
- Sessão sabidamente expirada vai direto para login (sem probe)
- Erro transitório no probe nunca força login enquanto a sessão vale
- Lock, slot global e flag de login são liberados em todos os caminhos
- Falhas ficam isoladas: viram RenewalResult FAILED, nunca exceção
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from session_keeper.application.concurrency import SlotPool
from session_keeper.application.health import HealthTracker
from session_keeper.config.policies import WorkflowPolicy
from session_keeper.domain.cookies import merge_cookies
from session_keeper.domain.errors import LoginFailure, SessionKeeperError
from session_keeper.domain.models import (
    ProbeStatus,
    RenewalMethod,
    RenewalOutcome,
    RenewalResult,
    Session,
    SkipReason,
)
from session_keeper.domain.protocols import CredentialsProvider, LoginProvider, ProbeProvider
from session_keeper.domain.states import RenewalEvent, RenewalState, validate_transition
from session_keeper.infra.session_store import SessionStore
from session_keeper.observability.context import bind_correlation_id, mask_identity
from session_keeper.observability.logging import get_logger, log_fallback
from session_keeper.observability.timing import PhaseTimer

logger: logging.Logger = get_logger(__name__)


class _RunState:
    """Estado corrente de uma execução; transições validadas pela tabela pura."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        self.current = RenewalState.IDLE
        self.path: list[RenewalState] = [RenewalState.IDLE]

    def fire(self, event: RenewalEvent) -> RenewalState:
        is_valid, next_state, error = validate_transition(self.current, event)
        if not is_valid or next_state is None:
            logger.error(
                "Renewal transition invalid",
                extra={
                    "identity": mask_identity(self.identity),
                    "current_state": self.current,
                    "event": event,
                    "error": error,
                },
            )
            return self.current
        self.current = next_state
        self.path.append(next_state)
        return next_state

    def finish(self) -> None:
        if self.current == RenewalState.RELEASED:
            return
        is_valid, _, _ = validate_transition(self.current, RenewalEvent.FINISHED)
        if is_valid:
            self.fire(RenewalEvent.FINISHED)
        else:
            # Saída por exceção no meio de um estado intermediário
            self.current = RenewalState.RELEASED
            self.path.append(RenewalState.RELEASED)


class RenewalWorkflow:
    """Decide probe vs. login para uma identidade e registra o resultado.

    Colaboradores são injetados no construtor; o workflow não conhece o
    orquestrador nem o chamador (request-time ou agendado).
    """

    def __init__(
        self,
        sessions: SessionStore,
        login_provider: LoginProvider,
        probe_provider: ProbeProvider,
        credentials: CredentialsProvider,
        health: HealthTracker,
        policy: WorkflowPolicy | None = None,
        refresh_slots: SlotPool | None = None,
        login_slots: SlotPool | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._login = login_provider
        self._probe = probe_provider
        self._credentials = credentials
        self._health = health
        self._policy = policy or WorkflowPolicy()
        self._refresh_slots = refresh_slots or SlotPool(
            self._policy.max_concurrent_refreshes, name="refresh"
        )
        self._login_slots = login_slots or SlotPool(self._policy.max_concurrent_logins, name="login")
        self._clock = clock

    @property
    def refresh_slots(self) -> SlotPool:
        return self._refresh_slots

    @property
    def login_slots(self) -> SlotPool:
        return self._login_slots

    async def run(
        self,
        identity: str,
        force_login: bool = False,
        trigger: str = "scheduled",
    ) -> RenewalResult:
        """Executa uma passada do workflow.

        Args:
            identity: Admin cuja sessão será renovada
            force_login: Pula o probe (login diário, expiração detectada no fetch)
            trigger: Origem da execução, apenas para logs
        """
        with bind_correlation_id():
            run = _RunState(identity)
            timer = PhaseTimer()
            result = await self._run_locked(run, timer, force_login)
            run.finish()
            result = RenewalResult(
                identity=result.identity,
                outcome=result.outcome,
                method=result.method,
                reason=result.reason,
                rescheduled_at=result.rescheduled_at,
                session=result.session,
                path=tuple(run.path),
            )
            logger.info(
                "renewal_summary",
                extra={
                    "identity": mask_identity(identity),
                    "trigger": trigger,
                    "outcome": result.outcome,
                    "method": result.method,
                    "reason": result.reason,
                    "phases": timer.summary(),
                    "total_ms": timer.total_ms,
                },
            )
            return result

    async def _run_locked(
        self, run: _RunState, timer: PhaseTimer, force_login: bool
    ) -> RenewalResult:
        identity = run.identity
        try:
            locked = await self._sessions.acquire_lock(
                identity, self._policy.refresh_lock_ttl_seconds
            )
        except SessionKeeperError as e:
            logger.error(
                "Refresh lock unavailable",
                extra={"identity": mask_identity(identity), "error": str(e)},
            )
            run.fire(RenewalEvent.LOCK_DENIED)
            return RenewalResult(identity, RenewalOutcome.FAILED, reason="store-unavailable")

        if not locked:
            run.fire(RenewalEvent.LOCK_DENIED)
            timer.mark("lock", SkipReason.LOCK_EXISTS)
            return RenewalResult(identity, RenewalOutcome.SKIPPED, reason=SkipReason.LOCK_EXISTS)

        if not self._refresh_slots.try_acquire():
            run.fire(RenewalEvent.LOCK_DENIED)
            timer.mark("slot", SkipReason.MAX_CONCURRENCY)
            await self._release_lock(identity)
            return RenewalResult(
                identity, RenewalOutcome.SKIPPED, reason=SkipReason.MAX_CONCURRENCY
            )

        run.fire(RenewalEvent.LOCK_GRANTED)
        timer.mark("lock")
        try:
            result = await self._renew(run, timer, force_login)
        except Exception as e:  # isolamento por identidade
            await self._record_failure(identity, e)
            return RenewalResult(identity, RenewalOutcome.FAILED, reason=str(e) or type(e).__name__)
        finally:
            self._refresh_slots.release()
            await self._release_lock(identity)

        if result.outcome == RenewalOutcome.RENEWED:
            await self._record_success(identity)
        return result

    async def _renew(self, run: _RunState, timer: PhaseTimer, force_login: bool) -> RenewalResult:
        identity = run.identity

        if await self._sessions.is_login_in_progress(identity):
            run.fire(RenewalEvent.LOGIN_FLAG_SET)
            return RenewalResult(
                identity, RenewalOutcome.SKIPPED, reason=SkipReason.LOGIN_IN_PROGRESS
            )

        session = await self._sessions.get(identity)
        now = self._clock()
        if force_login or session is None or self._sessions.is_expired(session, now):
            run.fire(RenewalEvent.LOGIN_REQUIRED)
            return await self._direct_login(run, timer)

        next_refresh_at = await self._sessions.get_next_refresh(identity)
        if next_refresh_at is None:
            next_refresh_at = session.next_refresh_at
            await self._sessions.reschedule(identity, next_refresh_at)
        if next_refresh_at > now:
            run.fire(RenewalEvent.NOT_DUE)
            return RenewalResult(
                identity, RenewalOutcome.NOT_DUE, rescheduled_at=next_refresh_at, session=session
            )

        run.fire(RenewalEvent.PROBE_STARTED)
        return await self._keep_alive(run, timer, session)

    async def _keep_alive(
        self, run: _RunState, timer: PhaseTimer, session: Session
    ) -> RenewalResult:
        identity = run.identity
        probe = await self._probe.probe(identity, session.cookies)
        timer.mark("probe", probe.status)

        if probe.status == ProbeStatus.OK:
            run.fire(RenewalEvent.PROBE_OK)
            cookies = merge_cookies(session.cookies, probe.new_cookies)
            renewed = await self._sessions.save(identity, cookies)
            return RenewalResult(
                identity,
                RenewalOutcome.RENEWED,
                method=RenewalMethod.KEEP_ALIVE,
                reason="new-cookies" if probe.new_cookies else "still-valid",
                session=renewed,
            )

        if probe.status == ProbeStatus.EXPIRED:
            run.fire(RenewalEvent.PROBE_EXPIRED)
            return await self._direct_login(run, timer)

        now = self._clock()
        if session.expiry_at > now:
            run.fire(RenewalEvent.PROBE_ERROR)
            retry_at = now + self._policy.transient_retry_seconds
            await self._sessions.reschedule(identity, retry_at)
            log_fallback(
                logger,
                "keep_alive",
                reason="probe_transient_error",
                identity=mask_identity(identity),
                status_code=probe.status_code,
            )
            return RenewalResult(
                identity,
                RenewalOutcome.SCHEDULED,
                reason="transient-network",
                rescheduled_at=retry_at,
                session=session,
            )

        run.fire(RenewalEvent.LOGIN_REQUIRED)
        return await self._direct_login(run, timer)

    async def _direct_login(self, run: _RunState, timer: PhaseTimer) -> RenewalResult:
        identity = run.identity
        acquired = await self._login_slots.acquire(
            timeout=self._policy.login_slot_wait_seconds,
            poll_interval=self._policy.slot_poll_interval_seconds,
        )
        if not acquired:
            run.fire(RenewalEvent.LOGIN_SLOT_TIMEOUT)
            timer.mark("login_slot", "timeout")
            retry_at = self._clock() + self._policy.login_slot_retry_seconds
            await self._sessions.reschedule(identity, retry_at)
            logger.info(
                "Login slots busy, rescheduled",
                extra={"identity": mask_identity(identity), "in_use": self._login_slots.in_use},
            )
            return RenewalResult(
                identity,
                RenewalOutcome.SCHEDULED,
                reason="login-slot-timeout",
                rescheduled_at=retry_at,
            )

        try:
            credentials = await self._credentials.get(identity)
            if credentials is None:
                run.fire(RenewalEvent.LOGIN_FAILED)
                raise LoginFailure("no credentials for identity")

            if not await self._sessions.set_login_in_progress(
                identity, self._policy.login_in_progress_ttl_seconds
            ):
                run.fire(RenewalEvent.LOGIN_FLAG_SET)
                return RenewalResult(
                    identity, RenewalOutcome.SKIPPED, reason=SkipReason.LOGIN_IN_PROGRESS
                )

            try:
                cookies = await self._login.login(identity, credentials)
                session = await self._sessions.save(identity, cookies)
            except Exception:
                run.fire(RenewalEvent.LOGIN_FAILED)
                timer.mark("login", "failed")
                raise
            finally:
                await self._clear_login_flag(identity)
        finally:
            self._login_slots.release()

        run.fire(RenewalEvent.LOGIN_OK)
        timer.mark("login", "ok")
        return RenewalResult(
            identity, RenewalOutcome.RENEWED, method=RenewalMethod.LOGIN, session=session
        )

    # ------------------------------------------------------------------
    # Limpeza e saúde (nunca propagam)
    # ------------------------------------------------------------------

    async def _release_lock(self, identity: str) -> None:
        try:
            await self._sessions.release_lock(identity)
        except SessionKeeperError as e:
            # TTL do lock é a rede de segurança
            logger.warning(
                "Refresh lock release failed",
                extra={"identity": mask_identity(identity), "error": str(e)},
            )

    async def _clear_login_flag(self, identity: str) -> None:
        try:
            await self._sessions.clear_login_in_progress(identity)
        except SessionKeeperError as e:
            logger.warning(
                "Login flag clear failed",
                extra={"identity": mask_identity(identity), "error": str(e)},
            )

    async def _record_failure(self, identity: str, error: Exception) -> None:
        logger.warning(
            "Renewal failed",
            extra={
                "identity": mask_identity(identity),
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        try:
            await self._health.record_identity_failure(identity)
        except SessionKeeperError as e:
            logger.warning("Health update failed", extra={"error": str(e)})

    async def _record_success(self, identity: str) -> None:
        try:
            await self._health.record_identity_success(identity)
        except SessionKeeperError as e:
            logger.warning("Health update failed", extra={"error": str(e)})
