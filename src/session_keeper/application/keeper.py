"""Fachada exposta aos chamadores (fetchers de request-time e bootstrap).

- ensure_valid_session: sessão válida imediata ou execução do workflow agora
- read_snapshot: cache-aside em camadas (fresco / stale tolerado / síncrono)
- refresh_snapshot: sessão + fetch + merge + notificação do sink
- start_scheduler / stop_scheduler: ciclo de vida do orquestrador
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable
from typing import Any

from session_keeper.application.concurrency import RequestCoalescer
from session_keeper.application.orchestrator import RefreshOrchestrator
from session_keeper.application.workflow import RenewalWorkflow
from session_keeper.config.policies import CachePolicy
from session_keeper.domain.cookies import Cookie
from session_keeper.domain.errors import AuthExpired, SessionUnavailable
from session_keeper.domain.models import (
    CachedSnapshot,
    RenewalOutcome,
    SkipReason,
    SnapshotRead,
)
from session_keeper.domain.protocols import DataFetcher, PersistenceSink
from session_keeper.infra.session_store import SessionStore
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger, log_fallback

logger: logging.Logger = get_logger(__name__)

_WAITABLE_SKIPS = frozenset({SkipReason.LOCK_EXISTS, SkipReason.LOGIN_IN_PROGRESS})


class SessionKeeper:
    """Ponto de entrada do core para chamadores externos."""

    def __init__(
        self,
        sessions: SessionStore,
        workflow: RenewalWorkflow,
        orchestrator: RefreshOrchestrator,
        sink: PersistenceSink | None = None,
        policy: CachePolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._workflow = workflow
        self._orchestrator = orchestrator
        self._sink = sink
        self._policy = policy or CachePolicy()
        self._clock = clock
        self._coalescer = RequestCoalescer()
        self._background: dict[str, asyncio.Task[None]] = {}
        self._sink_tasks: set[asyncio.Task[None]] = set()

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def orchestrator(self) -> RefreshOrchestrator:
        return self._orchestrator

    # ------------------------------------------------------------------
    # Sessão
    # ------------------------------------------------------------------

    async def ensure_valid_session(self, identity: str) -> list[Cookie]:
        """Cookies válidos para a identidade.

        Raises:
            SessionUnavailable: nenhuma sessão válida após a renovação
        """
        session = await self._sessions.get(identity)
        if session is not None and not self._sessions.is_expired(session):
            return session.cookies
        return await self._coalescer.run(
            f"session:{identity}", lambda: self._renew_now(identity, force_login=False)
        )

    async def _renew_now(self, identity: str, force_login: bool) -> list[Cookie]:
        result = await self._workflow.run(identity, force_login=force_login, trigger="request")

        if result.outcome == RenewalOutcome.RENEWED and result.session is not None:
            return result.session.cookies

        if result.outcome == RenewalOutcome.FAILED:
            raise SessionUnavailable(identity, result.reason or "renewal failed")

        if result.outcome == RenewalOutcome.SKIPPED and result.reason in _WAITABLE_SKIPS:
            await self._wait_for_release(identity)

        session = await self._sessions.get(identity)
        if session is not None and not self._sessions.is_expired(session):
            return session.cookies
        raise SessionUnavailable(identity, str(result.reason or result.outcome))

    async def _wait_for_release(self, identity: str) -> None:
        """Polling limitado até o lock/flag de outra renovação sumir."""

        deadline = time.monotonic() + self._policy.lock_wait_seconds
        while time.monotonic() < deadline:
            if not await self._sessions.has_lock(
                identity
            ) and not await self._sessions.is_login_in_progress(identity):
                return
            await asyncio.sleep(self._policy.lock_poll_seconds)
        logger.info(
            "Gave up waiting for concurrent renewal",
            extra={"identity": mask_identity(identity)},
        )

    # ------------------------------------------------------------------
    # Snapshots (cache-aside)
    # ------------------------------------------------------------------

    async def get_cached_snapshot(
        self, identity: str, allow_stale: bool = False
    ) -> CachedSnapshot | None:
        return await self._sessions.get_cached_snapshot(identity, allow_stale=allow_stale)

    async def read_snapshot(self, identity: str, fetcher: DataFetcher) -> SnapshotRead:
        """Leitura instantânea quando há cache; síncrona apenas sem cache utilizável.

        - idade < fresh: cache + uma renovação em background
        - idade < stale_max: cache stale + uma renovação em background
        - sem cache: refresh síncrono
        """
        snapshot = await self._sessions.get_cached_snapshot(identity, allow_stale=True)
        if snapshot is not None:
            age = snapshot.age(self._clock())
            stale = age >= self._policy.fresh_seconds
            if stale:
                log_fallback(
                    logger,
                    "snapshot",
                    reason="stale_served",
                    identity=mask_identity(identity),
                    age_seconds=round(age, 1),
                )
            self.schedule_background_refresh(identity, fetcher)
            return SnapshotRead(data=snapshot.data, cached=True, stale=stale, age_seconds=age)

        data = await self.refresh_snapshot(identity, fetcher)
        return SnapshotRead(data=data, cached=False, stale=False, age_seconds=0.0)

    async def refresh_snapshot(self, identity: str, fetcher: DataFetcher) -> dict[str, Any]:
        """Garante sessão, busca dados, mescla no snapshot e notifica o sink."""

        return await self._coalescer.run(
            f"snapshot:{identity}", lambda: self._fetch_and_store(identity, fetcher)
        )

    async def _fetch_and_store(self, identity: str, fetcher: DataFetcher) -> dict[str, Any]:
        cookies = await self.ensure_valid_session(identity)
        try:
            data = await fetcher.fetch(identity, cookies)
        except AuthExpired:
            logger.info(
                "Fetch reported expired session, forcing login",
                extra={"identity": mask_identity(identity)},
            )
            cookies = await self._coalescer.run(
                f"session:{identity}", lambda: self._renew_now(identity, force_login=True)
            )
            data = await fetcher.fetch(identity, cookies)

        snapshot = await self._sessions.save_cached_snapshot(identity, data)
        self._notify_sink(identity, snapshot.data)
        return snapshot.data

    def schedule_background_refresh(self, identity: str, fetcher: DataFetcher) -> bool:
        """Agenda no máximo uma renovação em background por identidade."""

        pending = self._background.get(identity)
        if pending is not None and not pending.done():
            return False
        task = asyncio.create_task(self._background_refresh(identity, fetcher))
        self._background[identity] = task
        task.add_done_callback(lambda t: self._forget_background(identity, t))
        return True

    def _forget_background(self, identity: str, task: asyncio.Task[None]) -> None:
        if self._background.get(identity) is task:
            del self._background[identity]

    async def _background_refresh(self, identity: str, fetcher: DataFetcher) -> None:
        jitter = self._policy.background_jitter_seconds
        if jitter > 0:
            await asyncio.sleep(random.uniform(0, jitter))
        try:
            await self.refresh_snapshot(identity, fetcher)
        except Exception as e:  # background: o cache anterior continua servindo
            logger.warning(
                "Background refresh failed",
                extra={
                    "identity": mask_identity(identity),
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )

    def _notify_sink(self, identity: str, data: dict[str, Any]) -> None:
        if self._sink is None:
            return
        task = asyncio.create_task(self._publish(identity, data))
        self._sink_tasks.add(task)
        task.add_done_callback(self._sink_tasks.discard)

    async def _publish(self, identity: str, data: dict[str, Any]) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.publish(identity, data)
        except Exception as e:  # fire-and-forget: nunca afeta a renovação
            logger.warning(
                "Persistence sink failed",
                extra={"identity": mask_identity(identity), "error_type": type(e).__name__},
            )

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start_scheduler(self) -> None:
        self._orchestrator.start()

    async def stop_scheduler(self) -> None:
        await self._orchestrator.stop()

    async def wait_background(self) -> None:
        """Aguarda renovações em background e publicações pendentes."""

        pending = [*self._background.values(), *self._sink_tasks]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.stop_scheduler()
        for task in [*self._background.values(), *self._sink_tasks]:
            task.cancel()
        await self.wait_background()
