"""StateStore com degradação para memória quando o primário cai."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from session_keeper.domain.errors import StoreUnavailable
from session_keeper.infra.state_contract import StateStore
from session_keeper.infra.state_store_memory import InMemoryStateStore
from session_keeper.observability.logging import get_logger, log_fallback

logger: logging.Logger = get_logger(__name__)

T = TypeVar("T")


class FailoverStateStore(StateStore):
    """Encaminha para o primário; em StoreUnavailable usa o fallback em memória.

    Best-effort: sem persistência o orquestrador continua operando, mas locks
    deixam de ser compartilhados entre instâncias enquanto durar a falha.
    """

    def __init__(self, primary: StateStore, fallback: StateStore | None = None) -> None:
        self._primary = primary
        self._fallback = fallback or InMemoryStateStore()
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def _call(
        self,
        operation: str,
        primary_call: Callable[[StateStore], Awaitable[T]],
    ) -> T:
        try:
            result = await primary_call(self._primary)
        except StoreUnavailable as e:
            if not self._degraded:
                log_fallback(logger, "state_store", reason="primary_unavailable", error=str(e))
            self._degraded = True
            return await primary_call(self._fallback)
        if self._degraded:
            logger.info("State store primary recovered", extra={"operation": operation})
            self._degraded = False
        return result

    async def get(self, key: str) -> str | None:
        return await self._call("get", lambda s: s.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._call("set", lambda s: s.set(key, value, ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return await self._call("set_if_absent", lambda s: s.set_if_absent(key, value, ttl_seconds))

    async def delete(self, key: str) -> bool:
        return await self._call("delete", lambda s: s.delete(key))

    async def exists(self, key: str) -> bool:
        return await self._call("exists", lambda s: s.exists(key))

    async def incr_window(self, key: str, window_seconds: int) -> int:
        return await self._call("incr_window", lambda s: s.incr_window(key, window_seconds))

    async def update(
        self,
        key: str,
        fn: Callable[[str | None], str],
        ttl_seconds: int | None = None,
    ) -> str:
        return await self._call("update", lambda s: s.update(key, fn, ttl_seconds))

    async def push_window(self, key: str, value: str, size: int) -> list[str]:
        return await self._call("push_window", lambda s: s.push_window(key, value, size))

    async def read_window(self, key: str) -> list[str]:
        return await self._call("read_window", lambda s: s.read_window(key))

    async def schedule_upsert(self, member: str, score: float) -> None:
        await self._call("schedule_upsert", lambda s: s.schedule_upsert(member, score))

    async def schedule_due(self, max_score: float) -> list[tuple[str, float]]:
        return await self._call("schedule_due", lambda s: s.schedule_due(max_score))

    async def schedule_earliest(self) -> tuple[str, float] | None:
        return await self._call("schedule_earliest", lambda s: s.schedule_earliest())

    async def schedule_score(self, member: str) -> float | None:
        return await self._call("schedule_score", lambda s: s.schedule_score(member))

    async def schedule_remove(self, member: str) -> bool:
        return await self._call("schedule_remove", lambda s: s.schedule_remove(member))

    async def ping(self) -> bool:
        try:
            return await self._primary.ping()
        except StoreUnavailable:
            return False
