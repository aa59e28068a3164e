"""StateStore em memória (dev/testes e fallback de indisponibilidade)."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from session_keeper.infra.state_contract import StateStore
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class InMemoryStateStore(StateStore):
    """Armazenamento em memória, um único asyncio.Lock serializa as operações.

    Não compartilha estado entre processos: inadequado para múltiplas instâncias.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, str] = {}
        self._expires: dict[str, float] = {}
        self._lists: dict[str, list[str]] = {}
        self._schedule: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _purge(self, key: str) -> None:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            self._expires.pop(key, None)

    def _write(self, key: str, value: str, ttl_seconds: int | None) -> None:
        self._values[key] = value
        if ttl_seconds is not None:
            self._expires[key] = self._clock() + ttl_seconds
        else:
            self._expires.pop(key, None)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._purge(key)
            return self._values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._write(key, value, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            self._purge(key)
            if key in self._values:
                return False
            self._write(key, value, ttl_seconds)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            self._purge(key)
            self._expires.pop(key, None)
            removed_list = self._lists.pop(key, None) is not None
            return self._values.pop(key, None) is not None or removed_list

    async def exists(self, key: str) -> bool:
        async with self._lock:
            self._purge(key)
            return key in self._values

    async def incr_window(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            self._purge(key)
            count = int(self._values.get(key, "0")) + 1
            if count == 1:
                self._write(key, str(count), window_seconds)
            else:
                self._values[key] = str(count)
            return count

    async def update(
        self,
        key: str,
        fn: Callable[[str | None], str],
        ttl_seconds: int | None = None,
    ) -> str:
        async with self._lock:
            self._purge(key)
            new_value = fn(self._values.get(key))
            self._write(key, new_value, ttl_seconds)
            return new_value

    async def push_window(self, key: str, value: str, size: int) -> list[str]:
        async with self._lock:
            items = [value, *self._lists.get(key, [])][:size]
            self._lists[key] = items
            return list(items)

    async def read_window(self, key: str) -> list[str]:
        async with self._lock:
            return list(self._lists.get(key, []))

    async def schedule_upsert(self, member: str, score: float) -> None:
        async with self._lock:
            self._schedule[member] = score

    async def schedule_due(self, max_score: float) -> list[tuple[str, float]]:
        async with self._lock:
            due = [(m, s) for m, s in self._schedule.items() if s <= max_score]
        return sorted(due, key=lambda item: item[1])

    async def schedule_earliest(self) -> tuple[str, float] | None:
        async with self._lock:
            if not self._schedule:
                return None
            return min(self._schedule.items(), key=lambda item: item[1])

    async def schedule_score(self, member: str) -> float | None:
        async with self._lock:
            return self._schedule.get(member)

    async def schedule_remove(self, member: str) -> bool:
        async with self._lock:
            return self._schedule.pop(member, None) is not None

    async def ping(self) -> bool:
        return True
