"""Primitivas de concorrência: slots limitados e coalescência de chamadas."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")


class SlotPool:
    """Semáforo contado para o processo.

    try_acquire nunca espera; acquire faz polling com intervalo fixo até timeout.
    Espera limitada: quem não consegue slot reagenda em vez de bloquear.
    """

    def __init__(
        self,
        capacity: int,
        name: str = "slots",
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            msg = "capacity must be >= 1"
            raise ValueError(msg)
        self._capacity = capacity
        self._in_use = 0
        self._name = name
        self._monotonic = monotonic

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self._capacity - self._in_use

    def try_acquire(self) -> bool:
        # Sem await entre checagem e incremento: atômico no event loop
        if self._in_use >= self._capacity:
            return False
        self._in_use += 1
        return True

    async def acquire(self, timeout: float, poll_interval: float = 0.5) -> bool:
        deadline = self._monotonic() + timeout
        while True:
            if self.try_acquire():
                return True
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(poll_interval, remaining))

    def release(self) -> None:
        if self._in_use <= 0:
            msg = f"{self._name}: release without acquire"
            raise RuntimeError(msg)
        self._in_use -= 1


class RequestCoalescer:
    """Une chamadas concorrentes com a mesma chave em uma única task.

    Quem chega enquanto a task está em andamento aguarda o mesmo resultado
    (ou a mesma exceção). Cancelar um chamador não cancela a task compartilhada.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def is_inflight(self, key: str) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)
