"""Contrato assíncrono do shared state store.

Todo estado compartilhado (sessões, locks, flags, agenda, saúde) passa por
este contrato. Operações atômicas são obrigatórias: set_if_absent para locks,
incr_window para contadores com janela e update para read-modify-write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

# Chave do índice ordenado identidade -> next_refresh_at
SCHEDULE_KEY = "refreshSchedule"


class StateStore(ABC):
    """Key-value com TTL, contadores, janelas e um índice ordenado (agenda)."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Retorna valor ou None se ausente/expirado."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Grava somente se a chave não existe (atômico).

        Returns:
            True se gravou (ex.: lock obtido), False se já existia
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def incr_window(self, key: str, window_seconds: int) -> int:
        """Incrementa contador; a janela (TTL) começa no primeiro incremento."""
        ...

    @abstractmethod
    async def update(
        self,
        key: str,
        fn: Callable[[str | None], str],
        ttl_seconds: int | None = None,
    ) -> str:
        """Read-modify-write atômico: grava e retorna fn(valor_atual)."""
        ...

    @abstractmethod
    async def push_window(self, key: str, value: str, size: int) -> list[str]:
        """Insere na janela deslizante (mais recente primeiro) e retorna os últimos size."""
        ...

    @abstractmethod
    async def read_window(self, key: str) -> list[str]:
        ...

    @abstractmethod
    async def schedule_upsert(self, member: str, score: float) -> None:
        ...

    @abstractmethod
    async def schedule_due(self, max_score: float) -> list[tuple[str, float]]:
        """Membros com score <= max_score, em ordem crescente de score."""
        ...

    @abstractmethod
    async def schedule_earliest(self) -> tuple[str, float] | None:
        ...

    @abstractmethod
    async def schedule_score(self, member: str) -> float | None:
        ...

    @abstractmethod
    async def schedule_remove(self, member: str) -> bool:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...
