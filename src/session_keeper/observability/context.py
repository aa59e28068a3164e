"""Correlation id por execução (workflow, ciclo do orquestrador)."""

from __future__ import annotations

import contextlib
import uuid
from collections.abc import Iterator
from contextvars import ContextVar

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Retorna o correlation_id corrente (ou vazio)."""

    return _correlation_id.get()


@contextlib.contextmanager
def bind_correlation_id(correlation_id: str | None = None) -> Iterator[str]:
    """Associa um correlation_id ao contexto atual (gera um se ausente)."""

    value = correlation_id or str(uuid.uuid4())
    token = _correlation_id.set(value)
    try:
        yield value
    finally:
        _correlation_id.reset(token)


def mask_identity(identity: str) -> str:
    """Mascara identificador de admin para logs (sem PII completa)."""

    return identity[:4] + "..." if len(identity) > 4 else identity
