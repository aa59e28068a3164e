"""Factory para StateStore baseada em Settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from session_keeper.infra.state_contract import StateStore
from session_keeper.infra.state_store_failover import FailoverStateStore
from session_keeper.infra.state_store_memory import InMemoryStateStore
from session_keeper.infra.state_store_redis import RedisStateStore
from session_keeper.observability.logging import get_logger

if TYPE_CHECKING:
    from session_keeper.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_state_store(
    backend: str,
    redis_client: Any | None = None,
    redis_url: str | None = None,
    failover: bool = True,
) -> StateStore:
    """Factory para StateStore.

    Args:
        backend: "redis" ou "memory"
        redis_client: Cliente redis.asyncio já construído (tem precedência)
        redis_url: URL usada quando redis_client não é fornecido
        failover: Envolve o Redis em FailoverStateStore

    Raises:
        ValueError: Se backend inválido ou Redis sem cliente/URL
    """
    if backend == "memory":
        logger.warning("Using in-memory state store (single instance only)")
        return InMemoryStateStore()

    if backend == "redis":
        if redis_client is None:
            if not redis_url:
                msg = "redis_client or redis_url required for redis backend"
                raise ValueError(msg)
            from redis.asyncio import Redis

            redis_client = Redis.from_url(redis_url, decode_responses=True)

        store: StateStore = RedisStateStore(redis_client)
        logger.info("Using Redis state store (distributed)", extra={"failover": failover})
        return FailoverStateStore(store) if failover else store

    msg = f"Unknown state store backend: {backend}"
    raise ValueError(msg)


def create_state_store_from_settings(
    settings: Settings, redis_client: Any | None = None
) -> StateStore:
    return create_state_store(
        backend=settings.state_store_backend.lower(),
        redis_client=redis_client,
        redis_url=settings.redis_url,
        failover=settings.state_store_failover,
    )
