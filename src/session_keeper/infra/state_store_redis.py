"""StateStore em Redis (produção, compartilhado entre instâncias).

Estrutura Redis:
    user:{id}:cookies          STRING (JSON da sessão), EXPIRE = vida restante
    user:{id}:refreshLock      STRING, SET NX EX 300
    user:{id}:loginInProgress  STRING, SET NX EX 300
    user:{id}:failCount        STRING (INCR), EXPIRE na 1ª falha
    health:outcomes            LIST (LPUSH + LTRIM)
    refreshSchedule            ZSET (score = next_refresh_at)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from redis.exceptions import RedisError, WatchError

from session_keeper.domain.errors import StoreUnavailable
from session_keeper.infra.state_contract import SCHEDULE_KEY, StateStore
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

_MAX_WATCH_RETRIES = 10


def _decode(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisStateStore(StateStore):
    """Implementação com redis.asyncio.

    Fail-closed: erros do Redis viram StoreUnavailable (o FailoverStateStore
    decide se degrada para memória).
    """

    def __init__(self, redis_client: Any, schedule_key: str = SCHEDULE_KEY) -> None:
        self._redis = redis_client
        self._schedule_key = schedule_key

    def _fail(self, operation: str, key: str, error: Exception) -> StoreUnavailable:
        logger.error(
            "Redis operation failed",
            extra={"operation": operation, "key_prefix": key.split(":")[0], "error": str(error)},
        )
        return StoreUnavailable(f"Redis {operation} failed: {error}")

    async def get(self, key: str) -> str | None:
        try:
            return _decode(await self._redis.get(key))
        except RedisError as e:
            raise self._fail("get", key, e) from e

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            if ttl_seconds is not None:
                await self._redis.set(key, value, ex=max(1, int(ttl_seconds)))
            else:
                await self._redis.set(key, value)
        except RedisError as e:
            raise self._fail("set", key, e) from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            result = await self._redis.set(key, value, nx=True, ex=max(1, int(ttl_seconds)))
            return bool(result)
        except RedisError as e:
            raise self._fail("set_if_absent", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(key))
        except RedisError as e:
            raise self._fail("delete", key, e) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(key))
        except RedisError as e:
            raise self._fail("exists", key, e) from e

    async def incr_window(self, key: str, window_seconds: int) -> int:
        """INCR + EXPIRE NX na mesma transação: a janela começa na primeira falha."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                results = await pipe.execute()
            return int(results[0])
        except RedisError as e:
            raise self._fail("incr_window", key, e) from e

    async def update(
        self,
        key: str,
        fn: Callable[[str | None], str],
        ttl_seconds: int | None = None,
    ) -> str:
        """WATCH/MULTI otimista; repete quando outra instância altera a chave."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(_MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        new_value = fn(_decode(await pipe.get(key)))
                        pipe.multi()
                        if ttl_seconds is not None:
                            pipe.set(key, new_value, ex=max(1, int(ttl_seconds)))
                        else:
                            pipe.set(key, new_value)
                        await pipe.execute()
                        return new_value
                    except WatchError:
                        logger.debug("Optimistic update conflict, retrying", extra={"key": key})
                        continue
        except RedisError as e:
            raise self._fail("update", key, e) from e
        raise StoreUnavailable(f"Redis update on {key} kept conflicting")

    async def push_window(self, key: str, value: str, size: int) -> list[str]:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, size - 1)
                pipe.lrange(key, 0, size - 1)
                results = await pipe.execute()
            return [v for v in (_decode(item) for item in results[2]) if v is not None]
        except RedisError as e:
            raise self._fail("push_window", key, e) from e

    async def read_window(self, key: str) -> list[str]:
        try:
            rows = await self._redis.lrange(key, 0, -1)
        except RedisError as e:
            raise self._fail("read_window", key, e) from e
        return [v for v in (_decode(item) for item in rows) if v is not None]

    async def schedule_upsert(self, member: str, score: float) -> None:
        try:
            await self._redis.zadd(self._schedule_key, {member: score})
        except RedisError as e:
            raise self._fail("schedule_upsert", self._schedule_key, e) from e

    async def schedule_due(self, max_score: float) -> list[tuple[str, float]]:
        try:
            rows = await self._redis.zrangebyscore(
                self._schedule_key, "-inf", max_score, withscores=True
            )
        except RedisError as e:
            raise self._fail("schedule_due", self._schedule_key, e) from e
        return [(_decode(member) or "", float(score)) for member, score in rows]

    async def schedule_earliest(self) -> tuple[str, float] | None:
        try:
            rows = await self._redis.zrange(self._schedule_key, 0, 0, withscores=True)
        except RedisError as e:
            raise self._fail("schedule_earliest", self._schedule_key, e) from e
        if not rows:
            return None
        member, score = rows[0]
        return _decode(member) or "", float(score)

    async def schedule_score(self, member: str) -> float | None:
        try:
            score = await self._redis.zscore(self._schedule_key, member)
        except RedisError as e:
            raise self._fail("schedule_score", self._schedule_key, e) from e
        return None if score is None else float(score)

    async def schedule_remove(self, member: str) -> bool:
        try:
            return bool(await self._redis.zrem(self._schedule_key, member))
        except RedisError as e:
            raise self._fail("schedule_remove", self._schedule_key, e) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            raise self._fail("ping", "ping", e) from e
