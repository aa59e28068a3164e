"""Session store sobre o StateStore compartilhado.

Responsabilidades:
- Filtrar cookies para tokens de autenticação de longa duração
- Calcular expiry_at / next_refresh_at (buffer dinâmico)
- Manter a agenda de renovação sincronizada com a sessão
- Locks, flag de login em andamento e cache de snapshots
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from session_keeper.config.policies import SessionPolicy
from session_keeper.domain.cookies import (
    Cookie,
    coerce_cookies,
    filter_auth_cookies,
    is_structurally_expired,
    min_remaining_seconds,
)
from session_keeper.domain.errors import InvalidSession
from session_keeper.domain.models import CachedSnapshot, Session
from session_keeper.domain.snapshot import merge_snapshot
from session_keeper.infra.state_contract import StateStore
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_identity(identity: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", identity)


def session_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:cookies"


def legacy_session_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:session"


def lock_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:refreshLock"


def login_flag_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:loginInProgress"


def snapshot_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:lastJson"


def renewal_buffer(remaining: float, policy: SessionPolicy) -> float:
    """clamp(R * ratio, min, max). Ex.: R=300 -> 30; R=60 -> 12."""

    return min(max(remaining * policy.buffer_ratio, policy.buffer_min_seconds), policy.buffer_max_seconds)


def compute_schedule(remaining: float, now: float, policy: SessionPolicy) -> tuple[float, float]:
    """Retorna (expiry_at, next_refresh_at) respeitando next < expiry e next >= now + lead."""

    expiry_at = now + remaining
    next_refresh_at = max(expiry_at - renewal_buffer(remaining, policy), now + policy.min_lead_seconds)
    if next_refresh_at >= expiry_at:
        expiry_at = next_refresh_at + 1
    return expiry_at, next_refresh_at


class SessionStore:
    """Persistência de sessões, locks e snapshots por identidade."""

    def __init__(
        self,
        state: StateStore,
        policy: SessionPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = state
        self._policy = policy or SessionPolicy()
        self._clock = clock

    @property
    def state(self) -> StateStore:
        return self._state

    # ------------------------------------------------------------------
    # Sessão
    # ------------------------------------------------------------------

    async def save(
        self,
        identity: str,
        raw_cookies: Iterable[Cookie | dict[str, Any]],
        now: float | None = None,
    ) -> Session:
        """Filtra, calcula agenda, persiste e faz upsert na agenda.

        Raises:
            InvalidSession: nenhum token de autenticação (não expirado) restou
        """
        now = self._clock() if now is None else now
        retained = filter_auth_cookies(
            coerce_cookies(raw_cookies),
            self._policy.auth_cookie_names,
            self._policy.session_cookie_denylist,
        )
        if not retained:
            raise InvalidSession("no authentication cookies in input")

        alive = [c for c in retained if not c.is_expired(now)]
        if not alive:
            raise InvalidSession("all authentication cookies already expired")

        remaining = min_remaining_seconds(alive, now) or self._policy.default_lifetime_seconds
        expiry_at, next_refresh_at = compute_schedule(remaining, now, self._policy)

        session = Session(
            identity=identity,
            cookies=alive,
            saved_at=now,
            expiry_at=expiry_at,
            next_refresh_at=next_refresh_at,
        )
        ttl = max(1, math.ceil(min(expiry_at - now, self._policy.ttl_cap_seconds)))
        await self._state.set(session_key(identity), session.model_dump_json(), ttl)
        await self._state.schedule_upsert(identity, next_refresh_at)

        logger.info(
            "Session saved",
            extra={
                "identity": mask_identity(identity),
                "cookies": len(alive),
                "expires_in_s": round(expiry_at - now, 1),
                "refresh_in_s": round(next_refresh_at - now, 1),
            },
        )
        return session

    async def get(self, identity: str) -> Session | None:
        """Sessão primária; cai para o registro legado e migra quando encontra."""

        payload = await self._state.get(session_key(identity))
        if payload:
            try:
                return Session.model_validate_json(payload)
            except ValidationError as e:
                logger.warning(
                    "Corrupted session record ignored",
                    extra={"identity": mask_identity(identity), "error": str(e)},
                )
                return None

        legacy = await self._state.get(legacy_session_key(identity))
        if not legacy:
            return None
        return await self._migrate_legacy(identity, legacy)

    async def _migrate_legacy(self, identity: str, payload: str) -> Session | None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Legacy session unreadable", extra={"identity": mask_identity(identity)})
            return None

        raw = data.get("cookies") if isinstance(data, dict) else data
        if not isinstance(raw, list):
            return None
        try:
            session = await self.save(identity, raw)
        except (InvalidSession, ValidationError) as e:
            logger.warning(
                "Legacy session not migrated",
                extra={"identity": mask_identity(identity), "reason": str(e)},
            )
            return None
        logger.info("Legacy session migrated", extra={"identity": mask_identity(identity)})
        return session

    def is_expired(self, session: Session | None, now: float | None = None) -> bool:
        if session is None:
            return True
        now = self._clock() if now is None else now
        if session.expiry_at <= now:
            return True
        return is_structurally_expired(session.cookies, now)

    # ------------------------------------------------------------------
    # Agenda
    # ------------------------------------------------------------------

    async def reschedule(self, identity: str, at: float) -> None:
        await self._state.schedule_upsert(identity, at)

    async def get_next_refresh(self, identity: str) -> float | None:
        return await self._state.schedule_score(identity)

    async def due_identities(self, now: float | None = None) -> list[tuple[str, float]]:
        now = self._clock() if now is None else now
        return await self._state.schedule_due(now)

    async def earliest_refresh(self) -> tuple[str, float] | None:
        return await self._state.schedule_earliest()

    async def unschedule(self, identity: str) -> bool:
        return await self._state.schedule_remove(identity)

    # ------------------------------------------------------------------
    # Locks e flags
    # ------------------------------------------------------------------

    async def acquire_lock(self, identity: str, ttl_seconds: int) -> bool:
        return await self._state.set_if_absent(lock_key(identity), str(self._clock()), ttl_seconds)

    async def release_lock(self, identity: str) -> None:
        await self._state.delete(lock_key(identity))

    async def has_lock(self, identity: str) -> bool:
        return await self._state.exists(lock_key(identity))

    async def set_login_in_progress(self, identity: str, ttl_seconds: int) -> bool:
        return await self._state.set_if_absent(login_flag_key(identity), "1", ttl_seconds)

    async def clear_login_in_progress(self, identity: str) -> None:
        await self._state.delete(login_flag_key(identity))

    async def is_login_in_progress(self, identity: str) -> bool:
        return await self._state.exists(login_flag_key(identity))

    # ------------------------------------------------------------------
    # Snapshots (cache-aside)
    # ------------------------------------------------------------------

    async def get_cached_snapshot(
        self, identity: str, allow_stale: bool = False
    ) -> CachedSnapshot | None:
        """Snapshot fresco; com allow_stale também aceita até snapshot_stale_max."""

        payload = await self._state.get(snapshot_key(identity))
        if not payload:
            return None
        try:
            snapshot = CachedSnapshot.model_validate_json(payload)
        except ValidationError:
            logger.warning("Corrupted snapshot ignored", extra={"identity": mask_identity(identity)})
            return None

        age = snapshot.age(self._clock())
        limit = self._policy.snapshot_stale_max_seconds if allow_stale else self._policy.snapshot_fresh_seconds
        return snapshot if age < limit else None

    async def save_cached_snapshot(self, identity: str, data: dict[str, Any]) -> CachedSnapshot:
        """Mescla com o snapshot anterior (campo conhecido nunca regride) e persiste."""

        ttl = max(1, math.ceil(self._policy.snapshot_stale_max_seconds))
        now = self._clock()

        def _merge(current: str | None) -> str:
            previous: dict[str, Any] | None = None
            if current:
                try:
                    previous = CachedSnapshot.model_validate_json(current).data
                except ValidationError:
                    previous = None
            merged = merge_snapshot(previous, data)
            return CachedSnapshot(identity=identity, data=merged, saved_at=now).model_dump_json()

        stored = await self._state.update(snapshot_key(identity), _merge, ttl)
        return CachedSnapshot.model_validate_json(stored)
