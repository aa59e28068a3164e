"""Contratos dos colaboradores externos (injetados pelo chamador)."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from session_keeper.domain.cookies import Cookie
from session_keeper.domain.models import Credentials, ProbeResult


@runtime_checkable
class LoginProvider(Protocol):
    """Login completo; levanta LoginFailure quando não obtém cookies."""

    async def login(self, identity: str, credentials: Credentials) -> list[Cookie]: ...


@runtime_checkable
class ProbeProvider(Protocol):
    """Keep-alive leve: nunca levanta, reporta via ProbeResult."""

    async def probe(self, identity: str, cookies: list[Cookie]) -> ProbeResult: ...


@runtime_checkable
class DataFetcher(Protocol):
    """Busca o payload de dados; pode levantar AuthExpired ou TransientNetwork."""

    async def fetch(self, identity: str, cookies: list[Cookie]) -> dict[str, Any]: ...


@runtime_checkable
class PersistenceSink(Protocol):
    async def publish(self, identity: str, data: dict[str, Any]) -> None: ...


@runtime_checkable
class CredentialsProvider(Protocol):
    async def get(self, identity: str) -> Credentials | None: ...

    async def list_identities(self) -> list[str]: ...
