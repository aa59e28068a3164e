"""Modelo de cookie e regras de filtragem/expiração.

Regras:
- Apenas tokens de autenticação de longa duração são retidos
- Cookies de sessão de servidor (ASP.NET_SessionId etc.) são descartados
- Expiração é normalizada para epoch em segundos
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from http.cookies import CookieError, SimpleCookie
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Valores acima disso são epoch em milissegundos
_EPOCH_MS_THRESHOLD = 1e10


def normalize_expires(value: Any) -> float | None:
    """Normaliza expiração para epoch em segundos.

    Aceita epoch em segundos, epoch em milissegundos, datetime ou string de
    data (RFC 1123, ISO 8601). Valores vazios, negativos ou inválidos viram None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        return float(value) / 1000 if value > _EPOCH_MS_THRESHOLD else float(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    if isinstance(value, str):
        text = value.strip()
        try:
            return normalize_expires(float(text))
        except ValueError:
            pass
        try:
            return normalize_expires(date_parser.parse(text))
        except (ValueError, OverflowError):
            return None
    return None


class Cookie(BaseModel):
    """Cookie do upstream (valor é segredo: nunca logar)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str
    domain: str | None = None
    path: str = "/"
    expires: float | None = None
    # Aliases do formato de automação de browser (Puppeteer/Playwright)
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: str | None = Field(default=None, alias="sameSite")

    @field_validator("expires", mode="before")
    @classmethod
    def _normalize_expires(cls, value: Any) -> float | None:
        return normalize_expires(value)

    def remaining_seconds(self, now: float) -> float | None:
        if self.expires is None:
            return None
        return self.expires - now

    def is_expired(self, now: float) -> bool:
        return self.expires is not None and self.expires <= now


def coerce_cookies(raw: Iterable[Cookie | dict[str, Any]]) -> list[Cookie]:
    """Converte dicts (formato de automação de browser) em Cookie."""

    cookies: list[Cookie] = []
    for item in raw:
        if isinstance(item, Cookie):
            cookies.append(item)
            continue
        cookies.append(Cookie.model_validate(item))
    return cookies


def filter_auth_cookies(
    cookies: Iterable[Cookie],
    auth_names: frozenset[str],
    denylist: frozenset[str],
) -> list[Cookie]:
    """Mantém tokens de autenticação de longa duração.

    Um cookie é retido se o nome está em auth_names, ou se carrega expiração
    explícita e não está na denylist de cookies de sessão de servidor.
    """
    retained: list[Cookie] = []
    for cookie in cookies:
        if not cookie.value:
            continue
        if cookie.name in auth_names:
            retained.append(cookie)
        elif cookie.expires is not None and cookie.name not in denylist:
            retained.append(cookie)
    return retained


def min_remaining_seconds(cookies: Iterable[Cookie], now: float) -> float | None:
    """Menor tempo de vida restante entre cookies não expirados (None se nenhum informa)."""

    remaining = [
        r for r in (c.remaining_seconds(now) for c in cookies) if r is not None and r > 0
    ]
    return min(remaining) if remaining else None


def is_structurally_expired(cookies: Iterable[Cookie], now: float) -> bool:
    """True se não há cookies ou algum cookie retido passou da própria expiração."""

    items = list(cookies)
    if not items:
        return True
    return any(c.is_expired(now) for c in items)


def merge_cookies(current: Iterable[Cookie], updates: Iterable[Cookie]) -> list[Cookie]:
    """Mescla cookies por nome; valores de updates substituem os atuais."""

    merged: dict[str, Cookie] = {c.name: c for c in current}
    for cookie in updates:
        merged[cookie.name] = cookie
    return list(merged.values())


def parse_set_cookie(headers: Iterable[str], default_domain: str | None = None) -> list[Cookie]:
    """Converte cabeçalhos Set-Cookie em Cookie (max-age tem precedência sobre expires)."""

    cookies: list[Cookie] = []
    now = datetime.now(timezone.utc).timestamp()
    for header in headers:
        jar: SimpleCookie = SimpleCookie()
        try:
            jar.load(header)
        except CookieError:
            continue
        for name, morsel in jar.items():
            expires: float | None = None
            max_age = morsel.get("max-age")
            if max_age:
                try:
                    expires = now + int(max_age)
                except ValueError:
                    expires = None
            if expires is None and morsel.get("expires"):
                expires = normalize_expires(morsel["expires"])
            cookies.append(
                Cookie(
                    name=name,
                    value=morsel.value,
                    domain=morsel.get("domain") or default_domain,
                    path=morsel.get("path") or "/",
                    expires=expires,
                    http_only=bool(morsel.get("httponly")),
                    secure=bool(morsel.get("secure")),
                    same_site=morsel.get("samesite") or None,
                )
            )
    return cookies


def cookie_header(cookies: Iterable[Cookie]) -> str:
    return "; ".join(f"{c.name}={c.value}" for c in cookies)
