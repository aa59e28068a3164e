"""Login no upstream: fast path HTTP e cadeia de provedores.

O fast path reproduz o formulário de login (Username/Password + token
anti-forgery) sem browser. Quando falha, a cadeia passa para um provedor
mais pesado (ex.: automação de browser), injetado pelo chamador.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from urllib.parse import urlparse

from session_keeper.domain.cookies import Cookie, cookie_header, merge_cookies, parse_set_cookie
from session_keeper.domain.errors import LoginFailure
from session_keeper.domain.models import Credentials
from session_keeper.domain.protocols import LoginProvider
from session_keeper.infra.http import HttpClient, HttpError
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(
    r'name="__RequestVerificationToken"[^>]*value="([^"]+)"', re.IGNORECASE
)


def _clean_username(username: str) -> str:
    return re.sub(r"\D", "", username) or username


class HttpFormLoginProvider:
    """LoginProvider via formulário HTTP.

    Sucesso = redirect para fora de /login e cookie de autenticação presente.
    """

    def __init__(
        self,
        http: HttpClient,
        login_page_path: str = "/en/account/login",
        login_path: str = "/en/account/login",
        auth_cookie_names: frozenset[str] = frozenset({"__ACCOUNT"}),
    ) -> None:
        self._http = http
        self._login_page_path = login_page_path
        self._login_path = login_path
        self._auth_names = auth_cookie_names
        self._domain = urlparse(http.config.base_url).hostname

    def _collect(self, jar: list[Cookie], headers: list[str]) -> list[Cookie]:
        return merge_cookies(jar, parse_set_cookie(headers, default_domain=self._domain))

    async def login(self, identity: str, credentials: Credentials) -> list[Cookie]:
        masked = mask_identity(identity)
        try:
            page = await self._http.get(self._login_page_path)
            jar = self._collect([], page.headers.get_list("set-cookie"))

            form = {"Username": _clean_username(credentials.username), "Password": credentials.password}
            match = _TOKEN_PATTERN.search(page.text)
            if match:
                form["__RequestVerificationToken"] = match.group(1)

            response = await self._http.post(
                self._login_path,
                data=form,
                headers={"Cookie": cookie_header(jar)},
            )
            jar = self._collect(jar, response.headers.get_list("set-cookie"))

            location = response.headers.get("location", "")
            if response.is_redirect and location and "/login" not in location.lower():
                follow = await self._http.get(location, headers={"Cookie": cookie_header(jar)})
                jar = self._collect(jar, follow.headers.get_list("set-cookie"))
        except HttpError as e:
            logger.warning("Fast login transport failure", extra={"identity": masked, "error": str(e)})
            raise LoginFailure(f"login request failed: {e}") from e

        if not any(c.name in self._auth_names and c.value for c in jar):
            logger.warning(
                "Fast login returned no auth cookie",
                extra={"identity": masked, "status_code": response.status_code},
            )
            raise LoginFailure("no authentication cookie after login")

        logger.info("Fast login succeeded", extra={"identity": masked, "cookies": len(jar)})
        return jar


class ChainedLoginProvider:
    """Tenta provedores em ordem; levanta a última LoginFailure."""

    def __init__(self, providers: Sequence[LoginProvider]) -> None:
        if not providers:
            msg = "at least one login provider required"
            raise ValueError(msg)
        self._providers = list(providers)

    async def login(self, identity: str, credentials: Credentials) -> list[Cookie]:
        last_error: LoginFailure | None = None
        for index, provider in enumerate(self._providers):
            try:
                return await provider.login(identity, credentials)
            except LoginFailure as e:
                last_error = e
                if index + 1 < len(self._providers):
                    logger.info(
                        "Login provider failed, trying next",
                        extra={
                            "identity": mask_identity(identity),
                            "provider": type(provider).__name__,
                        },
                    )
        raise last_error or LoginFailure("no login provider succeeded")
