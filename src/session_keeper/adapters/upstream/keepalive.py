"""Keep-alive probe contra a página de conta do upstream.

Classificação:
- 200 com marcador de página autenticada -> ok (Set-Cookie vira new_cookies)
- 200 sem marcador, 401, 403 ou 3xx (redirect para login) -> expired
- demais status, timeout e erro de transporte -> error (nunca implica expiração)
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from session_keeper.domain.cookies import Cookie, cookie_header, parse_set_cookie
from session_keeper.domain.models import ProbeResult, ProbeStatus
from session_keeper.infra.http import HttpClient, HttpError
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class HttpKeepAliveProbe:
    """ProbeProvider via GET único, sem redirects e com timeout curto."""

    def __init__(
        self,
        http: HttpClient,
        path: str = "/en/account",
        success_marker: str = "account",
        timeout_seconds: float = 5.0,
    ) -> None:
        self._http = http
        self._path = path
        self._marker = success_marker.lower()
        self._timeout = timeout_seconds
        self._domain = urlparse(http.config.base_url).hostname

    async def probe(self, identity: str, cookies: list[Cookie]) -> ProbeResult:
        try:
            response = await self._http.get(
                self._path,
                headers={"Cookie": cookie_header(cookies)},
                max_retries=0,
                timeout_seconds=self._timeout,
            )
        except HttpError as e:
            logger.info(
                "Keep-alive probe transient error",
                extra={"identity": mask_identity(identity), "error": str(e)},
            )
            return ProbeResult(ProbeStatus.ERROR, status_code=e.status_code, error=str(e))

        status = response.status_code
        if status == 200:
            if self._marker and self._marker not in response.text.lower():
                return ProbeResult(ProbeStatus.EXPIRED, status_code=status, error="marker-missing")
            new_cookies = parse_set_cookie(
                response.headers.get_list("set-cookie"), default_domain=self._domain
            )
            logger.debug(
                "Keep-alive probe ok",
                extra={"identity": mask_identity(identity), "new_cookies": len(new_cookies)},
            )
            return ProbeResult(ProbeStatus.OK, new_cookies=new_cookies, status_code=status)

        if status in (401, 403) or 300 <= status < 400:
            logger.info(
                "Keep-alive probe: session expired",
                extra={"identity": mask_identity(identity), "status_code": status},
            )
            return ProbeResult(ProbeStatus.EXPIRED, status_code=status)

        return ProbeResult(ProbeStatus.ERROR, status_code=status, error=f"HTTP {status}")
