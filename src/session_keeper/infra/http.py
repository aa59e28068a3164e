"""Cliente HTTP do upstream com retry, timeout e logging.

Diferente de um cliente de API, redirects e 4xx não são erros aqui:
o probe e o login interpretam o status (401/403/302 indicam sessão expirada).
Somente falhas de transporte e 429/5xx entram no retry.

Regras:
- Nunca logar cookies, senhas ou corpo de resposta
- Sempre usar timeout
- Sem follow de redirects (o chamador decide)
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from session_keeper.observability.logging import get_logger

if TYPE_CHECKING:
    from session_keeper.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

_SECRET_QUERY_PATTERN = re.compile(r"(password|token|code)=[^&]+", re.IGNORECASE)


def _sanitize_url(url: str) -> str:
    """Remove segredos da query string para logging seguro."""
    return _SECRET_QUERY_PATTERN.sub(r"\1=***", url)


@dataclass
class HttpClientConfig:
    """Configuração do cliente HTTP.

    Valores padrão são seguros e conservadores.
    """

    base_url: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 1
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    default_headers: dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True


class HttpError(Exception):
    """Erro de requisição HTTP sem expor informações sensíveis."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


def _is_retryable_status(status_code: int) -> bool:
    """Determina se status HTTP permite retry (429 ou 5xx)."""
    return status_code == 429 or 500 <= status_code < 600


def _calculate_backoff(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
) -> float:
    """Calcula tempo de espera com backoff exponencial."""
    return min((2**attempt) * base_seconds, max_seconds)


def _transient_error(exc: Exception, method: str, url: str, attempt: int) -> HttpError:
    """Converte exceção do httpx em HttpError retentável (timeout, conexão)."""
    if isinstance(exc, httpx.TimeoutException):
        message = "Timeout"
    elif isinstance(exc, httpx.TransportError):
        message = "Erro de transporte"
    else:
        logger.error(
            "Erro inesperado em requisição HTTP",
            extra={"method": method, "url": _sanitize_url(url), "error_type": type(exc).__name__},
        )
        raise HttpError(f"Erro inesperado: {type(exc).__name__}") from exc

    logger.warning(
        f"{message} em requisição HTTP",
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "attempt": attempt + 1,
            "error_type": type(exc).__name__,
        },
    )
    return HttpError(message, is_retryable=True)


class HttpClient:
    """Cliente HTTP assíncrono com retry e logging.

    Uso típico:
        async with HttpClient(config) as client:
            response = await client.get("/en/account", headers={"Cookie": ...})
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpClientConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> HttpClientConfig:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
                verify=self._config.verify_ssl,
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        url: str,
        *,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Executa requisição; retorna qualquer resposta não retentável.

        Raises:
            HttpError: quando as tentativas se esgotam (transporte ou 429/5xx)
        """
        client = await self._get_client()
        retries = self._config.max_retries if max_retries is None else max_retries
        if timeout_seconds is not None:
            kwargs["timeout"] = httpx.Timeout(timeout_seconds)
        last_error: HttpError | None = None

        for attempt in range(retries + 1):
            logger.debug(
                "Executando requisição HTTP",
                extra={"method": method, "url": _sanitize_url(url), "attempt": attempt + 1},
            )
            try:
                response = await client.request(method, url, **kwargs)
            except HttpError:
                raise
            except Exception as exc:
                last_error = _transient_error(exc, method, url, attempt)
            else:
                if not _is_retryable_status(response.status_code):
                    logger.debug(
                        "Resposta HTTP recebida",
                        extra={
                            "method": method,
                            "url": _sanitize_url(url),
                            "status_code": response.status_code,
                        },
                    )
                    return response
                last_error = HttpError(
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    is_retryable=True,
                )

            if attempt < retries:
                backoff = _calculate_backoff(
                    attempt, self._config.backoff_base_seconds, self._config.backoff_max_seconds
                )
                logger.info(
                    "Aguardando backoff antes de retry",
                    extra={"backoff_seconds": backoff, "next_attempt": attempt + 2},
                )
                await asyncio.sleep(backoff)

        logger.error(
            "Esgotou tentativas de retry",
            extra={"method": method, "url": _sanitize_url(url), "total_attempts": retries + 1},
        )
        raise last_error or HttpError("Falha após todos os retries")

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)


def create_http_client(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpClient:
    """Factory para criar cliente HTTP do upstream configurado.

    Args:
        settings: Configurações da aplicação. Se None, usa get_settings()
        transport: Transport httpx alternativo (ex.: MockTransport em testes)
    """
    if settings is None:
        from session_keeper.config.settings import get_settings

        settings = get_settings()

    config = HttpClientConfig(
        base_url=settings.upstream_base_url,
        timeout_seconds=float(settings.login_timeout_seconds),
        max_retries=settings.login_max_retries,
        default_headers={
            "User-Agent": settings.user_agent,
            "Accept-Language": "en-US,en;q=0.9",
        },
    )

    logger.info(
        "Cliente HTTP criado",
        extra={"timeout_seconds": config.timeout_seconds, "max_retries": config.max_retries},
    )
    return HttpClient(config, transport=transport)
