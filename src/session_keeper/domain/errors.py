"""Taxonomia de erros do session_keeper.

Falhas por identidade são isoladas no workflow e viram RenewalResult FAILED;
estas exceções cruzam apenas as fronteiras de infra e a API do chamador.
"""

from __future__ import annotations


class SessionKeeperError(Exception):
    """Erro base do session_keeper."""


class InvalidSession(SessionKeeperError):
    """Cookies de entrada sem nenhum token de autenticação válido."""


class AuthExpired(SessionKeeperError):
    """Upstream indicou que a sessão expirou (401/403/redirect de login)."""


class TransientNetwork(SessionKeeperError):
    """Timeout, erro de transporte ou status inesperado do upstream."""


class LoginFailure(SessionKeeperError):
    """Login não produziu cookies de autenticação."""


class StoreUnavailable(SessionKeeperError):
    """Shared state store inacessível."""


class SessionUnavailable(SessionKeeperError):
    """Não foi possível obter uma sessão válida para a identidade."""

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"session unavailable: {reason}")
        self.identity = identity
        self.reason = reason
