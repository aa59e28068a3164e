"""Configurações centralizadas do session_keeper.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única
- Políticas imutáveis derivadas de Settings (policies)

Uso típico:
    from session_keeper.config import get_settings, SessionPolicy
"""

from session_keeper.config.policies import (
    CachePolicy,
    HealthPolicy,
    SchedulerPolicy,
    SessionPolicy,
    WorkflowPolicy,
)
from session_keeper.config.settings import (
    DEFAULT_AUTH_COOKIE,
    UPSTREAM_BASE_URL,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "UPSTREAM_BASE_URL",
    "DEFAULT_AUTH_COOKIE",
    "SessionPolicy",
    "WorkflowPolicy",
    "HealthPolicy",
    "SchedulerPolicy",
    "CachePolicy",
]
