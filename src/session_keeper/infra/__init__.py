"""Camada de infraestrutura — adapters para serviços externos.

Este módulo exporta as factories principais para criação de
componentes de infraestrutura:

- State store: InMemoryStateStore, RedisStateStore, FailoverStateStore
- Sessões: SessionStore (sobre o state store compartilhado)
- Firestore: diretório de credenciais e sink do dashboard
- HTTP: HttpClient

Uso típico:
    from session_keeper.infra import create_state_store, SessionStore

Regras:
- Infraestrutura não decide regra de negócio
- Erros de bibliotecas viram a taxonomia de domínio
- Logs estruturados sem cookies/senhas
"""

from session_keeper.infra.firestore_directory import (
    FirestoreCredentialsProvider,
    FirestoreDashboardSink,
    InMemoryCredentialsProvider,
)
from session_keeper.infra.http import (
    HttpClient,
    HttpClientConfig,
    HttpError,
    create_http_client,
)
from session_keeper.infra.session_store import SessionStore
from session_keeper.infra.state_contract import SCHEDULE_KEY, StateStore
from session_keeper.infra.state_store_factory import (
    create_state_store,
    create_state_store_from_settings,
)
from session_keeper.infra.state_store_failover import FailoverStateStore
from session_keeper.infra.state_store_memory import InMemoryStateStore
from session_keeper.infra.state_store_redis import RedisStateStore

__all__ = [
    # State store
    "StateStore",
    "SCHEDULE_KEY",
    "InMemoryStateStore",
    "RedisStateStore",
    "FailoverStateStore",
    "create_state_store",
    "create_state_store_from_settings",
    # Sessões
    "SessionStore",
    # Firestore
    "FirestoreCredentialsProvider",
    "FirestoreDashboardSink",
    "InMemoryCredentialsProvider",
    # HTTP
    "HttpClient",
    "HttpClientConfig",
    "HttpError",
    "create_http_client",
]
