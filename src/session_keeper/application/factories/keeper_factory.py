"""Factory para construção do SessionKeeper.

Responsabilidades:
- Conhecer infra e settings
- Construir store, políticas, workflow e orquestrador consistentes
- Retornar uma instância de `SessionKeeper`

Não contém regra de renovação.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from typing import Any

import httpx

from session_keeper.adapters.upstream.keepalive import HttpKeepAliveProbe
from session_keeper.adapters.upstream.login import ChainedLoginProvider, HttpFormLoginProvider
from session_keeper.application.health import HealthTracker
from session_keeper.application.keeper import SessionKeeper
from session_keeper.application.orchestrator import RefreshOrchestrator
from session_keeper.application.workflow import RenewalWorkflow
from session_keeper.config.policies import (
    CachePolicy,
    HealthPolicy,
    SchedulerPolicy,
    SessionPolicy,
    WorkflowPolicy,
)
from session_keeper.config.settings import Settings, get_settings
from session_keeper.domain.protocols import (
    CredentialsProvider,
    LoginProvider,
    PersistenceSink,
    ProbeProvider,
)
from session_keeper.infra.firestore_directory import (
    FirestoreCredentialsProvider,
    FirestoreDashboardSink,
    InMemoryCredentialsProvider,
)
from session_keeper.infra.http import create_http_client
from session_keeper.infra.session_store import SessionStore
from session_keeper.infra.state_contract import StateStore
from session_keeper.infra.state_store_factory import create_state_store_from_settings
from session_keeper.observability.logging import get_logger

logger = get_logger(__name__)


def _firestore_client(settings: Settings) -> Any | None:
    if not settings.firestore_project_id:
        return None
    from google.cloud import firestore

    return firestore.Client(
        project=settings.firestore_project_id,
        database=settings.firestore_database_id,
    )


def build_session_keeper(
    *,
    settings: Settings | None = None,
    state_store: StateStore | None = None,
    redis_client: Any | None = None,
    firestore_client: Any | None = None,
    credentials: CredentialsProvider | None = None,
    login_provider: LoginProvider | None = None,
    fallback_login_providers: Sequence[LoginProvider] = (),
    probe_provider: ProbeProvider | None = None,
    sink: PersistenceSink | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.time,
) -> SessionKeeper:
    """Constrói e retorna `SessionKeeper` usando infra/settings.

    Parâmetros explícitos têm prioridade; quando ausentes, são resolvidos a
    partir de `get_settings()`. `fallback_login_providers` entram depois do
    login HTTP rápido (ex.: automação de browser).
    """
    settings = settings or get_settings()

    if state_store is None:
        state_store = create_state_store_from_settings(settings, redis_client=redis_client)
        logger.debug("factory: created state_store", extra={"backend": settings.state_store_backend})

    if firestore_client is None and (credentials is None or sink is None):
        firestore_client = _firestore_client(settings)

    if credentials is None:
        if firestore_client is not None:
            credentials = FirestoreCredentialsProvider(
                firestore_client, collection=settings.admins_collection
            )
        else:
            logger.warning("No Firestore configured, using in-memory credentials directory")
            credentials = InMemoryCredentialsProvider()

    if sink is None and firestore_client is not None:
        sink = FirestoreDashboardSink(firestore_client, collection=settings.dashboard_collection)

    session_policy = SessionPolicy.from_settings(settings)

    if probe_provider is None or login_provider is None:
        http = create_http_client(settings, transport=http_transport)
        if probe_provider is None:
            probe_provider = HttpKeepAliveProbe(
                http,
                path=settings.probe_path,
                success_marker=settings.probe_success_marker,
                timeout_seconds=settings.probe_timeout_seconds,
            )
        if login_provider is None:
            login_provider = HttpFormLoginProvider(
                http,
                login_page_path=settings.login_page_path,
                login_path=settings.login_path,
                auth_cookie_names=session_policy.auth_cookie_names,
            )

    if fallback_login_providers:
        login_provider = ChainedLoginProvider([login_provider, *fallback_login_providers])

    sessions = SessionStore(state_store, session_policy, clock=clock)
    health = HealthTracker(state_store, HealthPolicy.from_settings(settings), clock=clock)
    workflow = RenewalWorkflow(
        sessions=sessions,
        login_provider=login_provider,
        probe_provider=probe_provider,
        credentials=credentials,
        health=health,
        policy=WorkflowPolicy.from_settings(settings),
        clock=clock,
    )
    orchestrator = RefreshOrchestrator(
        sessions=sessions,
        workflow=workflow,
        health=health,
        credentials=credentials,
        policy=SchedulerPolicy.from_settings(settings),
        clock=clock,
    )

    logger.info(
        "SessionKeeper built",
        extra={
            "state_store_backend": settings.state_store_backend,
            "firestore": firestore_client is not None,
            "login_chain": 1 + len(fallback_login_providers),
        },
    )
    return SessionKeeper(
        sessions=sessions,
        workflow=workflow,
        orchestrator=orchestrator,
        sink=sink,
        policy=CachePolicy.from_settings(settings),
        clock=clock,
    )
