from __future__ import annotations

import pytest

from session_keeper.application.concurrency import SlotPool
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
from session_keeper.config.settings import get_settings
from session_keeper.domain.models import Credentials
from session_keeper.infra.firestore_directory import InMemoryCredentialsProvider
from session_keeper.infra.session_store import SessionStore
from session_keeper.infra.state_store_memory import InMemoryStateStore
from tests.helpers.fakes import FakeClock, FakeLoginProvider, FakeProbe


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def state(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock)


@pytest.fixture()
def sessions(state: InMemoryStateStore, clock: FakeClock) -> SessionStore:
    return SessionStore(state, SessionPolicy(), clock=clock)


@pytest.fixture()
def health(state: InMemoryStateStore, clock: FakeClock) -> HealthTracker:
    return HealthTracker(state, HealthPolicy(), clock=clock)


@pytest.fixture()
def credentials() -> InMemoryCredentialsProvider:
    provider = InMemoryCredentialsProvider()
    for identity in ("admin-1", "admin-2", "admin-3"):
        provider.add(Credentials(identity=identity, username="70123456", password="secret"))
    return provider


@pytest.fixture()
def login_provider(clock: FakeClock) -> FakeLoginProvider:
    return FakeLoginProvider(clock)


@pytest.fixture()
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture()
def workflow_policy() -> WorkflowPolicy:
    return WorkflowPolicy(login_slot_wait_seconds=0.05, slot_poll_interval_seconds=0.01)


@pytest.fixture()
def workflow(
    sessions: SessionStore,
    login_provider: FakeLoginProvider,
    probe: FakeProbe,
    credentials: InMemoryCredentialsProvider,
    health: HealthTracker,
    workflow_policy: WorkflowPolicy,
    clock: FakeClock,
) -> RenewalWorkflow:
    return RenewalWorkflow(
        sessions=sessions,
        login_provider=login_provider,
        probe_provider=probe,
        credentials=credentials,
        health=health,
        policy=workflow_policy,
        refresh_slots=SlotPool(workflow_policy.max_concurrent_refreshes, name="refresh"),
        login_slots=SlotPool(workflow_policy.max_concurrent_logins, name="login"),
        clock=clock,
    )


@pytest.fixture()
def orchestrator(
    sessions: SessionStore,
    workflow: RenewalWorkflow,
    health: HealthTracker,
    credentials: InMemoryCredentialsProvider,
    clock: FakeClock,
) -> RefreshOrchestrator:
    return RefreshOrchestrator(
        sessions=sessions,
        workflow=workflow,
        health=health,
        credentials=credentials,
        policy=SchedulerPolicy(),
        clock=clock,
    )


@pytest.fixture()
def keeper(
    sessions: SessionStore,
    workflow: RenewalWorkflow,
    orchestrator: RefreshOrchestrator,
    clock: FakeClock,
) -> SessionKeeper:
    return SessionKeeper(
        sessions=sessions,
        workflow=workflow,
        orchestrator=orchestrator,
        policy=CachePolicy(background_jitter_seconds=0.0, lock_wait_seconds=0.05, lock_poll_seconds=0.01),
        clock=clock,
    )
