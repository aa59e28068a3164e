"""Testes para SessionKeeper: sessão sob demanda e cache-aside de snapshots."""

from __future__ import annotations

import asyncio

import pytest

from session_keeper.application.keeper import SessionKeeper
from session_keeper.application.orchestrator import RefreshOrchestrator
from session_keeper.application.workflow import RenewalWorkflow
from session_keeper.config.policies import CachePolicy
from session_keeper.domain.errors import AuthExpired, LoginFailure, SessionUnavailable
from session_keeper.infra.session_store import SessionStore
from tests.helpers.fakes import T0, FakeFetcher, FakeLoginProvider, FakeSink, auth_cookie


def _keeper_with_sink(sessions, workflow, orchestrator, clock, sink) -> SessionKeeper:
    return SessionKeeper(
        sessions=sessions,
        workflow=workflow,
        orchestrator=orchestrator,
        sink=sink,
        policy=CachePolicy(background_jitter_seconds=0.0, lock_wait_seconds=0.05, lock_poll_seconds=0.01),
        clock=clock,
    )


class TestEnsureValidSession:
    """ensure_valid_session()"""

    @pytest.mark.asyncio
    async def test_no_session_logs_in_and_schedules(
        self, keeper: SessionKeeper, sessions: SessionStore, login_provider: FakeLoginProvider
    ) -> None:
        cookies = await keeper.ensure_valid_session("admin-1")

        assert [c.name for c in cookies] == ["__ACCOUNT"]
        assert login_provider.calls == ["admin-1"]
        assert await sessions.get("admin-1") is not None
        assert await sessions.get_next_refresh("admin-1") == T0 + 270

    @pytest.mark.asyncio
    async def test_valid_session_returned_without_login(
        self, keeper: SessionKeeper, sessions: SessionStore, login_provider: FakeLoginProvider, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 300, value="current")])

        cookies = await keeper.ensure_valid_session("admin-1")

        assert [c.value for c in cookies] == ["current"]
        assert login_provider.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_login(
        self, keeper: SessionKeeper, login_provider: FakeLoginProvider
    ) -> None:
        login_provider.delay = 0.05

        results = await asyncio.gather(*(keeper.ensure_valid_session("admin-1") for _ in range(5)))

        assert login_provider.calls == ["admin-1"]
        assert len({tuple(c.value for c in cookies) for cookies in results}) == 1

    @pytest.mark.asyncio
    async def test_login_failure_raises_session_unavailable(
        self, keeper: SessionKeeper, login_provider: FakeLoginProvider
    ) -> None:
        login_provider.error = LoginFailure("rejected")

        with pytest.raises(SessionUnavailable) as exc_info:
            await keeper.ensure_valid_session("admin-1")

        assert exc_info.value.identity == "admin-1"

    @pytest.mark.asyncio
    async def test_waits_for_concurrent_renewal_by_other_actor(
        self, keeper: SessionKeeper, sessions: SessionStore, login_provider: FakeLoginProvider, clock
    ) -> None:
        await sessions.acquire_lock("admin-1", 300)

        async def _other_instance_finishes() -> None:
            await asyncio.sleep(0.02)
            await sessions.save("admin-1", [auth_cookie(clock, 300, value="from-peer")])
            await sessions.release_lock("admin-1")

        peer = asyncio.create_task(_other_instance_finishes())
        cookies = await keeper.ensure_valid_session("admin-1")
        await peer

        assert [c.value for c in cookies] == ["from-peer"]
        assert login_provider.calls == []

    @pytest.mark.asyncio
    async def test_gives_up_when_lock_never_released(
        self, keeper: SessionKeeper, sessions: SessionStore
    ) -> None:
        await sessions.acquire_lock("admin-1", 300)

        with pytest.raises(SessionUnavailable):
            await keeper.ensure_valid_session("admin-1")


class TestReadSnapshot:
    """Cache-aside em camadas."""

    @pytest.mark.asyncio
    async def test_without_cache_fetches_synchronously(
        self, keeper: SessionKeeper, sessions: SessionStore
    ) -> None:
        fetcher = FakeFetcher({"balance": "12.5"})

        read = await keeper.read_snapshot("admin-1", fetcher)

        assert read.cached is False
        assert read.data == {"balance": "12.5"}
        assert len(fetcher.calls) == 1
        cached = await sessions.get_cached_snapshot("admin-1")
        assert cached is not None
        assert cached.data == {"balance": "12.5"}

    @pytest.mark.asyncio
    async def test_fresh_cache_served_with_single_background_refresh(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])
        await sessions.save_cached_snapshot("admin-1", {"balance": "10"})
        clock.advance(30)
        fetcher = FakeFetcher({"balance": "11"})

        first = await keeper.read_snapshot("admin-1", fetcher)
        second = await keeper.read_snapshot("admin-1", fetcher)
        await keeper.wait_background()

        assert first.cached is True
        assert first.stale is False
        assert first.data == {"balance": "10"}
        assert first.age_seconds == 30
        assert second.data == {"balance": "10"}
        assert len(fetcher.calls) == 1
        refreshed = await sessions.get_cached_snapshot("admin-1")
        assert refreshed is not None
        assert refreshed.data == {"balance": "11"}

    @pytest.mark.asyncio
    async def test_stale_cache_served_immediately(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])
        await sessions.save_cached_snapshot("admin-1", {"balance": "10"})
        clock.advance(600)
        fetcher = FakeFetcher({"balance": "11"})

        read = await keeper.read_snapshot("admin-1", fetcher)
        await keeper.wait_background()

        assert read.cached is True
        assert read.stale is True
        assert read.data == {"balance": "10"}
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_older_than_stale_max_refreshes_synchronously(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 86400)])
        await sessions.save_cached_snapshot("admin-1", {"balance": "10"})
        clock.advance(3 * 3600)
        fetcher = FakeFetcher({"balance": "11"})

        read = await keeper.read_snapshot("admin-1", fetcher)

        assert read.cached is False
        assert read.data == {"balance": "11"}
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_background_failure_keeps_previous_cache(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])
        await sessions.save_cached_snapshot("admin-1", {"balance": "10"})
        fetcher = FakeFetcher(RuntimeError("upstream 500"))

        read = await keeper.read_snapshot("admin-1", fetcher)
        await keeper.wait_background()

        assert read.data == {"balance": "10"}
        cached = await sessions.get_cached_snapshot("admin-1", allow_stale=True)
        assert cached is not None
        assert cached.data == {"balance": "10"}


class TestRefreshSnapshot:
    """refresh_snapshot(): sessão + fetch + merge + sink."""

    @pytest.mark.asyncio
    async def test_auth_expired_forces_login_and_retries_once(
        self, keeper: SessionKeeper, sessions: SessionStore, login_provider: FakeLoginProvider, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600, value="revoked")])
        fetcher = FakeFetcher(AuthExpired("302 to login"), {"balance": "9"})

        data = await keeper.refresh_snapshot("admin-1", fetcher)

        assert data == {"balance": "9"}
        assert login_provider.calls == ["admin-1"]
        assert [c.value for c in fetcher.calls[0]] == ["revoked"]
        assert [c.value for c in fetcher.calls[1]] == ["login-1"]

    @pytest.mark.asyncio
    async def test_second_auth_expired_propagates(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])
        fetcher = FakeFetcher(AuthExpired("302"), AuthExpired("302"))

        with pytest.raises(AuthExpired):
            await keeper.refresh_snapshot("admin-1", fetcher)

    @pytest.mark.asyncio
    async def test_empty_fields_do_not_regress_snapshot(
        self, keeper: SessionKeeper, sessions: SessionStore, clock
    ) -> None:
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])
        await keeper.refresh_snapshot("admin-1", FakeFetcher({"balance": "10", "subscribers": ["a"]}))

        data = await keeper.refresh_snapshot("admin-1", FakeFetcher({"balance": "", "subscribers": []}))

        assert data == {"balance": "10", "subscribers": ["a"]}

    @pytest.mark.asyncio
    async def test_sink_receives_merged_snapshot(
        self,
        sessions: SessionStore,
        workflow: RenewalWorkflow,
        orchestrator: RefreshOrchestrator,
        clock,
    ) -> None:
        sink = FakeSink()
        keeper = _keeper_with_sink(sessions, workflow, orchestrator, clock, sink)
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])

        await keeper.refresh_snapshot("admin-1", FakeFetcher({"balance": "10"}))
        await keeper.wait_background()

        assert sink.published == [("admin-1", {"balance": "10"})]

    @pytest.mark.asyncio
    async def test_sink_failure_never_affects_refresh(
        self,
        sessions: SessionStore,
        workflow: RenewalWorkflow,
        orchestrator: RefreshOrchestrator,
        clock,
    ) -> None:
        keeper = _keeper_with_sink(sessions, workflow, orchestrator, clock, FakeSink(RuntimeError("down")))
        await sessions.save("admin-1", [auth_cookie(clock, 3600)])

        data = await keeper.refresh_snapshot("admin-1", FakeFetcher({"balance": "10"}))
        await keeper.wait_background()

        assert data == {"balance": "10"}
        assert await sessions.get_cached_snapshot("admin-1") is not None


class TestSchedulerLifecycle:
    """start_scheduler / close."""

    @pytest.mark.asyncio
    async def test_start_and_close(self, keeper: SessionKeeper) -> None:
        keeper.start_scheduler()
        await asyncio.sleep(0.02)
        assert keeper.orchestrator.running is True

        await keeper.close()
        assert keeper.orchestrator.running is False
