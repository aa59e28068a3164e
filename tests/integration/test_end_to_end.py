"""Fluxo completo montado pela factory: login, agenda, keep-alive e snapshots."""

from __future__ import annotations

import httpx
import pytest

from session_keeper.application.factories.keeper_factory import build_session_keeper
from session_keeper.config.settings import Settings
from session_keeper.domain.models import Credentials
from session_keeper.infra.firestore_directory import InMemoryCredentialsProvider
from session_keeper.infra.state_store_memory import InMemoryStateStore
from tests.helpers.fakes import T0, FakeClock, FakeFetcher, FakeLoginProvider, FakeProbe, FakeSink

LOGIN_PAGE = '<input name="__RequestVerificationToken" type="hidden" value="csrf" />'


def _directory(*identities: str) -> InMemoryCredentialsProvider:
    provider = InMemoryCredentialsProvider()
    for identity in identities:
        provider.add(Credentials(identity=identity, username="70123456", password="secret"))
    return provider


def _settings() -> Settings:
    return Settings(
        background_refresh_jitter_seconds=0.0,
        login_slot_wait_seconds=0.05,
        slot_poll_interval_seconds=0.01,
    )


class _Portal:
    """Portal falso com login por formulário e página de conta."""

    def __init__(self, accept_login: bool = True) -> None:
        self.accept_login = accept_login
        self.logins = 0
        self.account_hits = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/en/account/login" and request.method == "GET":
            return httpx.Response(200, text=LOGIN_PAGE)
        if path == "/en/account/login":
            self.logins += 1
            if not self.accept_login:
                return httpx.Response(200, text=LOGIN_PAGE)
            return httpx.Response(
                302,
                headers=[
                    ("Location", "/en/account"),
                    ("Set-Cookie", "__ACCOUNT=portal; Max-Age=3600; Path=/; HttpOnly"),
                    ("Set-Cookie", "ASP.NET_SessionId=srv; Path=/"),
                ],
            )
        if path == "/en/account":
            if "__ACCOUNT=" in request.headers.get("cookie", ""):
                self.account_hits += 1
                return httpx.Response(200, text="My Account")
            return httpx.Response(302, headers={"Location": "/en/account/login"})
        return httpx.Response(404)


class TestSchedulerLifecycle:
    """Orquestrador + workflow sobre o store em memória, com relógio controlado."""

    @pytest.mark.asyncio
    async def test_login_then_keep_alive_then_snapshot(self) -> None:
        clock = FakeClock()
        login = FakeLoginProvider(clock)
        probe = FakeProbe()
        sink = FakeSink()
        keeper = build_session_keeper(
            settings=_settings(),
            state_store=InMemoryStateStore(clock=clock),
            credentials=_directory("admin-1", "admin-2"),
            login_provider=login,
            probe_provider=probe,
            sink=sink,
            clock=clock,
        )

        first = await keeper.orchestrator.run_cycle()
        assert first.renewed == 2
        assert sorted(login.calls) == ["admin-1", "admin-2"]
        assert first.next_sleep_seconds == 270

        clock.advance(270)
        second = await keeper.orchestrator.run_cycle()
        assert second.renewed == 2
        assert sorted(probe.calls) == ["admin-1", "admin-2"]
        assert len(login.calls) == 2

        read = await keeper.read_snapshot("admin-1", FakeFetcher({"balance": "10"}))
        await keeper.wait_background()

        assert read.cached is False
        assert read.data == {"balance": "10"}
        assert sink.published == [("admin-1", {"balance": "10"})]
        assert await keeper.sessions.get_next_refresh("admin-1") == T0 + 290

    @pytest.mark.asyncio
    async def test_identity_isolation(self) -> None:
        clock = FakeClock()
        login = FakeLoginProvider(clock)
        keeper = build_session_keeper(
            settings=_settings(),
            state_store=InMemoryStateStore(clock=clock),
            credentials=_directory("admin-1", "admin-2"),
            login_provider=login,
            probe_provider=FakeProbe(),
            sink=FakeSink(),
            clock=clock,
        )
        await keeper.sessions.acquire_lock("admin-2", 300)

        report = await keeper.orchestrator.run_cycle()

        assert report.renewed == 1
        assert login.calls == ["admin-1"]


class TestHttpUpstream:
    """Adapters HTTP reais contra um portal simulado via MockTransport."""

    @pytest.mark.asyncio
    async def test_login_and_probe_over_http(self) -> None:
        portal = _Portal()
        keeper = build_session_keeper(
            settings=_settings(),
            state_store=InMemoryStateStore(),
            credentials=_directory("admin-1"),
            http_transport=httpx.MockTransport(portal),
        )

        cookies = await keeper.ensure_valid_session("admin-1")
        assert [c.name for c in cookies] == ["__ACCOUNT"]
        assert portal.logins == 1
        hits = portal.account_hits

        await keeper.sessions.reschedule("admin-1", 0)
        report = await keeper.orchestrator.run_cycle()

        assert report.renewed == 1
        assert portal.account_hits == hits + 1
        assert portal.logins == 1

    @pytest.mark.asyncio
    async def test_fallback_login_provider_used_when_form_login_fails(self) -> None:
        clock = FakeClock()
        browser = FakeLoginProvider(clock)
        keeper = build_session_keeper(
            settings=_settings(),
            state_store=InMemoryStateStore(clock=clock),
            credentials=_directory("admin-1"),
            fallback_login_providers=[browser],
            http_transport=httpx.MockTransport(_Portal(accept_login=False)),
            clock=clock,
        )

        cookies = await keeper.ensure_valid_session("admin-1")

        assert browser.calls == ["admin-1"]
        assert [c.value for c in cookies] == ["login-1"]
