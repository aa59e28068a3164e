"""Testes para InMemoryStateStore (contrato do StateStore)."""

from __future__ import annotations

import asyncio

import pytest

from session_keeper.infra.state_store_memory import InMemoryStateStore


class TestKeyValue:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, state: InMemoryStateStore) -> None:
        await state.set("k", "v")

        assert await state.get("k") == "v"
        assert await state.exists("k") is True
        assert await state.delete("k") is True
        assert await state.get("k") is None
        assert await state.delete("k") is False

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, state: InMemoryStateStore, clock) -> None:
        await state.set("k", "v", ttl_seconds=10)

        clock.advance(9)
        assert await state.get("k") == "v"
        clock.advance(1)
        assert await state.get("k") is None

    @pytest.mark.asyncio
    async def test_set_without_ttl_clears_previous_ttl(self, state: InMemoryStateStore, clock) -> None:
        await state.set("k", "v", ttl_seconds=10)
        await state.set("k", "w")

        clock.advance(100)
        assert await state.get("k") == "w"

    @pytest.mark.asyncio
    async def test_set_if_absent_is_exclusive(self, state: InMemoryStateStore, clock) -> None:
        assert await state.set_if_absent("lock", "a", 300) is True
        assert await state.set_if_absent("lock", "b", 300) is False
        assert await state.get("lock") == "a"

        clock.advance(300)
        assert await state.set_if_absent("lock", "c", 300) is True

    @pytest.mark.asyncio
    async def test_set_if_absent_under_contention(self, state: InMemoryStateStore) -> None:
        results = await asyncio.gather(*(state.set_if_absent("lock", str(i), 300) for i in range(20)))
        assert results.count(True) == 1


class TestCounters:
    @pytest.mark.asyncio
    async def test_incr_window_starts_ttl_on_first_increment(
        self, state: InMemoryStateStore, clock
    ) -> None:
        assert await state.incr_window("c", 600) == 1
        clock.advance(500)
        assert await state.incr_window("c", 600) == 2

        # Janela não é renovada pelo 2º incremento
        clock.advance(100)
        assert await state.get("c") is None
        assert await state.incr_window("c", 600) == 1

    @pytest.mark.asyncio
    async def test_update_is_read_modify_write(self, state: InMemoryStateStore) -> None:
        def _inc(current: str | None) -> str:
            return str(int(current or "0") + 1)

        await asyncio.gather(*(state.update("n", _inc) for _ in range(50)))

        assert await state.get("n") == "50"


class TestWindows:
    @pytest.mark.asyncio
    async def test_push_window_keeps_latest_first(self, state: InMemoryStateStore) -> None:
        for value in ["1", "0", "1", "1"]:
            window = await state.push_window("w", value, 3)

        assert window == ["1", "1", "0"]
        assert await state.read_window("w") == ["1", "1", "0"]

    @pytest.mark.asyncio
    async def test_read_missing_window(self, state: InMemoryStateStore) -> None:
        assert await state.read_window("w") == []


class TestSchedule:
    @pytest.mark.asyncio
    async def test_schedule_due_is_ordered(self, state: InMemoryStateStore) -> None:
        await state.schedule_upsert("b", 20.0)
        await state.schedule_upsert("a", 10.0)
        await state.schedule_upsert("c", 30.0)

        assert await state.schedule_due(25.0) == [("a", 10.0), ("b", 20.0)]
        assert await state.schedule_earliest() == ("a", 10.0)

    @pytest.mark.asyncio
    async def test_upsert_replaces_score(self, state: InMemoryStateStore) -> None:
        await state.schedule_upsert("a", 10.0)
        await state.schedule_upsert("a", 50.0)

        assert await state.schedule_score("a") == 50.0
        assert await state.schedule_due(40.0) == []

    @pytest.mark.asyncio
    async def test_remove(self, state: InMemoryStateStore) -> None:
        await state.schedule_upsert("a", 10.0)

        assert await state.schedule_remove("a") is True
        assert await state.schedule_remove("a") is False
        assert await state.schedule_earliest() is None
        assert await state.schedule_score("a") is None

    @pytest.mark.asyncio
    async def test_ping(self, state: InMemoryStateStore) -> None:
        assert await state.ping() is True
