"""Testes para merge_snapshot (campo conhecido nunca regride para vazio)."""

from __future__ import annotations

import pytest

from session_keeper.domain.snapshot import is_empty_value, merge_snapshot


class TestIsEmptyValue:
    @pytest.mark.parametrize("value", [None, "", "   ", [], {}, (), set()])
    def test_empty(self, value) -> None:
        assert is_empty_value(value) is True

    @pytest.mark.parametrize("value", [0, False, "0", ["x"], {"a": 1}, 0.0])
    def test_not_empty(self, value) -> None:
        assert is_empty_value(value) is False


class TestMergeSnapshot:
    def test_without_previous_returns_copy(self) -> None:
        new = {"balance": "10"}
        merged = merge_snapshot(None, new)

        assert merged == new
        assert merged is not new

    def test_empty_values_keep_previous(self) -> None:
        previous = {"balance": "10", "subscribers": ["a"], "expiry": "2026-11-01"}

        merged = merge_snapshot(previous, {"balance": "", "subscribers": [], "expiry": None})

        assert merged == previous

    def test_new_values_replace(self) -> None:
        merged = merge_snapshot({"balance": "10"}, {"balance": "8.5"})
        assert merged == {"balance": "8.5"}

    def test_missing_keys_preserved_and_new_keys_added(self) -> None:
        merged = merge_snapshot({"balance": "10"}, {"plan": "U-share"})
        assert merged == {"balance": "10", "plan": "U-share"}

    def test_zero_is_real_information(self) -> None:
        merged = merge_snapshot({"consumption": 12}, {"consumption": 0})
        assert merged == {"consumption": 0}

    def test_nested_dicts_merge_recursively(self) -> None:
        previous = {"plan": {"name": "U-share", "quota": {"total": 20, "used": 3}}}
        new = {"plan": {"name": "", "quota": {"used": 5, "total": None}}}

        merged = merge_snapshot(previous, new)

        assert merged == {"plan": {"name": "U-share", "quota": {"total": 20, "used": 5}}}

    def test_empty_previous_field_accepts_empty(self) -> None:
        merged = merge_snapshot({"note": ""}, {"note": None})
        assert merged == {"note": None}

    def test_previous_not_mutated(self) -> None:
        previous = {"plan": {"used": 1}}
        merge_snapshot(previous, {"plan": {"used": 2}})

        assert previous == {"plan": {"used": 1}}
