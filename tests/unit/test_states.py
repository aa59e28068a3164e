"""Testes para a tabela de transições do workflow de renovação."""

from __future__ import annotations

from session_keeper.domain.states import (
    TERMINAL_STATES,
    TRANSITIONS,
    RenewalEvent,
    RenewalState,
    validate_transition,
)


class TestTransitionTable:
    def test_all_table_entries_validate(self) -> None:
        for (state, event), expected in TRANSITIONS.items():
            is_valid, next_state, error = validate_transition(state, event)
            assert is_valid is True
            assert next_state == expected
            assert error == ""

    def test_released_is_terminal(self) -> None:
        assert RenewalState.RELEASED in TERMINAL_STATES
        for event in RenewalEvent:
            is_valid, next_state, error = validate_transition(RenewalState.RELEASED, event)
            assert is_valid is False
            assert next_state is None
            assert "Terminal" in error

    def test_invalid_transition_reports_reason(self) -> None:
        is_valid, next_state, error = validate_transition(RenewalState.IDLE, RenewalEvent.LOGIN_OK)

        assert is_valid is False
        assert next_state is None
        assert "IDLE" in error

    def test_every_state_reaches_released(self) -> None:
        """Nenhum caminho deixa lock/slot presos: todo estado chega a RELEASED."""
        graph: dict[RenewalState, set[RenewalState]] = {}
        for (state, _), target in TRANSITIONS.items():
            graph.setdefault(state, set()).add(target)

        for start in RenewalState:
            seen = {start}
            frontier = [start]
            while frontier:
                current = frontier.pop()
                for nxt in graph.get(current, set()):
                    if nxt not in seen:
                        seen.add(nxt)
                        frontier.append(nxt)
            assert RenewalState.RELEASED in seen, start

    def test_probe_error_never_leads_to_login(self) -> None:
        _, next_state, _ = validate_transition(
            RenewalState.KEEP_ALIVE_ATTEMPT, RenewalEvent.PROBE_ERROR
        )
        assert next_state == RenewalState.RELEASED
