"""Estados e transições do workflow de renovação por identidade.

- TRANSITIONS[(current_state, event)] = next_state
- RELEASED é terminal (sem transições de saída)
- Validação pura: sem side effects
"""

from __future__ import annotations

from enum import StrEnum


class RenewalState(StrEnum):
    """Posição de uma identidade dentro de uma execução do workflow."""

    IDLE = "IDLE"
    """Nenhuma renovação em andamento."""

    LOCK_ACQUIRED = "LOCK_ACQUIRED"
    """Refresh lock e slot global obtidos."""

    KEEP_ALIVE_ATTEMPT = "KEEP_ALIVE_ATTEMPT"
    """Probe leve contra o upstream."""

    DIRECT_LOGIN = "DIRECT_LOGIN"
    """Login completo (slot de login obtido)."""

    LOGIN_IN_FALLBACK = "LOGIN_IN_FALLBACK"
    """Outro ator está fazendo login; nada a fazer."""

    RENEWED = "RENEWED"
    """Sessão persistida e agendada."""

    RELEASED = "RELEASED"
    """Lock e slots devolvidos (terminal)."""


class RenewalEvent(StrEnum):
    LOCK_GRANTED = "LOCK_GRANTED"
    LOCK_DENIED = "LOCK_DENIED"
    NOT_DUE = "NOT_DUE"
    LOGIN_FLAG_SET = "LOGIN_FLAG_SET"
    PROBE_STARTED = "PROBE_STARTED"
    PROBE_OK = "PROBE_OK"
    PROBE_EXPIRED = "PROBE_EXPIRED"
    PROBE_ERROR = "PROBE_ERROR"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    LOGIN_OK = "LOGIN_OK"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_SLOT_TIMEOUT = "LOGIN_SLOT_TIMEOUT"
    FINISHED = "FINISHED"


TERMINAL_STATES = frozenset({RenewalState.RELEASED})

TRANSITIONS: dict[tuple[RenewalState, RenewalEvent], RenewalState] = {
    # === IDLE → ... ===
    (RenewalState.IDLE, RenewalEvent.LOCK_GRANTED): RenewalState.LOCK_ACQUIRED,
    (RenewalState.IDLE, RenewalEvent.LOCK_DENIED): RenewalState.RELEASED,
    # === LOCK_ACQUIRED → ... ===
    (RenewalState.LOCK_ACQUIRED, RenewalEvent.PROBE_STARTED): RenewalState.KEEP_ALIVE_ATTEMPT,
    (RenewalState.LOCK_ACQUIRED, RenewalEvent.LOGIN_REQUIRED): RenewalState.DIRECT_LOGIN,
    (RenewalState.LOCK_ACQUIRED, RenewalEvent.LOGIN_FLAG_SET): RenewalState.LOGIN_IN_FALLBACK,
    (RenewalState.LOCK_ACQUIRED, RenewalEvent.NOT_DUE): RenewalState.RELEASED,
    (RenewalState.LOCK_ACQUIRED, RenewalEvent.FINISHED): RenewalState.RELEASED,
    # === KEEP_ALIVE_ATTEMPT → ... ===
    (RenewalState.KEEP_ALIVE_ATTEMPT, RenewalEvent.PROBE_OK): RenewalState.RENEWED,
    (RenewalState.KEEP_ALIVE_ATTEMPT, RenewalEvent.PROBE_EXPIRED): RenewalState.DIRECT_LOGIN,
    (RenewalState.KEEP_ALIVE_ATTEMPT, RenewalEvent.PROBE_ERROR): RenewalState.RELEASED,
    (RenewalState.KEEP_ALIVE_ATTEMPT, RenewalEvent.LOGIN_REQUIRED): RenewalState.DIRECT_LOGIN,
    # === DIRECT_LOGIN → ... ===
    (RenewalState.DIRECT_LOGIN, RenewalEvent.LOGIN_OK): RenewalState.RENEWED,
    (RenewalState.DIRECT_LOGIN, RenewalEvent.LOGIN_FAILED): RenewalState.RELEASED,
    (RenewalState.DIRECT_LOGIN, RenewalEvent.LOGIN_SLOT_TIMEOUT): RenewalState.RELEASED,
    (RenewalState.DIRECT_LOGIN, RenewalEvent.LOGIN_FLAG_SET): RenewalState.LOGIN_IN_FALLBACK,
    # === Finalização ===
    (RenewalState.RENEWED, RenewalEvent.FINISHED): RenewalState.RELEASED,
    (RenewalState.LOGIN_IN_FALLBACK, RenewalEvent.FINISHED): RenewalState.RELEASED,
}


def validate_transition(
    current_state: RenewalState, event: RenewalEvent
) -> tuple[bool, RenewalState | None, str]:
    """Valida se uma transição é permitida.

    Retorna:
    - (True, next_state, ""): transição válida
    - (False, None, motivo): transição inválida

    Nunca lança exceção; apenas valida.
    """
    if current_state in TERMINAL_STATES:
        return False, None, f"Terminal state {current_state} has no transitions"

    next_state = TRANSITIONS.get((current_state, event))
    if next_state is None:
        return False, None, f"No transition from {current_state} on event {event}"
    return True, next_state, ""
