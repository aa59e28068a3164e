"""Circuit breaker por identidade e throttling global de admissão.

Todo o estado vive no StateStore (contadores atômicos), de modo que várias
instâncias do orquestrador podem coexistir sem memória compartilhada.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence

from session_keeper.config.policies import HealthPolicy
from session_keeper.domain.models import HealthState
from session_keeper.infra.session_store import sanitize_identity
from session_keeper.infra.state_contract import StateStore
from session_keeper.observability.context import mask_identity
from session_keeper.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

OUTCOMES_KEY = "health:outcomes"
ADMISSION_RATE_KEY = "health:admissionRate"
CONSECUTIVE_FAILURES_KEY = "health:consecutiveFailures"

_SUCCESS = "1"
_FAILURE = "0"


def fail_count_key(identity: str) -> str:
    return f"user:{sanitize_identity(identity)}:failCount"


def failure_rate(outcomes: Sequence[str]) -> float:
    if not outcomes:
        return 0.0
    return sum(1 for o in outcomes if o == _FAILURE) / len(outcomes)


def recompute_admission_rate(current: int, rate: float, samples: int, policy: HealthPolicy) -> int:
    """Nova taxa de admissão a partir da taxa de falha da janela.

    Ex.: current=10, rate=0.6 -> max(3, floor(10*0.7)) = 7
         current=5,  rate=0.1 -> min(10, floor(5*1.2)) = 6
         current=3,  rate=0.0 -> 4 (cresce ao menos 1; floor(3*1.2) ficaria em 3)
    """
    if samples < policy.min_samples:
        return current
    if rate > policy.high_failure_rate:
        return max(policy.min_rate, math.floor(current * policy.shrink_factor))
    if rate < policy.low_failure_rate:
        grown = max(current + 1, math.floor(current * policy.grow_factor))
        return min(policy.base_rate, grown)
    return current


def _parse_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


class HealthTracker:
    """Saúde por identidade (breaker) e global (janela deslizante)."""

    def __init__(
        self,
        state: StateStore,
        policy: HealthPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = state
        self._policy = policy or HealthPolicy()
        self._clock = clock

    @property
    def policy(self) -> HealthPolicy:
        return self._policy

    # --- Por identidade -------------------------------------------------

    async def record_identity_failure(self, identity: str) -> int:
        """Incrementa a falha na janela; a partir do threshold, empurra a agenda +penalty.

        A penalidade parte do maior entre o agendamento atual e agora, para que
        uma entrada atrasada (ou ausente, ex.: admin que nunca logou) saia
        efetivamente da fila de vencidos.
        """

        count = await self._state.incr_window(fail_count_key(identity), self._policy.window_seconds)
        if count >= self._policy.failure_threshold:
            now = self._clock()
            current = await self._state.schedule_score(identity)
            base = now if current is None else max(current, now)
            pushed = base + self._policy.penalty_seconds
            await self._state.schedule_upsert(identity, pushed)
            logger.warning(
                "Circuit breaker penalty applied",
                extra={
                    "identity": mask_identity(identity),
                    "failures": count,
                    "penalty_seconds": self._policy.penalty_seconds,
                    "next_refresh_at": pushed,
                },
            )
        return count

    async def record_identity_success(self, identity: str) -> None:
        await self._state.delete(fail_count_key(identity))

    async def identity_failures(self, identity: str) -> int:
        return _parse_int(await self._state.get(fail_count_key(identity)), 0)

    # --- Global -----------------------------------------------------------

    async def admission_rate(self) -> int:
        return _parse_int(await self._state.get(ADMISSION_RATE_KEY), self._policy.base_rate)

    async def consecutive_failures(self) -> int:
        return _parse_int(await self._state.get(CONSECUTIVE_FAILURES_KEY), 0)

    async def record_outcome(self, success: bool) -> HealthState:
        """Registra um resultado e recalcula a taxa de admissão atomicamente."""

        window = await self._state.push_window(
            OUTCOMES_KEY, _SUCCESS if success else _FAILURE, self._policy.outcome_window_size
        )
        rate = failure_rate(window)

        def _recompute(current: str | None) -> str:
            value = _parse_int(current, self._policy.base_rate)
            return str(recompute_admission_rate(value, rate, len(window), self._policy))

        admission = int(await self._state.update(ADMISSION_RATE_KEY, _recompute))
        return HealthState(
            admission_rate=admission,
            failure_rate=rate,
            samples=len(window),
            consecutive_failures=await self.consecutive_failures(),
        )

    async def record_cycle(self, failed: int, renewed: int) -> int:
        """Mais falhas que renovações no ciclo -> +1; caso contrário zera."""

        def _next(current: str | None) -> str:
            if failed > renewed:
                return str(_parse_int(current, 0) + 1)
            return "0"

        return int(await self._state.update(CONSECUTIVE_FAILURES_KEY, _next))

    async def record_cycle_error(self) -> int:
        return await self.record_cycle(failed=1, renewed=0)

    async def state(self) -> HealthState:
        window = await self._state.read_window(OUTCOMES_KEY)
        return HealthState(
            admission_rate=await self.admission_rate(),
            failure_rate=failure_rate(window),
            samples=len(window),
            consecutive_failures=await self.consecutive_failures(),
        )
