"""Fixed-interval polling used for both readiness and shutdown waits."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from ephemera.infra.health import HealthProbeResult

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.5
DEFAULT_DEADLINE = 180.0


class PollOutcome(Enum):
    """How a polling loop ended."""

    REACHED = "reached"
    EXITED_EARLY = "exited_early"
    TIMED_OUT = "timed_out"

    @property
    def reached(self) -> bool:
        return self is PollOutcome.REACHED


class ReadinessPoller:
    """Polls a probe until it reports a target result.

    Each round sleeps ``interval``, probes, and stops when the probe matches
    the target, when ``early_exit`` reports the supervised execution is gone,
    or when ``deadline`` seconds have elapsed.
    """

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL,
        deadline: float = DEFAULT_DEADLINE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.deadline = deadline
        self._sleep = sleep
        self._clock = clock

    def wait_until(
        self,
        target: HealthProbeResult,
        probe: Callable[[], HealthProbeResult],
        early_exit: Callable[[], bool] | None = None,
    ) -> PollOutcome:
        start_time = self._clock()
        attempts = 0

        while True:
            self._sleep(self.interval)
            attempts += 1

            try:
                result = probe()
            except Exception as e:
                logger.debug(f"Probe raised {type(e).__name__}: {e}")
                result = HealthProbeResult.UNHEALTHY

            elapsed = self._clock() - start_time
            if result is target:
                logger.debug(f"Reached {target.value} after {attempts} probes ({elapsed:.1f}s)")
                return PollOutcome.REACHED

            if early_exit is not None and early_exit():
                logger.debug(f"Supervised execution ended before {target.value} was reached")
                return PollOutcome.EXITED_EARLY

            if elapsed >= self.deadline:
                logger.warning(
                    f"Did not reach {target.value} within {self.deadline}s ({attempts} probes)"
                )
                return PollOutcome.TIMED_OUT
