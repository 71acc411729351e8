import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from core.exceptions import CircuitOpen

logger = logging.getLogger(__name__)

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


@dataclass(frozen=True)
class CircuitSnapshot:
    state: str
    consecutive_failures: int
    opened_at: Optional[float]
    threshold: int
    cooldown_seconds: float


class CircuitBreaker:
    """
    Consecutive-failure breaker shared by every delivery to one destination class.

    closed     failures count up; reaching the threshold opens the circuit
    open       calls are rejected with CircuitOpen until the cooldown passes
    half_open  one trial call is admitted after the failure count drops by one;
               a failure re-opens at once, a success closes and resets to 0
    """

    def __init__(self, failure_threshold: int = 5, cooldown_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic, name: str = "chat-webhooks"):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._state = CLOSED
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def is_open(self) -> bool:
        return self.state == OPEN

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(self._state, self._failures, self._opened_at,
                                   self.failure_threshold, self.cooldown_seconds)

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpen. No I/O happens on rejection."""
        with self._lock:
            if self._state == CLOSED:
                return

            if self._state == OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed < self.cooldown_seconds:
                    raise CircuitOpen(retry_after_seconds=self.cooldown_seconds - elapsed)
                self._state = HALF_OPEN
                self._failures = max(0, self._failures - 1)
                self._trial_in_flight = True
                logger.info(f"Circuit {self.name} half-open; admitting trial call")
                return

            # HALF_OPEN
            if self._trial_in_flight:
                raise CircuitOpen("Circuit breaker is half-open - trial call in progress")
            self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._failures or self._state != CLOSED:
                logger.info(f"Circuit {self.name} reset after success (was {self._failures} failures)")
            self._failures = 0
            self._state = CLOSED
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._state == HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != OPEN:
                    logger.warning(f"Circuit {self.name} opened after {self._failures} consecutive failures")
                self._state = OPEN
                self._opened_at = self._clock()

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        self.before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
