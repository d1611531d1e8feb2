"""Windowed circuit breaker for outbound calls to other services.

pybreaker trips on a run of consecutive failures and lets a single trial
call through when half-open. Calls to the book service need a failure-rate
threshold over a sliding window and a configurable number of half-open
trials, so the state machine lives here while keeping pybreaker's state
names, ``CircuitBreakerError`` and listener protocol. Listeners written for
pybreaker can be attached unchanged.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter
from pybreaker import (
    STATE_CLOSED,
    STATE_HALF_OPEN,
    STATE_OPEN,
    CircuitBreakerError,
    CircuitBreakerListener,
)

logger = logging.getLogger(__name__)

WINDOW_COUNT = "count"
WINDOW_TIME = "time"

BREAKER_STATE_CHANGES_TOTAL = Counter(
    "subscription_service_breaker_state_changes_total",
    "Total number of circuit breaker state transitions",
    ["breaker", "from_state", "to_state"],
)
BREAKER_CALLS_TOTAL = Counter(
    "subscription_service_breaker_calls_total",
    "Total number of calls seen by a circuit breaker, by outcome",
    ["breaker", "outcome"],
)


@dataclass(frozen=True)
class BreakerConfig:
    failure_rate_threshold: float = 0.5
    window_type: str = WINDOW_COUNT
    # Number of calls for a count window, seconds for a time window.
    window_size: int = 10
    minimum_calls: int = 5
    reset_timeout: float = 30.0
    half_open_max_calls: int = 1

    def __post_init__(self) -> None:
        if not 0 < self.failure_rate_threshold <= 1:
            msg = f"failure_rate_threshold must be in (0, 1], got {self.failure_rate_threshold}"
            raise ValueError(msg)
        if self.window_type not in (WINDOW_COUNT, WINDOW_TIME):
            msg = f"window_type must be '{WINDOW_COUNT}' or '{WINDOW_TIME}', got {self.window_type!r}"
            raise ValueError(msg)
        if self.window_size < 1 or self.minimum_calls < 1 or self.half_open_max_calls < 1:
            msg = "window_size, minimum_calls and half_open_max_calls must be positive"
            raise ValueError(msg)
        if self.window_type == WINDOW_COUNT and self.minimum_calls > self.window_size:
            msg = "minimum_calls cannot exceed window_size for a count window"
            raise ValueError(msg)
        if self.reset_timeout < 0:
            msg = "reset_timeout cannot be negative"
            raise ValueError(msg)


class CircuitBreaker:
    """Closed / open / half-open state machine guarding one remote service.

    State and window updates happen under a lock; the protected call runs
    outside it. The open to half-open transition is evaluated lazily
    whenever the state is read, so no timer thread is needed.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        exclude: Iterable[type[BaseException]] = (),
        listeners: Iterable[CircuitBreakerListener] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or BreakerConfig()
        self._exclude = tuple(exclude)
        self._listeners = list(listeners)
        self._clock = clock
        self._lock = threading.RLock()

        self._state = STATE_CLOSED
        # Bumped on every transition so late outcomes from an earlier state are ignored.
        self._generation = 0
        self._opened_at = 0.0
        self._trial_permits = 0
        maxlen = self.config.window_size if self.config.window_type == WINDOW_COUNT else None
        self._window: deque[tuple[float, bool]] = deque(maxlen=maxlen)

    @property
    def current_state(self) -> str:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return sum(1 for _, failed in self._outcomes() if failed)

    @property
    def buffered_calls(self) -> int:
        with self._lock:
            return len(self._outcomes())

    @property
    def failure_rate(self) -> float:
        with self._lock:
            outcomes = self._outcomes()
            if not outcomes:
                return 0.0
            return sum(1 for _, failed in outcomes if failed) / len(outcomes)

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` through the breaker.

        Raises ``CircuitBreakerError`` without calling ``func`` while open or
        when no half-open trial permit is left. Exceptions from ``func`` are
        recorded as failures (unless excluded) and re-raised.
        """
        generation = self._acquire_permission()
        for listener in self._listeners:
            listener.before_call(self, func, *args, **kwargs)

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if isinstance(exc, self._exclude):
                self._on_success(generation)
            else:
                self._on_failure(generation, exc)
            raise
        except BaseException:
            self._release_permit(generation)
            raise

        self._on_success(generation)
        return result

    def call_with_fallback(
        self,
        func: Callable[..., Any],
        fallback: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Like ``call`` but returns ``fallback(*args, exc=error, **kwargs)``
        when the call is rejected or fails. Excluded exceptions still propagate.
        """
        try:
            return self.call(func, *args, **kwargs)
        except self._exclude:
            raise
        except Exception as exc:
            return fallback(*args, exc=exc, **kwargs)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self.current_state,
                "failureCount": self.failure_count,
                "bufferedCalls": self.buffered_calls,
                "failureRate": self.failure_rate,
            }

    def _acquire_permission(self) -> int:
        with self._lock:
            self._maybe_half_open()
            if self._state == STATE_OPEN:
                BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome="rejected").inc()
                msg = f"Circuit breaker '{self.name}' is open"
                raise CircuitBreakerError(msg)
            if self._state == STATE_HALF_OPEN:
                if self._trial_permits <= 0:
                    BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome="rejected").inc()
                    msg = f"Circuit breaker '{self.name}' is half-open and its trial calls are in use"
                    raise CircuitBreakerError(msg)
                self._trial_permits -= 1
            return self._generation

    def _release_permit(self, generation: int) -> None:
        # Interrupted call: no outcome to record, hand the trial permit back.
        with self._lock:
            if generation == self._generation and self._state == STATE_HALF_OPEN:
                self._trial_permits += 1

    def _on_success(self, generation: int) -> None:
        BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome="success").inc()
        with self._lock:
            if generation == self._generation:
                if self._state == STATE_HALF_OPEN:
                    self._transition(STATE_CLOSED)
                elif self._state == STATE_CLOSED:
                    self._outcomes()
                    self._window.append((self._clock(), False))
            for listener in self._listeners:
                listener.success(self)

    def _on_failure(self, generation: int, exc: Exception) -> None:
        BREAKER_CALLS_TOTAL.labels(breaker=self.name, outcome="failure").inc()
        with self._lock:
            if generation == self._generation:
                if self._state == STATE_HALF_OPEN:
                    self._transition(STATE_OPEN)
                elif self._state == STATE_CLOSED:
                    self._outcomes()
                    self._window.append((self._clock(), True))
                    if self._should_trip():
                        self._transition(STATE_OPEN)
            for listener in self._listeners:
                listener.failure(self, exc)

    def _should_trip(self) -> bool:
        outcomes = self._outcomes()
        if len(outcomes) < self.config.minimum_calls:
            return False
        failures = sum(1 for _, failed in outcomes if failed)
        return failures / len(outcomes) >= self.config.failure_rate_threshold

    def _outcomes(self) -> deque[tuple[float, bool]]:
        if self.config.window_type == WINDOW_TIME:
            horizon = self._clock() - self.config.window_size
            while self._window and self._window[0][0] < horizon:
                self._window.popleft()
        return self._window

    def _maybe_half_open(self) -> None:
        if self._state == STATE_OPEN and self._clock() - self._opened_at >= self.config.reset_timeout:
            self._transition(STATE_HALF_OPEN)

    def _transition(self, new_state: str) -> None:
        old_state = self._state
        self._state = new_state
        self._generation += 1
        if new_state == STATE_OPEN:
            self._opened_at = self._clock()
        elif new_state == STATE_HALF_OPEN:
            self._trial_permits = self.config.half_open_max_calls
        elif new_state == STATE_CLOSED:
            self._window.clear()

        BREAKER_STATE_CHANGES_TOTAL.labels(
            breaker=self.name,
            from_state=old_state,
            to_state=new_state,
        ).inc()
        for listener in self._listeners:
            listener.state_change(self, old_state, new_state)


class MonitoringListener(CircuitBreakerListener):
    def state_change(self, cb: CircuitBreaker, old_state: str, new_state: str) -> None:
        logger.warning(
            "CircuitBreaker '%s' state changed: '%s' -> '%s'",
            cb.name,
            old_state,
            new_state,
        )

    def failure(self, cb: CircuitBreaker, exc: Exception) -> None:
        logger.error(
            "CircuitBreaker '%s' recorded failure. Count: %d (%s)",
            cb.name,
            cb.failure_count,
            exc,
        )


def breaker_config_from_settings(settings: Any, service_name: str) -> BreakerConfig:
    """Read ``CB_<SERVICE>_*`` fields, e.g. ``CB_BOOK_SERVICE_RESET_TIMEOUT``."""
    prefix = "CB_" + service_name.upper().replace("-", "_")
    return BreakerConfig(
        failure_rate_threshold=getattr(settings, f"{prefix}_FAILURE_RATE_THRESHOLD"),
        window_type=getattr(settings, f"{prefix}_WINDOW_TYPE"),
        window_size=getattr(settings, f"{prefix}_WINDOW_SIZE"),
        minimum_calls=getattr(settings, f"{prefix}_MINIMUM_CALLS"),
        reset_timeout=getattr(settings, f"{prefix}_RESET_TIMEOUT"),
        half_open_max_calls=getattr(settings, f"{prefix}_HALF_OPEN_MAX_CALLS"),
    )


class BreakerRegistry:
    """One breaker per remote service name, shared by every call site."""

    def __init__(
        self,
        configs: dict[str, BreakerConfig] | None = None,
        listeners: Iterable[CircuitBreakerListener] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = dict(configs or {})
        self._listeners = list(listeners)
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, service_name: str) -> CircuitBreaker:
        with self._lock:
            if service_name not in self._breakers:
                config = self._configs.get(service_name, BreakerConfig())
                self._breakers[service_name] = CircuitBreaker(
                    service_name,
                    config=config,
                    listeners=self._listeners,
                    clock=self._clock,
                )
                logger.info(
                    "Initialized breaker for '%s': failure_rate_threshold=%s, window=%s/%s, "
                    "reset_timeout=%s, half_open_max_calls=%s",
                    service_name,
                    config.failure_rate_threshold,
                    config.window_type,
                    config.window_size,
                    config.reset_timeout,
                    config.half_open_max_calls,
                )
            return self._breakers[service_name]

    def snapshot(self) -> list[dict]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.snapshot() for breaker in breakers]
