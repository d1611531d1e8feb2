import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from pybreaker import STATE_CLOSED, STATE_HALF_OPEN, STATE_OPEN, CircuitBreakerError, CircuitBreakerListener

from subscription_service.circuit_breaker import (
    WINDOW_TIME,
    BreakerConfig,
    BreakerRegistry,
    CircuitBreaker,
    breaker_config_from_settings,
)
from subscription_service.config import Settings


class CountingRemote:
    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.fail:
            raise ConnectionError("book service down")
        return "ok"


class RecordingListener(CircuitBreakerListener):
    def __init__(self) -> None:
        self.transitions = []
        self.failures = 0
        self.successes = 0

    def state_change(self, cb, old_state, new_state) -> None:
        self.transitions.append((old_state, new_state))

    def failure(self, cb, exc) -> None:
        self.failures += 1

    def success(self, cb) -> None:
        self.successes += 1


def make_breaker(clock, **overrides) -> CircuitBreaker:
    config = {
        "failure_rate_threshold": 0.5,
        "window_size": 4,
        "minimum_calls": 4,
        "reset_timeout": 30.0,
        "half_open_max_calls": 1,
    }
    config.update(overrides)
    return CircuitBreaker("book-service", BreakerConfig(**config), clock=clock)


def fail_times(breaker: CircuitBreaker, times: int) -> None:
    remote = CountingRemote(fail=True)
    for _ in range(times):
        with pytest.raises(ConnectionError):
            breaker.call(remote)


def test_breaker_opens_when_failure_rate_reached_and_short_circuits(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    assert breaker.current_state == STATE_OPEN

    remote = CountingRemote()
    for _ in range(3):
        with pytest.raises(CircuitBreakerError):
            breaker.call(remote)
        clock.advance(5)
    assert remote.calls == 0


def test_breaker_waits_for_minimum_calls_before_evaluating(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 3)
    assert breaker.current_state == STATE_CLOSED
    assert breaker.failure_count == 3


def test_breaker_stays_closed_below_threshold(clock):
    breaker = make_breaker(clock, failure_rate_threshold=0.75)
    ok = CountingRemote()
    breaker.call(ok)
    breaker.call(ok)
    fail_times(breaker, 2)
    assert breaker.failure_rate == 0.5
    assert breaker.current_state == STATE_CLOSED


def test_count_window_forgets_oldest_outcomes(clock):
    breaker = make_breaker(clock, failure_rate_threshold=1.0)
    fail_times(breaker, 3)
    breaker.call(CountingRemote())
    fail_times(breaker, 3)
    # Window of 4 now holds the success plus three failures.
    assert breaker.current_state == STATE_CLOSED
    fail_times(breaker, 1)
    assert breaker.current_state == STATE_OPEN


def test_time_window_drops_expired_outcomes(clock):
    breaker = make_breaker(clock, window_type=WINDOW_TIME, window_size=60, minimum_calls=3)
    fail_times(breaker, 2)
    clock.advance(61)
    fail_times(breaker, 1)
    assert breaker.buffered_calls == 1
    assert breaker.current_state == STATE_CLOSED


def test_time_window_stays_bounded_under_steady_successes(clock):
    breaker = make_breaker(clock, window_type=WINDOW_TIME, window_size=1, minimum_calls=1)
    remote = CountingRemote()
    for _ in range(5000):
        breaker.call(remote)
        clock.advance(1)
    assert len(breaker._window) <= 2


def test_open_breaker_moves_to_half_open_after_cool_down(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    clock.advance(29)
    assert breaker.current_state == STATE_OPEN
    clock.advance(1)
    assert breaker.current_state == STATE_HALF_OPEN


def test_successful_trial_closes_breaker_and_resets_failures(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    clock.advance(30)

    remote = CountingRemote()
    assert breaker.call(remote) == "ok"
    assert remote.calls == 1
    assert breaker.current_state == STATE_CLOSED
    assert breaker.failure_count == 0
    assert breaker.buffered_calls == 0


def test_failed_trial_reopens_and_restarts_cool_down(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    clock.advance(30)
    fail_times(breaker, 1)
    assert breaker.current_state == STATE_OPEN

    clock.advance(20)
    assert breaker.current_state == STATE_OPEN
    clock.advance(10)
    assert breaker.current_state == STATE_HALF_OPEN


def test_half_open_admits_only_configured_trial_calls(clock):
    breaker = make_breaker(clock, half_open_max_calls=2)
    fail_times(breaker, 4)
    clock.advance(30)

    release = threading.Event()
    started = threading.Semaphore(0)

    def slow_remote():
        started.release()
        release.wait(5)
        return "ok"

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(breaker.call, slow_remote) for _ in range(2)]
        for _ in range(2):
            assert started.acquire(timeout=5)

        extra = CountingRemote()
        with pytest.raises(CircuitBreakerError):
            breaker.call(extra)
        assert extra.calls == 0

        release.set()
        assert [future.result(timeout=5) for future in futures] == ["ok", "ok"]

    assert breaker.current_state == STATE_CLOSED


def test_interrupted_trial_call_returns_its_permit(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    clock.advance(30)

    def interrupted():
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        breaker.call(interrupted)
    assert breaker.current_state == STATE_HALF_OPEN

    remote = CountingRemote()
    assert breaker.call(remote) == "ok"
    assert remote.calls == 1
    assert breaker.current_state == STATE_CLOSED


def test_excluded_exceptions_do_not_count_as_failures(clock):
    breaker = CircuitBreaker(
        "book-service",
        BreakerConfig(window_size=2, minimum_calls=2),
        exclude=[LookupError],
        clock=clock,
    )

    def rejects():
        raise LookupError("no such book")

    for _ in range(3):
        with pytest.raises(LookupError):
            breaker.call(rejects)
        with pytest.raises(LookupError):
            breaker.call_with_fallback(rejects, lambda exc: "fallback")

    assert breaker.failure_count == 0
    assert breaker.current_state == STATE_CLOSED


def test_fallback_receives_call_arguments_and_error(clock):
    breaker = make_breaker(clock)
    received = {}

    def fallback(book_id, copies, exc):
        received.update(book_id=book_id, copies=copies, exc=exc)
        return "fallback"

    result = breaker.call_with_fallback(CountingRemote(fail=True), fallback, "B1212", 1)
    assert result == "fallback"
    assert received["book_id"] == "B1212"
    assert received["copies"] == 1
    assert isinstance(received["exc"], ConnectionError)


def test_fallback_used_while_open_without_calling_remote(clock):
    breaker = make_breaker(clock)
    fail_times(breaker, 4)
    remote = CountingRemote()

    result = breaker.call_with_fallback(remote, lambda exc: type(exc).__name__)
    assert result == "CircuitBreakerError"
    assert remote.calls == 0


def test_listeners_follow_pybreaker_protocol(clock):
    listener = RecordingListener()
    breaker = CircuitBreaker(
        "book-service",
        BreakerConfig(window_size=2, minimum_calls=2, reset_timeout=10),
        listeners=[listener],
        clock=clock,
    )
    fail_times(breaker, 2)
    clock.advance(10)
    breaker.call(CountingRemote())

    assert listener.failures == 2
    assert listener.successes == 1
    assert listener.transitions == [
        (STATE_CLOSED, STATE_OPEN),
        (STATE_OPEN, STATE_HALF_OPEN),
        (STATE_HALF_OPEN, STATE_CLOSED),
    ]


def test_registry_shares_one_breaker_per_service(clock):
    registry = BreakerRegistry(configs={"book-service": BreakerConfig(window_size=2, minimum_calls=2)}, clock=clock)
    read_breaker = registry.get("book-service")
    write_breaker = registry.get("book-service")
    assert read_breaker is write_breaker

    fail_times(read_breaker, 1)
    fail_times(write_breaker, 1)
    assert registry.get("book-service").current_state == STATE_OPEN
    assert registry.snapshot() == [
        {
            "name": "book-service",
            "state": STATE_OPEN,
            "failureCount": 2,
            "bufferedCalls": 2,
            "failureRate": 1.0,
        },
    ]


@pytest.mark.parametrize(
    "overrides",
    [
        {"failure_rate_threshold": 0},
        {"failure_rate_threshold": 1.5},
        {"window_type": "sliding"},
        {"window_size": 3, "minimum_calls": 4},
        {"half_open_max_calls": 0},
        {"reset_timeout": -1},
    ],
)
def test_invalid_config_is_rejected(overrides):
    with pytest.raises(ValueError):
        BreakerConfig(**overrides)


def test_config_read_from_settings():
    settings = Settings(
        CB_BOOK_SERVICE_FAILURE_RATE_THRESHOLD=0.25,
        CB_BOOK_SERVICE_WINDOW_SIZE=20,
        CB_BOOK_SERVICE_MINIMUM_CALLS=8,
        CB_BOOK_SERVICE_RESET_TIMEOUT=5,
        CB_BOOK_SERVICE_HALF_OPEN_MAX_CALLS=3,
    )
    config = breaker_config_from_settings(settings, "book-service")
    assert config == BreakerConfig(
        failure_rate_threshold=0.25,
        window_size=20,
        minimum_calls=8,
        reset_timeout=5,
        half_open_max_calls=3,
    )
