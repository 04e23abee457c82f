import pytest

from naver_fetch.breaker import CircuitBreaker, CircuitState


def make_breaker(clock, threshold=3, open_ms=5000) -> CircuitBreaker:
    return CircuitBreaker(fail_threshold=threshold, open_ms=open_ms, clock=clock)


def test_closed_always_allows_attempts(clock):
    cb = make_breaker(clock)
    assert cb.can_attempt()
    cb.on_failure()
    cb.on_failure()
    assert cb.state == CircuitState.CLOSED
    assert cb.can_attempt()


def test_three_failures_open_the_circuit(clock):
    cb = make_breaker(clock)
    for _ in range(3):
        cb.on_failure()

    assert cb.state == CircuitState.OPEN
    assert cb.opened_at == clock.now
    assert not cb.can_attempt()


def test_success_resets_streak_while_closed(clock):
    cb = make_breaker(clock)
    cb.on_failure()
    cb.on_failure()
    cb.on_success()
    cb.on_failure()
    cb.on_failure()
    assert cb.state == CircuitState.CLOSED
    assert cb.fail_streak == 2


def test_open_until_timeout_then_half_open_once(clock):
    cb = make_breaker(clock)
    for _ in range(3):
        cb.on_failure()

    clock.advance(4.5)
    assert not cb.can_attempt()
    assert cb.retry_after() == pytest.approx(0.5)

    clock.advance(0.5)
    assert cb.can_attempt()
    assert cb.state == CircuitState.HALF_OPEN

    cb.on_success()
    assert cb.state == CircuitState.CLOSED
    assert cb.fail_streak == 0


def test_half_open_failure_reopens_and_rearms_timer(clock):
    cb = make_breaker(clock)
    for _ in range(3):
        cb.on_failure()
    clock.advance(5)
    assert cb.can_attempt()

    clock.advance(1)
    cb.on_failure()

    assert cb.state == CircuitState.OPEN
    assert cb.opened_at == clock.now
    clock.advance(4.9)
    assert not cb.can_attempt()


def test_threshold_one_reopens_on_single_half_open_failure(clock):
    cb = make_breaker(clock, threshold=1, open_ms=500)
    cb.on_failure()
    assert cb.state == CircuitState.OPEN
    clock.advance(0.5)
    assert cb.can_attempt()
    cb.on_failure()
    assert cb.state == CircuitState.OPEN


def test_reset_closes(clock):
    cb = make_breaker(clock, threshold=1)
    cb.on_failure()
    cb.reset()
    assert cb.state == CircuitState.CLOSED
    assert cb.can_attempt()
    assert cb.retry_after() == 0.0


def test_rejects_zero_threshold(clock):
    with pytest.raises(ValueError):
        make_breaker(clock, threshold=0)
