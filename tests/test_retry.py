from __future__ import annotations

import threading

import pytest

from festival_crawler.errors import RunCancelled, WriteConflictError
from festival_crawler.retry import RetryPolicy, call_with_retry, wait_or_cancel


class _Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.calls = 0
        self.result = result

    def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def _no_sleep(seconds, cancel):
    return None


def test_delay_grows_exponentially_and_is_capped():
    p = RetryPolicy(base_delay=1.0, jitter=0.0, max_delay=5.0)
    assert p.delay_for(1) == 1.0
    assert p.delay_for(2) == 2.0
    assert p.delay_for(3) == 4.0
    assert p.delay_for(4) == 5.0


def test_retries_until_success():
    fn = _Flaky([WriteConflictError("busy"), WriteConflictError("busy")])
    sleeps = []
    out = call_with_retry(
        fn,
        policy=RetryPolicy(attempts=3, base_delay=0.1, jitter=0),
        retryable=lambda e: isinstance(e, WriteConflictError),
        sleep=lambda s, c: sleeps.append(s),
    )
    assert out == "ok"
    assert fn.calls == 3
    assert sleeps == [0.1, 0.2]


def test_gives_up_after_attempts_and_reraises_last_error():
    fn = _Flaky([WriteConflictError("a"), WriteConflictError("b"), WriteConflictError("c")])
    with pytest.raises(WriteConflictError, match="b"):
        call_with_retry(
            fn,
            policy=RetryPolicy(attempts=2, base_delay=0, jitter=0),
            retryable=lambda e: True,
            sleep=_no_sleep,
        )
    assert fn.calls == 2


def test_non_retryable_error_is_raised_at_once():
    fn = _Flaky([ValueError("bad")])
    with pytest.raises(ValueError):
        call_with_retry(fn, policy=RetryPolicy(attempts=5), retryable=lambda e: False, sleep=_no_sleep)
    assert fn.calls == 1


def test_cancelled_before_first_attempt():
    cancel = threading.Event()
    cancel.set()
    fn = _Flaky([])
    with pytest.raises(RunCancelled):
        call_with_retry(fn, policy=RetryPolicy(), retryable=lambda e: True, cancel=cancel)
    assert fn.calls == 0


def test_wait_or_cancel_raises_when_event_is_set():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RunCancelled):
        wait_or_cancel(10.0, cancel)
    with pytest.raises(RunCancelled):
        wait_or_cancel(0, cancel)
    wait_or_cancel(0, None)
