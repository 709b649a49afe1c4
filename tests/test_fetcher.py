from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest
import requests

from festival_crawler.config import RunConfig
from festival_crawler.errors import FetchError, RunCancelled
from festival_crawler.retry import RetryPolicy
from festival_crawler.sources.http import FetchOptions, fetch, is_retryable, polite_delay

FAST = FetchOptions(delay_window_s=(0, 0), retry=RetryPolicy(attempts=3, base_delay=0, jitter=0))


class FakeSession:
    """Returns (or raises) the scripted responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append((url, timeout, headers))
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        if isinstance(r, int):
            return SimpleNamespace(status_code=r, url=url, text=f"<html>{r}</html>")
        return r


def test_transient_errors_are_retried_until_success():
    session = FakeSession(503, 503, 200)
    doc = fetch("https://x.test/p", FAST, session=session)
    assert doc.status_code == 200
    assert doc.text == "<html>200</html>"
    assert len(session.calls) == 3


def test_user_agent_and_timeout_are_sent():
    session = FakeSession(200)
    fetch("https://x.test/p", FAST, session=session)
    _, timeout, headers = session.calls[0]
    assert timeout == FAST.timeout_s
    assert headers["User-Agent"] == FAST.user_agent


def test_not_found_is_not_retried():
    session = FakeSession(404, 200)
    with pytest.raises(FetchError) as exc:
        fetch("https://x.test/missing", FAST, session=session)
    assert exc.value.status_code == 404
    assert exc.value.retryable is False
    assert len(session.calls) == 1


def test_connection_errors_exhaust_retries():
    session = FakeSession(*(requests.ConnectionError("reset") for _ in range(3)))
    with pytest.raises(FetchError) as exc:
        fetch("https://x.test/p", FAST, session=session)
    assert exc.value.retryable is True
    assert len(session.calls) == 3


def test_too_many_requests_is_retryable():
    session = FakeSession(429, 200)
    assert fetch("https://x.test/p", FAST, session=session).status_code == 200


def test_cancelled_fetch_raises_run_cancelled():
    cancel = threading.Event()
    cancel.set()
    session = FakeSession(200)
    with pytest.raises(RunCancelled):
        fetch("https://x.test/p", FAST, cancel=cancel, session=session)
    assert session.calls == []


def test_polite_delay_stays_inside_the_window():
    opts = FetchOptions(delay_window_s=(0.0, 0.0))
    assert polite_delay(opts) == 0.0


def test_options_from_config():
    cfg = RunConfig(retries=4, delay_ms=100, delay_jitter_ms=50, timeout_s=12)
    opts = FetchOptions.from_config(cfg, render_js=True)
    assert opts.retry.attempts == 5
    assert opts.delay_window_s == pytest.approx((0.1, 0.15))
    assert opts.timeout_s == 12
    assert opts.needs_browser


def test_is_retryable():
    assert is_retryable(FetchError("x", retryable=True))
    assert not is_retryable(FetchError("x", retryable=False))
    assert not is_retryable(ValueError("x"))
