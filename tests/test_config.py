from __future__ import annotations

import pytest

from festival_crawler.config import RunConfig


def test_defaults_are_valid():
    cfg = RunConfig()
    cfg.validate()
    assert cfg.batch_size == 50
    assert cfg.delay_window_s == (1.5, 3.0)


def test_from_env(monkeypatch):
    monkeypatch.setenv("FESTIVAL_MAX_PAGES", "4")
    monkeypatch.setenv("FESTIVAL_BATCH_SIZE", "10")
    monkeypatch.setenv("FESTIVAL_CONCURRENCY", "not a number")
    cfg = RunConfig.from_env()
    assert cfg.max_pages == 4
    assert cfg.batch_size == 10
    assert cfg.concurrency == RunConfig().concurrency


def test_overrides_skip_none_values():
    cfg = RunConfig().with_overrides(max_pages=2, delay_ms=None)
    assert cfg.max_pages == 2
    assert cfg.delay_ms == RunConfig().delay_ms


def test_unknown_override_is_rejected():
    with pytest.raises(TypeError):
        RunConfig().with_overrides(pages=2)


@pytest.mark.parametrize("field, value", [("batch_size", 0), ("concurrency", 0), ("delay_ms", -1)])
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValueError):
        RunConfig().with_overrides(**{field: value})
