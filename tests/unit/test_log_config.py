import logging

import pytest

from discovery_listener.log_config import apply_log_level, level_from_env


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
        (" error ", logging.ERROR),
        ("10", 10),
        ("nonsense", logging.INFO),
        ("", logging.INFO),
    ],
)
def test_level_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("DISCOVERY_LOG_LEVEL", raw)
    assert level_from_env() == expected


def test_level_defaults_to_info(monkeypatch):
    monkeypatch.delenv("DISCOVERY_LOG_LEVEL", raising=False)
    assert level_from_env() == logging.INFO


def test_apply_log_level_sets_root():
    root = logging.getLogger()
    previous = root.level
    try:
        apply_log_level(logging.ERROR)
        assert root.level == logging.ERROR
    finally:
        root.setLevel(previous)
