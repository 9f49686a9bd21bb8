import logging

from sunnyvale_bot.config import load_settings
from sunnyvale_bot.logging_config import setup_logging


def test_load_settings(monkeypatch):
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "abc123")
    monkeypatch.delenv("SUNNYVALE_DATA_PATH", raising=False)
    monkeypatch.delenv("SUNNYVALE_STEP_TIMEOUT", raising=False)
    s = load_settings()
    assert s.token == "abc123"
    assert s.data_path == "sunnyvale_templates.json"
    assert s.step_timeout == 30.0

    # empty token environment
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "")
    s2 = load_settings()
    assert s2.token == ""


def test_load_settings_numbers(monkeypatch):
    monkeypatch.setenv("SUNNYVALE_DATA_PATH", "/tmp/t.json")
    monkeypatch.setenv("SUNNYVALE_STEP_TIMEOUT", "12.5")
    monkeypatch.setenv("SUNNYVALE_OPERATION_MAX_AGE_MS", "60000")
    monkeypatch.setenv("SUNNYVALE_SWEEP_INTERVAL", "not-a-number")
    s = load_settings()
    assert s.data_path == "/tmp/t.json"
    assert s.step_timeout == 12.5
    assert s.operation_max_age_ms == 60000
    assert s.sweep_interval == 3600.0


def test_setup_logging_idempotent():
    logger1 = setup_logging(logging.DEBUG)
    logger2 = setup_logging(logging.DEBUG)
    assert logger1 is logger2
    assert logger1.name == "sunnyvale"
    assert logger1.handlers  # at least one handler installed
    assert logging.getLogger("sunnyvale.executor").parent is logger1
