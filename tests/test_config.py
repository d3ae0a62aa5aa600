"""Tests for environment-driven settings."""

from datetime import timedelta
from pathlib import Path

import pytest

from kbeads.config import DEFAULT_PORT, Settings, kbeads_home, parse_duration


@pytest.mark.parametrize(
    "raw, want",
    [
        ("90", timedelta(seconds=90)),
        ("90s", timedelta(seconds=90)),
        ("15m", timedelta(minutes=15)),
        ("1h", timedelta(hours=1)),
        ("0.5m", timedelta(seconds=30)),
        (" 2m ", timedelta(minutes=2)),
    ],
)
def test_parse_duration(raw, want):
    assert parse_duration(raw) == want


@pytest.mark.parametrize("raw", ["", "m", "15d", "-5m", "abc"])
def test_parse_duration_invalid(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_kbeads_home_from_env(tmp_kbeads_dir):
    assert kbeads_home() == tmp_kbeads_dir


def test_kbeads_home_default(monkeypatch):
    monkeypatch.delenv("KBEADS_HOME", raising=False)
    assert kbeads_home() == Path.home() / ".kbeads"


class TestSettingsFromEnv:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("KBEADS_ADVICE_FILE", "KBEADS_HOST", "KBEADS_PORT", "KBEADS_DEAD_THRESHOLD",
                     "KBEADS_EVICT_AFTER", "KBEADS_SWEEP_INTERVAL", "KBEADS_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self, tmp_kbeads_dir):
        s = Settings.from_env()
        assert s.home == tmp_kbeads_dir
        assert s.advice_file == tmp_kbeads_dir / "advice.json"
        assert s.hooks_log == tmp_kbeads_dir / "hooks.log"
        assert s.host == "127.0.0.1"
        assert s.port == DEFAULT_PORT
        assert s.dead_threshold == timedelta(minutes=15)
        assert s.evict_after == timedelta(minutes=30)
        assert s.sweep_interval == timedelta(seconds=60)
        assert s.log_level == "WARNING"

    def test_overrides(self, tmp_kbeads_dir, monkeypatch, tmp_path):
        monkeypatch.setenv("KBEADS_ADVICE_FILE", str(tmp_path / "rules.json"))
        monkeypatch.setenv("KBEADS_HOST", "0.0.0.0")
        monkeypatch.setenv("KBEADS_PORT", "9000")
        monkeypatch.setenv("KBEADS_DEAD_THRESHOLD", "5m")
        monkeypatch.setenv("KBEADS_EVICT_AFTER", "1h")
        monkeypatch.setenv("KBEADS_SWEEP_INTERVAL", "10s")
        monkeypatch.setenv("KBEADS_LOG_LEVEL", "debug")
        s = Settings.from_env()
        assert s.advice_file == tmp_path / "rules.json"
        assert s.host == "0.0.0.0"
        assert s.port == 9000
        assert s.dead_threshold == timedelta(minutes=5)
        assert s.evict_after == timedelta(hours=1)
        assert s.sweep_interval == timedelta(seconds=10)
        assert s.log_level == "DEBUG"

    @pytest.mark.parametrize("raw", ["soon", "0", "0s"])
    def test_bad_duration_falls_back(self, tmp_kbeads_dir, monkeypatch, caplog, raw):
        monkeypatch.setenv("KBEADS_DEAD_THRESHOLD", raw)
        assert Settings.from_env().dead_threshold == timedelta(minutes=15)
        assert "KBEADS_DEAD_THRESHOLD" in caplog.text

    def test_bad_port_falls_back(self, tmp_kbeads_dir, monkeypatch):
        monkeypatch.setenv("KBEADS_PORT", "http")
        assert Settings.from_env().port == DEFAULT_PORT

    def test_explicit_home(self, tmp_path):
        s = Settings.from_env(home=tmp_path)
        assert s.advice_file == tmp_path / "advice.json"
