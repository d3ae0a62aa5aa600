"""
kbeads Config -- settings resolved from environment variables.

Resolved lazily (at call time, not import time) so tests can override
KBEADS_* variables with monkeypatch.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

logger = logging.getLogger("kbeads.config")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787
DEFAULT_LOG_LEVEL = "WARNING"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


def kbeads_home() -> Path:
    """Resolve KBEADS_HOME, defaulting to ~/.kbeads."""
    return Path(os.environ.get("KBEADS_HOME", str(Path.home() / ".kbeads")))


def parse_duration(value: str) -> timedelta:
    """Parse "90", "90s", "15m" or "1h" into a timedelta. Raises ValueError."""
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return timedelta(seconds=float(number) * _UNIT_SECONDS[unit])


def _env_duration(name: str, default: timedelta) -> timedelta:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = parse_duration(raw)
    except ValueError:
        logger.warning("ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    if value <= timedelta(0):
        logger.warning("ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("ignoring invalid %s=%r, using %d", name, raw, default)
        return default


@dataclass
class Settings:
    home: Path
    advice_file: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    dead_threshold: timedelta = timedelta(minutes=15)
    evict_after: timedelta = timedelta(minutes=30)
    sweep_interval: timedelta = timedelta(seconds=60)
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def hooks_log(self) -> Path:
        return self.home / "hooks.log"

    @classmethod
    def from_env(cls, home: Optional[Path] = None) -> "Settings":
        home = home or kbeads_home()
        advice_file = os.environ.get("KBEADS_ADVICE_FILE")
        return cls(
            home=home,
            advice_file=Path(advice_file) if advice_file else home / "advice.json",
            host=os.environ.get("KBEADS_HOST", DEFAULT_HOST),
            port=_env_int("KBEADS_PORT", DEFAULT_PORT),
            dead_threshold=_env_duration("KBEADS_DEAD_THRESHOLD", timedelta(minutes=15)),
            evict_after=_env_duration("KBEADS_EVICT_AFTER", timedelta(minutes=30)),
            sweep_interval=_env_duration("KBEADS_SWEEP_INTERVAL", timedelta(seconds=60)),
            log_level=os.environ.get("KBEADS_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )
