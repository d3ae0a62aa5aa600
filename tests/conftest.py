"""kbeads test configuration."""
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure kbeads package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeClock:
    """Manually advanced UTC clock for presence tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def tmp_kbeads_dir(tmp_path):
    """Create a temporary KBEADS_HOME for testing."""
    home = tmp_path / ".kbeads"
    home.mkdir()
    old_home = os.environ.get("KBEADS_HOME")
    os.environ["KBEADS_HOME"] = str(home)
    yield home
    if old_home is not None:
        os.environ["KBEADS_HOME"] = old_home
    else:
        os.environ.pop("KBEADS_HOME", None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    """A presence tracker driven by the fake clock. Reaper stopped on teardown."""
    from kbeads.presence import Tracker

    t = Tracker(clock=clock)
    yield t
    t.stop()


@pytest.fixture
def make_advice():
    """Factory for open advice records with JSON-encoded fields, as a store returns them."""
    from kbeads.advice import AdviceRecord

    def _make(record_id, title, labels, fields):
        return AdviceRecord(id=record_id, title=title, labels=list(labels), fields=json.dumps(fields))
    return _make


@pytest.fixture
def advice_file(tmp_path):
    """Write advice records to a JSON file and return its path."""
    def _write(records):
        path = tmp_path / "advice.json"
        path.write_text(json.dumps(records))
        return path
    return _write
