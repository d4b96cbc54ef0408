import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so in-tree packages import cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from specgate.config import Config, _reset_config_for_tests  # noqa: E402
from specgate.services.base import ServiceContext  # noqa: E402
from specgate.services.events import _reset_event_bus_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_globals(monkeypatch: pytest.MonkeyPatch):
    """Each test sees a fresh config singleton, a fresh event bus and no SPECGATE_ env."""
    for key in list(os.environ):
        if key.startswith("SPECGATE_"):
            monkeypatch.delenv(key, raising=False)
    _reset_config_for_tests()
    _reset_event_bus_for_tests()
    yield
    _reset_config_for_tests()
    _reset_event_bus_for_tests()


@pytest.fixture
def make_context():
    """Factory for service contexts with config overrides."""
    def _make(**overrides) -> ServiceContext:
        return ServiceContext(config=Config(**overrides))
    return _make


@pytest.fixture
def service_context(make_context) -> ServiceContext:
    return make_context()


class FakeClock:
    """Deterministic clock for session timing."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
