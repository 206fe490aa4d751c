"""Shared test fixtures for tiercache.

Provides an isolated storage location, a controllable clock for expiry
tests, and a ready-made engine.  The global output manager is reset after
every test so CLI tests never see stale stream references.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tiercache.engine import CacheEngine
from tiercache.models import CacheConfig
from tiercache.output import reset_output


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Cache fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    """Storage location for the disk tier (the cache folder lives below it)."""
    return tmp_path / "storage"


@pytest.fixture
def config(storage: Path) -> CacheConfig:
    return CacheConfig(storage_location=storage, name="test")


@pytest.fixture
def engine(config: CacheConfig, clock: FakeClock):
    """An engine over ``config`` driven by the fake clock."""
    e = CacheEngine(config, clock=clock)
    yield e
    e.close()
