"""
Pytest fixtures and configuration for the test suite.

Environment is pinned before any kitchen module is imported so storage and
SQLite files land in a throwaway directory and no remote source is configured.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

os.environ["STATIC_DIR"] = tempfile.mkdtemp(prefix="letmecook-test-")
os.environ.pop("STATUS_SOURCE_URL", None)
os.environ.pop("KITCHEN_API_KEY", None)
os.environ.pop("STOVE_API_KEY", None)
os.environ["USE_S3"] = "false"

from fakes import FakeClock, FakeSource  # noqa: E402

from kitchen.app.config import KitchenLimits  # noqa: E402
from kitchen.app.persistence import LocalJobStore  # noqa: E402
from kitchen.app.reconciler import JobQueueReconciler  # noqa: E402


@pytest.fixture
def limits() -> KitchenLimits:
    """Three slots, three-second jobs, background loops effectively idle."""
    return KitchenLimits(
        max_concurrent=3,
        cook_duration=3,
        tick_seconds=3600,
        poll_seconds=3600,
        grace_seconds=30,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1000.0)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def store(tmp_path) -> LocalJobStore:
    return LocalJobStore(str(tmp_path / "kitchen.sqlite"))


@pytest.fixture
def kitchen(source, store, limits, clock) -> JobQueueReconciler:
    ticks = iter(range(1_000, 10_000_000, 1_000))
    return JobQueueReconciler(
        source, store, limits, clock=clock, now_ms=lambda: next(ticks)
    )
