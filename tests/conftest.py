"""
Pytest configuration for tasklift tests.

Most tests drive a scheduler on a :class:`SimulatedLoop`, so timing
assertions are exact.  Tests marked ``realtime`` use the wall clock and
compare against :data:`TOLERANCE_MS`.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from tasklift import Scheduler, SimulatedLoop, registry, use_scheduler

# Shared CI runners are noisier than a developer machine.
TOLERANCE_MS = 100.0 if os.environ.get("CI") else 30.0


@pytest.fixture(autouse=True)
def clean_registry() -> Iterator[None]:
    """Every test starts with an empty task registry."""
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def loop() -> SimulatedLoop:
    return SimulatedLoop()


@pytest.fixture
def scheduler(loop: SimulatedLoop) -> Iterator[Scheduler]:
    """A simulated-time scheduler installed as the process default."""
    sched = Scheduler(loop=loop)
    with use_scheduler(sched):
        yield sched


@pytest.fixture
def tolerance_ms() -> float:
    return TOLERANCE_MS
