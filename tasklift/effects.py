"""Suspension effects.

Routines suspend by yielding one of the effects built here::

    @task
    def build():
        elapsed = yield sleep(100)
        ok, outcome = yield wait(compile_sources(), timeout_ms=5000)
        ...

The constructors must be called from inside a routine; at the top level they
raise :class:`~tasklift.errors.NotInRoutine` because the main driver may never
block.  Yielding a bare :class:`~tasklift.future.Future` is shorthand for
``wait(future)``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from tasklift.errors import SelfWait
from tasklift.future import Future
from tasklift.loop import READ, WRITE
from tasklift.routine import Routine, current_routine

TIMED_OUT = "timed out"


class Effect:
    """Base class of everything a routine may yield to the scheduler."""

    __slots__ = ()


@dataclass(frozen=True)
class SleepEffect(Effect):
    """Resume after ``ms`` milliseconds with the actual elapsed time."""

    ms: float


@dataclass(frozen=True)
class WaitEffect(Effect):
    """Resume when ``future`` is ready, or when ``timeout_ms`` elapses."""

    future: Future
    timeout_ms: float | None = None


@dataclass(frozen=True)
class WaitAnyEffect(Effect):
    """Resume when at least one of ``futures`` is ready."""

    futures: tuple[Future, ...]
    timeout_ms: float | None = None


@dataclass(frozen=True)
class WaitAllEffect(Effect):
    """Resume when every one of ``futures`` is ready."""

    futures: tuple[Future, ...]
    timeout_ms: float | None = None


@dataclass(frozen=True)
class IOWaitEffect(Effect):
    """Resume when ``fileobj`` is ready for ``events``."""

    fileobj: Any
    events: int
    timeout_ms: float | None = None


def _ensure_duration(value: Any, name: str, *, allow_zero: bool) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number of milliseconds, got {type(value).__name__}")
    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValueError(f"{name} must be {qualifier}, got {value!r}")
    return float(value)


def _ensure_timeout(timeout_ms: Any) -> float | None:
    if timeout_ms is None:
        return None
    return _ensure_duration(timeout_ms, "timeout_ms", allow_zero=False)


def _ensure_future(value: Any, routine: Routine) -> Future:
    if not isinstance(value, Future):
        raise TypeError(f"expected a Future, got {type(value).__name__}")
    if value is routine.future:
        raise SelfWait(value)
    return value


def _ensure_futures(values: Iterable[Any], routine: Routine) -> tuple[Future, ...]:
    return tuple(_ensure_future(value, routine) for value in values)


def sleep(ms: float) -> SleepEffect:
    current_routine("sleep")
    return SleepEffect(_ensure_duration(ms, "ms", allow_zero=True))


def wait(future: Future, timeout_ms: float | None = None) -> WaitEffect:
    """Suspend until ``future`` is ready.

    Without a timeout the routine resumes with the future's results, or the
    future's error is raised at the ``yield``.  With a timeout the routine
    resumes with ``(True, results)``, ``(False, error)`` or
    ``(False, "timed out")`` and nothing is raised.
    """
    routine = current_routine("wait")
    return WaitEffect(_ensure_future(future, routine), _ensure_timeout(timeout_ms))


def wait_any(futures: Iterable[Future], timeout_ms: float | None = None) -> WaitAnyEffect:
    """Suspend until one of ``futures`` is ready and resume with it.

    Ties are broken by list order.  If that future failed its error is raised
    at the ``yield``.  On timeout the routine resumes with ``None``.
    """
    routine = current_routine("wait_any")
    members = _ensure_futures(futures, routine)
    if not members and timeout_ms is None:
        raise ValueError("wait_any() requires at least one future")
    return WaitAnyEffect(members, _ensure_timeout(timeout_ms))


def wait_all(futures: Iterable[Future], timeout_ms: float | None = None) -> WaitAllEffect:
    """Suspend until all ``futures`` are ready.

    Resumes with ``(True, None)`` when all were fulfilled, ``(False,
    AggregateError)`` when some failed and ``(False, "timed out")`` on timeout.
    """
    routine = current_routine("wait_all")
    return WaitAllEffect(_ensure_futures(futures, routine), _ensure_timeout(timeout_ms))


def wait_readable(fileobj: Any, timeout_ms: float | None = None) -> IOWaitEffect:
    current_routine("wait_readable")
    return IOWaitEffect(fileobj, READ, _ensure_timeout(timeout_ms))


def wait_writable(fileobj: Any, timeout_ms: float | None = None) -> IOWaitEffect:
    current_routine("wait_writable")
    return IOWaitEffect(fileobj, WRITE, _ensure_timeout(timeout_ms))


__all__ = [
    "TIMED_OUT",
    "Effect",
    "IOWaitEffect",
    "SleepEffect",
    "WaitAllEffect",
    "WaitAnyEffect",
    "WaitEffect",
    "sleep",
    "wait",
    "wait_all",
    "wait_any",
    "wait_readable",
    "wait_writable",
]
