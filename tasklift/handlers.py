"""Effect handlers for the scheduler.

Each handler receives the yielded effect, the routine that yielded it and the
scheduler, and answers with one of:

- :class:`Resume` - continue the routine at once with a value,
- :class:`Throw` - continue the routine at once by raising an error,
- :class:`Suspend` - park the routine; the handler has armed the callbacks
  that will call :meth:`Scheduler.wake` later.

A suspended routine's outcome is computed by ``Suspend.resolve`` at the moment
it is resumed, not when it is woken.  That way a future that became ready in
the same tick as a timeout still wins over the timeout.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from tasklift.effects import (
    TIMED_OUT,
    Effect,
    IOWaitEffect,
    SleepEffect,
    WaitAllEffect,
    WaitAnyEffect,
    WaitEffect,
)
from tasklift.errors import AggregateError
from tasklift.future import Future
from tasklift.loop import EventLoop, IOHandle, TimerHandle

if TYPE_CHECKING:
    from tasklift.routine import Routine
    from tasklift.scheduler import Scheduler


@dataclass(frozen=True)
class Resume:
    value: Any = None


@dataclass(frozen=True)
class Throw:
    error: BaseException


class Suspend:
    """A routine's single pending wait condition."""

    def __init__(self, resolve: Callable[[], "Resume | Throw"]) -> None:
        self.resolve = resolve
        self.timer: TimerHandle | None = None
        self.io: IOHandle | None = None
        self.watched: list[tuple[Future, Callable[[], None]]] = []
        self.woken = False

    def watch(self, future: Future, callback: Callable[[], None]) -> None:
        future.on_ready(callback)
        self.watched.append((future, callback))

    def disarm(self, loop: EventLoop) -> None:
        if self.timer is not None and self.timer.active:
            loop.cancel_timer(self.timer)
        if self.io is not None and self.io.active:
            loop.unwatch_io(self.io)
        for future, callback in self.watched:
            future.remove_callback(callback)
        self.watched.clear()


HandlerResult = Union[Resume, Throw, Suspend]
Handler = Callable[[Any, "Routine", "Scheduler"], HandlerResult]


def _arm_timeout(
    suspension: Suspend, timeout_ms: float | None, routine: "Routine", scheduler: "Scheduler"
) -> None:
    if timeout_ms is None:
        return
    loop = scheduler.loop
    suspension.timer = loop.schedule_timer(
        loop.now() + timeout_ms, lambda: scheduler.wake(routine, suspension)
    )


def _first_ready(futures: tuple[Future, ...]) -> Future | None:
    for future in futures:
        if future.is_ready():
            return future
    return None


# ============================================================================
# Handlers
# ============================================================================


def handle_sleep(effect: SleepEffect, routine: "Routine", scheduler: "Scheduler") -> HandlerResult:
    loop = scheduler.loop
    started = loop.now()
    suspension = Suspend(lambda: Resume(loop.now() - started))
    suspension.timer = loop.schedule_timer(
        started + effect.ms, lambda: scheduler.wake(routine, suspension)
    )
    return suspension


def _wait_outcome(effect: WaitEffect) -> Resume | Throw:
    future = effect.future
    if effect.timeout_ms is None:
        if future.failed:
            return Throw(future.get_error())
        return Resume(future.get_results())
    if not future.is_ready():
        return Resume((False, TIMED_OUT))
    if future.failed:
        return Resume((False, future.get_error()))
    return Resume((True, future.get_results()))


def handle_wait(effect: WaitEffect, routine: "Routine", scheduler: "Scheduler") -> HandlerResult:
    if effect.future.is_ready():
        return _wait_outcome(effect)
    suspension = Suspend(lambda: _wait_outcome(effect))
    suspension.watch(effect.future, lambda: scheduler.wake(routine, suspension))
    _arm_timeout(suspension, effect.timeout_ms, routine, scheduler)
    return suspension


def _wait_any_outcome(effect: WaitAnyEffect) -> Resume | Throw:
    first = _first_ready(effect.futures)
    if first is None:
        return Resume(None)
    if first.failed:
        return Throw(first.get_error())
    return Resume(first)


def handle_wait_any(
    effect: WaitAnyEffect, routine: "Routine", scheduler: "Scheduler"
) -> HandlerResult:
    if _first_ready(effect.futures) is not None:
        return _wait_any_outcome(effect)
    suspension = Suspend(lambda: _wait_any_outcome(effect))
    for future in effect.futures:
        suspension.watch(future, lambda: scheduler.wake(routine, suspension))
    _arm_timeout(suspension, effect.timeout_ms, routine, scheduler)
    return suspension


def _wait_all_outcome(effect: WaitAllEffect) -> Resume:
    if any(not future.is_ready() for future in effect.futures):
        return Resume((False, TIMED_OUT))
    failed = [future for future in effect.futures if future.failed]
    if failed:
        return Resume((False, AggregateError("wait_all()", failed)))
    return Resume((True, None))


def handle_wait_all(
    effect: WaitAllEffect, routine: "Routine", scheduler: "Scheduler"
) -> HandlerResult:
    pending = [future for future in effect.futures if not future.is_ready()]
    if not pending:
        return _wait_all_outcome(effect)
    suspension = Suspend(lambda: _wait_all_outcome(effect))
    remaining = len(pending)

    def on_member_ready() -> None:
        nonlocal remaining
        remaining -= 1
        if remaining == 0:
            scheduler.wake(routine, suspension)

    for future in pending:
        suspension.watch(future, on_member_ready)
    _arm_timeout(suspension, effect.timeout_ms, routine, scheduler)
    return suspension


def handle_io_wait(
    effect: IOWaitEffect, routine: "Routine", scheduler: "Scheduler"
) -> HandlerResult:
    became_ready = False

    def on_ready(_mask: int) -> None:
        nonlocal became_ready
        became_ready = True
        scheduler.wake(routine, suspension)

    suspension = Suspend(lambda: Resume(became_ready))
    suspension.io = scheduler.loop.watch_io(effect.fileobj, effect.events, on_ready)
    _arm_timeout(suspension, effect.timeout_ms, routine, scheduler)
    return suspension


def default_handlers() -> dict[type[Effect], Handler]:
    return {
        SleepEffect: handle_sleep,
        WaitEffect: handle_wait,
        WaitAnyEffect: handle_wait_any,
        WaitAllEffect: handle_wait_all,
        IOWaitEffect: handle_io_wait,
    }


__all__ = [
    "Handler",
    "HandlerResult",
    "Resume",
    "Suspend",
    "Throw",
    "default_handlers",
    "handle_io_wait",
    "handle_sleep",
    "handle_wait",
    "handle_wait_all",
    "handle_wait_any",
]
