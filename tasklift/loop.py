"""Event loop adapters.

The scheduler only needs a narrow interface from its reactor: register a
callback for a timer deadline or an I/O readiness event, cancel that
registration, and run one iteration.  Two adapters are provided:

- :class:`RealtimeLoop` waits on the wall clock and uses :mod:`selectors`
  for file readiness.
- :class:`SimulatedLoop` keeps a virtual clock that jumps straight to the
  next deadline, which makes timing behaviour reproducible in tests.

Times are expressed in milliseconds.
"""

from __future__ import annotations

import heapq
import itertools
import selectors
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from tasklift.errors import SchedulerError

READ = selectors.EVENT_READ
WRITE = selectors.EVENT_WRITE


@dataclass(order=True)
class TimerHandle:
    deadline: float
    seq: int
    callback: Callable[[], Any] = field(compare=False, repr=False)
    owner: Any = field(compare=False, repr=False, default=None)
    cancelled: bool = field(compare=False, default=False)
    fired: bool = field(compare=False, default=False)

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


@dataclass(eq=False)
class IOHandle:
    fileobj: Any
    events: int
    callback: Callable[[int], Any] = field(repr=False)
    owner: Any = field(repr=False, default=None)
    active: bool = True


class EventLoop(Protocol):
    """Interface the scheduler requires from a reactor."""

    def now(self) -> float: ...

    def schedule_timer(self, deadline: float, callback: Callable[[], Any]) -> TimerHandle: ...

    def cancel_timer(self, handle: TimerHandle) -> None: ...

    def watch_io(
        self, fileobj: Any, events: int, callback: Callable[[int], Any]
    ) -> IOHandle: ...

    def unwatch_io(self, handle: IOHandle) -> None: ...

    def has_pending(self) -> bool: ...

    def run_once(self) -> bool: ...

    def stop(self) -> None: ...


class _TimerLoop:
    """Timer heap shared by the concrete adapters."""

    def __init__(self) -> None:
        self._timers: list[TimerHandle] = []
        self._seq = itertools.count()
        self._active_timers = 0

    def now(self) -> float:
        raise NotImplementedError

    def schedule_timer(self, deadline: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = TimerHandle(deadline, next(self._seq), callback, owner=self)
        heapq.heappush(self._timers, handle)
        self._active_timers += 1
        return handle

    def cancel_timer(self, handle: TimerHandle) -> None:
        if handle.owner is not self:
            raise SchedulerError("timer handle does not belong to this loop", handle=repr(handle))
        if handle.cancelled:
            return
        if handle.fired:
            raise SchedulerError("cannot cancel a timer that already fired", handle=repr(handle))
        handle.cancelled = True
        self._active_timers -= 1

    def _next_deadline(self) -> float | None:
        timers = self._timers
        while timers and timers[0].cancelled:
            heapq.heappop(timers)
        return timers[0].deadline if timers else None

    def _fire_due(self, now: float) -> None:
        timers = self._timers
        while timers and timers[0].deadline <= now:
            handle = heapq.heappop(timers)
            if handle.cancelled:
                continue
            handle.fired = True
            self._active_timers -= 1
            handle.callback()

    def _drop_timers(self) -> None:
        for handle in self._timers:
            if handle.active:
                handle.cancelled = True
        self._timers.clear()
        self._active_timers = 0


class RealtimeLoop(_TimerLoop):
    """Reactor backed by the monotonic clock and a selector."""

    def __init__(self, selector: selectors.BaseSelector | None = None) -> None:
        super().__init__()
        self._selector = selector or selectors.DefaultSelector()
        self._watchers: dict[Any, list[IOHandle]] = {}

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def watch_io(
        self, fileobj: Any, events: int, callback: Callable[[int], Any]
    ) -> IOHandle:
        if not events & (READ | WRITE):
            raise ValueError(f"invalid I/O event mask: {events!r}")
        handle = IOHandle(fileobj, events, callback, owner=self)
        watchers = self._watchers.setdefault(fileobj, [])
        watchers.append(handle)
        self._update_registration(fileobj)
        return handle

    def unwatch_io(self, handle: IOHandle) -> None:
        if handle.owner is not self:
            raise SchedulerError("I/O handle does not belong to this loop", handle=repr(handle))
        if not handle.active:
            return
        handle.active = False
        watchers = self._watchers.get(handle.fileobj, [])
        if handle in watchers:
            watchers.remove(handle)
        self._update_registration(handle.fileobj)

    def _update_registration(self, fileobj: Any) -> None:
        watchers = self._watchers.get(fileobj) or []
        mask = 0
        for handle in watchers:
            mask |= handle.events
        try:
            registered = self._selector.get_key(fileobj)
        except KeyError:
            registered = None
        if not mask:
            self._watchers.pop(fileobj, None)
            if registered is not None:
                self._selector.unregister(fileobj)
        elif registered is None:
            self._selector.register(fileobj, mask)
        elif registered.events != mask:
            self._selector.modify(fileobj, mask)

    def has_pending(self) -> bool:
        return self._active_timers > 0 or bool(self._watchers)

    def run_once(self) -> bool:
        deadline = self._next_deadline()
        timeout: float | None = None
        if deadline is not None:
            timeout = max(0.0, (deadline - self.now()) / 1000.0)
        if self._watchers:
            ready = self._selector.select(timeout)
            for key, mask in ready:
                for handle in list(self._watchers.get(key.fileobj, [])):
                    if handle.active and handle.events & mask:
                        self.unwatch_io(handle)
                        handle.callback(mask & handle.events)
        elif timeout is not None:
            if timeout > 0:
                time.sleep(timeout)
        else:
            return False
        self._fire_due(self.now())
        return self.has_pending()

    def stop(self) -> None:
        self._drop_timers()
        for watchers in list(self._watchers.values()):
            for handle in list(watchers):
                self.unwatch_io(handle)

    def close(self) -> None:
        self.stop()
        self._selector.close()


class SimulatedLoop(_TimerLoop):
    """Reactor with a virtual clock.

    ``run_once`` advances the clock to the earliest pending deadline and fires
    every timer due at that instant, so a program that sleeps for an hour
    completes immediately while still observing an hour of elapsed time.
    """

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError(f"cannot move the clock backwards by {ms}ms")
        self._now += ms
        self._fire_due(self._now)

    def watch_io(
        self, fileobj: Any, events: int, callback: Callable[[int], Any]
    ) -> IOHandle:
        raise SchedulerError("the simulated loop does not support I/O readiness")

    def unwatch_io(self, handle: IOHandle) -> None:
        raise SchedulerError("the simulated loop does not support I/O readiness")

    def has_pending(self) -> bool:
        return self._active_timers > 0

    def run_once(self) -> bool:
        deadline = self._next_deadline()
        if deadline is None:
            return False
        self._now = max(self._now, deadline)
        self._fire_due(self._now)
        return self.has_pending()

    def stop(self) -> None:
        self._drop_timers()


def create_loop(kind: str) -> RealtimeLoop | SimulatedLoop:
    match kind:
        case "realtime":
            return RealtimeLoop()
        case "simulated":
            return SimulatedLoop()
        case _:
            raise ValueError(f"unknown event loop kind {kind!r}; expected 'realtime' or 'simulated'")


__all__ = [
    "READ",
    "WRITE",
    "EventLoop",
    "IOHandle",
    "RealtimeLoop",
    "SimulatedLoop",
    "TimerHandle",
    "create_loop",
]
