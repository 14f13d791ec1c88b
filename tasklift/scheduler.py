"""Cooperative single-threaded scheduler.

The scheduler owns the ready queue, the event loop adapter and the current
run session.  It resumes routines one at a time: a routine runs until it
yields an effect, the matching handler either answers at once or parks the
routine, and parked routines are requeued through :meth:`Scheduler.wake`
when their condition is satisfied.

Most programs use the process-default scheduler through the module-level
functions::

    from tasklift import task, sleep, run

    @task
    def hello(name):
        yield sleep(10)
        print(f"hello {name}")

    hello("world")
    run()
"""

from __future__ import annotations

import contextlib
import functools
import logging
from collections import deque
from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

from tasklift.effects import WaitEffect
from tasklift.errors import AggregateError, SchedulerError, SelfWait, UncheckedErrors
from tasklift.future import Future
from tasklift.graph import InvocationGraph, InvocationNode
from tasklift.handlers import Handler, HandlerResult, Resume, Suspend, Throw, default_handlers
from tasklift.loop import EventLoop, create_loop
from tasklift.routine import _FINISHED, Routine, running_routine
from tasklift.task import Memoizer, MemoKey
from tasklift.utils import DEFAULT_LOOP, as_results

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class RunSession:
    """State scoped to one run: memo table, invocation graph, unchecked errors."""

    def __init__(self, index: int) -> None:
        self.index = index
        self.memo: dict[MemoKey, InvocationNode] = {}
        self.graph = InvocationGraph()
        # Insertion ordered; values unused.
        self.unchecked: dict[Future, None] = {}
        self.routines: dict[Routine, None] = {}
        self.closed = False

    def __repr__(self) -> str:
        return (
            f"<RunSession #{self.index} nodes={len(self.graph)} "
            f"unchecked={len(self.unchecked)} closed={self.closed}>"
        )


class Scheduler:
    """Drives routines to completion on top of an event loop adapter."""

    def __init__(self, loop: EventLoop | None = None) -> None:
        self.loop: EventLoop = loop if loop is not None else create_loop(DEFAULT_LOOP)
        self.state = SchedulerState.IDLE
        self.memoizer = Memoizer(self)
        self._handlers: dict[type, Handler] = default_handlers()
        self._ready: deque[Callable[[], None]] = deque()
        self._session: RunSession | None = None
        self._session_count = 0
        self._stop_requested = False
        self._stop_budget = 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def session(self) -> RunSession:
        return self.open_session()

    def open_session(self) -> RunSession:
        """Return the open run session, opening a new one if the last was closed."""
        if self._session is None or self._session.closed:
            self._session_count += 1
            self._session = RunSession(self._session_count)
            logger.debug("opened run session #%d", self._session_count)
        return self._session

    @property
    def current_session(self) -> RunSession | None:
        """The latest session, open or closed, without opening a new one."""
        return self._session

    def current_node(self) -> InvocationNode | None:
        routine = running_routine()
        if routine is None or routine.scheduler is not self:
            return None
        return routine.node

    def register_handler(self, effect_type: type, handler: Handler) -> None:
        self._handlers[effect_type] = handler

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def spawn(
        self,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        *,
        caller: InvocationNode | None,
        node: InvocationNode | None = None,
        label: str | None = None,
    ) -> Future:
        session = self.session
        future = Future(func, args, kwargs, unchecked=session.unchecked, label=label)
        routine = Routine(
            func, args, kwargs, future=future, scheduler=self, caller=caller, node=node
        )
        future.routine = routine
        session.routines[routine] = None
        self._ready.append(functools.partial(self._advance, routine))
        return future

    def async_(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Spawn an ad hoc, non-memoized routine for ``func(*args, **kwargs)``."""
        if not callable(func):
            raise TypeError(f"expected a callable, got {type(func).__name__}")
        return self.spawn(func, args, kwargs, caller=self.current_node())

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Run ``func`` on the next tick outside any routine.

        There is no future: an exception raised by ``func`` aborts :meth:`run`.
        """
        if not callable(func):
            raise TypeError(f"expected a callable, got {type(func).__name__}")
        self.open_session()
        self._ready.append(functools.partial(func, *args, **kwargs))

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Run until no routine is ready and the loop has no pending work."""
        if self.state is SchedulerState.RUNNING:
            raise SchedulerError("run() called while the scheduler is already running")
        session = self.open_session()
        self.state = SchedulerState.RUNNING
        self._stop_requested = False
        self._stop_budget = 0
        try:
            while True:
                if self._stop_requested:
                    # Entries queued when stop() was called still run.
                    if self._stop_budget <= 0:
                        break
                    self._stop_budget -= 1
                if self._ready:
                    self._ready.popleft()()
                    continue
                if self._stop_requested or not self.loop.has_pending():
                    break
                self.loop.run_once()
        finally:
            self._abandon(session)
            self.state = SchedulerState.STOPPED if self._stop_requested else SchedulerState.IDLE
            self._stop_requested = False
            session.closed = True
            if session.unchecked:
                logger.warning(
                    "Run session #%d finished with %d unchecked async error(s): %s",
                    session.index,
                    len(session.unchecked),
                    ", ".join(str(future) for future in session.unchecked),
                )

    def stop(self) -> None:
        """Stop after the current tick, abandoning suspended routines."""
        if self.state is SchedulerState.RUNNING and not self._stop_requested:
            self._stop_requested = True
            self._stop_budget = len(self._ready)

    def _abandon(self, session: RunSession) -> None:
        self._ready.clear()
        self.loop.stop()
        abandoned = 0
        for routine in session.routines:
            if routine.suspension is not None:
                routine.suspension.woken = True
                routine.suspension.disarm(self.loop)
            abandoned += 1
        session.routines.clear()
        if abandoned:
            logger.debug("abandoned %d routine(s) of run session #%d", abandoned, session.index)

    def wake(self, routine: Routine, suspension: Suspend) -> None:
        """Queue ``routine`` if ``suspension`` is still its pending condition."""
        if suspension.woken or routine.suspension is not suspension:
            return
        suspension.woken = True
        suspension.disarm(self.loop)
        self._ready.append(functools.partial(self._advance, routine))

    def _advance(self, routine: Routine) -> None:
        if routine.done:
            raise SchedulerError(f"cannot resume finished routine {routine.future}")
        suspension = routine.suspension
        if suspension is not None:
            self._apply(routine, suspension.resolve())
        while True:
            yielded = routine.step()
            if yielded is _FINISHED:
                self._finish(routine)
                return
            outcome = self._dispatch(yielded, routine)
            if isinstance(outcome, Suspend):
                routine.suspend(outcome)
                return
            self._apply(routine, outcome)

    def _dispatch(self, yielded: Any, routine: Routine) -> HandlerResult:
        if isinstance(yielded, Future):
            if yielded is routine.future:
                return Throw(SelfWait(yielded))
            yielded = WaitEffect(yielded)
        handler = self._handlers.get(type(yielded))
        if handler is None:
            return Throw(
                TypeError(
                    f"routine yielded {type(yielded).__name__!r}; "
                    "expected a tasklift effect or a Future"
                )
            )
        try:
            return handler(yielded, routine, self)
        except SchedulerError:
            raise
        except Exception as exc:
            return Throw(exc)

    @staticmethod
    def _apply(routine: Routine, outcome: Resume | Throw) -> None:
        if isinstance(outcome, Throw):
            routine.resume_error = outcome.error
        else:
            routine.resume_value = outcome.value

    def _finish(self, routine: Routine) -> None:
        future = routine.future
        if self._session is not None:
            self._session.routines.pop(routine, None)
        error = routine.error
        if error is not None:
            if isinstance(error, AggregateError):
                # The failing routine's own future now carries the accountability.
                error.acknowledge()
            future._fail(error)
        else:
            future._fulfill(as_results(routine.return_value))

    # ------------------------------------------------------------------
    # Audit & introspection
    # ------------------------------------------------------------------

    def check_errors(self) -> None:
        """Raise :class:`UncheckedErrors` if failures were never examined.

        The unchecked set is cleared before raising.
        """
        session = self._session
        if session is None or not session.unchecked:
            return
        errors: list[BaseException] = []
        for future in list(session.unchecked):
            error = future.get_error()
            if error is not None:
                errors.append(error)
        session.unchecked.clear()
        raise UncheckedErrors(errors)

    def roots(self) -> list[InvocationNode]:
        session = self._session
        if session is None:
            return []
        return session.graph.roots()

    @property
    def graph(self) -> InvocationGraph | None:
        session = self._session
        return session.graph if session is not None else None

    def __repr__(self) -> str:
        return f"<Scheduler state={self.state.value} session={self._session!r}>"


# ============================================================================
# Process-default scheduler
# ============================================================================

_default_scheduler: Scheduler | None = None


def get_scheduler() -> Scheduler:
    """Scheduler of the running routine, else the process-default one."""
    global _default_scheduler
    routine = running_routine()
    if routine is not None:
        return routine.scheduler
    if _default_scheduler is None:
        _default_scheduler = Scheduler()
    return _default_scheduler


def set_scheduler(scheduler: Scheduler | None) -> Scheduler | None:
    """Replace the process-default scheduler and return the previous one."""
    global _default_scheduler
    previous, _default_scheduler = _default_scheduler, scheduler
    return previous


@contextlib.contextmanager
def use_scheduler(scheduler: Scheduler) -> Iterator[Scheduler]:
    previous = set_scheduler(scheduler)
    try:
        yield scheduler
    finally:
        set_scheduler(previous)


def run() -> None:
    get_scheduler().run()


def stop() -> None:
    get_scheduler().stop()


def call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    get_scheduler().call(func, *args, **kwargs)


def async_(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return get_scheduler().async_(func, *args, **kwargs)


def check_errors() -> None:
    get_scheduler().check_errors()


def roots() -> list[InvocationNode]:
    return get_scheduler().roots()


__all__ = [
    "RunSession",
    "Scheduler",
    "SchedulerState",
    "async_",
    "call",
    "check_errors",
    "get_scheduler",
    "roots",
    "run",
    "set_scheduler",
    "stop",
    "use_scheduler",
]
