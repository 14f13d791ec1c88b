"""Suspendable executions of a function.

A routine wraps one call of a user function.  Generator functions suspend at
every ``yield``; plain functions run to completion in a single step.  While a
routine executes user code it is bound to :data:`_current_routine`, which is
how suspension primitives and task invocations find their caller without an
implicit "current thread".
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Generator
from contextvars import ContextVar
from enum import Enum
from typing import TYPE_CHECKING, Any

from tasklift.errors import NotInRoutine, SchedulerError
from tasklift.utils import DEBUG_ROUTINES

if TYPE_CHECKING:
    from tasklift.future import Future
    from tasklift.graph import InvocationNode
    from tasklift.handlers import Suspend
    from tasklift.scheduler import Scheduler

logger = logging.getLogger(__name__)

_current_routine: ContextVar["Routine | None"] = ContextVar(
    "tasklift_current_routine", default=None
)

_FINISHED = object()


class RoutineState(Enum):
    READY = "ready"
    RUNNING = "running"
    SUSPENDED = "suspended"
    DONE = "done"


def current_routine(primitive: str) -> "Routine":
    """Return the executing routine or raise :class:`NotInRoutine`."""
    routine = _current_routine.get()
    if routine is None:
        raise NotInRoutine(primitive)
    return routine


def running_routine() -> "Routine | None":
    return _current_routine.get()


class Routine:
    """One suspendable execution of ``func(*args, **kwargs)``."""

    def __init__(
        self,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        *,
        future: "Future",
        scheduler: "Scheduler",
        caller: "InvocationNode | None" = None,
        node: "InvocationNode | None" = None,
    ) -> None:
        self.func = func
        self.args = args
        self.kwargs = kwargs
        self.future = future
        self.scheduler = scheduler
        self.caller = caller
        # Invocation context for anything this routine spawns.
        self.node = node if node is not None else caller
        self.state = RoutineState.READY
        self.resume_value: Any = None
        self.resume_error: BaseException | None = None
        self.suspension: Suspend | None = None
        self.return_value: Any = None
        self.error: BaseException | None = None
        self._gen: Generator[Any, Any, Any] | None = None

    def suspend(self, suspension: "Suspend") -> None:
        self.state = RoutineState.SUSPENDED
        self.suspension = suspension

    def step(self) -> Any:
        """Run user code until the next ``yield`` or until it finishes.

        Returns the yielded object, or :data:`_FINISHED` once the routine is
        done (its outcome is then in ``return_value``/``error``).
        """
        if self.state is RoutineState.DONE:
            raise SchedulerError(f"cannot resume finished routine {self.future}")
        self.state = RoutineState.RUNNING
        self.suspension = None
        token = _current_routine.set(self)
        try:
            if self._gen is None:
                if DEBUG_ROUTINES:
                    logger.debug("[routine] %s started", self.future)
                result = self.func(*self.args, **self.kwargs)
                if not inspect.isgenerator(result):
                    return self._finish(result, None)
                self._gen = result
                yielded = next(self._gen)
            elif self.resume_error is not None:
                error, self.resume_error = self.resume_error, None
                yielded = self._gen.throw(error)
            else:
                value, self.resume_value = self.resume_value, None
                yielded = self._gen.send(value)
        except StopIteration as stop:
            return self._finish(stop.value, None)
        except Exception as exc:
            return self._finish(None, exc)
        finally:
            _current_routine.reset(token)
        return yielded

    def _finish(self, value: Any, error: BaseException | None) -> object:
        self.state = RoutineState.DONE
        self.return_value = value
        self.error = error
        self._gen = None
        if DEBUG_ROUTINES:
            outcome = f"error {error!r}" if error is not None else f"value {value!r}"
            logger.debug("[routine] %s ended with %s", self.future, outcome)
        return _FINISHED

    @property
    def done(self) -> bool:
        return self.state is RoutineState.DONE

    def __repr__(self) -> str:
        return f"<Routine {self.future} state={self.state.value}>"


__all__ = [
    "Routine",
    "RoutineState",
    "current_routine",
    "running_routine",
]
