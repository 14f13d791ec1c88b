"""
tasklift - Memoized tasks on a cooperative single-threaded scheduler.

Tasks are plain or generator functions.  Calling a task returns a Future,
memoized per run on the task and its arguments; generator tasks suspend by
yielding effects such as ``sleep``, ``wait``, ``wait_any`` and ``wait_all``.

Example:
    >>> from tasklift import task, sleep, wait_all, run
    >>>
    >>> @task
    >>> def compile(name):
    ...     yield sleep(100)
    ...     return f"{name}.o"
    >>>
    >>> @task
    >>> def default():
    ...     ok, error = yield wait_all([compile("a"), compile("b")])
    ...     return ok
    >>>
    >>> default()
    >>> run()
"""

from tasklift.effects import (
    TIMED_OUT,
    Effect,
    IOWaitEffect,
    SleepEffect,
    WaitAllEffect,
    WaitAnyEffect,
    WaitEffect,
    sleep,
    wait,
    wait_all,
    wait_any,
    wait_readable,
    wait_writable,
)
from tasklift.errors import (
    AggregateError,
    AlreadyConsuming,
    ErrorRecord,
    NotInRoutine,
    NotReady,
    RecursiveTaskInvocation,
    SchedulerError,
    SelfWait,
    TaskliftError,
    TaskNotFound,
    UncheckedErrors,
)
from tasklift.future import Future, FutureStatus
from tasklift.graph import InvocationGraph, InvocationNode
from tasklift.loop import EventLoop, RealtimeLoop, SimulatedLoop, create_loop
from tasklift.scheduler import (
    RunSession,
    Scheduler,
    SchedulerState,
    async_,
    call,
    check_errors,
    get_scheduler,
    roots,
    run,
    set_scheduler,
    stop,
    use_scheduler,
)
from tasklift.task import (
    Memoizer,
    Task,
    TaskRegistry,
    TaskSet,
    get_result_for,
    get_task,
    registry,
    task,
)

__version__ = "0.1.0"

__all__ = [
    "TIMED_OUT",
    "AggregateError",
    "AlreadyConsuming",
    "Effect",
    "ErrorRecord",
    "EventLoop",
    "Future",
    "FutureStatus",
    "IOWaitEffect",
    "InvocationGraph",
    "InvocationNode",
    "Memoizer",
    "NotInRoutine",
    "NotReady",
    "RealtimeLoop",
    "RecursiveTaskInvocation",
    "RunSession",
    "Scheduler",
    "SchedulerError",
    "SchedulerState",
    "SelfWait",
    "SimulatedLoop",
    "SleepEffect",
    "Task",
    "TaskNotFound",
    "TaskRegistry",
    "TaskSet",
    "TaskliftError",
    "UncheckedErrors",
    "WaitAllEffect",
    "WaitAnyEffect",
    "WaitEffect",
    "async_",
    "call",
    "check_errors",
    "create_loop",
    "get_result_for",
    "get_scheduler",
    "get_task",
    "registry",
    "roots",
    "run",
    "set_scheduler",
    "sleep",
    "stop",
    "task",
    "use_scheduler",
    "wait",
    "wait_all",
    "wait_any",
    "wait_readable",
    "wait_writable",
]
