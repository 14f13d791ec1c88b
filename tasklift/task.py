"""Tasks: named, memoized functions.

Calling a :class:`Task` never runs it inline.  The call goes through the
scheduler's :class:`Memoizer`, which returns the single future associated
with ``(task, canonical arguments)`` for the current run, spawning a routine
only the first time::

    @task
    def compile(target):
        yield sleep(10)
        return f"{target}.o"

    @task
    def link():
        yield wait_all(compile_all("a", "b"))
        ...

    compile_all = compile + other_task   # a TaskSet
"""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, overload

from frozendict import frozendict

from tasklift.errors import RecursiveTaskInvocation, SchedulerError, TaskNotFound
from tasklift.graph import InvocationNode
from tasklift.utils import canonical_arguments

if TYPE_CHECKING:
    from tasklift.future import Future
    from tasklift.scheduler import RunSession, Scheduler

logger = logging.getLogger(__name__)

TASK_NAME_PATTERN = re.compile(r"^[A-Za-z][_A-Za-z0-9]*$")

NodeHook = Callable[[InvocationNode], Any]


def _validate_name(name: Any, what: str) -> str:
    if not isinstance(name, str) or TASK_NAME_PATTERN.match(name) is None:
        raise ValueError(f"expected a {what} name, got {name!r}")
    return name


def _validate_namespace(namespace: str) -> str:
    if namespace:
        for part in namespace.split("."):
            _validate_name(part, "namespace")
    return namespace


class Task:
    """A named function whose invocations are memoized per run."""

    def __init__(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        namespace: str = "",
    ) -> None:
        if not callable(func):
            raise TypeError(f"expected a function, got {type(func).__name__}")
        self.func = func
        self.name = _validate_name(name or getattr(func, "__name__", None), "task")
        self.namespace = _validate_namespace(namespace)
        functools.update_wrapper(self, func)

    @property
    def full_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}:{self.name}"
        return self.name

    def __call__(self, *args: Any, **kwargs: Any) -> "Future":
        from tasklift.scheduler import get_scheduler

        return get_scheduler().memoizer.invoke(self, args, kwargs)

    def get_result_for(self, *args: Any, **kwargs: Any) -> list[Any] | None:
        from tasklift.scheduler import get_scheduler

        return get_scheduler().memoizer.get_result_for(self, args, kwargs)

    def __add__(self, other: "Task | TaskSet") -> "TaskSet":
        return TaskSet(self) + other

    def __radd__(self, other: Any) -> "TaskSet":
        # Lets sum() build a TaskSet from a list of tasks.
        if other == 0:
            return TaskSet(self)
        return NotImplemented

    def __str__(self) -> str:
        return self.full_name

    def __repr__(self) -> str:
        return f"<Task {self.full_name}>"


class TaskSet:
    """An ordered set of tasks invoked together with the same arguments."""

    def __init__(self, *tasks: "Task | TaskSet") -> None:
        members: list[Task] = []
        for item in tasks:
            for member in item if isinstance(item, TaskSet) else (item,):
                if not isinstance(member, Task):
                    raise TypeError(f"expected a Task, got {type(member).__name__}")
                if all(existing is not member for existing in members):
                    members.append(member)
        self.tasks: tuple[Task, ...] = tuple(members)

    def __call__(self, *args: Any, **kwargs: Any) -> list["Future"]:
        return [member(*args, **kwargs) for member in self.tasks]

    def __add__(self, other: "Task | TaskSet") -> "TaskSet":
        return TaskSet(self, other)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)

    def __contains__(self, item: object) -> bool:
        return any(member is item for member in self.tasks)

    def __str__(self) -> str:
        return "task{" + ", ".join(sorted(member.full_name for member in self.tasks)) + "}"

    def __repr__(self) -> str:
        return f"<TaskSet {self}>"


@dataclass(frozen=True)
class MemoKey:
    """Identity of one execution: the task plus its canonical arguments."""

    task: Task
    args: tuple[Any, ...]
    kwargs: frozendict


class Memoizer:
    """Maps memo keys to futures, one routine per key per run.

    ``pre_spawn_hooks`` are called with each new node right before its
    routine is queued; ``on_ready_hooks`` are called with the node once its
    future resolves.
    """

    def __init__(self, scheduler: "Scheduler") -> None:
        self.scheduler = scheduler
        self.pre_spawn_hooks: list[NodeHook] = []
        self.on_ready_hooks: list[NodeHook] = []

    def key_for(self, task: Task, args: tuple[Any, ...], kwargs: dict[str, Any]) -> MemoKey:
        frozen_args, frozen_kwargs = canonical_arguments(task.func, args, kwargs)
        return MemoKey(task, frozen_args, frozen_kwargs)

    def invoke(self, task: Task, args: tuple[Any, ...], kwargs: dict[str, Any]) -> "Future":
        key = self.key_for(task, args, kwargs)
        scheduler = self.scheduler
        session = scheduler.session
        caller = scheduler.current_node()

        node = session.memo.get(key)
        if node is not None:
            if node.future is None:
                raise SchedulerError(f"memoized {node.describe()} has no future")
            if not node.future.is_ready():
                self._check_recursion(node, caller)
            if caller is not None:
                caller.add_callee(node)
            return node.future

        node = InvocationNode(
            task=task,
            args=args,
            kwargs=dict(kwargs),
            key=key,
            caller=caller,
            started_at=scheduler.loop.now(),
        )
        for hook in self.pre_spawn_hooks:
            hook(node)
        future = scheduler.spawn(
            task.func, args, kwargs, caller=caller, node=node, label=node.describe()
        )
        node.future = future
        session.memo[key] = node
        session.graph.add(node)
        future.on_ready(functools.partial(self._node_ready, node))
        logger.debug("spawned task %s", node)
        return future

    def _check_recursion(self, node: InvocationNode, caller: InvocationNode | None) -> None:
        """Raise if ``caller`` is reachable from the pending ``node``.

        Edges are every recorded invocation, cache hits included, but only
        through nodes whose futures are still pending.
        """
        if caller is None:
            return
        path = self._find_path(node, caller)
        if path is not None:
            cycle = [n.describe() for n in path]
            cycle.append(node.describe())
            raise RecursiveTaskInvocation(cycle)

    @staticmethod
    def _find_path(
        start: InvocationNode, target: InvocationNode
    ) -> list[InvocationNode] | None:
        stack: list[tuple[InvocationNode, list[InvocationNode]]] = [(start, [start])]
        visited: set[int] = set()
        while stack:
            current, path = stack.pop()
            if current is target:
                return path
            if id(current) in visited:
                continue
            visited.add(id(current))
            for callee in reversed(current.callees):
                if callee.future is not None and callee.future.is_ready():
                    continue
                stack.append((callee, path + [callee]))
        return None

    def _node_ready(self, node: InvocationNode) -> None:
        node.finished_at = self.scheduler.loop.now()
        for hook in self.on_ready_hooks:
            hook(node)

    def lookup(
        self, task: Task, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> InvocationNode | None:
        session: RunSession | None = self.scheduler.current_session
        if session is None:
            return None
        return session.memo.get(self.key_for(task, args, kwargs))

    def get_result_for(
        self, task: Task, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> list[Any] | None:
        """Results of a previous invocation in the current run, if any."""
        node = self.lookup(task, args, kwargs)
        if node is None or node.future is None:
            return None
        return node.future.get_results()


class TaskRegistry:
    """Registry of named tasks, used by the command line and other tooling."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def register(self, task: Task) -> Task:
        previous = self._tasks.get(task.full_name)
        if previous is not None and previous is not task:
            logger.debug("Replacing task %s", task.full_name)
        self._tasks[task.full_name] = task
        return task

    @overload
    def task(self, func: Callable[..., Any]) -> Task: ...

    @overload
    def task(
        self, func: None = None, *, name: str | None = None, namespace: str = ""
    ) -> Callable[[Callable[..., Any]], Task]: ...

    def task(
        self,
        func: Callable[..., Any] | None = None,
        *,
        name: str | None = None,
        namespace: str = "",
    ) -> Task | Callable[[Callable[..., Any]], Task]:
        def decorate(f: Callable[..., Any]) -> Task:
            return self.register(Task(f, name=name, namespace=namespace))

        if func is not None:
            return decorate(func)
        return decorate

    @staticmethod
    def normalize_name(name: str) -> str:
        """Accept ``ns:task``, ``ns.task``, ``:task`` and ``.task`` spellings."""
        name = name.strip()
        if ":" in name:
            namespace, _, short = name.rpartition(":")
        else:
            namespace, _, short = name.rpartition(".")
        namespace = namespace.strip(".:")
        return f"{namespace}:{short}" if namespace else short

    def get_task(self, name: str) -> Task:
        found = self._tasks.get(self.normalize_name(name))
        if found is None:
            raise TaskNotFound(name)
        return found

    def list_tasks(self, pattern: str | None = None) -> list[Task]:
        regex = re.compile(pattern) if pattern else None
        return [
            self._tasks[full_name]
            for full_name in sorted(self._tasks)
            if regex is None or regex.search(full_name)
        ]

    def task_set(self, names: Iterable[str]) -> TaskSet:
        return TaskSet(*(self.get_task(name) for name in names))

    def clear(self) -> None:
        self._tasks.clear()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.normalize_name(name) in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


registry = TaskRegistry()


def task(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    namespace: str = "",
) -> Task | Callable[[Callable[..., Any]], Task]:
    """Declare a task in the default registry (usable with or without arguments)."""
    return registry.task(func, name=name, namespace=namespace)


def get_task(name: str) -> Task:
    return registry.get_task(name)


def get_result_for(task: Task, *args: Any, **kwargs: Any) -> list[Any] | None:
    return task.get_result_for(*args, **kwargs)


__all__ = [
    "MemoKey",
    "Memoizer",
    "Task",
    "TaskRegistry",
    "TaskSet",
    "get_result_for",
    "get_task",
    "registry",
    "task",
]
