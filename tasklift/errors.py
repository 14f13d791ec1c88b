"""Error taxonomy for tasklift.

Every error that crosses the core's boundary is a structured value: it has a
``kind``, a human readable ``message`` and optional ``details``.  Diagnostics
consumers should call :meth:`TaskliftError.record` (or
:meth:`ErrorRecord.from_exception` for arbitrary exceptions) rather than
parsing ``str(error)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tasklift.future import Future


@dataclass(frozen=True)
class ErrorRecord:
    """Structured description of a failure, suitable for reporting."""

    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    cause: BaseException | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorRecord":
        if isinstance(error, TaskliftError):
            return error.record()
        return cls(
            kind="task_error",
            message=str(error) or type(error).__name__,
            details={"type": type(error).__name__},
            cause=error,
        )


class TaskliftError(Exception):
    """Base class of every error raised by the tasklift core."""

    kind = "error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def record(self) -> ErrorRecord:
        return ErrorRecord(
            kind=self.kind,
            message=self.message,
            details=dict(self.details),
            cause=self,
        )


class SchedulerError(TaskliftError):
    """Raised when the scheduler's own bookkeeping is corrupt.

    These errors are fatal: they abort :meth:`Scheduler.run`.
    """

    kind = "fatal"


class NotReady(TaskliftError):
    """Raised when the results of a pending future are requested."""

    kind = "not_ready"


class AlreadyConsuming(TaskliftError):
    """Raised when a callback is registered while callbacks are being drained."""

    kind = "already_consuming"


class NotInRoutine(TaskliftError):
    """Raised when a suspension primitive is called outside a routine."""

    kind = "not_in_routine"

    def __init__(self, primitive: str) -> None:
        super().__init__(
            f"{primitive}() must be called from within a tasklift routine; "
            "the main thread cannot block",
            primitive=primitive,
        )


class SelfWait(TaskliftError):
    """Raised when a routine waits for its own future."""

    kind = "self_wait"

    def __init__(self, future: "Future") -> None:
        super().__init__("future cannot wait for itself", future=str(future))


class RecursiveTaskInvocation(TaskliftError):
    """Raised when a task invokes itself (transitively) with the same arguments."""

    kind = "recursive_task"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            "task invoked itself recursively: " + " -> ".join(cycle),
            cycle=list(cycle),
        )


class TaskNotFound(TaskliftError, LookupError):
    """Raised by registry lookups for unknown task names."""

    kind = "task_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"no such task '{name}'", name=name)


class AggregateError(TaskliftError):
    """Combines the failures of several futures into a single error.

    Reading :attr:`errors` counts as examining every underlying failure.
    """

    kind = "aggregate"

    def __init__(self, label: str, futures: list["Future"]) -> None:
        self._futures = list(futures)
        messages = [str(f._error) for f in self._futures]
        count = len(messages)
        header = f"{label} caught {count} error{'' if count == 1 else 's'}"
        super().__init__(
            "\n  ".join([header + ":", *messages]),
            count=count,
        )

    @property
    def futures(self) -> list["Future"]:
        return list(self._futures)

    @property
    def errors(self) -> list[BaseException]:
        return [f.get_error() for f in self._futures]

    def acknowledge(self) -> None:
        """Mark every underlying failure as examined."""
        for future in self._futures:
            future.get_error()

    def record(self) -> ErrorRecord:
        base = super().record()
        base.details["errors"] = [
            ErrorRecord.from_exception(f._error) for f in self._futures
        ]
        return base

    def __len__(self) -> int:
        return len(self._futures)


class UncheckedErrors(TaskliftError):
    """Raised by ``check_errors()`` when failures were never examined."""

    kind = "unchecked"

    def __init__(self, errors: list[BaseException]) -> None:
        self.errors = list(errors)
        count = len(self.errors)
        header = f"{count} unchecked async error{'' if count == 1 else 's'}"
        super().__init__(
            "\n  ".join([header + ":", *(str(e) for e in self.errors)]),
            count=count,
        )

    def record(self) -> ErrorRecord:
        base = super().record()
        base.details["errors"] = [ErrorRecord.from_exception(e) for e in self.errors]
        return base


__all__ = [
    "AggregateError",
    "AlreadyConsuming",
    "ErrorRecord",
    "NotInRoutine",
    "NotReady",
    "RecursiveTaskInvocation",
    "SchedulerError",
    "SelfWait",
    "TaskNotFound",
    "TaskliftError",
    "UncheckedErrors",
]
