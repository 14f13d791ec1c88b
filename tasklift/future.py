"""Single-assignment result cells.

A :class:`Future` is created by the scheduler for every routine it spawns and
is resolved exactly once, when the routine returns or raises.  Failed futures
are tracked in their run session's unchecked-error set until somebody reads
the error.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from tasklift.errors import AlreadyConsuming, NotReady, SchedulerError
from tasklift.utils import describe_call

if TYPE_CHECKING:
    from tasklift.routine import Routine


class FutureStatus(Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"


class Future:
    """Eventual outcome of one routine.

    ``results`` is the list of values returned by the routine (a returned
    tuple is spread, ``None`` gives an empty list).  Reading ``results`` or
    ``value`` on a failed future raises its error at the reader's call site.
    """

    def __init__(
        self,
        func: Callable[..., Any] | None = None,
        args: tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
        *,
        unchecked: dict["Future", None] | None = None,
        label: str | None = None,
    ) -> None:
        self.func = func
        self.args = args
        self.kwargs = dict(kwargs or {})
        self.status = FutureStatus.PENDING
        self.checked = False
        self.routine: Routine | None = None
        self._label = label
        self._results: list[Any] | None = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[], Any]] = []
        self._draining = False
        self._unchecked = unchecked if unchecked is not None else {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self.status is not FutureStatus.PENDING

    @property
    def failed(self) -> bool:
        return self.status is FutureStatus.FAILED

    @property
    def fulfilled(self) -> bool:
        return self.status is FutureStatus.FULFILLED

    def get_results(self) -> list[Any]:
        if self.status is FutureStatus.FULFILLED:
            if self._results is None:
                raise SchedulerError(f"{self} is fulfilled without results", future=str(self))
            return list(self._results)
        if self.status is FutureStatus.FAILED:
            raise self.get_error()
        raise NotReady(f"{self} is not ready", future=str(self))

    @property
    def results(self) -> list[Any]:
        return self.get_results()

    @property
    def value(self) -> Any:
        results = self.get_results()
        return results[0] if results else None

    def get_error(self) -> BaseException | None:
        error = self._error
        if error is not None:
            self.checked = True
            self._unchecked.pop(self, None)
        return error

    @property
    def error(self) -> BaseException | None:
        return self.get_error()

    def check_error(self) -> None:
        """Raise the stored error, if there is one."""
        error = self.get_error()
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_ready(self, callback: Callable[[], Any]) -> None:
        if self._draining:
            raise AlreadyConsuming(
                f"cannot register a callback on {self} while its callbacks run",
                future=str(self),
            )
        if self.is_ready():
            callback()
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], Any]) -> None:
        """Unregister a pending callback; unknown callbacks are ignored."""
        self._callbacks = [cb for cb in self._callbacks if cb is not callback]

    @property
    def pending_callbacks(self) -> int:
        return len(self._callbacks)

    # ------------------------------------------------------------------
    # Resolution (scheduler only)
    # ------------------------------------------------------------------

    def _fulfill(self, results: list[Any]) -> None:
        self._ensure_pending()
        self._results = list(results)
        self.status = FutureStatus.FULFILLED
        self._drain()

    def _fail(self, error: BaseException) -> None:
        self._ensure_pending()
        self._error = error
        self.status = FutureStatus.FAILED
        self._unchecked[self] = None
        self._drain()

    def _ensure_pending(self) -> None:
        if self.status is not FutureStatus.PENDING:
            raise SchedulerError(
                f"{self} was resolved twice", future=str(self), status=self.status.value
            )

    def _drain(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        self._draining = True
        try:
            for callback in callbacks:
                try:
                    callback()
                except Exception as exc:
                    raise SchedulerError(
                        f"error in on_ready callback of {self}: {exc}",
                        future=str(self),
                    ) from exc
        finally:
            self._draining = False

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        if self._label is not None:
            return self._label
        return describe_call("async", self.func, self.args, self.kwargs)

    def __repr__(self) -> str:
        return f"<Future {self} status={self.status.value}>"


__all__ = ["Future", "FutureStatus"]
