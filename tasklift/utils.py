"""
Utility functions for the tasklift library.
"""

from __future__ import annotations

import hashlib
import inspect
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import cloudpickle
from frozendict import frozendict

# Environment variable to control routine tracing
DEBUG_ROUTINES = os.environ.get("TASKLIFT_DEBUG", "").lower() in ("1", "true", "yes")

# Event loop used by the process-default scheduler: "realtime" or "simulated"
DEFAULT_LOOP = os.environ.get("TASKLIFT_LOOP", "realtime").strip().lower() or "realtime"


@dataclass(frozen=True)
class PickledArg:
    """Stand-in for an unhashable argument, compared by content digest."""

    type_name: str
    digest: str


def _pickled(value: Any) -> PickledArg:
    try:
        payload = cloudpickle.dumps(value)
    except Exception as exc:
        raise TypeError(
            f"cannot use {type(value).__name__} value as a task argument: {exc}"
        ) from exc
    return PickledArg(type(value).__name__, hashlib.sha256(payload).hexdigest())


def freeze(value: Any) -> Any:
    """Return a hashable snapshot of ``value`` that compares by value.

    Mappings become ``frozendict``, lists and tuples become tuples and sets
    become ``frozenset``.  Leaves that cannot be hashed are replaced by a
    digest of their pickled form.
    """
    if isinstance(value, Mapping):
        return frozendict({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    try:
        hash(value)
    except TypeError:
        return _pickled(value)
    return value


def canonical_arguments(
    func: Callable[..., Any], args: tuple[Any, ...], kwargs: Mapping[str, Any]
) -> tuple[tuple[Any, ...], frozendict]:
    """Bind ``args``/``kwargs`` to ``func``'s signature and freeze them.

    Binding through the signature makes ``f(1)`` and ``f(x=1)`` (and calls
    relying on defaults) produce the same canonical form.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        signature = None
    if signature is not None:
        bound = signature.bind(*args, **kwargs)
        bound.apply_defaults()
        args, kwargs = bound.args, bound.kwargs
    return freeze(tuple(args)), frozendict(
        {key: freeze(item) for key, item in kwargs.items()}
    )


def as_results(value: Any) -> list[Any]:
    """Turn a routine's return value into its results list."""
    if value is None:
        return []
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _short_path(path: str) -> str:
    try:
        path = os.path.relpath(path)
    except ValueError:
        pass
    return path.replace("\\", "/")


def describe_callable(func: Any) -> str:
    code = getattr(func, "__code__", None)
    if code is None:
        return repr(func)
    return f"function<{_short_path(code.co_filename)}:{code.co_firstlineno}>"


def describe_call(
    prefix: str,
    func: Any,
    args: tuple[Any, ...] = (),
    kwargs: Mapping[str, Any] | None = None,
) -> str:
    parts = [describe_callable(func)]
    parts.extend(repr(arg) for arg in args)
    parts.extend(f"{key}={item!r}" for key, item in (kwargs or {}).items())
    return f"{prefix}({', '.join(parts)})"


__all__ = [
    "DEBUG_ROUTINES",
    "DEFAULT_LOOP",
    "PickledArg",
    "as_results",
    "canonical_arguments",
    "describe_call",
    "describe_callable",
    "freeze",
]
