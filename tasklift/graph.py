"""Invocation graph of a run.

Every memoized task invocation becomes an :class:`InvocationNode`.  Edges go
from the invoking node to the invoked one and are recorded with the caller's
identity at spawn time.  The core only maintains this data; external tooling
renders it from :meth:`InvocationGraph.snapshot`.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from tasklift.future import Future
    from tasklift.task import MemoKey, Task


@dataclass(eq=False)
class InvocationNode:
    """One (task, arguments) execution within a run."""

    task: "Task"
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    key: "MemoKey"
    caller: "InvocationNode | None" = None
    future: "Future | None" = field(default=None, repr=False)
    callees: list["InvocationNode"] = field(default_factory=list, repr=False)
    started_at: float = 0.0
    finished_at: float | None = None

    @property
    def is_root(self) -> bool:
        return self.caller is None

    @property
    def elapsed(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def status(self) -> str:
        if self.future is None:
            return "pending"
        return self.future.status.value

    def add_callee(self, node: "InvocationNode") -> None:
        if all(existing is not node for existing in self.callees):
            self.callees.append(node)

    def describe(self) -> str:
        parts = [repr(arg) for arg in self.args]
        parts.extend(f"{key}={value!r}" for key, value in self.kwargs.items())
        return f"{self.task.full_name}({', '.join(parts)})"

    def __str__(self) -> str:
        return self.describe()


class InvocationGraph:
    """Nodes of one run session, in spawn order."""

    def __init__(self) -> None:
        self._nodes: list[InvocationNode] = []

    def add(self, node: InvocationNode) -> None:
        self._nodes.append(node)
        if node.caller is not None:
            node.caller.add_callee(node)

    def nodes(self) -> list[InvocationNode]:
        return list(self._nodes)

    def roots(self) -> list[InvocationNode]:
        return [node for node in self._nodes if node.is_root]

    def walk(self) -> Iterator[tuple[int, InvocationNode]]:
        """Yield ``(depth, node)`` pairs depth-first from every root."""
        stack = [(0, node) for node in reversed(self.roots())]
        seen: set[int] = set()
        while stack:
            depth, node = stack.pop()
            yield depth, node
            if id(node) in seen:
                continue
            seen.add(id(node))
            stack.extend((depth + 1, child) for child in reversed(node.callees))

    def snapshot(self) -> dict[str, Any]:
        """Build a JSON-compatible description of the graph."""
        ids = {id(node): index for index, node in enumerate(self._nodes, start=1)}
        nodes = [
            {
                "id": ids[id(node)],
                "label": node.describe(),
                "task": node.task.full_name,
                "status": node.status,
                "started_at": node.started_at,
                "elapsed": node.elapsed,
                "root": node.is_root,
            }
            for node in self._nodes
        ]
        edges = [
            {"from": ids[id(node)], "to": ids[id(callee)]}
            for node in self._nodes
            for callee in node.callees
            if id(callee) in ids
        ]
        return {"nodes": nodes, "edges": edges}

    def write_snapshot(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")
        logger.info("Invocation graph snapshot saved to {}", output_path)
        return output_path

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[InvocationNode]:
        return iter(list(self._nodes))


__all__ = ["InvocationGraph", "InvocationNode"]
