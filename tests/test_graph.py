"""Tests for the invocation graph recorded by the memoizer."""

from __future__ import annotations

import json
from pathlib import Path

from tasklift import Scheduler, SimulatedLoop, async_, roots, run, sleep, task, wait_all


class TestInvocationGraph:
    def test_roots_and_callees(self, scheduler: Scheduler) -> None:
        @task
        def compile(name):
            yield sleep(100)
            return f"{name}.o"

        @task
        def build():
            yield wait_all([compile("a"), compile("b")])

        build()
        run()

        (root,) = roots()
        assert root.describe() == "build()"
        assert root.is_root
        assert [c.describe() for c in root.callees] == ["compile('a')", "compile('b')"]
        assert all(c.caller is root for c in root.callees)

    def test_timing_is_recorded(self, scheduler: Scheduler) -> None:
        @task
        def slow():
            yield sleep(250)

        @task
        def outer():
            yield sleep(50)
            yield slow()

        outer()
        run()

        (root,) = roots()
        (child,) = root.callees
        assert root.started_at == 0
        assert root.elapsed == 300
        assert child.started_at == 50
        assert child.elapsed == 250
        assert child.status == "fulfilled"

    def test_memo_hit_adds_edge_from_second_caller(self, scheduler: Scheduler) -> None:
        @task
        def shared():
            return "s"

        @task
        def left():
            yield shared()

        @task
        def right():
            yield shared()

        left()
        right()
        run()

        graph = scheduler.graph
        assert graph is not None
        assert len(graph) == 3
        left_node, right_node = roots()
        assert left_node.callees == right_node.callees
        assert left_node.callees[0].caller is left_node

    def test_edges_follow_the_spawning_task(self, scheduler: Scheduler) -> None:
        @task
        def leaf():
            return 1

        def helper():
            (value,) = yield leaf()
            return value

        @task
        def top():
            (value,) = yield async_(helper)
            return value

        future = top()
        run()

        assert future.value == 1
        (root,) = roots()
        (child,) = root.callees
        assert child.describe() == "leaf()"
        assert child.caller is root

    def test_walk_yields_depths(self, scheduler: Scheduler) -> None:
        @task
        def c():
            pass

        @task
        def b():
            yield c()

        @task
        def a():
            yield b()

        a()
        run()

        assert [(depth, node.describe()) for depth, node in scheduler.graph.walk()] == [
            (0, "a()"),
            (1, "b()"),
            (2, "c()"),
        ]

    def test_snapshot(self, scheduler: Scheduler, tmp_path: Path) -> None:
        @task
        def dep(n):
            return n

        @task
        def main():
            yield wait_all([dep(1), dep(2)])

        main()
        run()

        snapshot = scheduler.graph.snapshot()
        assert [n["label"] for n in snapshot["nodes"]] == ["main()", "dep(1)", "dep(2)"]
        assert snapshot["edges"] == [{"from": 1, "to": 2}, {"from": 1, "to": 3}]
        assert snapshot["nodes"][0]["root"] is True

        path = scheduler.graph.write_snapshot(tmp_path / "graphs" / "run.json")
        assert json.loads(path.read_text()) == snapshot

    def test_roots_empty_before_first_run(self) -> None:
        assert Scheduler(loop=SimulatedLoop()).roots() == []
