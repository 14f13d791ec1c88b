"""Tests for tasks, task sets, memoization and the registry."""

from __future__ import annotations

import pytest

from tasklift import (
    AggregateError,
    InvocationNode,
    RecursiveTaskInvocation,
    Scheduler,
    SchedulerError,
    SimulatedLoop,
    Task,
    TaskNotFound,
    TaskRegistry,
    TaskSet,
    get_result_for,
    get_task,
    registry,
    run,
    sleep,
    task,
    wait_all,
)


class TestMemoization:
    """A (task, arguments) pair executes at most once per run."""

    def test_same_arguments_share_one_future(self, scheduler: Scheduler) -> None:
        calls: list[int] = []

        @task
        def square(x):
            calls.append(x)
            return x * x

        first = square(3)
        second = square(3)
        run()

        assert first is second
        assert first.value == 9
        assert calls == [3]

    def test_positional_and_keyword_calls_match(self, scheduler: Scheduler) -> None:
        @task
        def compile(target, optimize=False):
            return target

        assert compile("a") is compile(target="a")
        assert compile("a") is compile("a", False)
        assert compile("a") is not compile("a", optimize=True)

    def test_container_arguments_compare_by_value(self, scheduler: Scheduler) -> None:
        @task
        def configure(options):
            return len(options)

        assert configure({"flags": ["-O2"]}) is configure({"flags": ["-O2"]})
        assert configure({"flags": ["-O2"]}) is not configure({"flags": ["-O3"]})

    def test_memo_spans_routines(self, scheduler: Scheduler, loop: SimulatedLoop) -> None:
        calls: list[str] = []

        @task
        def fetch(name):
            calls.append(name)
            yield sleep(100)
            return name.upper()

        @task
        def left():
            (value,) = yield fetch("dep")
            return value

        @task
        def right():
            (value,) = yield fetch("dep")
            return value

        futures = [left(), right()]
        run()

        assert [f.value for f in futures] == ["DEP", "DEP"]
        assert calls == ["dep"]
        assert loop.now() == 100

    def test_fibonacci_runs_each_argument_once(self, scheduler: Scheduler) -> None:
        calls: list[int] = []

        @task
        def fib(n):
            calls.append(n)
            if n < 2:
                return n
            (a,) = yield fib(n - 1)
            (b,) = yield fib(n - 2)
            return a + b

        future = fib(15)
        run()

        assert future.value == 610
        assert sorted(calls) == list(range(16))

    def test_memo_is_scoped_to_a_run(self, scheduler: Scheduler) -> None:
        calls: list[int] = []

        @task
        def once(x):
            calls.append(x)
            return x

        first = once(1)
        run()
        second = once(1)
        run()

        assert first is not second
        assert calls == [1, 1]

    def test_get_result_for(self, scheduler: Scheduler) -> None:
        @task
        def double(x):
            return x * 2

        assert get_result_for(double, 2) is None
        double(2)
        run()

        assert get_result_for(double, 2) == [4]
        assert double.get_result_for(x=2) == [4]
        assert get_result_for(double, 3) is None

    def test_memo_entry_without_future_is_fatal(self, scheduler: Scheduler) -> None:
        @task
        def lonely():
            return 1

        key = scheduler.memoizer.key_for(lonely, (), {})
        scheduler.session.memo[key] = InvocationNode(task=lonely, args=(), kwargs={}, key=key)

        with pytest.raises(SchedulerError, match="has no future"):
            lonely()


class TestRecursion:
    def test_direct_recursion_is_reported(self, scheduler: Scheduler) -> None:
        @task
        def forever(n):
            yield forever(n)

        future = forever(1)
        run()

        error = future.error
        assert isinstance(error, RecursiveTaskInvocation)
        assert str(error) == "task invoked itself recursively: forever(1) -> forever(1)"

    def test_indirect_recursion_names_the_cycle(self, scheduler: Scheduler) -> None:
        @task
        def ping():
            yield pong()

        @task
        def pong():
            yield ping()

        future = ping()
        run()

        error = future.error
        assert isinstance(error, RecursiveTaskInvocation)
        assert error.details["cycle"] == ["ping()", "pong()", "ping()"]

    def test_cycle_through_a_cached_call_is_reported(self, scheduler: Scheduler) -> None:
        @task
        def build():
            ok, error = yield wait_all([package(), release()])
            return error

        @task
        def package():
            yield artifact()

        @task
        def release():
            yield artifact()

        @task
        def artifact():
            yield sleep(5)
            yield release()

        future = build()
        run()

        error = future.value
        assert isinstance(error, AggregateError)
        causes = error.errors
        assert len(causes) == 2
        assert all(isinstance(cause, RecursiveTaskInvocation) for cause in causes)
        assert causes[0].details["cycle"] == ["release()", "artifact()", "release()"]
        assert all(node.future.is_ready() for node in scheduler.graph.nodes())


class TestTaskSets:
    def test_calling_a_set_returns_one_future_per_member(self, scheduler: Scheduler) -> None:
        @task
        def lint(path):
            return f"lint {path}"

        @task
        def test(path):
            return f"test {path}"

        checks = lint + test
        futures = checks("src")
        assert futures[0] is lint("src")
        run()

        assert [f.value for f in futures] == ["lint src", "test src"]

    def test_members_are_unique_and_ordered(self) -> None:
        @task
        def b():
            pass

        @task
        def a():
            pass

        combined = b + a + b

        assert list(combined) == [b, a]
        assert str(combined) == "task{a, b}"
        assert a in combined
        assert sum([a, b]).tasks == (a, b)

    def test_only_tasks_can_be_members(self) -> None:
        with pytest.raises(TypeError):
            TaskSet(lambda: None)


class TestTaskNames:
    def test_name_defaults_to_function_name(self) -> None:
        def build():
            pass

        assert Task(build).name == "build"

    @pytest.mark.parametrize("name", ["1st", "has-dash", "", "with space"])
    def test_invalid_names_are_rejected(self, name: str) -> None:
        with pytest.raises(ValueError):
            Task(lambda: None, name=name)

    def test_lambda_needs_explicit_name(self) -> None:
        with pytest.raises(ValueError):
            Task(lambda: None)
        assert Task(lambda: None, name="anon").name == "anon"

    def test_namespaced_full_name(self) -> None:
        @task(namespace="build")
        def compile():
            """Compile sources."""

        assert compile.full_name == "build:compile"
        assert str(compile) == "build:compile"
        assert compile.__doc__ == "Compile sources."


class TestRegistry:
    def test_lookup_spellings(self) -> None:
        @task(namespace="build")
        def compile():
            pass

        assert get_task("build:compile") is compile
        assert get_task("build.compile") is compile
        assert "build:compile" in registry

    def test_unknown_task(self) -> None:
        with pytest.raises(TaskNotFound, match="no such task 'nope'") as excinfo:
            get_task("nope")
        assert isinstance(excinfo.value, LookupError)
        assert excinfo.value.record().kind == "task_not_found"

    def test_list_tasks_is_sorted_and_filtered(self) -> None:
        local = TaskRegistry()

        @local.task
        def zip_files():
            pass

        @local.task(namespace="docs")
        def publish():
            pass

        @local.task
        def archive():
            pass

        assert [t.full_name for t in local.list_tasks()] == [
            "archive",
            "docs:publish",
            "zip_files",
        ]
        assert [t.full_name for t in local.list_tasks("^docs")] == ["docs:publish"]
        assert len(local) == 3
        assert len(registry) == 0

    def test_task_set_from_names(self) -> None:
        @task
        def one():
            pass

        @task
        def two():
            pass

        assert list(registry.task_set(["two", "one"])) == [two, one]


class TestHooks:
    def test_pre_spawn_and_ready_hooks(self, scheduler: Scheduler) -> None:
        events: list[str] = []
        scheduler.memoizer.pre_spawn_hooks.append(lambda node: events.append(f"spawn {node}"))
        scheduler.memoizer.on_ready_hooks.append(lambda node: events.append(f"ready {node}"))

        @task
        def step(n):
            yield sleep(n)

        step(5)
        step(5)
        run()

        assert events == ["spawn step(5)", "ready step(5)"]
