"""Tests for Future resolution, callbacks and error accounting."""

from __future__ import annotations

import pytest

from tasklift import AlreadyConsuming, Future, FutureStatus, NotReady, SchedulerError


def sample_function(value):
    return value


class TestFutureResolution:
    def test_pending_future_has_no_results(self) -> None:
        future = Future()

        assert not future.is_ready()
        assert future.status is FutureStatus.PENDING
        with pytest.raises(NotReady):
            future.get_results()

    def test_fulfilled_results_and_value(self) -> None:
        future = Future()
        future._fulfill([1, 2])

        assert future.is_ready()
        assert future.fulfilled
        assert future.results == [1, 2]
        assert future.value == 1
        assert future.get_error() is None

    def test_empty_results_value_is_none(self) -> None:
        future = Future()
        future._fulfill([])

        assert future.results == []
        assert future.value is None

    def test_second_resolution_is_fatal(self) -> None:
        future = Future()
        future._fulfill([1])

        with pytest.raises(SchedulerError):
            future._fail(ValueError("late"))
        assert future.results == [1]

    def test_fulfilled_without_results_is_fatal(self) -> None:
        future = Future()
        future.status = FutureStatus.FULFILLED

        with pytest.raises(SchedulerError, match="without results"):
            future.get_results()

    def test_results_of_failed_future_raise_its_error(self) -> None:
        future = Future()
        error = ValueError("boom")
        future._fail(error)

        with pytest.raises(ValueError, match="boom") as excinfo:
            future.get_results()
        assert excinfo.value is error

    def test_check_error(self) -> None:
        ok = Future()
        ok._fulfill([])
        ok.check_error()

        failed = Future()
        failed._fail(KeyError("missing"))
        with pytest.raises(KeyError):
            failed.check_error()


class TestUncheckedTracking:
    """A failed future stays in the unchecked set until its error is read."""

    def test_failure_registers_as_unchecked(self) -> None:
        unchecked: dict[Future, None] = {}
        future = Future(unchecked=unchecked)
        future._fail(RuntimeError("x"))

        assert list(unchecked) == [future]
        assert not future.checked

    def test_reading_error_marks_checked(self) -> None:
        unchecked: dict[Future, None] = {}
        future = Future(unchecked=unchecked)
        future._fail(RuntimeError("x"))

        assert isinstance(future.error, RuntimeError)
        assert future.checked
        assert unchecked == {}

    def test_fulfilled_future_is_never_unchecked(self) -> None:
        unchecked: dict[Future, None] = {}
        future = Future(unchecked=unchecked)
        future._fulfill([1])

        assert unchecked == {}


class TestCallbacks:
    def test_callbacks_run_in_registration_order(self) -> None:
        future = Future()
        seen: list[str] = []
        future.on_ready(lambda: seen.append("first"))
        future.on_ready(lambda: seen.append("second"))

        assert seen == []
        future._fulfill([])
        assert seen == ["first", "second"]

    def test_callback_on_ready_future_runs_immediately(self) -> None:
        future = Future()
        future._fulfill([])
        seen: list[int] = []

        future.on_ready(lambda: seen.append(1))

        assert seen == [1]

    def test_registering_while_draining_is_rejected(self) -> None:
        future = Future()
        future.on_ready(lambda: future.on_ready(lambda: None))

        with pytest.raises(SchedulerError) as excinfo:
            future._fulfill([])
        assert isinstance(excinfo.value.__cause__, AlreadyConsuming)

    def test_removed_callback_does_not_run(self) -> None:
        future = Future()
        seen: list[str] = []

        def kept() -> None:
            seen.append("kept")

        def removed() -> None:
            seen.append("removed")

        future.on_ready(removed)
        future.on_ready(kept)
        future.remove_callback(removed)
        future.remove_callback(lambda: None)

        assert future.pending_callbacks == 1
        future._fulfill([])
        assert seen == ["kept"]


class TestPresentation:
    def test_label_is_used_when_given(self) -> None:
        assert str(Future(label="compile('a')")) == "compile('a')"

    def test_description_names_function_location_and_arguments(self) -> None:
        future = Future(sample_function, (1337,))

        text = str(future)
        assert text.startswith("async(function<")
        assert "test_future.py:" in text
        assert text.endswith(", 1337)")
