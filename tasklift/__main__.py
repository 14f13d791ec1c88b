from __future__ import annotations

import argparse
import importlib.util
import json
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from tasklift.errors import ErrorRecord, TaskliftError
from tasklift.future import Future
from tasklift.loop import create_loop
from tasklift.scheduler import Scheduler, use_scheduler
from tasklift.task import registry

DEFAULT_TASK_FILE = "taskfile.py"
DEFAULT_TASK = "default"


class TaskFileError(TaskliftError):
    """Raised when the task file cannot be found or imported."""

    kind = "task_file"


def load_task_file(path: str | Path) -> Any:
    """Import the task file so its ``@task`` declarations reach the registry."""
    task_path = Path(path)
    if not task_path.is_file():
        raise TaskFileError(f"task file not found: {task_path}", path=str(task_path))
    spec = importlib.util.spec_from_file_location(f"_tasklift_taskfile_{task_path.stem}", task_path)
    if spec is None or spec.loader is None:
        raise TaskFileError(f"cannot import task file {task_path}", path=str(task_path))
    module = importlib.util.module_from_spec(spec)
    parent = str(task_path.resolve().parent)
    if parent not in sys.path:
        sys.path.insert(0, parent)
    spec.loader.exec_module(module)
    return module


def _first_line(doc: str | None) -> str:
    if not doc:
        return ""
    return doc.strip().splitlines()[0]


def _record_payload(record: ErrorRecord) -> dict[str, Any]:
    details = {
        key: [_record_payload(item) for item in value]
        if key == "errors"
        else value
        for key, value in record.details.items()
    }
    return {"kind": record.kind, "message": record.message, "details": details}


def _report(futures: list[tuple[str, Future]], output_format: str) -> int:
    status = 0
    payload: list[dict[str, Any]] = []
    for name, future in futures:
        entry: dict[str, Any] = {"task": name}
        if not future.is_ready():
            entry["status"] = "abandoned"
            status = 1
        elif future.failed:
            entry["status"] = "failed"
            entry["error"] = _record_payload(ErrorRecord.from_exception(future.get_error()))
            status = 1
        else:
            entry["status"] = "ok"
            entry["results"] = future.get_results()
        payload.append(entry)

    if output_format == "json":
        print(json.dumps(payload, default=repr))
        return status
    for entry in payload:
        match entry["status"]:
            case "ok":
                for value in entry["results"]:
                    print(value)
            case "failed":
                print(f"{entry['task']} failed: {entry['error']['message']}", file=sys.stderr)
            case _:
                print(f"{entry['task']} did not finish", file=sys.stderr)
    return status


def _execute(args: argparse.Namespace, invocations: list[tuple[str, tuple[Any, ...]]]) -> int:
    load_task_file(args.file)
    tasks = [(name, registry.get_task(name), call_args) for name, call_args in invocations]
    scheduler = Scheduler(loop=create_loop(args.loop))
    with use_scheduler(scheduler):
        futures = [(name, task(*call_args)) for name, task, call_args in tasks]
        scheduler.run()
        status = _report(futures, args.format)
        if args.graph and scheduler.graph is not None:
            scheduler.graph.write_snapshot(args.graph)
        scheduler.check_errors()
    return status


def handle_list(args: argparse.Namespace) -> int:
    load_task_file(args.file)
    tasks = registry.list_tasks(args.pattern)
    if args.format == "json":
        print(json.dumps([{"name": t.full_name, "doc": _first_line(t.__doc__)} for t in tasks]))
        return 0
    width = max((len(t.full_name) for t in tasks), default=0)
    for t in tasks:
        summary = _first_line(t.__doc__)
        print(f"{t.full_name:<{width}}  {summary}".rstrip())
    return 0


def handle_run(args: argparse.Namespace) -> int:
    names = args.tasks or [DEFAULT_TASK]
    return _execute(args, [(name, ()) for name in names])


def handle_call(args: argparse.Namespace) -> int:
    return _execute(args, [(args.task, tuple(args.args))])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tasklift", description="Run tasks declared in a task file")
    parser.add_argument(
        "--file",
        "-f",
        default=DEFAULT_TASK_FILE,
        help=f"Python file declaring the tasks (default: {DEFAULT_TASK_FILE})",
    )
    parser.add_argument(
        "--loop",
        choices=["realtime", "simulated"],
        default="realtime",
        help="Event loop driving the scheduler",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )
    parser.add_argument(
        "--graph",
        default=None,
        help="Write a JSON snapshot of the invocation graph to this path",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List declared tasks")
    list_parser.add_argument("pattern", nargs="?", default=None, help="Regular expression filter")
    list_parser.set_defaults(func=handle_list)

    run_parser = subparsers.add_parser(
        "run",
        help="Run tasks without arguments",
        description=f"Run the given tasks, or '{DEFAULT_TASK}' when none is named.",
    )
    run_parser.add_argument("tasks", nargs="*", help="Task names (ns:name, ns.name or name)")
    run_parser.set_defaults(func=handle_run)

    call_parser = subparsers.add_parser(
        "call",
        help="Call one task with string arguments and print its results",
    )
    call_parser.add_argument("task", help="Task name")
    call_parser.add_argument("args", nargs="*", help="Positional arguments passed as strings")
    call_parser.set_defaults(func=handle_call)

    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return args.func(args)
    except Exception as exc:
        if args.format == "json":
            print(json.dumps({"status": "error", **_record_payload(ErrorRecord.from_exception(exc))}, default=repr))
        else:
            print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
