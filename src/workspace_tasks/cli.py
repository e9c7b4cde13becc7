"""Read-only command line views of a workspace task state directory.

Usage::

    workspace-tasks list --workspace ws-1 [--status blocked] [--json]
    workspace-tasks board --workspace ws-1
    workspace-tasks graph task-1a2b3c4d
    workspace-tasks events --workspace ws-1 --limit 20
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from .config import get_log_level, load_config
from .errors import WorkspaceTaskError
from .logging_utils import configure_logging
from .task_engine.projections import TaskFilter, TaskView
from .task_engine.store import TaskStore

STATUS_STYLES = {
    "todo": "white",
    "blocked": "red",
    "in_progress": "yellow",
    "in_review": "cyan",
    "done": "green",
    "cancelled": "dim",
}


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workspace-tasks",
        description="Workspace Tasks - inspect task lists, boards and dependencies",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List tasks of a workspace")
    _add_common(p_list)
    p_list.add_argument("--workspace", required=True, help="Workspace id")
    p_list.add_argument("--status", help="Effective status filter (e.g. blocked)")
    p_list.add_argument("--assignee", help="Only tasks assigned to this member")
    p_list.add_argument("--search", help="Substring match on title, description or id")
    p_list.add_argument("--all", action="store_true", help="Include cancelled tasks")

    p_board = sub.add_parser("board", help="Show the Kanban board of a workspace")
    _add_common(p_board)
    p_board.add_argument("--workspace", required=True, help="Workspace id")

    p_graph = sub.add_parser("graph", help="Show the dependency neighbourhood of a task")
    _add_common(p_graph)
    p_graph.add_argument("task_id", help="Task id")

    p_events = sub.add_parser("events", help="Show recent change events")
    _add_common(p_events)
    p_events.add_argument("--workspace", required=True, help="Workspace id")
    p_events.add_argument("--limit", type=int, default=20, help="Number of events (default: 20)")

    return parser


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _status_cell(view: TaskView) -> str:
    status = view.effective_status.value
    return f"[{STATUS_STYLES.get(status, 'white')}]{status}[/]"


def _list_command(store: TaskStore, args: argparse.Namespace, console: Console) -> int:
    views = store.list_tasks(args.workspace, TaskFilter(
        status=args.status,
        assignee_id=args.assignee,
        search=args.search,
        include_cancelled=bool(args.all),
    ))
    if args.json:
        _write_json({"workspace_id": args.workspace, "tasks": [v.to_dict() for v in views]})
        return 0

    table = Table(title=f"Tasks in {args.workspace}")
    table.add_column("ID", style="bold")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Assignees")
    table.add_column("Blocked by")
    for view in views:
        task = view.task
        table.add_row(
            task.id,
            task.title,
            _status_cell(view),
            f"{task.progress}%",
            ", ".join(task.assignee_ids),
            ", ".join(view.blocked_by),
        )
    console.print(table)
    return 0


def _board_command(store: TaskStore, args: argparse.Namespace, console: Console) -> int:
    columns = store.board_view(args.workspace)
    if args.json:
        _write_json({
            "workspace_id": args.workspace,
            "columns": {col: [v.to_dict() for v in views] for col, views in columns.items()},
        })
        return 0

    table = Table(title=f"Board for {args.workspace}")
    for col in columns:
        table.add_column(f"{col} ({len(columns[col])})", style=STATUS_STYLES.get(col))
    depth = max((len(views) for views in columns.values()), default=0)
    for row in range(depth):
        cells = []
        for views in columns.values():
            cells.append(f"{views[row].task.title}\n[dim]{views[row].id}[/dim]" if row < len(views) else "")
        table.add_row(*cells)
    console.print(table)
    return 0


def _graph_command(store: TaskStore, args: argparse.Namespace, console: Console) -> int:
    graph = store.dependency_graph(args.task_id)
    if args.json:
        _write_json({"task_id": args.task_id, "graph": graph})
        return 0
    table = Table(title=f"Dependencies around {args.task_id}")
    table.add_column("Task", style="bold")
    table.add_column("Depends on")
    for task_id, deps in graph.items():
        table.add_row(task_id, ", ".join(deps) or "-")
    console.print(table)
    return 0


def _events_command(store: TaskStore, args: argparse.Namespace, console: Console) -> int:
    events = store.recent_events(args.workspace, args.limit)
    if args.json:
        _write_json({"workspace_id": args.workspace, "events": events})
        return 0
    table = Table(title=f"Recent events in {args.workspace}")
    table.add_column("Time", style="dim")
    table.add_column("Kind")
    table.add_column("Task")
    table.add_column("Actor")
    for event in events:
        table.add_row(
            str(event.get("timestamp", "")),
            str(event.get("kind", "")),
            str(event.get("task_id", "")),
            str(event.get("actor_id", "")),
        )
    console.print(table)
    return 0


COMMANDS = {
    "list": _list_command,
    "board": _board_command,
    "graph": _graph_command,
    "events": _events_command,
}


def main(argv: list[str] | None = None) -> None:
    """Run the `workspace-tasks` CLI.

    Raises:
        SystemExit: Always, carrying the command's exit code.
    """
    args = _build_parser().parse_args(list(sys.argv[1:] if argv is None else argv))
    project_dir = args.project_dir.resolve()
    config, _ = load_config(project_dir)
    configure_logging(get_log_level(config))

    console = Console()
    store = TaskStore.from_project(project_dir)
    try:
        code = COMMANDS[args.command](store, args, console)
    except WorkspaceTaskError as exc:
        if args.json:
            _write_json(exc.to_dict())
        else:
            console.print(f"[red]Error:[/red] {exc}")
        code = 1
    finally:
        store.dispatcher.close()
    raise SystemExit(code)


if __name__ == "__main__":
    main()
