"""Main CLI entry point using Typer."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taskhero import __version__
from taskhero.core.config import CycleBreakStrategy, get_settings
from taskhero.core.log import configure_logging
from taskhero.core.service import OperationResult, TaskHero

app = typer.Typer(
    name="taskhero",
    help="TaskHero - dependency-aware task tracking driven by PRDs",
    add_completion=True,
    rich_markup_mode="rich",
)
prd_app = typer.Typer(help="Track PRD files and sync their lifecycle status.")
app.add_typer(prd_app, name="prd")

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "in-progress": "blue",
    "done": "green",
    "review": "magenta",
    "blocked": "red",
    "deferred": "dim",
    "cancelled": "dim strike",
    "archived": "dim",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]TaskHero[/bold blue] version {__version__}")
        raise typer.Exit()


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _emit(ctx: typer.Context, result: OperationResult, render: Callable[[dict[str, Any]], None]) -> None:
    """Print a result as JSON or through ``render``; exit non-zero on failure."""
    if ctx.obj["json"]:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        if not result.success:
            raise typer.Exit(1)
        return

    if not result.success:
        error = result.error or {}
        ids = error.get("ids") or []
        suffix = f" [dim]({', '.join(ids)})[/dim]" if ids else ""
        console.print(f"[bold red]{error.get('kind')}:[/bold red] {error.get('message')}{suffix}")
        raise typer.Exit(1)

    render(result.data or {})


def _hero(ctx: typer.Context) -> TaskHero:
    return ctx.obj["hero"]


@app.callback()
def main(
    ctx: typer.Context,
    project: Path | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Project root (defaults to TASKHERO_PROJECT_ROOT or the current directory)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the raw operation result as JSON.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug logging",
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    TaskHero - plan, validate and sequence development tasks.

    Tasks live in a JSON snapshot; PRD files are tracked in a registry and
    moved through pending/in-progress/done/archived as their tasks progress.
    """
    settings = get_settings()
    updates: dict[str, Any] = {}
    if project is not None:
        updates["project_root"] = project.resolve()
    if debug:
        updates["debug"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings)
    ctx.obj = {"hero": TaskHero(settings), "json": json_output}


# =============================================================================
# TASK COMMANDS
# =============================================================================


def _render_task_table(tasks: list[dict[str, Any]], title: str) -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Dependencies", style="dim")
    table.add_column("Subtasks", justify="right")
    for task in tasks:
        table.add_row(
            task["id"],
            task["title"],
            _styled(task["status"]),
            task["priority"],
            ", ".join(task["dependencies"]) or "-",
            str(task["subtaskCount"]),
        )
    console.print(table)


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s", help="Comma-separated statuses"),
    prd: str | None = typer.Option(None, "--prd", help="Only tasks from this PRD path or file name"),
    manual: bool = typer.Option(False, "--manual", help="Only tasks not generated from a PRD"),
    prd_only: bool = typer.Option(False, "--prd-only", help="Only tasks generated from a PRD"),
    with_subtasks: bool = typer.Option(False, "--with-subtasks", help="Include subtasks"),
) -> None:
    """List tasks."""
    result = _hero(ctx).list_tasks(
        statuses=_split(status),
        prd=prd,
        manual_only=manual,
        prd_only=prd_only,
        include_subtasks=with_subtasks,
    )

    def render(data: dict[str, Any]) -> None:
        if not data["tasks"]:
            console.print("[dim]No tasks found.[/dim]")
            return
        _render_task_table(data["tasks"], f"Tasks ({len(data['tasks'])} of {data['total']})")
        counts = ", ".join(f"{k}: {v}" for k, v in data["counts"].items() if v)
        console.print(f"[dim]{counts}[/dim]")

    _emit(ctx, result, render)


@app.command()
def show(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task or subtask id"),
) -> None:
    """Show a task with its subtasks and dependents."""

    def render(data: dict[str, Any]) -> None:
        task = data["task"]
        lines = [
            f"[bold]Status:[/bold] {_styled(task['status'])}",
            f"[bold]Priority:[/bold] {task['priority']}",
            f"[bold]Dependencies:[/bold] {', '.join(task['dependencies']) or '-'}",
            f"[bold]Dependents:[/bold] {', '.join(data['dependents']) or '-'}",
            f"[bold]Ready:[/bold] {'yes' if data['ready'] else 'no'}",
        ]
        if "prdSource" in task:
            lines.append(f"[bold]PRD:[/bold] {task['prdSource']['filePath']}")
        for label, key in (("Description", "description"), ("Details", "details"), ("Test strategy", "testStrategy")):
            if task.get(key):
                lines.append(f"\n[bold]{label}:[/bold]\n{task[key]}")
        console.print(
            Panel(
                "\n".join(lines),
                title=f"[bold blue]Task {task['id']}[/bold blue]: {task['title']}",
                border_style="blue",
            )
        )
        if task.get("subtasks"):
            _render_task_table(
                [
                    {**sub, "subtaskCount": len(sub.get("subtasks", []))}
                    for sub in task["subtasks"]
                ],
                "Subtasks",
            )

    _emit(ctx, _hero(ctx).get_task(task_id), render)


def _render_created(data: dict[str, Any]) -> None:
    task = data["task"]
    console.print(f"[bold green]Created task {task['id']}:[/bold green] {task['title']}")


@app.command()
def add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: str = typer.Option("", "--description", "-D", help="Short description"),
    details: str = typer.Option("", "--details", help="Implementation details"),
    test_strategy: str = typer.Option("", "--test-strategy", help="How to verify the task"),
    priority: str = typer.Option("medium", "--priority", "-P", help="low, medium or high"),
    deps: str | None = typer.Option(None, "--deps", help="Comma-separated dependency ids"),
) -> None:
    """Add a top-level task."""
    result = _hero(ctx).add_task(
        title,
        description=description,
        details=details,
        test_strategy=test_strategy,
        priority=priority,
        dependencies=_split(deps),
    )
    _emit(ctx, result, _render_created)


@app.command("add-subtask")
def add_subtask(
    ctx: typer.Context,
    parent_id: str = typer.Argument(..., help="Parent task id"),
    title: str = typer.Argument(..., help="Subtask title"),
    description: str = typer.Option("", "--description", "-D", help="Short description"),
    details: str = typer.Option("", "--details", help="Implementation details"),
    priority: str = typer.Option("medium", "--priority", "-P", help="low, medium or high"),
    deps: str | None = typer.Option(None, "--deps", help="Comma-separated dependency ids"),
) -> None:
    """Add a subtask to an existing task."""
    result = _hero(ctx).add_subtask(
        parent_id,
        title,
        description=description,
        details=details,
        priority=priority,
        dependencies=_split(deps),
    )
    _emit(ctx, result, _render_created)


@app.command()
def update(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task or subtask id"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    description: str | None = typer.Option(None, "--description", "-D", help="New description"),
    details: str | None = typer.Option(None, "--details", help="New details"),
    test_strategy: str | None = typer.Option(None, "--test-strategy", help="New test strategy"),
    priority: str | None = typer.Option(None, "--priority", "-P", help="low, medium or high"),
) -> None:
    """Edit descriptive fields of a task."""
    fields = {
        name: value
        for name, value in (
            ("title", title),
            ("description", description),
            ("details", details),
            ("test_strategy", test_strategy),
            ("priority", priority),
        )
        if value is not None
    }
    if not fields:
        console.print("[yellow]Nothing to update.[/yellow]")
        raise typer.Exit(1)

    def render(data: dict[str, Any]) -> None:
        console.print(f"[bold green]Updated task {data['task']['id']}[/bold green]")

    _emit(ctx, _hero(ctx).update_task(task_id, **fields), render)


@app.command()
def remove(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task or subtask id"),
    cascade: bool = typer.Option(
        False, "--cascade", help="Also strip references to the removed tasks from other tasks"
    ),
) -> None:
    """Remove a task and all of its subtasks."""

    def render(data: dict[str, Any]) -> None:
        console.print(f"[bold green]Removed:[/bold green] {', '.join(data['removedIds'])}")
        for ref in data["strippedReferences"]:
            console.print(f"  [dim]dropped dependency {ref['taskId']} -> {ref['dependencyId']}[/dim]")

    _emit(ctx, _hero(ctx).remove_task(task_id, cascade_dependents=cascade), render)


@app.command()
def move(
    ctx: typer.Context,
    from_id: str = typer.Argument(..., help="Id of the subtree root to move"),
    to_id: str = typer.Argument(..., help="Requested new id"),
    placeholder: bool = typer.Option(
        False, "--placeholder", help="Use the next free sibling id if the destination is taken"
    ),
) -> None:
    """Move and renumber a task subtree."""

    def render(data: dict[str, Any]) -> None:
        console.print(f"[bold green]Moved {data['fromId']} -> {data['newId']}[/bold green]")
        if data["placeholderUsed"]:
            console.print(f"[yellow]{data['requestedId']} was taken; used {data['newId']}[/yellow]")
        table = Table(title="Renumbered")
        table.add_column("Old", style="cyan")
        table.add_column("New", style="green")
        for old, new in data["idMap"].items():
            table.add_row(old, new)
        console.print(table)
        for ref in data["remappedReferences"]:
            console.print(f"  [dim]{ref['taskId']}: dependency {ref['from']} -> {ref['to']}[/dim]")

    _emit(ctx, _hero(ctx).move_task(from_id, to_id, insert_placeholder=placeholder), render)


@app.command("set-status")
def set_status(
    ctx: typer.Context,
    task_ids: str = typer.Argument(..., help="Task id or comma-separated ids"),
    status: str = typer.Argument(..., help="New status"),
) -> None:
    """Set the status of one or more tasks."""

    def render(data: dict[str, Any]) -> None:
        if data["changed"]:
            console.print(
                f"[bold green]Set {', '.join(data['changed'])} to[/bold green] {_styled(data['status'])}"
            )
        else:
            console.print("[dim]No status changed.[/dim]")
        for action in data["prdSync"]:
            console.print(
                f"  [dim]PRD {action['prdIdentifier']}: {action['oldStatus']} -> {action['newStatus']}[/dim]"
            )
        if "prdSyncError" in data:
            console.print(f"[yellow]PRD sync failed: {data['prdSyncError']['message']}[/yellow]")

    _emit(ctx, _hero(ctx).set_status(task_ids, status), render)


@app.command("next")
def next_task(ctx: typer.Context) -> None:
    """Show the next task to work on."""

    def render(data: dict[str, Any]) -> None:
        reason = data["reason"]
        if reason == "found":
            task = data["task"]
            console.print(
                Panel(
                    f"{task.get('description') or ''}\n\n"
                    f"[bold]Priority:[/bold] {task['priority']}  "
                    f"[bold]Dependencies:[/bold] {', '.join(task.get('dependencies', [])) or '-'}",
                    title=f"[bold green]Next: {task['id']}[/bold green] {task['title']}",
                    border_style="green",
                )
            )
        elif reason == "empty":
            console.print("[dim]No tasks yet.[/dim]")
        elif reason == "no-pending":
            console.print("[dim]No pending tasks.[/dim]")
        else:
            console.print(
                f"[yellow]All pending tasks are blocked:[/yellow] "
                f"{', '.join(data['blockedIds'])}"
            )

    _emit(ctx, _hero(ctx).next_task(), render)


# =============================================================================
# DEPENDENCY COMMANDS
# =============================================================================


@app.command("add-dep")
def add_dep(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Dependent task"),
    depends_on: str = typer.Argument(..., help="Task it depends on"),
) -> None:
    """Make a task depend on another."""

    def render(data: dict[str, Any]) -> None:
        if data["added"]:
            console.print(f"[bold green]{task_id} now depends on {depends_on}[/bold green]")
        else:
            console.print(f"[dim]{task_id} already depends on {depends_on}[/dim]")

    _emit(ctx, _hero(ctx).add_dependency(task_id, depends_on), render)


@app.command("remove-dep")
def remove_dep(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Dependent task"),
    depends_on: str = typer.Argument(..., help="Dependency to drop"),
) -> None:
    """Remove a dependency."""

    def render(_: dict[str, Any]) -> None:
        console.print(f"[bold green]Removed dependency {task_id} -> {depends_on}[/bold green]")

    _emit(ctx, _hero(ctx).remove_dependency(task_id, depends_on), render)


@app.command("validate-deps")
def validate_deps(ctx: typer.Context) -> None:
    """Check all dependencies for dangling, self, duplicate and cyclic references."""

    def render(data: dict[str, Any]) -> None:
        if data["valid"]:
            console.print("[bold green]All dependencies are valid.[/bold green]")
            return
        table = Table(title="Dependency violations")
        table.add_column("Kind", style="red")
        table.add_column("Task", style="cyan")
        table.add_column("Details")
        for violation in data["violations"]:
            table.add_row(violation["kind"], violation["taskId"], violation["message"])
        console.print(table)

    _emit(ctx, _hero(ctx).validate_dependencies(), render)


def _render_fix(data: dict[str, Any]) -> None:
    if not data["changes"]:
        console.print("[bold green]Nothing to fix.[/bold green]")
        return
    verb = "Would remove" if data["dryRun"] else "Removed"
    table = Table(title=f"{verb} {len(data['changes'])} dependencies ({data['strategy']})")
    table.add_column("Task", style="cyan")
    table.add_column("Dependency")
    table.add_column("Reason", style="yellow")
    for change in data["changes"]:
        reason = change["reason"]
        if change.get("cycle"):
            reason = f"{reason}: {' -> '.join(change['cycle'])}"
        table.add_row(change["taskId"], change["dependencyId"], reason)
    console.print(table)


@app.command("fix-deps")
def fix_deps(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would change"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Break cycles without asking"),
    strategy: str | None = typer.Option(
        None, "--strategy", help="Cycle break strategy: back-edge or highest-id"
    ),
) -> None:
    """Repair invalid dependencies, asking before breaking cycles."""
    hero = _hero(ctx)
    chosen: CycleBreakStrategy | None = strategy  # type: ignore[assignment]
    preview = hero.fix_dependencies(dry_run=True, strategy=chosen)
    if dry_run or not preview.success:
        _emit(ctx, preview, _render_fix)
        return

    breaks_cycles = any(c.get("cycle") for c in (preview.data or {}).get("changes", []))
    if breaks_cycles and not yes:
        if ctx.obj["json"]:
            console.print("[red]Breaking cycles needs --yes together with --json[/red]")
            raise typer.Exit(1)
        _render_fix(preview.data or {})
        if not typer.confirm("Apply these changes?"):
            console.print("[dim]Aborted.[/dim]")
            raise typer.Exit(1)

    _emit(ctx, hero.fix_dependencies(dry_run=False, strategy=chosen), _render_fix)


# =============================================================================
# PRD COMMANDS
# =============================================================================


def _render_prd(data: dict[str, Any]) -> None:
    prd = data["prd"]
    console.print(
        f"[bold green]{prd['prdIdentifier']}[/bold green] {prd['title']} "
        f"({_styled(prd['status'])}) [dim]{prd['filePath']}[/dim]"
    )


@prd_app.command("register")
def prd_register(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="PRD file"),
    title: str | None = typer.Option(None, "--title", "-t", help="Display title"),
) -> None:
    """Start tracking a PRD file."""
    _emit(ctx, _hero(ctx).register_prd(path, title), _render_prd)


@prd_app.command("list")
def prd_list(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List tracked PRDs."""

    def render(data: dict[str, Any]) -> None:
        if not data["prds"]:
            console.print("[dim]No PRDs registered.[/dim]")
            return
        table = Table(title="PRDs")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Status")
        table.add_column("Tasks", justify="right")
        table.add_column("Done %", justify="right")
        table.add_column("File", style="dim")
        for prd in data["prds"]:
            stats = prd.get("taskStats", {})
            table.add_row(
                prd["prdIdentifier"],
                prd["title"],
                _styled(prd["status"]),
                str(stats.get("total", 0)),
                str(stats.get("completionPercentage", 0)),
                prd["filePath"],
            )
        console.print(table)

    _emit(ctx, _hero(ctx).list_prds(status), render)


@prd_app.command("check")
def prd_check(
    ctx: typer.Context,
    prd_id: str | None = typer.Argument(None, help="PRD id (all PRDs if omitted)"),
) -> None:
    """Detect PRD files that changed since their tasks were generated."""

    def render(data: dict[str, Any]) -> None:
        table = Table(title="PRD changes")
        table.add_column("ID", style="cyan")
        table.add_column("State")
        table.add_column("Affected tasks")
        styles = {"unmodified": "green", "modified": "yellow", "missing": "red"}
        for change in data["changes"]:
            state = change["classification"]
            table.add_row(
                change["prdIdentifier"],
                f"[{styles[state]}]{state}[/{styles[state]}]",
                ", ".join(change["affectedTaskIds"]) or "-",
            )
        console.print(table)

    _emit(ctx, _hero(ctx).check_prd_changes(prd_id), render)


@prd_app.command("update-metadata")
def prd_update_metadata(
    ctx: typer.Context,
    prd_id: str = typer.Argument(..., help="PRD id"),
) -> None:
    """Accept the current PRD content as the new baseline."""
    _emit(ctx, _hero(ctx).update_prd_metadata(prd_id), _render_prd)


@prd_app.command("link")
def prd_link(
    ctx: typer.Context,
    prd_id: str = typer.Argument(..., help="PRD id"),
    task_ids: str = typer.Argument(..., help="Comma-separated task ids"),
) -> None:
    """Mark existing tasks as generated from a PRD."""

    def render(data: dict[str, Any]) -> None:
        console.print(
            f"[bold green]Linked to {data['prdIdentifier']}:[/bold green] "
            f"{', '.join(data['linkedTaskIds'])}"
        )

    _emit(ctx, _hero(ctx).link_prd_tasks(prd_id, task_ids), render)


@prd_app.command("unlink")
def prd_unlink(
    ctx: typer.Context,
    prd_id: str = typer.Argument(..., help="PRD id"),
    task_ids: str = typer.Argument(..., help="Comma-separated task ids"),
) -> None:
    """Detach tasks from a PRD."""

    def render(data: dict[str, Any]) -> None:
        console.print(
            f"[bold green]Unlinked from {data['prdIdentifier']}:[/bold green] "
            f"{', '.join(data['unlinkedTaskIds'])}"
        )
        if data["prdSync"]:
            _render_sync({"actions": data["prdSync"]})

    _emit(ctx, _hero(ctx).unlink_prd_tasks(prd_id, task_ids), render)


def _render_sync(data: dict[str, Any]) -> None:
    if not data["actions"]:
        console.print("[dim]PRDs are in sync.[/dim]")
        return
    prefix = "[yellow](dry run)[/yellow] " if data.get("dryRun") else ""
    for action in data["actions"]:
        line = f"{prefix}{action['prdIdentifier']}: {_styled(action['oldStatus'])} -> {_styled(action['newStatus'])}"
        if action.get("targetPath"):
            line += f" [dim]moved to {action['targetPath']}[/dim]"
        console.print(line)


@prd_app.command("sync")
def prd_sync(
    ctx: typer.Context,
    prd_id: str | None = typer.Argument(None, help="PRD id (all active PRDs if omitted)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would change"),
) -> None:
    """Derive PRD status from task progress and relocate files."""
    _emit(ctx, _hero(ctx).sync_prd_status(prd_id, dry_run=dry_run), _render_sync)


@prd_app.command("archive")
def prd_archive(
    ctx: typer.Context,
    prd_id: str = typer.Argument(..., help="PRD id"),
    force: bool = typer.Option(False, "--force", "-f", help="Archive even if tasks are unfinished"),
) -> None:
    """Archive a finished PRD."""

    def render(data: dict[str, Any]) -> None:
        _render_sync({"actions": [data["action"]]})

    _emit(ctx, _hero(ctx).archive_prd(prd_id, force), render)


@prd_app.command("remove")
def prd_remove(
    ctx: typer.Context,
    prd_id: str = typer.Argument(..., help="PRD id"),
    unlink_tasks: bool = typer.Option(
        False, "--unlink-tasks", help="Detach linked tasks instead of refusing"
    ),
) -> None:
    """Stop tracking a PRD; the file stays on disk."""

    def render(data: dict[str, Any]) -> None:
        prd = data["prd"]
        console.print(f"[bold green]Removed {prd['prdIdentifier']}[/bold green] ({prd['filePath']})")
        if data["unlinkedTaskIds"]:
            console.print(f"[dim]Unlinked tasks: {', '.join(data['unlinkedTaskIds'])}[/dim]")

    _emit(ctx, _hero(ctx).remove_prd(prd_id, unlink_tasks), render)


@prd_app.command("integrity")
def prd_integrity(
    ctx: typer.Context,
    fix: bool = typer.Option(False, "--fix", help="Repair what can be repaired"),
) -> None:
    """Check that tasks, registry and lifecycle directories agree."""

    def render(data: dict[str, Any]) -> None:
        if not data["issues"]:
            console.print("[bold green]PRD registry is consistent.[/bold green]")
            return
        table = Table(title="PRD integrity")
        table.add_column("Kind", style="red")
        table.add_column("PRD", style="cyan")
        table.add_column("Details")
        table.add_column("Fixed")
        for issue in data["issues"]:
            fixed = "[green]yes[/green]" if issue["fixed"] else "no"
            table.add_row(issue["kind"], issue["prdIdentifier"] or "-", issue["message"], fixed)
        console.print(table)
        if data["actions"]:
            _render_sync({"actions": data["actions"]})

    _emit(ctx, _hero(ctx).check_prd_integrity(repair=fix), render)


if __name__ == "__main__":
    app()
