"""
Main CLI entry point for SolidRules.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer

from solidrules.environment import Settings, configure_logging, get_settings
from solidrules.errors import (
    CatalogUnavailable,
    ConfigurationError,
    RateLimitedError,
    SolidRulesError,
    describe_refresh_failure,
)
from solidrules.manager import RulesManager
from solidrules.models import RuleRecord, SearchFilters, SortOrder
from solidrules.utils.file_ops import safe_read_file, safe_write_file
from solidrules.utils.rich_console import ConsoleProgress, get_console, print_panel, print_table, rich_log_handler

T = TypeVar("T")

console = get_console()

app = typer.Typer(
    help="SolidRules - Cursor rules catalog sync\n\nMirror the awesome-cursorrules catalog locally and project the active rules into a workspace."
)

_state = {"workspace": None}


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as error:
        console.print(f"[red]Error:[/red] {error}")
        raise typer.Exit(1)


def _run(work: Callable[[RulesManager], Awaitable[T]], progress: bool = False) -> T:
    """Run one manager operation on a fresh event loop, closing the manager afterwards."""
    settings = _load_settings()

    async def runner() -> T:
        manager = RulesManager.from_settings(
            settings, root_dir=_state["workspace"], progress=ConsoleProgress() if progress else None
        )
        await manager.start()
        try:
            return await work(manager)
        finally:
            await manager.close()

    try:
        return asyncio.run(runner())
    except (CatalogUnavailable, RateLimitedError) as error:
        console.print(f"[red]Error:[/red] {describe_refresh_failure(error, settings.authenticated)}")
        raise typer.Exit(1)
    except SolidRulesError as error:
        console.print(f"[red]Error:[/red] {error}")
        raise typer.Exit(1)


def _flag(value: bool) -> str:
    return "yes" if value else ""


def _print_records(records: List[RuleRecord], title: str) -> None:
    rows = [
        [
            record.id,
            record.name,
            record.category,
            ", ".join(record.technologies),
            _flag(record.is_active),
            _flag(record.is_favorite),
        ]
        for record in records
    ]
    print_table(
        ["ID", "Name", "Category", "Technologies", "Active", "Favorite"], rows, title=title, empty_message="No rules found."
    )


@app.callback()
def main(
    workspace: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace root to project into (defaults to the current directory)"
    ),
):
    """
    SolidRules - Cursor rules catalog sync
    """
    settings = _load_settings()
    configure_logging(settings, console_sink=rich_log_handler())
    _state["workspace"] = workspace


@app.command()
def refresh():
    """Fetch new and changed rules from the catalog."""
    result = _run(lambda manager: manager.refresh(), progress=True)
    mode = "full" if result.full_refresh else "incremental"
    console.print(
        f"[green]Refreshed {result.processed_count} of {result.listed_count} rules ({mode})[/green]"
        + (f", [red]{result.error_count} failed[/red]" if result.error_count else "")
    )


@app.command("list")
def list_rules(
    query: str = typer.Argument("", help="Text to search for"),
    technology: Optional[str] = typer.Option(None, "--technology", "-t", help="Filter by technology"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
    tag: List[str] = typer.Option([], "--tag", help="Filter by tag (repeatable)"),
    sort: SortOrder = typer.Option(SortOrder.RECENT, "--sort", help="Sort order"),
    favorites: bool = typer.Option(False, "--favorites", help="Only favorite rules"),
    active: bool = typer.Option(False, "--active", help="Only active rules"),
):
    """List and search mirrored rules."""
    filters = SearchFilters(
        technology=technology,
        category=category,
        tags=tag,
        sort_by=sort,
        favorites_only=favorites,
        active_only=active,
    )
    records = _run(lambda manager: manager.search_records(query, filters))
    _print_records(records, title="Cursor Rules")


@app.command()
def activate(rule_ids: List[str] = typer.Argument(..., help="Rule ids")):
    """Activate rules and project them into the workspace."""

    async def work(manager: RulesManager) -> List[RuleRecord]:
        return [await manager.activate(rule_id) for rule_id in rule_ids]

    for record in _run(work):
        console.print(f"[green]Activated[/green] {record.name}")


@app.command()
def deactivate(rule_ids: List[str] = typer.Argument(..., help="Rule ids")):
    """Deactivate rules and remove their files from the workspace."""

    async def work(manager: RulesManager) -> List[RuleRecord]:
        return [await manager.deactivate(rule_id) for rule_id in rule_ids]

    for record in _run(work):
        console.print(f"[yellow]Deactivated[/yellow] {record.name}")


@app.command()
def toggle(rule_ids: List[str] = typer.Argument(..., help="Rule ids")):
    """Flip the active state of one or more rules."""
    for record in _run(lambda manager: manager.batch_toggle(rule_ids)):
        state = "[green]active[/green]" if record.is_active else "[yellow]inactive[/yellow]"
        console.print(f"{record.name}: {state}")


@app.command()
def favorite(rule_id: str = typer.Argument(..., help="Rule id")):
    """Add a rule to favorites, or remove it."""
    record = _run(lambda manager: manager.toggle_favorite(rule_id))
    verb = "Added to" if record.is_favorite else "Removed from"
    console.print(f"{verb} favorites: {record.name}")


@app.command("import")
def import_rule(
    name: str = typer.Argument(..., help="Display name of the rule"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File holding the rule content"),
    technology: List[str] = typer.Option([], "--technology", "-t", help="Technology (repeatable)"),
    tag: List[str] = typer.Option([], "--tag", help="Tag (repeatable)"),
):
    """Import a custom rule from a local file."""
    content = safe_read_file(file)
    record = _run(lambda manager: manager.import_custom(name, content, technology, tag))
    console.print(f"[green]Imported[/green] {record.name} as {record.id}")


@app.command()
def delete(
    rule_id: str = typer.Argument(..., help="Rule id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a rule and its projected files."""
    if not yes:
        typer.confirm(f"Delete rule {rule_id}?", abort=True)
    record = _run(lambda manager: manager.delete_record(rule_id))
    console.print(f"Deleted {record.name}")


@app.command()
def sync():
    """Project the active rules into the workspace now."""
    report = _run(lambda manager: manager.sync_workspace_files())
    if not report.changed:
        console.print("Workspace already up to date.")
        return
    console.print(
        f"{len(report.written)} written, {len(report.skipped)} unchanged, {len(report.removed)} removed"
    )


@app.command()
def updates():
    """Check mirrored rules for newer catalog versions."""
    found = _run(lambda manager: manager.check_for_updates())
    rows = [[u.rule_id, u.rule_name, u.current_version_stamp, u.latest_version_stamp] for u in found]
    print_table(["ID", "Name", "Current", "Latest"], rows, title="Rule Updates", empty_message="All rules are up to date.")


@app.command()
def update(
    rule_id: Optional[str] = typer.Argument(None, help="Rule id"),
    all_rules: bool = typer.Option(False, "--all", help="Update every rule with a pending update"),
):
    """Refetch one rule, or every rule flagged by the last update check."""
    if all_rules:
        result = _run(lambda manager: manager.update_all_rules())
        console.print(f"[green]Updated {len(result['updated'])} rules[/green]")
        for failed_id, message in result["failed"].items():
            console.print(f"[red]{failed_id}[/red]: {message}")
        return
    if rule_id is None:
        console.print("[red]Error:[/red] pass a rule id or --all")
        raise typer.Exit(1)
    record = _run(lambda manager: manager.update_rule(rule_id))
    console.print(f"[green]Updated[/green] {record.name}")


@app.command()
def export(
    rule_ids: Optional[List[str]] = typer.Argument(None, help="Rule ids (default: all rules)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the export to this file"),
):
    """Export rules as JSON."""
    payload = _run(lambda manager: manager.export_rules(rule_ids or None))
    text = json.dumps(payload, indent=2)
    if output is None:
        console.print_json(text)
        return
    safe_write_file(output, text)
    console.print(f"Exported {len(payload['rules'])} rules to {output}")


@app.command()
def stats():
    """Show workspace projection statistics."""
    data: Any = _run(lambda manager: manager.workspace_stats())
    rows = [[key.replace("_", " ").capitalize(), value] for key, value in data.items()]
    print_table(["Stat", "Value"], rows, title=f"SolidRules - {data['workspace_name']}")


@app.command("clear-cache")
def clear_cache():
    """Forget cached file hashes; the next sync re-verifies every file."""

    async def work(manager: RulesManager) -> None:
        manager.clear_projection_cache()

    _run(work)
    console.print("Projection cache cleared")


@app.command()
def clear(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Delete all mirrored rules, workspace configs and update records."""
    if not yes:
        typer.confirm("Clear all SolidRules data?", abort=True)
    _run(lambda manager: manager.clear_all_data())
    print_panel("All data cleared. Projected files were left in place.", title="SolidRules", style="yellow")


if __name__ == "__main__":
    app()
