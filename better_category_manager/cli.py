"""Command-line interface for Better Category Manager."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import config, setup_logging
from .controller import ReconciliationController
from .models import NotificationKind
from .renderer import to_rich_tree
from .term_store import InMemoryTermStore, TermStore, WordPressTermStore, parse_term

app = typer.Typer(
    name="bcm",
    help="Browse and reorganize WordPress categories from the terminal."
)
console = Console()


def _run_async(func, *args, **kwargs):
    """Helper to run async functions from synchronous Typer commands."""
    return asyncio.run(func(*args, **kwargs))


def _build_store(terms_file: Optional[Path]) -> TermStore:
    """WordPress store by default, or an in-memory store seeded from JSON."""
    if terms_file is None:
        return WordPressTermStore()

    if not terms_file.exists():
        console.print(f"[red]Terms file not found: {terms_file}[/red]")
        raise typer.Exit(1)

    with open(terms_file, "r", encoding="utf-8") as f:
        raw = json.load(f)

    # Accept either a bare list or a BCM_get_terms payload
    if isinstance(raw, dict):
        raw_terms = raw.get("terms", [])
        is_hierarchical = bool(raw.get("is_hierarchical", True))
    else:
        raw_terms, is_hierarchical = raw, True

    return InMemoryTermStore([parse_term(t) for t in raw_terms], is_hierarchical=is_hierarchical)


async def _load(controller: ReconciliationController) -> None:
    if not await controller.load_terms():
        _print_notifications(controller)
        raise typer.Exit(1)


def _print_notifications(controller: ReconciliationController) -> None:
    for notification in controller.notifications.active():
        color = {
            NotificationKind.SUCCESS: "green",
            NotificationKind.ERROR: "red",
            NotificationKind.WARNING: "yellow",
        }.get(notification.kind, "blue")
        console.print(f"[{color}]{notification.message}[/{color}]")


terms_file_option = typer.Option(
    None, "--terms-file", "-f", help="Read terms from a JSON file instead of WordPress"
)
category_option = typer.Option(None, "--category", "-c", help="Taxonomy to manage")
debug_option = typer.Option(False, "--debug", help="Verbose logging")


@app.command()
def tree(
    search: str = typer.Option("", "--search", "-s", help="Only show terms matching this text"),
    expand: bool = typer.Option(True, "--expand/--collapse", help="Expand first-level terms"),
    terms_file: Optional[Path] = terms_file_option,
    category: Optional[str] = category_option,
    debug: bool = debug_option,
):
    """Print the category tree."""
    setup_logging(debug or config.debug)
    controller = ReconciliationController(_build_store(terms_file), category=category)

    async def _show():
        await _load(controller)
        if expand:
            # Expand every level so the whole tree is printed
            controller.expansion.expand_all(node.id for node, _ in controller.model.iter_nodes())
        return controller.on_search(search)

    view = _run_async(_show)
    console.print(to_rich_tree(view, title=f"{controller.category} ({len(controller.model)} terms)"))
    if not view.is_hierarchical:
        console.print("[dim]Flat taxonomy: drag and drop not available.[/dim]")


@app.command()
def move(
    term_id: int = typer.Argument(..., help="Term to move"),
    parent_id: int = typer.Argument(..., help="New parent, 0 for top level"),
    terms_file: Optional[Path] = terms_file_option,
    category: Optional[str] = category_option,
    debug: bool = debug_option,
):
    """Move a term under a new parent."""
    setup_logging(debug or config.debug)
    controller = ReconciliationController(_build_store(terms_file), category=category)

    async def _move():
        await _load(controller)
        if not controller.is_hierarchical:
            console.print("[red]Drag and drop not available for non-hierarchical taxonomies[/red]")
            raise typer.Exit(1)
        return await controller.on_drag_drop(term_id, parent_id)

    committed = _run_async(_move)
    _print_notifications(controller)
    if not committed:
        raise typer.Exit(1)


@app.command()
def delete(
    term_id: int = typer.Argument(..., help="Term to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    terms_file: Optional[Path] = terms_file_option,
    category: Optional[str] = category_option,
    debug: bool = debug_option,
):
    """Delete a term. Its children move up one level."""
    setup_logging(debug or config.debug)
    controller = ReconciliationController(_build_store(terms_file), category=category)
    _run_async(_load, controller)

    if term_id not in controller.model:
        console.print(f"[red]Term {term_id} not found.[/red]")
        raise typer.Exit(1)

    name = controller.model.get(term_id).name
    if not yes and not typer.confirm(f"Delete '{name}'?"):
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(0)

    deleted = _run_async(controller.delete_term, term_id)
    _print_notifications(controller)
    if not deleted:
        raise typer.Exit(1)


@app.command()
def status():
    """Show the current configuration."""
    console.print(Panel("[bold]Better Category Manager - Status[/bold]", border_style="blue"))

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("AJAX URL", config.ajax_url)
    table.add_row("Category", config.category)
    table.add_row("Nonce", "set" if config.nonce else "[red]missing[/red]")
    table.add_row("Proximity tolerance", f"{config.proximity_tolerance:g}px")
    table.add_row("Nesting threshold", f"{config.nesting_threshold:g}px")
    table.add_row("Drag start delay", f"{config.drag_start_delay_ms}ms")
    table.add_row("Search debounce", f"{config.search_debounce_ms}ms")
    table.add_row("Expansion state", str(config.expansion_state_file or "not persisted"))
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port", "-p"),
    debug: bool = debug_option,
):
    """Run the HTTP API for an embedding UI shell."""
    import uvicorn

    setup_logging(debug or config.debug)
    uvicorn.run("better_category_manager.api:app", host=host, port=port)


if __name__ == "__main__":
    app()
