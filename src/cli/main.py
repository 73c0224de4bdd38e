"""
Typer CLI for the activity engine.

Works on two JSON files: an activity source and a saved state (the pruned
activity state plus per-item document states and attempt numbers).

Commands:
    activity validate SOURCE                 - Validate a source and list its activities
    activity structure SOURCE                - Show variant and question counts
    activity init SOURCE STATE               - Create the first attempt and save it
    activity attempt SOURCE STATE [--id X]   - New attempt of the activity or a subtree
    activity retry SOURCE STATE ITEM         - New attempt of one item (1-based)
    activity submit SOURCE STATE ITEM CREDIT - Record a score for one item
    activity show SOURCE STATE               - Show credit per item

Usage:
    activity --help
    activity init quiz.json state.json --variant 3
    activity submit quiz.json state.json 2 0.75
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from src.activity import (
    ActivityAndDocStates,
    ActivityError,
    GenerateNewActivityAttemptAction,
    GenerateSingleDocSubActivityAttemptAction,
    ReportEvent,
    UpdateSingleStateAction,
    activity_doc_state_reducer,
    calc_num_variants,
    extract_activity_item_credit,
    gather_document_structure,
    get_item_sequence,
    get_num_items,
    initialize_activity_state,
    load_source,
    validate_ids,
)
from src.activity.serializer import load_state_file, save_state_file
from src.activity.source import ActivitySource

console = Console()

app = typer.Typer(
    help="Activity engine CLI: seeded attempts, credit and saved state for activities",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine decisions"),
) -> None:
    """Configure logging for every command."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<level>{message}</level>",
    )


# ============================================================================
# HELPERS
# ============================================================================


def _load_source_file(path: Path) -> ActivitySource:
    if not path.exists():
        rprint(f"[red]Source file not found:[/red] {path}")
        raise typer.Exit(1)
    return load_source(path.read_text(encoding="utf-8"))


def _save(path: Path, state: ActivityAndDocStates) -> None:
    settings = get_settings()
    save_state_file(
        path,
        state,
        clear_doc_state=settings.clear_doc_state_on_save,
        indent=settings.json_indent,
    )


def _print_events(events: list[ReportEvent], show: bool) -> None:
    if not show:
        return
    for event in events:
        console.print_json(json.dumps(event.to_message()))


def _print_items(state: ActivityAndDocStates) -> None:
    activity_state = state.activity_state

    table = Table(title=f"Activity {activity_state.id}", show_header=True)
    table.add_column("Order", justify="right", style="cyan")
    table.add_column("Item", style="bold")
    table.add_column("Document")
    table.add_column("Variant", justify="right")
    table.add_column("Score", justify="right", style="green")

    items = sorted(extract_activity_item_credit(activity_state), key=lambda i: i.shuffled_order)
    for item in items:
        table.add_row(
            str(item.shuffled_order),
            item.id,
            item.doc_id or "-",
            str(item.variant) if item.variant is not None else "-",
            f"{item.score:.2f}",
        )

    console.print(table)
    rprint(
        f"  Attempt: {activity_state.attempt_number}   "
        f"Credit: [bold]{activity_state.credit_achieved:.3f}[/bold]"
    )


def _run(func, *args: Any) -> Any:
    """Call an engine function, turning engine errors into a clean exit."""
    try:
        return func(*args)
    except ActivityError as e:
        logger.debug(f"{type(e).__name__}: {e}")
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


# ============================================================================
# COMMANDS
# ============================================================================


@app.command("validate")
def validate(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
) -> None:
    """Validate a source and list its activity ids in tree order."""
    source = _run(_load_source_file, source_path)
    ids = _run(validate_ids, source)

    rprint(f"[green]Valid[/green] activity source [bold]{source.id}[/bold]")
    rprint(f"  Activities: {len(ids)}")
    rprint(f"  Items rendered (at most): {get_num_items(source)}")
    for activity_id in ids:
        rprint(f"  - {activity_id}")


@app.command("structure")
def structure(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
) -> None:
    """Show declared variant and question counts per document."""
    source = _run(_load_source_file, source_path)
    doc_structure = gather_document_structure(source)

    table = Table(title="Documents", show_header=True)
    table.add_column("Document", style="cyan")
    table.add_column("Variants", justify="right")
    table.add_column("Questions", justify="right")

    for doc_id, num_variants in doc_structure.num_activity_variants.items():
        table.add_row(doc_id, str(num_variants), str(doc_structure.question_counts[doc_id]))

    console.print(table)
    num_variants = calc_num_variants(source, doc_structure.num_activity_variants)
    rprint(f"  Non-overlapping activity variants: [bold]{num_variants}[/bold]")


@app.command("init")
def init(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
    state_path: Path = typer.Argument(..., help="State file to create"),
    variant: Optional[int] = typer.Option(
        None, "--variant", "-V", help="Activity variant index (seed)",
    ),
    events: bool = typer.Option(False, "--events", help="Print emitted events"),
) -> None:
    """Initialize an activity and generate its first attempt."""
    settings = get_settings()
    source = _run(_load_source_file, source_path)
    doc_structure = gather_document_structure(source)
    variant_index = settings.default_variant if variant is None else variant

    initial = ActivityAndDocStates(
        activity_state=_run(
            initialize_activity_state,
            source,
            variant_index,
            None,
            doc_structure.num_activity_variants,
        )
    )
    state, emitted = _run(
        activity_doc_state_reducer,
        initial,
        GenerateNewActivityAttemptAction(
            num_activity_variants=doc_structure.num_activity_variants,
            initial_question_counter=settings.initial_question_counter,
            question_counts=doc_structure.question_counts,
            allow_save_state=True,
            base_id=source.id,
        ),
    )

    _save(state_path, state)
    _print_events(emitted, events)
    rprint(f"[green]Created[/green] attempt 1 of {source.id} -> {state_path}")
    _print_items(state)


@app.command("attempt")
def attempt(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
    state_path: Path = typer.Argument(..., help="Saved state file (updated in place)"),
    activity_id: Optional[str] = typer.Option(
        None, "--id", help="Regenerate only this sub-activity",
    ),
    events: bool = typer.Option(False, "--events", help="Print emitted events"),
) -> None:
    """
    Generate a new attempt of the whole activity or of one sub-activity.

    Examples:
        activity attempt quiz.json state.json
        activity attempt quiz.json state.json --id part2
    """
    settings = get_settings()
    source = _run(_load_source_file, source_path)
    doc_structure = gather_document_structure(source)
    state = _run(load_state_file, state_path, source)

    state, emitted = _run(
        activity_doc_state_reducer,
        state,
        GenerateNewActivityAttemptAction(
            id=activity_id,
            num_activity_variants=doc_structure.num_activity_variants,
            initial_question_counter=settings.initial_question_counter,
            question_counts=doc_structure.question_counts,
            allow_save_state=True,
            base_id=source.id,
        ),
    )

    _save(state_path, state)
    _print_events(emitted, events)
    _print_items(state)


@app.command("retry")
def retry(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
    state_path: Path = typer.Argument(..., help="Saved state file (updated in place)"),
    item: int = typer.Argument(..., min=1, help="Item number (1-based, displayed order)"),
    events: bool = typer.Option(False, "--events", help="Print emitted events"),
) -> None:
    """Generate a new attempt of a single item, leaving the other items alone."""
    settings = get_settings()
    source = _run(_load_source_file, source_path)
    doc_structure = gather_document_structure(source)
    state = _run(load_state_file, state_path, source)

    item_sequence = get_item_sequence(state.activity_state)
    if item > len(item_sequence):
        rprint(f"[red]Error:[/red] activity has only {len(item_sequence)} items")
        raise typer.Exit(1)

    state, emitted = _run(
        activity_doc_state_reducer,
        state,
        GenerateSingleDocSubActivityAttemptAction(
            doc_id=item_sequence[item - 1],
            doenet_state_idx=item - 1,
            item_sequence=item_sequence,
            num_activity_variants=doc_structure.num_activity_variants,
            initial_question_counter=settings.initial_question_counter,
            question_counts=doc_structure.question_counts,
            allow_save_state=True,
            base_id=source.id,
        ),
    )

    _save(state_path, state)
    _print_events(emitted, events)
    _print_items(state)


@app.command("submit")
def submit(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
    state_path: Path = typer.Argument(..., help="Saved state file (updated in place)"),
    item: int = typer.Argument(..., min=1, help="Item number (1-based, displayed order)"),
    credit: float = typer.Argument(..., min=0.0, max=1.0, help="Credit achieved (0 to 1)"),
    doc_state: Optional[str] = typer.Option(
        None, "--doc-state", help="Document state to store, as JSON",
    ),
    events: bool = typer.Option(False, "--events", help="Print emitted events"),
) -> None:
    """Record the credit (and optionally the document state) reported for one item."""
    source = _run(_load_source_file, source_path)
    state = _run(load_state_file, state_path, source)

    item_sequence = get_item_sequence(state.activity_state)
    if item > len(item_sequence):
        rprint(f"[red]Error:[/red] activity has only {len(item_sequence)} items")
        raise typer.Exit(1)

    try:
        parsed_doc_state = json.loads(doc_state) if doc_state is not None else None
    except json.JSONDecodeError as e:
        rprint(f"[red]Error:[/red] --doc-state is not valid JSON: {e}")
        raise typer.Exit(1)

    state, emitted = _run(
        activity_doc_state_reducer,
        state,
        UpdateSingleStateAction(
            doc_id=item_sequence[item - 1],
            doenet_state_idx=item - 1,
            doenet_state=parsed_doc_state,
            item_sequence=item_sequence,
            credit_achieved=credit,
            allow_save_state=True,
            base_id=source.id,
        ),
    )

    _save(state_path, state)
    _print_events(emitted, events)
    _print_items(state)


@app.command("show")
def show(
    source_path: Path = typer.Argument(..., help="Activity source JSON"),
    state_path: Path = typer.Argument(..., help="Saved state file"),
) -> None:
    """Show the current attempt's items and credit."""
    source = _run(_load_source_file, source_path)
    state = _run(load_state_file, state_path, source)
    _print_items(state)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
