"""
Typer CLI for the creditflow scheduling service.

Commands:
    creditflow db init                  - Initialize database tables
    creditflow review                   - Submit an explicit review
    creditflow preview                  - Show the credit flow of a review without recording it
    creditflow status                   - Set an item's status and cascade it
    creditflow due                      - Show ordered due reviews for a domain
    creditflow due --explain            - Include impact and depth of each item
    creditflow prereq add               - Add a prerequisite edge
    creditflow prereq list              - List a domain's prerequisite edges
    creditflow prereq remove            - Delete a prerequisite edge
    creditflow serve                    - Run the API server

Usage:
    creditflow --help
    creditflow review 12 --type definition --success --quality 4 --user 1
    creditflow due 3 --type mixed --explain
"""

from __future__ import annotations

from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from creditflow.core.errors import SRSError
from creditflow.core.logging import configure_logging
from creditflow.core.models import CreditUpdate
from creditflow.srs.service import ReviewRequest, SRSService

app = typer.Typer(
    help="creditflow CLI: spaced repetition with credit propagation over prerequisites",
    no_args_is_help=True,
)

console = Console()


def _service() -> SRSService:
    from creditflow.db.database import get_session_factory

    return SRSService.from_settings(get_session_factory(), get_settings())


def _fail(exc: SRSError) -> None:
    rprint(f"[red]✗[/red] {exc}")
    raise typer.Exit(code=1)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Spaced-repetition scheduling over a weighted prerequisite graph."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


# ========================================
# Database Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from creditflow.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Review Commands
# ========================================


@app.command("review")
def review(
    node_id: int = typer.Argument(..., help="Reviewed item ID"),
    node_type: str = typer.Option("definition", "--type", "-t", help="definition or exercise"),
    success: bool = typer.Option(..., "--success/--failure", help="Outcome of the review"),
    quality: Optional[int] = typer.Option(
        None, "--quality", "-q", min=0, max=5, help="SM-2 grade; derived from timing if omitted"
    ),
    time_taken: int = typer.Option(10, "--time", help="Seconds taken to answer"),
    session_id: Optional[int] = typer.Option(None, "--session", help="Study session to log into"),
    user_id: int = typer.Option(1, "--user", "-u", help="User ID"),
) -> None:
    """Submit an explicit review and show the resulting credit flow."""
    service = _service()
    if quality is None:
        quality = service.scheduler.grade_from_response(success, time_taken)

    try:
        outcome = service.submit_review(
            user_id,
            ReviewRequest(
                node_id=node_id,
                node_type=node_type,
                success=success,
                quality=quality,
                time_taken=time_taken,
                session_id=session_id,
            ),
        )
    except SRSError as exc:
        _fail(exc)

    title = f"Credit flow from {node_type}_{node_id} (quality {quality})"
    console.print(_credit_table(title, outcome.credit_flow))

    for progress in outcome.updated_progress:
        if progress["node_id"] == node_id and progress["node_type"] == node_type:
            rprint(
                f"[green]✓[/green] Next review {progress['next_review']:%Y-%m-%d %H:%M} "
                f"(interval {progress['interval_days']:g}d, EF {progress['easiness_factor']:.2f})"
            )


@app.command("preview")
def preview(
    domain_id: int = typer.Argument(..., help="Domain ID"),
    node_id: int = typer.Argument(..., help="Item ID"),
    node_type: str = typer.Option("definition", "--type", "-t", help="definition or exercise"),
    success: bool = typer.Option(True, "--success/--failure", help="Outcome to simulate"),
) -> None:
    """Show the credit flow a review would produce, without recording it."""
    try:
        credits = _service().preview_credit(domain_id, node_id, node_type, success)
    except SRSError as exc:
        _fail(exc)

    outcome = "success" if success else "failure"
    title = f"Credit flow of a {outcome} on {node_type}_{node_id} (preview)"
    console.print(_credit_table(title, credits))


def _credit_table(title: str, credits: list[CreditUpdate]) -> Table:
    table = Table(title=title)
    table.add_column("Item", style="cyan")
    table.add_column("Type")
    table.add_column("Credit", justify="right")
    for credit in credits:
        style = "green" if credit.credit > 0 else "red"
        table.add_row(str(credit.key), credit.credit_type.value, f"[{style}]{credit.credit:+.4f}[/{style}]")
    return table


@app.command("status")
def set_status(
    node_id: int = typer.Argument(..., help="Item ID"),
    status: str = typer.Argument(..., help="fresh, tackling, grasped or learned"),
    node_type: str = typer.Option("definition", "--type", "-t", help="definition or exercise"),
    user_id: int = typer.Option(1, "--user", "-u", help="User ID"),
) -> None:
    """Set an item's status and cascade it through the graph."""
    try:
        changed = _service().update_status(user_id, node_id, node_type, status)
    except SRSError as exc:
        _fail(exc)

    rprint(f"[green]✓[/green] {node_type}_{node_id} set to [bold]{status}[/bold]")
    for progress in changed[1:]:
        rprint(f"  [dim]→[/dim] {progress['node_type']}_{progress['node_id']}: {progress['status']}")


@app.command("due")
def show_due(
    domain_id: int = typer.Argument(..., help="Domain ID"),
    review_type: str = typer.Option("mixed", "--type", "-t", help="definition, exercise or mixed"),
    explain: bool = typer.Option(False, "--explain", help="Show impact and depth scores"),
    user_id: int = typer.Option(1, "--user", "-u", help="User ID"),
) -> None:
    """Show due reviews in presentation order."""
    try:
        due = _service().get_due_reviews(user_id, domain_id, review_type)
    except SRSError as exc:
        _fail(exc)

    if not due:
        rprint("[green]✓[/green] Nothing due")
        return

    table = Table(title=f"Due reviews for domain {domain_id} ({len(due)})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Item", style="cyan")
    table.add_column("Name")
    table.add_column("Overdue", justify="right")
    table.add_column("Credit", justify="right")
    if explain:
        table.add_column("Impact", justify="right", style="magenta")
        table.add_column("Depth", justify="right", style="magenta")

    for position, item in enumerate(due, start=1):
        row = [
            str(position),
            f"{item.node_type}_{item.node_id} {item.code}",
            item.name,
            f"{-item.days_until_review}d" if item.next_review else "new",
            f"{item.accumulated_credit:+.2f}",
        ]
        if explain:
            row += [f"{item.impact:.3f}", str(item.distance_from_root)]
        table.add_row(*row)
    console.print(table)


# ========================================
# Prerequisite Commands
# ========================================

prereq_app = typer.Typer(help="Prerequisite edge management")
app.add_typer(prereq_app, name="prereq")


@prereq_app.command("add")
def prereq_add(
    node_id: int = typer.Argument(..., help="Dependent item ID"),
    prerequisite_id: int = typer.Argument(..., help="Prerequisite item ID"),
    node_type: str = typer.Option("definition", "--type", "-t", help="Dependent item kind"),
    prerequisite_type: str = typer.Option("definition", "--prereq-type", "-p", help="Prerequisite item kind"),
    weight: float = typer.Option(1.0, "--weight", "-w", help="Credit multiplier in (0, 1]"),
) -> None:
    """Add an edge: the item depends on the prerequisite."""
    try:
        edge = _service().create_prerequisite(node_id, node_type, prerequisite_id, prerequisite_type, weight)
    except SRSError as exc:
        _fail(exc)

    rprint(
        f"[green]✓[/green] Prerequisite {edge['id']}: "
        f"{prerequisite_type}_{prerequisite_id} → {node_type}_{node_id} (weight {weight:g})"
    )


@prereq_app.command("list")
def prereq_list(
    domain_id: int = typer.Argument(..., help="Domain ID"),
) -> None:
    """List the prerequisite edges of a domain."""
    try:
        edges = _service().list_prerequisites(domain_id)
    except SRSError as exc:
        _fail(exc)

    table = Table(title=f"Prerequisites of domain {domain_id} ({len(edges)})")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Item", style="cyan")
    table.add_column("Depends on", style="cyan")
    table.add_column("Weight", justify="right")
    table.add_column("Manual")
    for edge in edges:
        table.add_row(
            str(edge["id"]),
            f"{edge['node_type']}_{edge['node_id']}",
            f"{edge['prerequisite_type']}_{edge['prerequisite_id']}",
            f"{edge['weight']:g}",
            "yes" if edge["is_manual"] else "no",
        )
    console.print(table)


@prereq_app.command("remove")
def prereq_remove(
    prerequisite_id: int = typer.Argument(..., help="Prerequisite edge ID"),
) -> None:
    """Delete a prerequisite edge."""
    try:
        _service().delete_prerequisite(prerequisite_id)
    except SRSError as exc:
        _fail(exc)

    rprint(f"[green]✓[/green] Prerequisite {prerequisite_id} deleted")


# ========================================
# Server
# ========================================


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "creditflow.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
