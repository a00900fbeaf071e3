"""
Typer CLI for the review scheduler.

Commands:
    recall db init              - Initialize database tables
    recall enroll USER CARD     - Enroll a user in a card
    recall unenroll USER CARD   - Remove an enrollment
    recall review USER CARD N   - Submit a 0-5 review grade
    recall queue USER           - Show the due study queue
    recall stats USER           - Show study statistics and subject progress
    recall serve                - Run the HTTP API
    recall info                 - Show configuration and database status

Usage:
    recall --help
    recall enroll alice card-42 --subject networking
    recall review alice card-42 4
    recall queue alice --limit 10
"""

from __future__ import annotations

from typing import NoReturn

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from src.core.logging import configure_logging
from src.scheduling.context import SchedulerContext
from src.scheduling.errors import SchedulerError
from src.scheduling.models import utcnow

app = typer.Typer(
    help="recall: SM-2 spaced-repetition review scheduler",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """
    Spaced-repetition review scheduler.

    Schedules flashcard reviews with SM-2 and builds interleaved study queues.
    """
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_file)


# ========================================
# Context Builder (Dependency Injection)
# ========================================


def _build_context() -> SchedulerContext:
    """Build the scheduler context; streak updates run inline for one-shot commands."""
    return SchedulerContext(notify_inline=True)


def _fail(exc: SchedulerError) -> NoReturn:
    rprint(f"[red]✗[/red] {exc.code}: {exc}")
    raise typer.Exit(code=1)


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from sqlalchemy.exc import SQLAlchemyError

    from src.db.database import init_db

    logger.info("Initializing database tables...")
    try:
        init_db()
    except SQLAlchemyError as exc:
        logger.exception("Database initialization failed")
        rprint(f"[red]✗[/red] Database initialization failed: {exc}")
        raise typer.Exit(code=1)
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# ENROLLMENT COMMANDS
# ========================================


@app.command("enroll")
def enroll(
    user_id: str = typer.Argument(..., help="User to enroll"),
    card_id: str = typer.Argument(..., help="Card to study"),
    subject: str | None = typer.Option(None, "--subject", "-s", help="Subject of the card"),
) -> None:
    """Enroll a user in a card. The card is due immediately."""
    ctx = _build_context()
    try:
        now = utcnow()
        enrollment = ctx.store.enroll(
            user_id,
            card_id,
            subject_id=subject,
            enrolled_at=now,
            initial_state=ctx.sm2.initial_state(user_id, card_id, now, subject_id=subject),
        )
    except SchedulerError as exc:
        _fail(exc)
    finally:
        ctx.close()

    subject_label = f" ({enrollment.subject_id})" if enrollment.subject_id else ""
    rprint(f"[green]✓[/green] Enrolled {user_id} in {card_id}{subject_label}")


@app.command("unenroll")
def unenroll(
    user_id: str = typer.Argument(...),
    card_id: str = typer.Argument(...),
) -> None:
    """Remove an enrollment and its scheduling state."""
    ctx = _build_context()
    try:
        removed = ctx.store.unenroll(user_id, card_id)
    except SchedulerError as exc:
        _fail(exc)
    finally:
        ctx.close()

    if not removed:
        rprint(f"[yellow]⚠[/yellow] {user_id} is not enrolled in {card_id}")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Unenrolled {user_id} from {card_id}")


# ========================================
# REVIEW COMMANDS
# ========================================


@app.command("review")
def review(
    user_id: str = typer.Argument(...),
    card_id: str = typer.Argument(...),
    grade: int = typer.Argument(..., help="0 (blackout) to 5 (perfect recall)"),
) -> None:
    """Submit a review grade and show the next due date."""
    ctx = _build_context()
    try:
        result = ctx.review_manager.submit_review(user_id, card_id, grade)
    except SchedulerError as exc:
        _fail(exc)
    finally:
        ctx.close()

    outcome = "[green]passed[/green]" if result.passed else "[red]failed[/red]"
    rprint(f"[green]✓[/green] Review {outcome}: {card_id}")
    rprint(f"  Interval: {result.interval_days} day(s)")
    rprint(f"  Due:      {result.due_at:%Y-%m-%d %H:%M} UTC")
    rprint(f"  Ease:     {result.state.ease_factor:.2f}")


@app.command("queue")
def queue(
    user_id: str = typer.Argument(...),
    subject: str | None = typer.Option(None, "--subject", "-s", help="Only this subject"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Maximum cards"),
) -> None:
    """Show the cards due now, in study order."""
    ctx = _build_context()
    try:
        card_ids = ctx.queue_builder.build_queue(user_id, subject_id=subject, limit=limit)
        states = {state.card_id: state for state in ctx.store.list_states(user_id, subject_id=subject)}
    except SchedulerError as exc:
        _fail(exc)
    except ValueError as exc:
        rprint(f"[red]✗[/red] {exc}")
        raise typer.Exit(code=1)
    finally:
        ctx.close()

    if not card_ids:
        rprint("[dim]Nothing due. Come back later.[/dim]")
        return

    table = Table(title=f"Due queue for {user_id} ({len(card_ids)})")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Card", style="cyan")
    table.add_column("Subject")
    table.add_column("Due", style="green")
    table.add_column("Lapses", justify="right")

    for position, card_id in enumerate(card_ids, start=1):
        state = states.get(card_id)
        table.add_row(
            str(position),
            card_id,
            (state.subject_id or "-") if state else "-",
            f"{state.due_at:%Y-%m-%d %H:%M}" if state else "-",
            str(state.lapse_count) if state else "-",
        )
    console.print(table)


@app.command("stats")
def stats(
    user_id: str = typer.Argument(...),
    subject: str | None = typer.Option(None, "--subject", "-s", help="Only this subject"),
) -> None:
    """Show study statistics and progress by learning stage."""
    ctx = _build_context()
    try:
        study = ctx.stats.get_study_stats(user_id, subject_id=subject)
        progress = ctx.stats.get_subject_progress(user_id, subject_id=subject)
    except SchedulerError as exc:
        _fail(exc)
    finally:
        ctx.close()

    table = Table(title=f"Study statistics for {user_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Total cards", str(study.total_cards))
    table.add_row("Due now", str(study.due_now))
    table.add_row("Reviewed today", str(study.reviewed_today))
    table.add_row("Average ease", f"{study.average_ease_factor:.2f}")
    table.add_row("Mastered", str(study.mastered_cards))
    table.add_row("Streak (days)", str(study.streak_days))
    console.print(table)

    stage_table = Table(title="Progress by stage")
    stage_table.add_column("Stage", style="cyan")
    stage_table.add_column("Cards", justify="right")
    stage_table.add_row("New", str(progress.new))
    stage_table.add_row("Learning", str(progress.learning))
    stage_table.add_row("Reviewing", str(progress.reviewing))
    stage_table.add_row("Mastered", str(progress.mastered))
    console.print(stage_table)


# ========================================
# SERVER & INFO
# ========================================


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("info")
def show_info() -> None:
    """Show configuration and database status."""
    from src.db.database import check_database_health

    settings = get_settings()
    db_status, db_error = check_database_health()

    table = Table(title="recall Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url.split("@")[-1])
    table.add_row("Database", db_status if not db_error else f"{db_status}: {db_error}")
    table.add_row("Initial ease", str(settings.sm2_initial_ease))
    table.add_row("Minimum ease", str(settings.sm2_minimum_ease))
    table.add_row("Queue limit", f"{settings.queue_default_limit} (max {settings.queue_max_limit})")
    table.add_row("Lock timeout", f"{settings.lock_timeout_ms} ms")
    table.add_row("Log Level", settings.log_level)

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
