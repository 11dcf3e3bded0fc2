"""CLI commands for the assessment engine.

Candidate/staff operations:
- start, submit, grade: move an assignment through its lifecycle
- schedule-makeup: issue a makeup attempt
- collect-wrong, wrong-questions, makeups: ledger and makeup queries

Batch sweeps (run from cron):
- remind, overdue, expire-makeups, auto-submit

The database file comes from ASSESSMENT_DB, or database.path in the config.
"""

import os
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from assessment.config.app_config import load_app_config
from assessment.core.assignment_state import auto_submit_expired, start_assignment, submit_assignment
from assessment.core.errors import AssessmentError
from assessment.core.exam_grader import grade_assignment
from assessment.core.makeup_workflow import (
    expire_makeups,
    get_makeup_history,
    list_pending_makeups,
    makeup_stats,
    schedule_makeup as do_schedule_makeup,
)
from assessment.core.scheduler import run_overdue_sweep, run_reminder_sweep
from assessment.core.wrong_questions import collect_wrong_questions, list_wrong_questions
from assessment.db.database import Database
from assessment.llm.client import LLMClient, LLMConfig
from assessment.utils.time_utils import parse_iso, to_iso

app = typer.Typer(
    name="assess",
    help="Assessment lifecycle engine: grading, makeup exams and deadline sweeps.",
    no_args_is_help=True,
)

console = Console()


def _get_db() -> Database:
    """Store handle from ASSESSMENT_DB or the configured path."""
    env_path = os.environ.get("ASSESSMENT_DB")
    if env_path:
        return Database(Path(env_path))
    return Database(Path(load_app_config().database_path))


def _fail(e: Exception) -> NoReturn:
    console.print(f"[red]✗ {e}[/red]")
    raise typer.Exit(code=1)


# =============================================================================
# SETUP
# =============================================================================


@app.command(name="init-db")
def init_db() -> None:
    """Create the database schema (safe to run repeatedly)."""
    db = _get_db()
    try:
        db.init_schema()
    except AssessmentError as e:
        _fail(e)
    console.print("[green]✓ Database ready[/green]")
    console.print(f"  [dim]path:[/dim] {db.path}")


# =============================================================================
# ASSIGNMENT LIFECYCLE
# =============================================================================


@app.command()
def start(
    assignment_id: int = typer.Argument(..., help="Assignment ID"),
) -> None:
    """Open an assignment for the candidate."""
    try:
        assignment = start_assignment(_get_db(), assignment_id)
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ Assignment {assignment.id} in progress[/green]")
    console.print(f"  [dim]started:[/dim]  {to_iso(assignment.start_time)}")
    if assignment.deadline is not None:
        console.print(f"  [dim]deadline:[/dim] {to_iso(assignment.deadline)}")


@app.command()
def submit(
    assignment_id: int = typer.Argument(..., help="Assignment ID"),
    grade_now: bool = typer.Option(False, "--grade", "-g", help="Grade right after submitting"),
) -> None:
    """Hand in an assignment."""
    db = _get_db()
    try:
        assignment = submit_assignment(db, assignment_id)
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ Assignment {assignment.id} submitted[/green]")

    if grade_now:
        grade(assignment_id=assignment_id, provider=None, model=None, graded_by=None)


@app.command()
def grade(
    assignment_id: int = typer.Argument(..., help="Assignment ID"),
    provider: str | None = typer.Option(None, "--provider", "-p", help="LLM provider for short answers"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model name (overrides config)"),
    graded_by: int | None = typer.Option(None, "--by", help="Grader user ID (default: automatic)"),
) -> None:
    """Grade (or re-grade) a submitted assignment."""
    config = load_app_config()
    client = None
    if provider or model:
        client = LLMClient(LLMConfig.from_app_config(config), provider=provider, model=model)

    console.print(f"[blue]Grading assignment {assignment_id}...[/blue]")
    try:
        result = grade_assignment(_get_db(), assignment_id, client=client, graded_by=graded_by, config=config)
    except AssessmentError as e:
        _fail(e)

    if result.passed:
        console.print(f"[green]✓ Passed with {result.percentage}%[/green]")
    else:
        console.print(f"[yellow]✗ Not passed: {result.percentage}%[/yellow]")
    console.print(f"  [dim]score:[/dim] {result.total_score}/{result.max_score}")

    console.print("\n[bold]Per question:[/bold]")
    for d in result.details:
        status = "✓" if d.is_correct else "✗"
        color = "green" if d.is_correct else "red"
        console.print(f"  [{color}]{status}[/{color}] Q{d.question_id} ({d.question_type}): {d.score}/{d.max_score}")
        if d.degraded:
            console.print("    [yellow]⚠ needs human review[/yellow]")

    if result.makeup_exam_id is not None:
        console.print(f"\n  [dim]makeup:[/dim] #{result.makeup_exam_id}")


# =============================================================================
# MAKEUPS
# =============================================================================


@app.command(name="schedule-makeup")
def schedule_makeup(
    makeup_id: int = typer.Argument(..., help="Makeup record ID"),
    deadline: str = typer.Option(..., "--deadline", "-d", help="Deadline (ISO 8601, UTC if no offset)"),
    notes: str | None = typer.Option(None, "--notes", "-n", help="Notes for the candidate"),
    scheduled_by: int | None = typer.Option(None, "--by", help="Staff user ID"),
) -> None:
    """Issue a makeup attempt as a new assignment."""
    try:
        deadline_dt = parse_iso(deadline)
    except ValueError:
        console.print(f"[red]✗ Invalid deadline: {deadline}[/red]")
        raise typer.Exit(code=1)

    try:
        result = do_schedule_makeup(_get_db(), makeup_id, deadline_dt, notes=notes, scheduled_by=scheduled_by)
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ Makeup {makeup_id} scheduled[/green]")
    console.print(f"  [dim]assignment:[/dim] {result['assignment_id']}")
    console.print(f"  [dim]deadline:[/dim]   {to_iso(deadline_dt)}")


@app.command()
def makeups(
    user_id: int | None = typer.Option(None, "--user", "-u", help="History of one candidate"),
) -> None:
    """List pending makeups (or one candidate's makeup history)."""
    from rich.table import Table

    db = _get_db()
    try:
        records = get_makeup_history(db, user_id) if user_id is not None else list_pending_makeups(db)
        stats = makeup_stats(db)
    except AssessmentError as e:
        _fail(e)

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Candidate", justify="right")
    table.add_column("Exam", justify="right")
    table.add_column("Status")
    table.add_column("Attempt")
    table.add_column("Original %", justify="right")
    table.add_column("Deadline")
    for m in records:
        table.add_row(
            str(m.id),
            str(m.user_id),
            str(m.exam_id),
            m.status,
            f"{m.makeup_count}/{m.max_attempts}",
            str(m.original_score),
            to_iso(m.makeup_deadline) or "-",
        )
    console.print(table)
    console.print(
        f"  [dim]pending:[/dim] {stats['pending']}  [dim]scheduled:[/dim] {stats['scheduled']}  "
        f"[dim]completed:[/dim] {stats['completed']}  [dim]expired:[/dim] {stats['expired']}"
    )


# =============================================================================
# WRONG-QUESTION LEDGER
# =============================================================================


@app.command(name="collect-wrong")
def collect_wrong(
    assignment_id: int = typer.Argument(..., help="Assignment ID"),
    user_id: int = typer.Argument(..., help="Candidate user ID"),
) -> None:
    """Add an assignment's incorrect answers to the candidate's ledger."""
    try:
        result = collect_wrong_questions(_get_db(), assignment_id, user_id)
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ {result['count']} wrong question(s) recorded[/green]")


@app.command(name="wrong-questions")
def wrong_questions(
    user_id: int = typer.Argument(..., help="Candidate user ID"),
    question_type: str | None = typer.Option(None, "--type", "-t", help="Filter by question type"),
    unreviewed: bool = typer.Option(False, "--unreviewed", help="Only entries not yet reviewed"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum entries"),
) -> None:
    """Show a candidate's wrong-question ledger."""
    from rich.table import Table

    try:
        entries = list_wrong_questions(
            _get_db(),
            user_id,
            question_type=question_type,
            reviewed=False if unreviewed else None,
            limit=limit,
        )
    except AssessmentError as e:
        _fail(e)

    if not entries:
        console.print("[dim]No wrong questions recorded.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Entry", justify="right")
    table.add_column("Question", justify="right")
    table.add_column("Type")
    table.add_column("Misses", justify="right")
    table.add_column("Last missed")
    table.add_column("Reviewed")
    for e in entries:
        table.add_row(
            str(e.id),
            str(e.question_id),
            e.question_type or "-",
            str(e.wrong_count),
            to_iso(e.last_wrong_at),
            "✓" if e.is_reviewed else "",
        )
    console.print(table)


# =============================================================================
# SWEEPS
# =============================================================================


@app.command()
def remind() -> None:
    """Send due deadline reminders (at most once per threshold)."""
    try:
        result = run_reminder_sweep(_get_db())
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ {result['sent']} reminder(s) sent[/green]")


@app.command()
def overdue() -> None:
    """Mark overdue assignments and open makeups for them."""
    try:
        result = run_overdue_sweep(_get_db())
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ {result['marked']} assignment(s) marked overdue[/green]")
    console.print(f"  [dim]makeups created:[/dim] {result['makeups_created']}")


@app.command(name="expire-makeups")
def expire_makeups_cmd() -> None:
    """Expire scheduled makeups past their deadline."""
    try:
        result = expire_makeups(_get_db())
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ {result['expired']} makeup(s) expired[/green]")


@app.command(name="auto-submit")
def auto_submit() -> None:
    """Submit in-progress assignments whose time limit elapsed."""
    try:
        result = auto_submit_expired(_get_db())
    except AssessmentError as e:
        _fail(e)
    console.print(f"[green]✓ {result['submitted']} assignment(s) auto-submitted[/green]")


if __name__ == "__main__":
    app()
