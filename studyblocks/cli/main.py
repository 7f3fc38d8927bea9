"""
StudyBlocks: terminal front end for the scheduling core.

Commands:
- studyblocks init          - Create the database and default preferences
- studyblocks subject ...   - Add, list, re-rate and remove subjects
- studyblocks prefs ...     - Show and change schedule preferences
- studyblocks generate      - Build a new schedule
- studyblocks today         - Show a day's blocks
- studyblocks complete      - Complete a block
- studyblocks uncomplete    - Reverse a completion
- studyblocks reschedule    - Move a block
- studyblocks catch-up      - Spread missed blocks over the coming days
- studyblocks custom        - Add a custom block
- studyblocks streak        - Show study streaks
- studyblocks stats         - Show progress statistics
"""
from __future__ import annotations

import sys
import uuid
from datetime import date, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from studyblocks.config import get_settings
from studyblocks.core.models import (
    BlockStatus,
    RescheduleOption,
    SchedulePreferences,
    StudyBlock,
    Subject,
    SubjectGrouping,
)
from studyblocks.db.store import SqlStudyStore
from studyblocks.exceptions import NotFound, StudyBlocksError, ValidationError
from studyblocks.log_setup import configure_logging
from studyblocks.orchestrator import ScheduleOrchestrator


# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="studyblocks",
    help="StudyBlocks: confidence-weighted study scheduling",
    no_args_is_help=True,
)
subject_app = typer.Typer(help="Manage subjects", no_args_is_help=True)
prefs_app = typer.Typer(help="Schedule preferences", no_args_is_help=True)
app.add_typer(subject_app, name="subject")
app.add_typer(prefs_app, name="prefs")

console = Console()

_state: dict[str, Optional[str]] = {"user": None}


# =============================================================================
# Styling
# =============================================================================

STATUS_STYLES = {
    BlockStatus.COMPLETED: "[green]done[/green]",
    BlockStatus.AVAILABLE: "[cyan]available[/cyan]",
    BlockStatus.OVERDUE: "[red]overdue[/red]",
    BlockStatus.PENDING: "[dim]pending[/dim]",
}


def short_id(identifier: str) -> str:
    return identifier[:8]


def parse_day(value: Optional[str]) -> date:
    """Parse an ISO date option; None means today."""
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Not an ISO date (YYYY-MM-DD): {value}") from e


# =============================================================================
# Wiring
# =============================================================================


def current_user() -> str:
    return _state["user"] or get_settings().default_user_id


def build_orchestrator() -> ScheduleOrchestrator:
    return ScheduleOrchestrator(SqlStudyStore())


def resolve_subject(orchestrator: ScheduleOrchestrator, user_id: str, ref: str) -> Subject:
    """Find a subject by id, id prefix or case-insensitive name."""
    subjects = orchestrator.store.load_subjects(user_id)
    by_name = [s for s in subjects if s.name.lower() == ref.lower()]
    if by_name:
        return by_name[0]
    matches = [s for s in subjects if s.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"Subject reference '{ref}' is ambiguous")
    raise NotFound("subject", ref)


def resolve_block(orchestrator: ScheduleOrchestrator, user_id: str, ref: str) -> StudyBlock:
    """Find a block by id or id prefix (as printed by ``today``)."""
    matches = [b for b in orchestrator.store.load_blocks(user_id) if b.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValidationError(f"Block reference '{ref}' is ambiguous, use more characters")
    raise NotFound("block", ref)


@app.callback()
def root(
    user: Optional[str] = typer.Option(
        None,
        "--user", "-u",
        help="User id (defaults to STUDYBLOCKS_DEFAULT_USER_ID)",
    ),
) -> None:
    """StudyBlocks: confidence-weighted study scheduling."""
    _state["user"] = user


# =============================================================================
# Setup
# =============================================================================


@app.command()
def init() -> None:
    """Create the database and default preferences."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    if orchestrator.store.load_preferences(user_id) is None:
        orchestrator.store.save_preferences(orchestrator.preferences_for(user_id))
    console.print(f"[green]Database ready at {orchestrator.store.database_url}[/green]")


# =============================================================================
# Subjects
# =============================================================================


@subject_app.command("add")
def subject_add(
    name: str = typer.Argument(..., help="Subject name"),
    confidence: int = typer.Option(5, "--confidence", "-c", help="Self-rated confidence (1-10)"),
    duration: Optional[int] = typer.Option(
        None,
        "--duration", "-d",
        help="Block length in minutes (defaults to the preference)",
    ),
    icon: str = typer.Option("book", "--icon", help="Display icon token"),
) -> None:
    """Add a subject."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    minutes = orchestrator.preferences_for(user_id).default_block_duration_minutes if duration is None else duration
    subject = Subject(
        id=str(uuid.uuid4()),
        name=name.strip(),
        confidence=confidence,
        block_duration_minutes=minutes,
        user_id=user_id,
        icon=icon,
    )
    orchestrator.store.save_subject(subject)
    console.print(f"[green]Added {subject.name}[/green] (confidence {confidence}, {minutes} min blocks)")


@subject_app.command("list")
def subject_list() -> None:
    """List subjects with their level and XP."""
    orchestrator = build_orchestrator()
    subjects = orchestrator.store.load_subjects(current_user())
    if not subjects:
        console.print("[yellow]No subjects yet. Add one with 'studyblocks subject add'.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Subject")
    table.add_column("Confidence", justify="right")
    table.add_column("Block", justify="right")
    table.add_column("Level", justify="right")
    table.add_column("XP", justify="right")

    for subject in subjects:
        table.add_row(
            short_id(subject.id),
            f"{subject.icon} {subject.name}",
            str(subject.confidence),
            f"{subject.block_duration_minutes}m",
            str(subject.level),
            str(subject.xp),
        )

    console.print(table)


@subject_app.command("rate")
def subject_rate(
    subject: str = typer.Argument(..., help="Subject name or id"),
    confidence: int = typer.Argument(..., help="New confidence (1-10)"),
) -> None:
    """Re-rate a subject's confidence."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    target = resolve_subject(orchestrator, user_id, subject)
    orchestrator.update_confidences(user_id, {target.id: confidence})
    console.print(f"[green]{target.name}: confidence {target.confidence} -> {confidence}[/green]")


@subject_app.command("remove")
def subject_remove(
    subject: str = typer.Argument(..., help="Subject name or id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a subject and all of its blocks."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    target = resolve_subject(orchestrator, user_id, subject)
    if not confirm and not typer.confirm(f"Delete {target.name} and its blocks?", default=False):
        raise typer.Exit(0)
    removed = orchestrator.delete_subject(user_id, target.id)
    console.print(f"[green]Removed {target.name} and {removed} blocks[/green]")


# =============================================================================
# Preferences
# =============================================================================


def print_preferences(prefs: SchedulePreferences) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Horizon", f"{prefs.schedule_horizon_days} days")
    table.add_row("Blocks per weekday", str(prefs.blocks_per_weekday))
    table.add_row("Blocks per weekend day", str(prefs.blocks_per_weekend))
    table.add_row("Default block length", f"{prefs.default_block_duration_minutes} min")
    table.add_row("Grouping", prefs.subject_grouping.value)
    console.print(table)


@prefs_app.command("show")
def prefs_show() -> None:
    """Show schedule preferences."""
    orchestrator = build_orchestrator()
    print_preferences(orchestrator.preferences_for(current_user()))


@prefs_app.command("set")
def prefs_set(
    weeks: Optional[int] = typer.Option(None, "--weeks", "-w", help="Horizon in weeks (1-4)"),
    days: Optional[int] = typer.Option(None, "--days", help="Horizon in days (7-28)"),
    weekday: Optional[int] = typer.Option(None, "--weekday", help="Blocks per weekday"),
    weekend: Optional[int] = typer.Option(None, "--weekend", help="Blocks per weekend day"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Default block length in minutes"),
    grouping: Optional[SubjectGrouping] = typer.Option(None, "--grouping", "-g", help="Within-day grouping"),
) -> None:
    """Change schedule preferences. Takes effect at the next 'generate'."""
    if weeks is not None and days is not None:
        raise ValidationError("Use either --weeks or --days, not both")

    orchestrator = build_orchestrator()
    current = orchestrator.preferences_for(current_user())
    horizon = weeks * 7 if weeks is not None else days
    updated = SchedulePreferences(
        user_id=current.user_id,
        schedule_horizon_days=horizon if horizon is not None else current.schedule_horizon_days,
        blocks_per_weekday=weekday if weekday is not None else current.blocks_per_weekday,
        blocks_per_weekend=weekend if weekend is not None else current.blocks_per_weekend,
        default_block_duration_minutes=duration if duration is not None else current.default_block_duration_minutes,
        subject_grouping=grouping or current.subject_grouping,
    )
    orchestrator.store.save_preferences(updated)
    print_preferences(updated)


# =============================================================================
# Schedule
# =============================================================================


@app.command()
def generate() -> None:
    """Generate a new schedule (completed and custom blocks are kept)."""
    orchestrator = build_orchestrator()
    result = orchestrator.generate_schedule(current_user())

    table = Table(title=f"{result.total_blocks} blocks over {result.schedule_horizon} days")
    table.add_column("Subject")
    table.add_column("Blocks", justify="right")
    for name, count in result.subject_distribution.items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"[dim]Average {result.average_blocks_per_day:.1f} blocks per day[/dim]")


@app.command()
def today(
    on: Optional[str] = typer.Option(None, "--on", help="Show another day (YYYY-MM-DD)"),
) -> None:
    """Show the blocks scheduled for today."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    day = parse_day(on)
    reference = date.today()
    blocks = orchestrator.blocks_for_date(user_id, day)

    if orchestrator.needs_reevaluation(user_id, reference):
        console.print(
            "[yellow]Your schedule has run out. Re-rate your subjects with "
            "'studyblocks subject rate' and run 'studyblocks generate'.[/yellow]"
        )

    if not blocks:
        console.print(f"[dim]No blocks on {day.isoformat()}[/dim]")
        return

    table = Table(title=day.strftime("%A %d %B %Y"))
    table.add_column("ID", style="dim")
    table.add_column("Subject")
    table.add_column("Block", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("Status")

    for block in blocks:
        status = orchestrator.lifecycle.status(block, reference)
        label = "custom" if block.is_custom_block else f"{block.block_number}/{block.total_blocks_for_subject}"
        table.add_row(
            short_id(block.id),
            f"{block.subject_icon} {block.subject_name}",
            label,
            f"{block.duration_minutes}m",
            STATUS_STYLES[status],
        )

    console.print(table)


@app.command()
def complete(block: str = typer.Argument(..., help="Block id or prefix")) -> None:
    """Mark a block as completed."""
    orchestrator = build_orchestrator()
    target = resolve_block(orchestrator, current_user(), block)
    xp = orchestrator.complete_block(target.id, datetime.now())
    console.print(f"[bold green]+{xp} XP[/bold green] for {target.subject_name}")


@app.command()
def uncomplete(block: str = typer.Argument(..., help="Block id or prefix")) -> None:
    """Reverse a completion."""
    orchestrator = build_orchestrator()
    target = resolve_block(orchestrator, current_user(), block)
    xp = orchestrator.uncomplete_block(target.id)
    console.print(f"[yellow]{xp} XP[/yellow] for {target.subject_name}")


@app.command()
def reschedule(
    block: str = typer.Argument(..., help="Block id or prefix"),
    option: RescheduleOption = typer.Argument(..., help="Where to move the block"),
    on: Optional[str] = typer.Option(None, "--on", help="Target date for custom_time (YYYY-MM-DD)"),
) -> None:
    """Move a block to later today, today, tomorrow or a chosen date."""
    orchestrator = build_orchestrator()
    target = resolve_block(orchestrator, current_user(), block)
    target_date = parse_day(on) if on is not None else None
    moved = orchestrator.reschedule_block(target.id, option, target_date=target_date)
    console.print(f"[green]{moved.subject_name} moved to {moved.scheduled_date.isoformat()}[/green]")


@app.command("catch-up")
def catch_up() -> None:
    """Move overdue blocks forward and spread the rest of the schedule from today."""
    orchestrator = build_orchestrator()
    result = orchestrator.reschedule_missed_blocks(current_user())
    if result.total_blocks == 0:
        console.print("[dim]No missed blocks, schedule unchanged[/dim]")
        return
    console.print(f"[green]Redistributed {result.total_blocks} blocks from today[/green]")
    for name, count in result.subject_distribution.items():
        console.print(f"  {name}: {count}")


@app.command()
def custom(
    subject: str = typer.Argument(..., help="Subject name or id"),
    on: Optional[str] = typer.Option(None, "--on", help="Date (YYYY-MM-DD), defaults to today"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Length in minutes"),
) -> None:
    """Add a custom block. Regenerating the schedule keeps it."""
    orchestrator = build_orchestrator()
    user_id = current_user()
    target = resolve_subject(orchestrator, user_id, subject)
    added = orchestrator.add_custom_block(user_id, target.id, parse_day(on), duration)
    console.print(
        f"[green]Custom {added.subject_name} block on {added.scheduled_date.isoformat()}[/green] "
        f"[dim]({short_id(added.id)})[/dim]"
    )


# =============================================================================
# Progress
# =============================================================================


@app.command()
def streak() -> None:
    """Show current and longest study streaks."""
    orchestrator = build_orchestrator()
    summary = orchestrator.compute_streak(current_user(), datetime.now())
    last = summary.last_study_date.isoformat() if summary.last_study_date else "never"
    console.print(Panel(
        f"Current streak: [bold]{summary.current}[/bold] days\n"
        f"Longest streak: [bold]{summary.longest}[/bold] days\n"
        f"Last studied: {last}",
        title="Streak",
        border_style="cyan",
    ))


@app.command()
def stats() -> None:
    """Show progress statistics."""
    orchestrator = build_orchestrator()
    summary = orchestrator.analytics(current_user(), date.today())

    console.print("\n[bold cyan]Study Statistics[/bold cyan]")
    console.print("=" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Blocks scheduled", str(summary.total_blocks))
    table.add_row("Blocks completed", str(summary.completed_blocks))
    table.add_row("Overdue", str(summary.overdue_blocks))
    table.add_row("Completion rate", f"{summary.completion_rate * 100:.0f}%")
    table.add_row("Hours studied", f"{summary.minutes_studied / 60:.1f}")
    table.add_row("Level", f"{summary.global_level} ({summary.global_level_progress * 100:.0f}%)")
    table.add_row("Total XP", str(summary.global_xp))
    table.add_row("Current streak", f"{summary.streak.current} days")
    console.print(table)

    if summary.subjects:
        console.print("\n[bold]Subjects[/bold]")
        subject_table = Table()
        subject_table.add_column("Subject")
        subject_table.add_column("Level", justify="right")
        subject_table.add_column("Done", justify="right")
        subject_table.add_column("XP earned", justify="right")
        subject_table.add_column("Predicted", justify="right")
        for entry in summary.subjects:
            prediction = summary.level_predictions.get(entry.subject_id)
            predicted = f"L{prediction.predicted_level} (+{prediction.xp_gain} XP)" if prediction else "-"
            subject_table.add_row(
                entry.subject_name,
                str(entry.level),
                f"{entry.completed_blocks}/{entry.total_blocks}",
                str(entry.xp_earned),
                predicted,
            )
        console.print(subject_table)

    if summary.versions:
        console.print("\n[bold]Schedules[/bold]")
        version_table = Table()
        version_table.add_column("From")
        version_table.add_column("To")
        version_table.add_column("Done", justify="right")
        for version in summary.versions[:5]:
            version_table.add_row(
                version.start_date.isoformat(),
                version.end_date.isoformat(),
                f"{version.completion_rate * 100:.0f}%",
            )
        console.print(version_table)


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """CLI entry point."""
    configure_logging(get_settings().log_level)

    try:
        app()
    except StudyBlocksError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
