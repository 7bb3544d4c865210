"""
Typer CLI for lexicard.

Commands:
    lexicard lists                   - Show vocabulary lists
    lexicard add-list NAME           - Create a list
    lexicard add-card LIST SRC TGT   - Add a flashcard to a list
    lexicard due                     - Show cards due for review
    lexicard stats                   - Show progress metrics and forecast
    lexicard review                  - Interactive review session
    lexicard review --user ID        - Review with remote replication for the sitting
    lexicard sync --user ID          - Reconcile local and remote replicas once
    lexicard info                    - Show configuration

Usage:
    lexicard --help
    lexicard review --reverse --tag verbs
    lexicard sync --user alice --adopt-local
"""

from __future__ import annotations

import asyncio
import sys

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from config import get_settings
from lexicard.app import LexicardApp
from lexicard.core.errors import AuthStateError, LexicardError, ReplicaError
from lexicard.core.models import Grade, StudyDirection, now_ms
from lexicard.srs.scheduler import due_cards, format_interval
from lexicard.study.stats import progress_metrics, review_forecast
from lexicard.sync.reconciliation import FirstSyncChoice, OutcomeKind, ReconciliationOutcome

app = typer.Typer(help="lexicard: vocabulary flashcards with spaced repetition and sync")
console = Console()

GRADE_KEYS = {"1": Grade.AGAIN, "2": Grade.HARD, "3": Grade.GOOD, "4": Grade.EASY}


def _configure_logging() -> None:
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def _run(coro) -> None:
    """Run a command coroutine, turning lexicard errors into a clean exit."""
    try:
        asyncio.run(coro)
    except AuthStateError as e:
        rprint(f"[red]✗ Sign-in unavailable:[/red] {e}")
        raise typer.Exit(code=2) from e
    except ReplicaError as e:
        rprint(f"[red]✗ Replica error:[/red] {e}")
        rprint("  Local data is unchanged; try again later")
        raise typer.Exit(code=1) from e
    except LexicardError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from e


def _direction(reverse: bool) -> StudyDirection:
    return StudyDirection.REVERSE if reverse else StudyDirection.NORMAL


# ========================================
# VOCABULARY
# ========================================


@app.command("lists")
def show_lists() -> None:
    """Show vocabulary lists with card and due counts."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            lists = lexicard.state.lists
            if not lists:
                rprint("[yellow]No lists yet.[/yellow] Create one with [bold]lexicard add-list[/bold]")
                return
            now = now_ms()
            metrics = progress_metrics(lists, lexicard.state.daily_stats, now)

            table = Table(title=f"Vocabulary Lists ({len(lists)})")
            table.add_column("ID", style="dim")
            table.add_column("Name", style="cyan")
            table.add_column("Tags", style="magenta")
            table.add_column("Cards", justify="right")
            table.add_column("Due", justify="right", style="yellow")
            for vocab_list, progress in zip(lists, metrics.due_by_list):
                table.add_row(
                    vocab_list.id[:8],
                    vocab_list.name,
                    ", ".join(sorted(vocab_list.tags)) or "-",
                    str(progress.total_cards),
                    str(progress.due_count),
                )
            console.print(table)

    _run(run())


@app.command("add-list")
def add_list(
    name: str = typer.Argument(..., help="List name"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
) -> None:
    """Create an empty vocabulary list."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            vocab_list = lexicard.state.create_list(name, tags=tag)
            rprint(f"[green]✓[/green] Created list [bold]{vocab_list.name}[/bold] ({vocab_list.id})")

    _run(run())


@app.command("add-card")
def add_card(
    list_id: str = typer.Argument(..., help="List id (or unique id prefix)"),
    source: str = typer.Argument(..., help="Source-language text"),
    target: str = typer.Argument(..., help="Target-language text"),
    example: str | None = typer.Option(None, "--example", "-e", help="Example sentence"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
) -> None:
    """Add a flashcard to a list."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            matches = [v for v in lexicard.state.lists if v.id.startswith(list_id)]
            if len(matches) != 1:
                rprint(f"[red]✗[/red] No unique list matches '{list_id}'")
                raise typer.Exit(code=1)
            card = lexicard.state.add_flashcard(
                matches[0].id, source, target, example=example, tags=tag
            )
            rprint(f"[green]✓[/green] Added {card.source} → {card.target} to {matches[0].name}")

    _run(run())


# ========================================
# STUDY
# ========================================


@app.command("due")
def show_due(
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Reverse direction"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max cards to show"),
) -> None:
    """Show cards due for review, most overdue first."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            direction = _direction(reverse)
            now = now_ms()
            cards = due_cards(
                [card for _, card in lexicard.state.all_flashcards()], direction, now
            )
            if not cards:
                rprint("[green]✓ Nothing due.[/green]")
                return

            table = Table(title=f"Due ({direction.value}): {len(cards)} cards")
            table.add_column("Front", style="cyan")
            table.add_column("Back")
            table.add_column("Overdue", justify="right", style="yellow")
            for card in cards[:limit]:
                state = card.retention(direction)
                overdue = "new" if state.due_date is None else format_interval(
                    max(0, now - state.due_date) / 86_400_000
                )
                front, back = (
                    (card.source, card.target)
                    if direction == StudyDirection.NORMAL
                    else (card.target, card.source)
                )
                table.add_row(front, back, overdue)
            console.print(table)

    _run(run())


@app.command("stats")
def show_stats() -> None:
    """Show progress metrics, weekly activity and the review forecast."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            settings = lexicard.settings
            now = now_ms()
            metrics = progress_metrics(
                lexicard.state.lists,
                lexicard.state.daily_stats,
                now,
                mature_interval=settings.srs_mature_interval_days,
            )
            accuracy = "-" if metrics.weekly_accuracy is None else f"{metrics.weekly_accuracy}%"
            overview = metrics.learning_overview
            rprint(
                Panel(
                    f"Due now: [bold yellow]{metrics.total_due}[/bold yellow]\n"
                    f"Reviews this week: {metrics.weekly_reviews} (accuracy {accuracy})\n"
                    f"Streak: {metrics.current_streak} days\n"
                    f"New {overview.new} · Learning {overview.learning} · Mature {overview.mature}",
                    title="Progress",
                )
            )

            week = Table(title="Last 7 Days")
            week.add_column("Date")
            week.add_column("Reviews", justify="right")
            week.add_column("Correct", justify="right", style="green")
            for day in metrics.daily_activity:
                week.add_row(day.date, str(day.reviews), str(day.correct))
            console.print(week)

            forecast = Table(title="Upcoming Reviews")
            forecast.add_column("Day")
            forecast.add_column("Cards", justify="right", style="yellow")
            for day in review_forecast(lexicard.state.lists, now):
                label = "Overdue" if day.is_overdue else ("Today" if day.is_today else day.date)
                forecast.add_row(label, str(day.count))
            console.print(forecast)

    _run(run())


@app.command("review")
def review(
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Study target -> source"),
    list_id: str | None = typer.Option(None, "--list", help="Restrict to one list id"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Only cards with any of these tags"),
    include_all: bool = typer.Option(False, "--all", help="Include cards that are not due"),
    user: str | None = typer.Option(None, "--user", "-u", help="Sign in for this sitting"),
) -> None:
    """Interactive review: reveal each card, then grade 1-4 (q to quit)."""

    async def run() -> None:
        async with LexicardApp() as lexicard:
            if user:
                outcome = await lexicard.reconciliation.sign_in(user)
                await _settle_first_sync(lexicard, outcome, None)

            session = lexicard.session.start_session(
                _direction(reverse), list_id=list_id, tag_filters=tag, due_only=not include_all
            )
            if session.is_complete:
                rprint("[green]✓ Nothing to review.[/green]")
            while not session.is_complete:
                card = session.current
                rprint(
                    Panel(
                        f"[bold]{session.front}[/bold]",
                        title=f"Card {session.current_index + 1}/{len(session.cards)}",
                    )
                )
                if Prompt.ask("Reveal", default="", show_default=False) == "q":
                    break
                session.flip()
                details = " · ".join(filter(None, [card.gender, card.part_of_speech]))
                rprint(f"  [green]{session.back}[/green] {details}")
                if card.example:
                    rprint(f"  [dim italic]{card.example}[/dim italic]")

                predicted = lexicard.scheduler.predict_intervals(card.retention(session.direction))
                labels = "  ".join(
                    f"[{key}] {grade.value} ({predicted[grade]})"
                    for key, grade in GRADE_KEYS.items()
                )
                answer = Prompt.ask(labels, choices=[*GRADE_KEYS, "q"], default="3")
                if answer == "q":
                    break
                lexicard.session.answer(session, GRADE_KEYS[answer])

            rprint(
                f"\n[bold]Session:[/bold] [green]✓ {session.known_count}[/green] "
                f"[red]✗ {session.unknown_count}[/red]"
            )
            if user:
                await _finish_signed_in(lexicard)

    _run(run())


# ========================================
# SYNC
# ========================================


async def _settle_first_sync(
    lexicard: LexicardApp, outcome: ReconciliationOutcome, choice: FirstSyncChoice | None
) -> None:
    if outcome.kind != OutcomeKind.CONFLICT_AMBIGUITY:
        return
    if choice is None:
        rprint(
            f"\n[yellow]First sync:[/yellow] this device has {outcome.local_list_count} lists "
            "and the account has none."
        )
        answer = Prompt.ask(
            "Upload local lists to the account, or start fresh from the empty account?",
            choices=["upload", "fresh"],
            default="upload",
        )
        choice = FirstSyncChoice.ADOPT_LOCAL if answer == "upload" else FirstSyncChoice.START_FRESH
    result = await lexicard.reconciliation.resolve_first_sync(choice)
    verb = "Uploaded" if choice == FirstSyncChoice.ADOPT_LOCAL else "Discarded"
    count = len(result.merge.kept_local or result.merge.dropped) if result.merge else 0
    rprint(f"[green]✓[/green] {verb} {count} local lists")


async def _finish_signed_in(lexicard: LexicardApp) -> None:
    """
    Flush pending uploads, then sign out.

    Raises:
        typer.Exit: With code 1 when the merged lists could not be uploaded
    """
    engine = lexicard.reconciliation
    if engine.replication is not None:
        await engine.replication.drain()
    await engine.wait_for_pushes()
    push_error = engine.last_push_error
    await engine.sign_out()
    if push_error is not None:
        rprint(f"[yellow]⚠ Merged lists were not uploaded:[/yellow] {push_error}")
        rprint("[dim]They are kept on this device; run sync again to retry.[/dim]")
        raise typer.Exit(code=1)


async def _sync_once(
    lexicard: LexicardApp, user: str, choice: FirstSyncChoice | None = None
) -> None:
    rprint(f"\n[bold cyan]Syncing {user}[/bold cyan]")
    outcome = await lexicard.reconciliation.sign_in(user)
    if outcome.kind == OutcomeKind.MERGED and outcome.merge is not None:
        merge = outcome.merge
        table = Table(title="Reconciliation", show_header=True)
        table.add_column("Source", style="cyan")
        table.add_column("Lists", justify="right")
        table.add_row("Kept local", str(len(merge.kept_local)))
        table.add_row("Taken from account", str(len(merge.taken_remote)))
        table.add_row("New from account", str(len(merge.remote_only)))
        table.add_row("Recent on this device", str(len(merge.recent_local)))
        table.add_row("Removed (deleted elsewhere)", str(len(merge.dropped)), style="red")
        table.add_section()
        table.add_row("TOTAL", str(len(merge.lists)), style="bold")
        console.print(table)
    await _settle_first_sync(lexicard, outcome, choice)
    await _finish_signed_in(lexicard)
    rprint("[bold green]✓ Sync complete![/bold green]")


@app.command("sync")
def sync(
    user: str = typer.Option(..., "--user", "-u", help="Account user id"),
    adopt_local: bool = typer.Option(
        False, "--adopt-local", help="On first sync, upload local lists to the account"
    ),
    start_fresh: bool = typer.Option(
        False, "--start-fresh", help="On first sync, discard local lists"
    ),
) -> None:
    """Reconcile this device with the account once."""
    if adopt_local and start_fresh:
        rprint("[red]✗[/red] Choose at most one of --adopt-local / --start-fresh")
        raise typer.Exit(code=2)
    choice = None
    if adopt_local:
        choice = FirstSyncChoice.ADOPT_LOCAL
    elif start_fresh:
        choice = FirstSyncChoice.START_FRESH

    async def run() -> None:
        async with LexicardApp() as lexicard:
            await _sync_once(lexicard, user, choice)

    _run(run())


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="lexicard Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Local database", settings.resolved_database_url)
    table.add_row("Remote API", settings.remote_api_url or "Not configured")
    table.add_row("Remote token", "***" if settings.remote_api_token else "Not set")
    table.add_row("Recent-list window", f"{settings.recent_list_threshold_seconds:g}s")
    table.add_row(
        "Learning steps", ", ".join(f"{m:g}m" for m in settings.srs_learning_steps_minutes)
    )
    table.add_row("Log level", settings.log_level)
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    _configure_logging()
    app()


if __name__ == "__main__":
    main()
