"""Command-line interface for Commit Tracer."""

import asyncio
import signal
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from committracer.analysis import AggregationEngine, AggregationResult
from committracer.cache import IssueClassificationCache
from committracer.exceptions import CommitTracerError
from committracer.extraction import GitCommitSource
from committracer.logging_config import setup_logging
from committracer.models import Settings
from committracer.tracker import YouTrackClient

app = typer.Typer(
    name="committracer",
    help="Commit Tracer - per-author commit statistics with blocker and regression tickets",
    add_completion=False,
)
console = Console()

DATE_FORMATS = ["%Y-%m-%d"]


def _load_settings(cache_dir: Optional[Path], verbose: bool) -> Settings:
    settings = Settings()
    if cache_dir is not None:
        settings.cache_dir = cache_dir
    setup_logging(settings.log_level, verbose=verbose)
    return settings


def _date_range(from_date: Optional[datetime], to_date: Optional[datetime]) -> Tuple[date, date]:
    """Resolve the analysis range; defaults to the last month up to today."""
    end = to_date.date() if to_date else date.today()
    start = from_date.date() if from_date else end - timedelta(days=30)
    if start > end:
        raise typer.BadParameter("--from must not be after --to")
    return start, end


def _make_client(settings: Settings) -> YouTrackClient:
    return YouTrackClient(
        base_url=settings.youtrack_url,
        token=settings.youtrack_api_token,
        timeout=settings.request_timeout,
    )


def _make_cache(
    settings: Settings, client: Optional[YouTrackClient]
) -> IssueClassificationCache:
    return IssueClassificationCache(
        client,
        cache_dir=settings.cache_dir,
        persistent=settings.enable_persistent_cache,
        fetch_timeout=settings.request_timeout * 3,
    )


def _run_analysis(
    repo_path: Path,
    from_date: Optional[datetime],
    to_date: Optional[datetime],
    branch: str,
    workers: Optional[int],
    no_tracker: bool,
    settings: Settings,
) -> AggregationResult:
    """Load history and aggregate it, printing progress."""
    start, end = _date_range(from_date, to_date)
    console.print(f"[bold green]Analyzing commits in:[/bold green] {repo_path}")
    console.print(f"[bold blue]Range:[/bold blue] {start} .. {end}  [bold blue]Branch:[/bold blue] {branch}")

    commits = GitCommitSource(branch=branch).history(repo_path, start, end)
    if not commits:
        return AggregationResult()

    async def aggregate() -> AggregationResult:
        client = None if no_tracker else _make_client(settings)
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            pass

        try:
            with _make_cache(settings, client) as cache:
                engine = AggregationEngine(cache, max_workers=workers or settings.max_workers)
                return await engine.aggregate(commits, cancel_event=cancel_event)
        finally:
            if client is not None:
                await client.close()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Aggregating {len(commits)} commits...", total=None)
        result = asyncio.run(aggregate())
        progress.update(task, completed=True)

    return result


def _author_table(result: AggregationResult) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Author", style="green")
    table.add_column("Commits", justify="right")
    table.add_column("Tickets", justify="right")
    table.add_column("Blockers", justify="right", style="red")
    table.add_column("Regressions", justify="right", style="yellow")
    table.add_column("Test Commits", justify="right")
    table.add_column("Test %", justify="right")
    table.add_column("First", style="blue")
    table.add_column("Last", style="blue")
    table.add_column("Active Days", justify="right")
    table.add_column("Commits/Day", justify="right")

    for stats in result.sorted_authors():
        table.add_row(
            stats.author,
            str(stats.commit_count),
            str(stats.ticket_count),
            str(stats.blocker_count),
            str(stats.regression_count),
            str(stats.test_touched_commit_count),
            f"{stats.test_coverage_percent:.2f}",
            stats.first_commit_at.strftime("%Y-%m-%d"),
            stats.last_commit_at.strftime("%Y-%m-%d"),
            str(stats.active_days),
            f"{stats.commits_per_day:.2f}",
        )
    return table


def _print_run_notes(result: AggregationResult) -> None:
    if result.skipped_commits:
        console.print(f"[yellow]Skipped {result.skipped_commits} malformed commits[/yellow]")
    if result.cancelled:
        console.print("[yellow]Analysis was cancelled; results are partial[/yellow]")
    if result.tracker_unavailable:
        console.print(
            f"[bold red]Issue tracker unavailable:[/bold red] all {result.classification_calls} "
            "classification requests failed; blocker and regression counts are incomplete"
        )
    elif result.classification_failures:
        console.print(
            f"[yellow]{result.classification_failures} of {result.classification_calls} "
            "classification requests failed; affected tickets count as neither blocker nor regression[/yellow]"
        )


@app.command()
def authors(
    repo_path: Path = typer.Argument(..., help="Path to Git repository"),
    from_date: Optional[datetime] = typer.Option(None, "--from", formats=DATE_FORMATS, help="First day (YYYY-MM-DD)"),
    to_date: Optional[datetime] = typer.Option(None, "--to", formats=DATE_FORMATS, help="Last day (YYYY-MM-DD)"),
    branch: str = typer.Option("HEAD", "--branch", "-b", help="Branch to analyze"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Commits processed concurrently"),
    no_tracker: bool = typer.Option(False, "--no-tracker", help="Skip issue tracker lookups"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Classification cache directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Show per-author commit statistics."""
    try:
        settings = _load_settings(cache_dir, verbose)
        result = _run_analysis(repo_path, from_date, to_date, branch, workers, no_tracker, settings)

        if not result.authors:
            console.print("[yellow]No commits found in the selected range[/yellow]")
            _print_run_notes(result)
            return

        console.print(
            f"\n[bold green]✓[/bold green] {result.processed_commits} commits "
            f"from {len(result.authors)} authors"
        )
        _print_run_notes(result)
        console.print(_author_table(result))

    except CommitTracerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def tickets(
    repo_path: Path = typer.Argument(..., help="Path to Git repository"),
    author: str = typer.Argument(..., help="Author email"),
    from_date: Optional[datetime] = typer.Option(None, "--from", formats=DATE_FORMATS, help="First day (YYYY-MM-DD)"),
    to_date: Optional[datetime] = typer.Option(None, "--to", formats=DATE_FORMATS, help="Last day (YYYY-MM-DD)"),
    branch: str = typer.Option("HEAD", "--branch", "-b", help="Branch to analyze"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Commits processed concurrently"),
    no_tracker: bool = typer.Option(False, "--no-tracker", help="Skip issue tracker lookups"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Classification cache directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """List the tickets referenced by one author."""
    try:
        settings = _load_settings(cache_dir, verbose)
        result = _run_analysis(repo_path, from_date, to_date, branch, workers, no_tracker, settings)
        _print_run_notes(result)

        stats = result.get_author(author)
        if stats is None:
            console.print(f"[yellow]No commits by {author} in the selected range[/yellow]")
            raise typer.Exit(1)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Ticket", style="cyan")
        table.add_column("Commits", justify="right")
        table.add_column("Blocker", justify="center")
        table.add_column("Regression", justify="center")
        table.add_column("Summary")

        for ticket, commit_ids in sorted(stats.ticket_to_commits.items()):
            table.add_row(
                ticket,
                str(len(commit_ids)),
                "[red]✓[/red]" if stats.is_blocker(ticket) else "",
                "[yellow]✓[/yellow]" if stats.is_regression(ticket) else "",
                result.ticket_summaries.get(ticket, ""),
            )

        console.print(f"\n[bold]Tickets of {author}[/bold] ({stats.ticket_count})")
        console.print(table)

    except CommitTracerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def classify(
    ticket_id: str = typer.Argument(..., help="Ticket ID, e.g. IDEA-12345"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Classification cache directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Classify a single ticket through the cache."""
    try:
        settings = _load_settings(cache_dir, verbose)

        async def run():
            client = _make_client(settings)
            try:
                with _make_cache(settings, client) as cache:
                    return await cache.classify(ticket_id), cache.get_stats()
            finally:
                await client.close()

        classification, stats = asyncio.run(run())

        console.print(f"\n[bold]{ticket_id}[/bold]")
        console.print(f"[cyan]Blocker:[/cyan] {classification.is_blocker}")
        console.print(f"[cyan]Regression:[/cyan] {classification.is_regression}")
        source = "remote" if stats["remote_calls"] else "cache"
        console.print(f"[dim]Answered from {source}[/dim]")

    except CommitTracerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command(name="cache-stats")
def cache_stats(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Classification cache directory"),
) -> None:
    """Show persistent classification cache information."""
    settings = _load_settings(cache_dir, verbose=False)

    with _make_cache(settings, None) as cache:
        stats = cache.get_stats()

    console.print("\n[bold]Classification Cache[/bold]")
    console.print(f"[cyan]Location:[/cyan] {settings.cache_dir}")
    console.print(f"[cyan]Persistent:[/cyan] {stats['persistent_enabled']}")
    console.print(f"[cyan]Blocker Entries:[/cyan] {stats.get('cached_blocker_entries', 0)}")
    console.print(f"[cyan]Regression Entries:[/cyan] {stats.get('cached_regression_entries', 0)}")


@app.command(name="clear-cache")
def clear_cache(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Classification cache directory"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Remove every cached ticket classification."""
    settings = _load_settings(cache_dir, verbose=False)

    if not force:
        confirm = typer.confirm(f"Clear the classification cache in {settings.cache_dir}?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            return

    with _make_cache(settings, None) as cache:
        cache.clear(persistent=True)

    console.print("\n[bold green]✓[/bold green] Cache cleared")


@app.command(name="validate-token")
def validate_token(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Check that the configured YouTrack token is accepted."""
    try:
        settings = _load_settings(None, verbose)

        async def run() -> bool:
            async with _make_client(settings) as client:
                return await client.validate_token()

        if asyncio.run(run()):
            console.print(f"[bold green]✓[/bold green] Token accepted by {settings.youtrack_url}")
        else:
            console.print(f"[bold red]✗[/bold red] Token rejected by {settings.youtrack_url}")
            raise typer.Exit(1)

    except CommitTracerError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from committracer import __version__

    console.print(f"[bold]Commit Tracer[/bold] version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
