"""Typer CLI entrypoint for feeding-tube."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event
from typing import Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository
from .dateutils import format_duration, relative_date
from .engine.ytdlp import is_valid_video_id
from .errors import BackfillError, FeedingTubeError, FetchError, InvalidSourceError
from .infra import LegacyImportResult, SQLiteDatabase, import_legacy_state
from .logging_conf import LogFiles, configure_logging, tail_log
from .models import BackfillResult, Source
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter
from .ui import ProgressReporter

app = typer.Typer(
    help="Follow YouTube channels from the terminal.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
source_app = typer.Typer(
    name="source",
    help="Manage subscribed channels.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect log files.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

# titles and yt-dlp messages often contain square brackets
console = Console(markup=False)


@dataclass
class AppState:
    repository: ConfigRepository
    database: SQLiteDatabase
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    legacy: LegacyImportResult | None = None

    @property
    def logs(self) -> LogFiles:
        return LogFiles(self.repository.locator.logs_dir)

    def close(self) -> None:
        self.orchestrator.close()


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    configure_logging(repository.locator.logs_dir, verbose=verbose)
    global_config = repository.load_global_config()
    database = SQLiteDatabase(repository.database_path())
    legacy = import_legacy_state(database, global_config.legacy_dir)
    scheduler = APSchedulerAdapter()
    orchestrator = Orchestrator(
        config_repository=repository,
        database=database,
        scheduler=scheduler,
    )
    return AppState(
        repository=repository,
        database=database,
        scheduler=scheduler,
        orchestrator=orchestrator,
        legacy=legacy,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _resolve_sources(state: AppState, query: Optional[str]) -> list[Source]:
    sources = state.orchestrator.subscriptions.find(query or "")
    if not sources:
        if query:
            console.print(f"No channel matches '{query}'.", style="yellow")
        else:
            console.print("No subscriptions yet, add one with `feeding-tube source add URL`.", style="yellow")
        raise typer.Exit(code=1)
    return sources


def _resolve_single_source(state: AppState, query: str) -> Source:
    sources = _resolve_sources(state, query)
    if len(sources) > 1:
        console.print(
            f"'{query}' matches {len(sources)} channels: " + ", ".join(s.name for s in sources),
            style="yellow",
        )
        raise typer.Exit(code=1)
    return sources[0]


def _render_sources_table(sources: Sequence[Source]) -> Table:
    table = Table(title=f"Subscriptions · {len(sources)}", box=box.SIMPLE_HEAD)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("ID", style="magenta")
    table.add_column("URL", style="green", overflow="fold")
    for index, source in enumerate(sources, start=1):
        table.add_row(str(index), source.name, source.id, source.url)
    return table


def _print_backfill_result(source: Source, result: BackfillResult) -> None:
    line = f"{source.name}: added {result.added} of {result.total} ({result.skipped} already stored"
    if result.failed:
        line += f", {result.failed} failed"
    line += ")"
    if result.cancelled:
        line += " (cancelled)"
    style = "yellow" if result.partial or result.failed or result.cancelled else "green"
    console.print(line, style=style)
    if result.error:
        console.print(f"  stopped early: {result.error}", style="red")


def _run_backfill(state: AppState, source: Source, reporter: ProgressReporter) -> BackfillResult:
    cancel = Event()
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="feeding-tube-cli") as runner:
        future = runner.submit(state.orchestrator.backfill, source, reporter.update, cancel)
        try:
            return future.result()
        except KeyboardInterrupt:
            cancel.set()
            reporter.close()
            console.print("Cancelling, waiting for running batches…", style="yellow")
            return future.result()


def _block_until_interrupted() -> None:
    stop = Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        return


app.add_typer(source_app, name="source", help="Manage subscriptions (list/add/remove).")
app.add_typer(log_app, name="log", help="Inspect log files.")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.", is_flag=True)
) -> None:
    state = build_state(verbose)
    ctx.obj = state
    ctx.call_on_close(state.close)
    if state.legacy is not None and state.legacy.imported:
        imported = ", ".join(f"{name}: {count}" for name, count in state.legacy.counts.items())
        console.print(f"Imported legacy data ({imported}).", style="dim")


@source_app.command("list", help="List subscribed channels.")
def source_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    sources = state.orchestrator.subscriptions.list_sources()
    if not sources:
        console.print("No subscriptions yet, add one with `feeding-tube source add URL`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))


@source_app.command("add", help="Subscribe to the channel behind a URL.")
def source_add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Channel or video URL."),
    backfill: bool = typer.Option(
        True,
        "--backfill/--no-backfill",
        help="Fetch the full upload history right away.",
    ),
) -> None:
    state = _get_state(ctx)
    try:
        source = state.orchestrator.add_subscription(url)
    except InvalidSourceError as exc:
        console.print(f"Cannot add channel: {exc}", style="red")
        raise typer.Exit(code=1)
    except FetchError as exc:
        console.print(f"Channel lookup failed: {exc}", style="red")
        raise typer.Exit(code=1)
    console.print(f"Subscribed to {source.name} ({source.id}).", style="green")
    if not backfill:
        return
    with ProgressReporter(label=source.name) as reporter:
        reporter.start(f"Listing uploads of {source.name}…")
        try:
            result = _run_backfill(state, source, reporter)
        except BackfillError as exc:
            reporter.close()
            console.print(str(exc), style="red")
            raise typer.Exit(code=1)
    _print_backfill_result(source, result)


@source_app.command("remove", help="Unsubscribe from a channel; stored videos are kept.")
def source_remove(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Channel index, id, or part of its name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    source = _resolve_single_source(state, query)
    if not yes and not typer.confirm(f"Unsubscribe from {source.name}?", default=False):
        console.print("Cancelled.", style="dim")
        raise typer.Exit(code=0)
    state.orchestrator.remove_subscription(source)
    console.print(f"Unsubscribed from {source.name}.", style="green")


@app.command("refresh", help="Check every channel's feed for new videos.")
def refresh(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    with console.status("Refreshing feeds…"):
        added = state.orchestrator.refresh_all()
    console.print(f"{added} new video{'s' if added != 1 else ''}.", style="green" if added else "dim")


@app.command("backfill", help="Fetch the full upload history of one or more channels.")
def backfill(
    ctx: typer.Context,
    query: Optional[str] = typer.Argument(None, help="Channel index, id, or part of its name; all when omitted."),
) -> None:
    state = _get_state(ctx)
    sources = _resolve_sources(state, query)
    failures = 0
    for source in sources:
        with ProgressReporter(label=source.name) as reporter:
            reporter.start(f"Listing uploads of {source.name}…")
            try:
                result = _run_backfill(state, source, reporter)
            except BackfillError as exc:
                reporter.close()
                console.print(f"{source.name}: {exc}", style="red")
                failures += 1
                continue
        _print_backfill_result(source, result)
        if result.cancelled:
            break
    if failures:
        raise typer.Exit(code=1)


@app.command("videos", help="List stored videos, newest first.")
def videos(
    ctx: typer.Context,
    source_query: Optional[str] = typer.Option(None, "--source", "-s", help="Only show matching channels."),
    page: int = typer.Option(1, "--page", "-p", min=1, help="1-based page number."),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Videos per page (1-1000)."),
    shorts: Optional[bool] = typer.Option(None, "--shorts/--no-shorts", help="Include short-form videos."),
) -> None:
    state = _get_state(ctx)
    config = state.orchestrator.global_config
    source_ids = None
    if source_query:
        source_ids = [source.id for source in _resolve_sources(state, source_query)]
    show_shorts = (not config.hide_shorts) if shorts is None else shorts
    result = state.orchestrator.items.list_paginated(
        source_ids, page=page - 1, page_size=page_size or config.page_size
    )
    items = result.items if show_shorts else [item for item in result.items if not item.is_short]
    if result.total == 0:
        console.print("No videos stored yet, run `feeding-tube refresh` or `feeding-tube backfill`.", style="yellow")
        raise typer.Exit(code=0)
    watched = state.orchestrator.marks.consumed_ids()
    pages = max(1, -(-result.total // result.page_size))
    table = Table(
        title=f"Videos · page {result.page + 1}/{pages} · {result.total} total",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("", width=1)
    table.add_column("Title", style="cyan", overflow="fold")
    table.add_column("Channel", style="magenta", no_wrap=True)
    table.add_column("Published", style="green", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("ID", style="dim")
    for item in items:
        table.add_row(
            "✓" if item.id in watched else "",
            item.title,
            item.source_name or "-",
            relative_date(item.published_at),
            format_duration(item.duration_seconds),
            item.id,
        )
    console.print(table)
    hidden = len(result.items) - len(items)
    if hidden:
        console.print(f"{hidden} short{'s' if hidden != 1 else ''} hidden, use --shorts to show.", style="dim")


@app.command("status", help="Per-channel totals, unseen counts and watch progress.")
def status(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    orchestrator = state.orchestrator
    sources = orchestrator.subscriptions.list_sources()
    if not sources:
        console.print("No subscriptions yet, add one with `feeding-tube source add URL`.", style="yellow")
        raise typer.Exit(code=0)
    hide_shorts = orchestrator.global_config.hide_shorts
    stats = orchestrator.items.source_stats(exclude_short_form=hide_shorts)
    unseen = orchestrator.items.unseen_counts_per_source(exclude_short_form=hide_shorts)
    consumed = orchestrator.items.fully_consumed_sources(exclude_short_form=hide_shorts)
    table = Table(title=f"Status · {orchestrator.items.count()} videos stored", box=box.SIMPLE_HEAD)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("Videos", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Latest", justify="right")
    table.add_column("Watched", justify="center")
    for index, source in enumerate(sources, start=1):
        source_stats = stats.get(source.id)
        new_count = unseen.get(source.id, 0)
        table.add_row(
            str(index),
            source.name,
            str(source_stats.item_count if source_stats else 0),
            f"● {new_count}" if new_count else "",
            relative_date(source_stats.latest_published) if source_stats else "-",
            "✓" if source.id in consumed else "",
        )
    console.print(table)


@app.command("mark-watched", help="Mark a video as watched.")
def mark_watched(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Video id."),
    toggle: bool = typer.Option(False, "--toggle", help="Flip the current watched state.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    orchestrator = state.orchestrator
    if not is_valid_video_id(item_id):
        console.print(f"'{item_id}' is not a valid video id.", style="red")
        raise typer.Exit(code=1)
    item = orchestrator.items.get(item_id)
    if item is None:
        console.print(f"Unknown video '{item_id}'.", style="red")
        raise typer.Exit(code=1)
    if toggle:
        now_watched = orchestrator.marks.toggle_consumed(item_id)
    else:
        orchestrator.marks.mark_consumed(item_id)
        now_watched = True
    label = "watched" if now_watched else "unwatched"
    console.print(f"{item.title}: {label}.", style="green")


@app.command("mark-viewed", help="Clear the new-video marker of matching channels.")
def mark_viewed(
    ctx: typer.Context,
    query: Optional[str] = typer.Argument(None, help="Channel index, id, or part of its name; all when omitted."),
) -> None:
    state = _get_state(ctx)
    sources = _resolve_sources(state, query)
    state.orchestrator.marks.mark_sources_viewed(source.id for source in sources)
    console.print(f"Marked {len(sources)} channel{'s' if len(sources) != 1 else ''} as viewed.", style="green")


@app.command("watch", help="Refresh periodically until interrupted.")
def watch(
    ctx: typer.Context,
    interval: Optional[int] = typer.Option(None, "--interval", "-i", min=1, help="Minutes between refreshes."),
) -> None:
    state = _get_state(ctx)
    minutes = interval or state.orchestrator.global_config.refresh.interval_minutes
    try:
        added = state.orchestrator.refresh_all()
    except FeedingTubeError as exc:
        console.print(f"Initial refresh failed: {exc}", style="red")
        raise typer.Exit(code=1)
    console.print(f"{added} new video{'s' if added != 1 else ''}.", style="dim")
    state.orchestrator.start_periodic_refresh(minutes)
    console.print(f"Refreshing every {minutes} min, press Ctrl+C to stop.", style="cyan")
    _block_until_interrupted()
    state.scheduler.shutdown()
    console.print("Stopped.", style="dim")


@app.command("search", help="Search YouTube without subscribing.")
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search terms."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=50, help="Maximum number of results."),
) -> None:
    state = _get_state(ctx)
    try:
        hits = state.orchestrator.ytdlp.search(query, limit)
    except (ValueError, FetchError) as exc:
        console.print(f"Search failed: {exc}", style="red")
        raise typer.Exit(code=1)
    if not hits:
        console.print("No results.", style="dim")
        return
    table = Table(title=f"Results for '{query.strip()}'", box=box.SIMPLE_HEAD)
    table.add_column("Title", overflow="fold")
    table.add_column("Channel", style="cyan")
    table.add_column("Published", justify="right", style="dim")
    table.add_column("Length", justify="right")
    table.add_column("ID", style="magenta", no_wrap=True)
    for hit in hits:
        table.add_row(
            hit.title,
            hit.source_name or "",
            relative_date(hit.published_at),
            format_duration(hit.duration_seconds),
            hit.id,
        )
    console.print(table)


@app.command("describe", help="Show a video's description.")
def describe(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Video id."),
) -> None:
    state = _get_state(ctx)
    try:
        details = state.orchestrator.ytdlp.describe(item_id)
    except (ValueError, FetchError) as exc:
        console.print(f"Could not load description: {exc}", style="red")
        raise typer.Exit(code=1)
    console.print(details.title, style="bold")
    console.print(details.channel_name, style="cyan")
    console.print()
    console.print(details.description, highlight=False)


@log_app.command("list", help="List available log files.")
def log_list(ctx: typer.Context) -> None:
    files = _get_state(ctx).logs
    paths = files.available()
    if not paths:
        console.print("No log files yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Log file", style="green")
    for path in paths:
        table.add_row(str(path.relative_to(files.root)))
    console.print(table)


@log_app.command("show", help="Show the tail of a log file.")
def log_show(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Log file name or channel id; the main log when omitted."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines to show."),
) -> None:
    path = _get_state(ctx).logs.resolve(name)
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), highlight=False)

def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["AppState", "app", "build_state", "cli"]
