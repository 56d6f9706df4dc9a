"""CommuteWatch CLI — commute route monitoring.

Commands:
  init-db        — create database tables
  add-route      — geocode and register a route
  list-routes    — list a user's routes
  add-window     — add a monitoring window to a route
  start          — start today's monitoring session for a window
  stop           — stop an active session
  delete-window  — deactivate a monitoring window
  delete-route   — soft-delete a route and cancel its polling
  quota          — today's session quota
  baseline       — historical travel-time slots for a day of week
  optimal        — best departure window for a day of week
  poll-once      — take one sample for a route now
  prune          — soft-delete poll records past retention
  worker         — run the poll scheduler (executes poll chains)
  serve          — run the HTTP API
  status         — database and scheduler overview
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from commutewatch.config import settings


app = typer.Typer(
    name="commutewatch",
    help="Commute route monitoring and departure-time statistics.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_USER_OPTION = typer.Option(1, "--user", "-u", help="Acting user id")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(level="DEBUG" if verbose else settings.LOG_LEVEL)


def _parse_time(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%H:%M")
    except ValueError:
        console.print(f"[red]Invalid time {value!r}, expected HH:MM[/red]")
        raise typer.Exit(1)


def _days_mask(days: str) -> int:
    from commutewatch.models.monitoring_window import DAY_NAMES

    mask = 0
    for token in days.split(","):
        token = token.strip().lower()
        if not token:
            continue
        matches = [i for i, name in enumerate(DAY_NAMES) if name.lower().startswith(token[:3])]
        if len(token) < 3 or not matches:
            console.print(f"[red]Unknown day {token!r}[/red]")
            raise typer.Exit(1)
        mask |= 1 << matches[0]
    return mask


# ---------------------------------------------------------------------------
# Setup & routes
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(
    demo: bool = typer.Option(False, "--demo", help="Load a mock route with four weeks of history"),
):
    """Create database tables."""
    from commutewatch.database import SessionLocal, init_db

    init_db()
    console.print("[green]Database initialised.[/green]")
    if not demo:
        return

    from scripts.generate_sample_data import load_sample_data

    db = SessionLocal()
    try:
        with console.status("[bold]Loading sample data..."):
            counts = load_sample_data(db)
    finally:
        db.close()
    if counts["routes"]:
        console.print(f"Sample route loaded: {counts['sessions']} sessions, {counts['poll_records']:,} poll records")
    else:
        console.print("[yellow]Sample route already present.[/yellow]")


@app.command("add-route")
def add_route(
    origin: str = typer.Argument(..., help="Origin address"),
    destination: str = typer.Argument(..., help="Destination address"),
    provider: str = typer.Option("google_maps", "--provider", help="google_maps | tomtom | mock"),
    user_id: int = _USER_OPTION,
):
    """Geocode both addresses and register the route."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.route_admin import create_route

    db = SessionLocal()
    try:
        route = create_route(db, user_id, origin, destination, provider=provider)
        console.print(
            f"[green]Route {route.route_id} created[/green] "
            f"({route.origin_coordinates} -> {route.destination_coordinates})"
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()


@app.command("list-routes")
def list_routes(
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=100),
    user_id: int = _USER_OPTION,
):
    """List a user's routes, newest first."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.route_admin import list_routes as _list_routes

    db = SessionLocal()
    try:
        result = _list_routes(db, user_id, page=page, page_size=page_size)
        if not result.items:
            console.print("[yellow]No routes.[/yellow]")
            return
        table = Table(title=f"Routes for user {user_id} (page {result.page}, {result.total} total)")
        table.add_column("ID", justify="right")
        table.add_column("Origin")
        table.add_column("Destination")
        table.add_column("Provider")
        table.add_column("Status")
        for route in result.items:
            table.add_row(
                str(route.route_id),
                route.origin_address,
                route.destination_address,
                route.provider.value,
                route.monitoring_status.value,
            )
        console.print(table)
    finally:
        db.close()


@app.command("add-window")
def add_window(
    route_id: int = typer.Argument(...),
    start_time: str = typer.Option("07:00", "--start", help="HH:MM (UTC)"),
    end_time: str = typer.Option("09:00", "--end", help="HH:MM (UTC)"),
    days: str = typer.Option("mon,tue,wed,thu,fri", "--days", help="Comma-separated day names"),
    user_id: int = _USER_OPTION,
):
    """Add a monitoring window to a route."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.route_admin import create_window

    start = _parse_time(start_time).time()
    end = _parse_time(end_time).time()
    mask = _days_mask(days)

    db = SessionLocal()
    try:
        window = create_window(db, route_id, user_id, start, end, mask)
        if window is None:
            console.print(f"[red]Route {route_id} not found[/red]")
            raise typer.Exit(1)
        console.print(
            f"[green]Window {window.window_id} added[/green] "
            f"{start_time}-{end_time} {', '.join(window.day_names())}"
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()


@app.command("delete-window")
def delete_window(
    window_id: int = typer.Argument(...),
    user_id: int = _USER_OPTION,
):
    """Deactivate a monitoring window; it can no longer start sessions."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.route_admin import delete_window as _delete_window

    db = SessionLocal()
    try:
        if not _delete_window(db, window_id, user_id):
            console.print(f"[red]Window {window_id} not found[/red]")
            raise typer.Exit(1)
        console.print(f"[green]Window {window_id} deleted[/green]")
    finally:
        db.close()


@app.command("delete-route")
def delete_route(
    route_id: int = typer.Argument(...),
    user_id: int = _USER_OPTION,
):
    """Soft-delete a route and cancel its polling."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.scheduler import get_backend
    from commutewatch.modules.session_scheduler import delete_route as _delete_route

    db = SessionLocal()
    try:
        if not _delete_route(db, route_id, user_id, get_backend()):
            console.print(f"[red]Route {route_id} not found[/red]")
            raise typer.Exit(1)
        console.print(f"[green]Route {route_id} deleted[/green]")
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@app.command("start")
def start(
    route_id: int = typer.Argument(...),
    window_id: int = typer.Argument(...),
    user_id: int = _USER_OPTION,
):
    """Start today's monitoring session for a window."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.scheduler import get_backend
    from commutewatch.modules.session_scheduler import NOT_FOUND, start_session

    db = SessionLocal()
    try:
        result = start_session(db, route_id, window_id, user_id, get_backend())
        if not result.is_success:
            if result.error_code == NOT_FOUND:
                console.print(f"[red]Window {window_id} on route {route_id} not found[/red]")
            else:
                console.print("[red]Daily session quota exceeded[/red]")
            raise typer.Exit(1)
        console.print(
            f"[green]Session {result.session_id} active[/green] "
            f"({result.quota_remaining} sessions left today)"
        )
    finally:
        db.close()


@app.command("stop")
def stop(
    session_id: int = typer.Argument(...),
    user_id: int = _USER_OPTION,
):
    """Stop an active session."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.scheduler import get_backend
    from commutewatch.modules.session_scheduler import stop_session

    db = SessionLocal()
    try:
        if not stop_session(db, session_id, user_id, get_backend()):
            console.print(f"[yellow]Session {session_id} is not active[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]Session {session_id} stopped[/green]")
    finally:
        db.close()


@app.command("quota")
def quota(user_id: int = _USER_OPTION):
    """Show today's session quota."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.session_scheduler import get_quota

    db = SessionLocal()
    try:
        status = get_quota(db, user_id)
        color = "green" if status.remaining else "red"
        console.print(
            f"Sessions today: {status.used_today}/{status.daily_limit} "
            f"([{color}]{status.remaining} remaining[/{color}]), resets {status.resets_at_utc:%Y-%m-%d %H:%M} UTC"
        )
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@app.command("baseline")
def baseline(
    route_id: int = typer.Argument(...),
    day_of_week: str = typer.Argument(..., help="e.g. Tuesday"),
):
    """Historical travel-time slots for a day of week."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.baseline import format_bucket, get_baseline

    db = SessionLocal()
    try:
        try:
            slots = get_baseline(db, route_id, day_of_week)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)
        if not slots:
            console.print("[yellow]Not enough history yet (each slot needs 3 distinct days).[/yellow]")
            return

        table = Table(title=f"Route {route_id} — {slots[0].day_of_week}")
        table.add_column("Slot")
        table.add_column("Mean (min)", justify="right")
        table.add_column("Std dev (min)", justify="right")
        table.add_column("Days", justify="right")
        for s in slots:
            stddev = f"{s.stddev_duration_seconds / 60:.1f}" if s.stddev_duration_seconds is not None else "-"
            table.add_row(
                format_bucket(s.time_slot_bucket),
                f"{s.mean_duration_seconds / 60:.1f}",
                stddev,
                str(s.session_count),
            )
        console.print(table)
    finally:
        db.close()


@app.command("optimal")
def optimal(
    route_id: int = typer.Argument(...),
    day_of_week: str = typer.Argument(..., help="e.g. Tuesday"),
):
    """Best departure window for a day of week."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.optimal_departure import get_optimal_departure

    db = SessionLocal()
    try:
        try:
            result = get_optimal_departure(db, route_id, day_of_week)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)
        if result is None:
            console.print("[yellow]Not enough history yet.[/yellow]")
            return
        console.print(
            f"[bold]Best: {result.label}[/bold] on {result.day_of_week} — "
            f"~{result.predicted_duration_seconds / 60:.1f} min "
            f"({result.lower_bound / 60:.1f}-{result.upper_bound / 60:.1f})"
        )
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@app.command("poll-once")
def poll_once(route_id: int = typer.Argument(...)):
    """Take one sample for a route now (requires an active session)."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.poll_executor import execute_poll

    db = SessionLocal()
    try:
        result = execute_poll(db, route_id)
        if not result:
            console.print(f"[yellow]No sample recorded: {result.reason}[/yellow]")
            raise typer.Exit(1)
        flag = " [red](rerouted)[/red]" if result.is_rerouted else ""
        console.print(f"[green]Recorded poll {result.poll_record_id}[/green]{flag}")
    finally:
        db.close()


@app.command("prune")
def prune():
    """Soft-delete poll records older than the retention window."""
    from commutewatch.database import SessionLocal
    from commutewatch.modules.retention import prune_old_poll_records

    db = SessionLocal()
    try:
        count = prune_old_poll_records(db)
        console.print(f"Pruned {count:,} poll records older than {settings.RETENTION_DAYS} days")
    finally:
        db.close()


@app.command("worker")
def worker():
    """Run the poll scheduler until interrupted."""
    import time

    from commutewatch.database import init_db
    from commutewatch.modules.scheduler import shutdown_backend, start_worker

    init_db()
    start_worker()
    console.print("Poll worker running — press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping worker...")
    finally:
        shutdown_backend()


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the HTTP API."""
    import uvicorn

    console.print(f"API running at [cyan]http://{host}:{port}[/cyan] — press Ctrl+C to stop")
    uvicorn.run("commutewatch.main:app", host=host, port=port)


@app.command("status")
def status(user_id: Optional[int] = typer.Option(None, "--user", "-u", help="Limit to one user")):
    """Show routes, today's sessions and pending poll chains."""
    from commutewatch.database import SessionLocal
    from commutewatch.models.base import MonitoringStatusEnum, SessionStateEnum
    from commutewatch.models.monitoring_session import MonitoringSession
    from commutewatch.models.poll_record import PollRecord
    from commutewatch.models.route import Route
    from commutewatch.utils.clock import system_clock

    db = SessionLocal()
    try:
        routes_q = db.query(Route).filter(Route.monitoring_status != MonitoringStatusEnum.DELETED)
        if user_id is not None:
            routes_q = routes_q.filter(Route.user_id == user_id)
        routes = routes_q.order_by(Route.route_id).all()

        console.print("[bold]System[/bold]")
        console.print("  Database: [green]OK[/green]")
        console.print(f"  Poll interval: {settings.POLL_INTERVAL_MINUTES} min, daily quota: {settings.DAILY_QUOTA}")

        if not routes:
            console.print("\n[yellow]No routes yet. Run [cyan]commutewatch add-route[/cyan] to begin.[/yellow]")
            return

        today = system_clock.today()
        table = Table(title=f"Routes ({today})")
        table.add_column("ID", justify="right")
        table.add_column("User", justify="right")
        table.add_column("Origin")
        table.add_column("Destination")
        table.add_column("Session")
        table.add_column("Polls", justify="right")
        table.add_column("Chain")
        for route in routes:
            session = db.query(MonitoringSession).filter(
                MonitoringSession.route_id == route.route_id,
                MonitoringSession.session_date == today,
            ).first()
            if session is None:
                session_str, polls = "[dim]-[/dim]", "-"
            else:
                active = session.state == SessionStateEnum.ACTIVE
                session_str = f"{'[green]active' if active else '[dim]completed'} #{session.session_id}[/]"
                polls = str(session.poll_count)
            table.add_row(
                str(route.route_id),
                str(route.user_id),
                route.origin_address,
                route.destination_address,
                session_str,
                polls,
                "[green]pending[/green]" if route.chain_handle else "[dim]idle[/dim]",
            )
        console.print(table)

        total = db.query(PollRecord).filter(PollRecord.is_deleted == False).count()  # noqa: E712
        console.print(f"\nPoll records retained: {total:,}")
    finally:
        db.close()
