from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich import print

from .client import DashboardClient
from .config import DashsyncConfig, load_config
from .metrics import completion_history, history_summary
from .store.local import LocalStore
from .store.remote import RemoteStore
from .store.storage import LocalStorage
from .store.types import Habit
from .store.utils import normalize_user_id
from .sync.http_client import HttpTransport
from .sync.state import SyncResult, SyncTimings
from .sync.transport import LocalTransport, RemoteTransport
from .sync_server import run_sync_server

T = TypeVar("T")

app = typer.Typer(help="dashsync: personal dashboard with cross-device sync")
sync_app = typer.Typer(help="Manage sync with the remote store")
habits_app = typer.Typer(help="Track habits")
journal_app = typer.Typer(help="Daily journal")
focus_app = typer.Typer(help="Daily focus line")
app.add_typer(sync_app, name="sync")
app.add_typer(habits_app, name="habits")
app.add_typer(journal_app, name="journal")
app.add_typer(focus_app, name="focus")


def _configure_logging(cfg: DashsyncConfig) -> None:
    level = getattr(logging, str(cfg.log_level).upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load() -> DashsyncConfig:
    cfg = load_config()
    _configure_logging(cfg)
    return cfg


def _transport_factory(cfg: DashsyncConfig) -> Callable[[], RemoteTransport]:
    if cfg.remote_url:
        url = cfg.remote_url

        def _http() -> RemoteTransport:
            return HttpTransport(url, timeout_s=cfg.request_timeout_s)

        return _http

    def _local() -> RemoteTransport:
        store = RemoteStore(cfg.server_db_path, check_same_thread=False)
        return LocalTransport(store, close_store=True)

    return _local


def _client(cfg: DashsyncConfig, db_path: str | None) -> DashboardClient:
    storage = LocalStorage(Path(db_path or cfg.db_path))
    return DashboardClient(
        LocalStore(storage),
        _transport_factory(cfg),
        timings=SyncTimings.from_config(cfg),
    )


def _close_storage(client: DashboardClient) -> None:
    close = getattr(client.store.storage, "close", None)
    if callable(close):
        close()


def _report(label: str, result: SyncResult) -> None:
    if result.ok:
        print(f"[green]{label} ok[/green] (synced_at={result.synced_at})")
        return
    if result.error == "not_configured":
        print("[yellow]Sync is not enabled. Run `dashsync sync enable <user-id>`.[/yellow]")
        return
    print(f"[red]{label} failed:[/red] {result.error}")


def _mutate(db_path: str | None, mutate: Callable[[LocalStore], T]) -> T:
    """Apply one local mutation, syncing around it when sync is enabled."""

    cfg = _load()
    client = _client(cfg, db_path)

    async def _run() -> T:
        await client.start(initial_pull=False)
        try:
            if client.sync_enabled:
                pulled = await client.pull()
                if not pulled.ok:
                    _report("pull", pulled)
            value = mutate(client.store)
            if client.sync_enabled:
                pushed = await client.push()
                if not pushed.ok:
                    _report("push", pushed)
            return value
        finally:
            await client.close()

    try:
        return asyncio.run(_run())
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        _close_storage(client)


def _with_client(db_path: str | None, action: Callable[[DashboardClient], T]) -> T:
    cfg = _load()
    client = _client(cfg, db_path)
    try:
        return action(client)
    finally:
        _close_storage(client)


def _find_habit(store: LocalStore, ref: str) -> Habit:
    habit = store.get_habit(ref)
    if habit is not None:
        return habit
    lowered = ref.strip().lower()
    matches = [h for h in store.habits if h.name.lower() == lowered]
    if len(matches) == 1:
        return matches[0]
    if matches:
        print(f"[red]Habit name is ambiguous:[/red] {ref}")
    else:
        print(f"[red]Unknown habit:[/red] {ref}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind"),
    port: int = typer.Option(None, help="Port to bind"),
    db_path: str = typer.Option(None, help="Path to the server SQLite database"),
) -> None:
    """Run the sync HTTP server in the foreground."""

    cfg = _load()
    bind_host = host or cfg.server_host
    bind_port = port or cfg.server_port
    stop = threading.Event()
    print(f"[green]Sync server on http://{bind_host}:{bind_port}/sync[/green]")
    try:
        run_sync_server(
            bind_host,
            bind_port,
            db_path=Path(db_path or cfg.server_db_path).expanduser(),
            max_body_bytes=cfg.max_sync_body_bytes,
            log_path=Path(cfg.log_file).expanduser() if cfg.log_file else None,
            stop_event=stop,
        )
    except KeyboardInterrupt:
        stop.set()
    except OSError as exc:
        print(f"[red]Failed to start sync server:[/red] {exc}")
        raise typer.Exit(code=1) from exc


@sync_app.command("enable")
def sync_enable(
    user_id: str = typer.Argument(None, help="Account identifier (email)"),
    pull: bool = typer.Option(True, help="Load server state after enabling"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Store the account id, turn sync on and load the server's state."""

    cfg = _load()
    resolved = normalize_user_id(user_id or cfg.user_id)
    if not resolved:
        print("[red]A user id is required (argument or DASHSYNC_USER_ID).[/red]")
        raise typer.Exit(code=1)
    client = _client(cfg, db_path)

    async def _run() -> SyncResult | None:
        await client.start(initial_pull=False)
        try:
            await client.enable_sync(resolved, initial_pull=False)
            if not pull:
                return None
            return await client.pull()
        finally:
            await client.close()

    try:
        result = asyncio.run(_run())
    finally:
        _close_storage(client)
    print(f"[green]Sync enabled for {resolved}[/green]")
    if result is not None:
        _report("pull", result)


@sync_app.command("disable")
def sync_disable(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Turn sync off; local data is kept."""

    def _disable(client: DashboardClient) -> None:
        client.store.hydrate()
        client.store.set_user_id(None)
        client.store.set_last_synced_at(None)

    _with_client(db_path, _disable)
    print("[yellow]Sync disabled[/yellow]")


@sync_app.command("status")
def sync_status(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Show sync configuration and watermark."""

    cfg = _load()

    def _status(client: DashboardClient) -> None:
        client.store.hydrate()
        user_id = client.store.user_id
        print(f"- Enabled: {'yes' if user_id else 'no'}")
        print(f"- User: {user_id or '-'}")
        print(f"- Remote: {cfg.remote_url or f'local ({cfg.server_db_path})'}")
        print(f"- Last synced: {client.store.last_synced_at or 'never'}")

    _with_client(db_path, _status)


def _run_sync(db_path: str | None, label: str, op: str) -> None:
    cfg = _load()
    client = _client(cfg, db_path)

    async def _run() -> SyncResult:
        await client.start(initial_pull=False)
        try:
            if op == "push":
                return await client.push()
            if op == "pull":
                return await client.pull()
            return await client.sync_now()
        finally:
            await client.close()

    try:
        result = asyncio.run(_run())
    finally:
        _close_storage(client)
    _report(label, result)
    if not result.ok and result.error != "not_configured":
        raise typer.Exit(code=1)


@sync_app.command("now")
def sync_now(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Push local state, then pull the merged server state."""

    _run_sync(db_path, "sync", "now")


@sync_app.command("pull")
def sync_pull(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Replace local state with the server's."""

    _run_sync(db_path, "pull", "pull")


@sync_app.command("push")
def sync_push(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Upload local state."""

    _run_sync(db_path, "push", "push")


@habits_app.command("list")
def habits_list(
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """List habits with streaks and completion rates."""

    def _list(client: DashboardClient) -> None:
        client.store.hydrate()
        stats = client.habits_with_stats()
        if not stats:
            print("No habits yet.")
            return
        for item in stats:
            mark = "[green]x[/green]" if item.today_completed else " "
            print(
                f"[{mark}] {item.habit.name} ({item.habit.id}) "
                f"streak {item.current_streak} (best {item.best_streak}) "
                f"7d {item.completion_rate_7_days}% 30d {item.completion_rate_30_days}%"
            )

    _with_client(db_path, _list)


@habits_app.command("add")
def habits_add(
    name: str = typer.Argument(..., help="Habit name"),
    description: str = typer.Option(None, help="Optional description"),
    target_type: str = typer.Option("binary", help="binary, numeric or duration"),
    target_value: float = typer.Option(None, help="Daily target for numeric habits"),
    target_unit: str = typer.Option(None, help="Unit for the target value"),
    tags: list[str] = typer.Option(None, "--tag", help="Repeat for multiple tags"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Add a habit."""

    habit = _mutate(
        db_path,
        lambda store: store.add_habit(
            name,
            description=description,
            target_type=target_type,
            target_value=target_value,
            target_unit=target_unit,
            tags=list(tags or []),
        ),
    )
    print(f"[green]Added habit {habit.name}[/green] ({habit.id})")


@habits_app.command("toggle")
def habits_toggle(
    habit: str = typer.Argument(..., help="Habit id or name"),
    date: str = typer.Option(None, help="Day as YYYY-MM-DD (defaults to today)"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Flip a habit's completion for a day."""

    def _toggle(store: LocalStore):
        target = _find_habit(store, habit)
        return target, store.toggle_habit_completion(target.id, date)

    target, completion = _mutate(db_path, _toggle)
    state = "done" if completion.completed else "not done"
    print(f"{target.name} on {completion.date}: {state}")


@habits_app.command("value")
def habits_value(
    habit: str = typer.Argument(..., help="Habit id or name"),
    value: float = typer.Argument(..., help="Recorded value"),
    date: str = typer.Option(None, help="Day as YYYY-MM-DD (defaults to today)"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Record a numeric value for a habit."""

    def _set(store: LocalStore):
        target = _find_habit(store, habit)
        return target, store.set_habit_value(target.id, value, date)

    target, completion = _mutate(db_path, _set)
    print(f"{target.name} on {completion.date}: {completion.value}")


@habits_app.command("history")
def habits_history(
    days: int = typer.Option(30, help="Days of history"),
    habit: str = typer.Option(None, help="Show one habit day by day"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Summarize habit history."""

    if days <= 0:
        print("[red]--days must be positive[/red]")
        raise typer.Exit(code=1)

    def _history(client: DashboardClient) -> None:
        store = client.store
        store.hydrate()
        if habit:
            target = _find_habit(store, habit)
            for day in completion_history(target.id, store.habit_completions, days):
                mark = "x" if day.completed else "."
                suffix = f" {day.value}" if day.value is not None else ""
                print(f"{day.date.isoformat()} {mark}{suffix}")
            return
        for summary in history_summary(store.habits, store.habit_completions, days):
            print(
                f"{summary.habit.name}: {summary.completed_days}/{days} days "
                f"({summary.completion_rate}%), streak {summary.current_streak}"
            )

    _with_client(db_path, _history)


@journal_app.command("add")
def journal_add(
    content: str = typer.Argument(..., help="Entry text"),
    date: str = typer.Option(None, help="Day as YYYY-MM-DD (defaults to today)"),
    mood: int = typer.Option(None, help="Mood 1-5"),
    energy: int = typer.Option(None, help="Energy 1-5"),
    tags: list[str] = typer.Option(None, "--tag", help="Repeat for multiple tags"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Write the journal entry for a day (updates it if one exists)."""

    def _write(store: LocalStore):
        existing = store.entry_for_date(date)
        fields = {
            key: value
            for key, value in (("mood", mood), ("energy", energy), ("tags", tags))
            if value
        }
        if existing is not None:
            return store.update_journal_entry(existing.id, content=content, **fields)
        return store.add_journal_entry(content, date, **fields)

    entry = _mutate(db_path, _write)
    print(f"[green]Journal saved for {entry.date}[/green]")


@focus_app.command("set")
def focus_set(
    text: str = typer.Argument(..., help="Focus line"),
    date: str = typer.Option(None, help="Day as YYYY-MM-DD (defaults to today)"),
    db_path: str = typer.Option(None, help="Path to the local SQLite database"),
) -> None:
    """Set the focus line for a day."""

    line = _mutate(db_path, lambda store: store.set_focus_line(text, date))
    print(f"[green]Focus for {line.date}:[/green] {line.text}")


if __name__ == "__main__":
    app()
