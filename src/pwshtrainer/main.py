"""CLI entrypoint for the PowerShell trainer."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable

from rich.console import Console
from rich.table import Table

from .accounts import (
    AccountNotFound,
    AccountStore,
    InvalidAccountNumber,
    StoreError,
    StoreUnavailable,
    format_account_number,
)
from .app import TrainerApp
from .config import Settings, configure_logging, resolve_settings
from .content_loader import load_modules
from .render import DEFAULT_THEME, render_frame

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]
PROMPT = "> "
RESIZE_COMMAND = ":resize"


def _open_store(settings: Settings) -> AccountStore | None:
    """Open the account database, or None when persistence is off or unavailable."""
    if not settings.persist:
        logger.info("Persistence disabled; running without an account store")
        return None
    try:
        return AccountStore(settings.db_path)
    except StoreUnavailable as exc:
        logger.warning("Account store unavailable, continuing without persistence: %s", exc)
        return None


def build_app(settings: Settings) -> TrainerApp:
    """Create the state machine with bundled content and the configured store."""
    return TrainerApp(load_modules(), _open_store(settings), width=settings.width, height=settings.height)


def parse_line(line: str) -> list[str]:
    """Translate one input line into key events.

    An empty line is `enter`; a line made only of `:name` tokens sends those keys
    (`:up :up`, `:esc`, `:ctrl+c`); anything else is typed character by character.
    """
    if not line:
        return ["enter"]
    tokens = line.split()
    if tokens and all(token.startswith(":") and len(token) > 1 for token in tokens):
        return [token[1:] for token in tokens]
    return list(line)


def _parse_resize(line: str) -> tuple[int, int] | None:
    parts = line.split()
    if len(parts) != 3 or parts[0] != RESIZE_COMMAND:
        return None
    try:
        width, height = int(parts[1]), int(parts[2])
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height


def play_shell(settings: Settings, input_fn: InputFn = input, console: Console | None = None) -> int:
    """Run the interactive trainer until the user quits."""
    out = console or Console()
    app = build_app(settings)
    timer_armed = True
    try:
        while app.running:
            if timer_armed:
                timer_armed = app.handle_tick()
            out.print(render_frame(app.frame(), DEFAULT_THEME))
            try:
                line = input_fn(PROMPT)
            except EOFError:
                app.handle_key("ctrl+c")
                break
            size = _parse_resize(line.strip())
            if size is not None:
                app.handle_resize(*size)
                continue
            for key in parse_line(line.rstrip("\n")):
                app.handle_key(key)
                if not app.running:
                    break
            timer_armed = timer_armed or app.animating
    finally:
        app.shutdown()
    return 0


def stats_command(settings: Settings, account_number: str, console: Console | None = None) -> int:
    """Print the stored stats for one account."""
    out = console or Console()
    try:
        store = AccountStore(settings.db_path)
    except StoreUnavailable as exc:
        out.print(f"Account store unavailable: {exc}")
        return 1
    try:
        account = store.find_account(format_account_number(account_number))
        stats = store.get_stats(account.id)
        progress = store.get_progress(account.id)
        open_sessions = len(store.open_session_ids(account.id))
    except AccountNotFound:
        out.print("Account not found. Please check your account number.")
        return 1
    except InvalidAccountNumber as exc:
        out.print(str(exc))
        return 1
    except StoreError as exc:
        out.print(f"Could not read stats: {exc}")
        return 1
    finally:
        store.close()

    table = Table(title=f"{account.name} ({account.account_number})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Lessons completed", str(stats.lessons_completed))
    table.add_row("Total time (s)", str(stats.total_time_seconds))
    table.add_row("Achievements", str(stats.achievement_count))
    table.add_row("Active days (7d)", str(stats.current_streak))
    table.add_row("Open sessions", str(open_sessions))
    table.add_row("Last login", account.last_login or "never")
    out.print(table)
    for item in progress:
        out.print(f"- {item.module_id}/{item.lesson_id} completed {item.completed_at}")
    return 0


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="pwshtrainer", description="Account-based PowerShell trainer")
    parser.add_argument("command", nargs="?", default="play", choices=["play", "stats"])
    parser.add_argument("--account", help="account number for the stats command")
    parser.add_argument("--data-dir", help="directory holding the database and log file")
    parser.add_argument("--log-level", help="log level written to the log file")
    parser.add_argument("--no-persist", action="store_true", help="run without the account database")
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(data_dir=args.data_dir, log_level=args.log_level, persist=not args.no_persist)
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings)

    if args.command == "stats":
        if not args.account:
            parser.error("stats requires --account")
        return stats_command(settings, args.account)
    return play_shell(settings)


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
