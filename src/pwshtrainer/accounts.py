"""SQLite persistence for accounts, sessions, progress, and achievements."""

from __future__ import annotations

import logging
import random
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
ACCOUNT_NUMBER_DIGITS = 16
MAX_GENERATION_ATTEMPTS = 100
STREAK_WINDOW_DAYS = 7

Clock = Callable[[], datetime]


class StoreError(Exception):
    """Base class for account store failures."""


class StoreUnavailable(StoreError):
    """The database could not be opened or migrated."""


class AccountNotFound(StoreError):
    """No active account matches the given number."""


class DuplicateAccount(StoreError):
    """An account with this number already exists."""


class InvalidAccountNumber(StoreError, ValueError):
    """The value is not a 16-digit account number."""


class GenerationExhausted(StoreError):
    """No unused account number was produced within the attempt budget."""


class SessionUpdateError(StoreError):
    """A session could not be closed."""


@dataclass(frozen=True)
class Account:
    """Learner account record."""

    id: int
    account_number: str
    name: str
    email: str
    created_at: str
    last_login: str | None
    is_active: bool


@dataclass(frozen=True)
class Session:
    """One interval of use by an account."""

    id: int
    account_id: int
    start: str
    end: str | None
    duration_seconds: int | None

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass(frozen=True)
class Progress:
    """Completed lesson marker."""

    account_id: int
    module_id: str
    lesson_id: str
    completed_at: str


@dataclass(frozen=True)
class AccountStats:
    """Aggregates shown on the dashboard."""

    lessons_completed: int
    total_time_seconds: int
    achievement_count: int
    current_streak: int


def bare_account_number(value: str) -> str:
    """Strip all whitespace from an account number."""
    return "".join(value.split())


def is_valid_account_number(value: str) -> bool:
    """Whether `value` holds exactly 16 ASCII digits once spaces are removed."""
    bare = bare_account_number(value)
    return len(bare) == ACCOUNT_NUMBER_DIGITS and bare.isascii() and bare.isdigit()


def format_account_number(value: str) -> str:
    """Return the canonical `dddd dddd dddd dddd` form."""
    bare = bare_account_number(value)
    if not is_valid_account_number(bare):
        raise InvalidAccountNumber(f"Account number must be exactly {ACCOUNT_NUMBER_DIGITS} digits.")
    return " ".join(bare[i : i + 4] for i in range(0, ACCOUNT_NUMBER_DIGITS, 4))


def _lookup_forms(value: str) -> tuple[str, str]:
    """Grouped and bare spellings to match against stored rows."""
    bare = bare_account_number(value)
    if is_valid_account_number(bare):
        return (format_account_number(bare), bare)
    return (value, bare)


def generate_account_number(rng: random.Random | None = None) -> str:
    """Generate a random grouped account number whose first digit is 1-9."""
    source = rng or random.SystemRandom()
    digits = [str(source.randint(1, 9))]
    digits.extend(str(source.randint(0, 9)) for _ in range(ACCOUNT_NUMBER_DIGITS - 1))
    return format_account_number("".join(digits))


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AccountStore:
    """Database access layer for accounts and their learning history.

    Every public method takes the store-wide lock: reads share it, writes hold it
    exclusively. Account numbers are written in canonical grouped form; lookups
    also match rows written without spaces.
    """

    def __init__(self, db_path: Path | str, clock: Clock = _utc_now) -> None:
        """Open (and create or migrate) the database."""
        target = str(db_path)
        self._clock = clock
        self._lock = ReadWriteLock()
        try:
            if isinstance(db_path, Path):
                db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(target, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._apply_migrations()
        except (sqlite3.Error, OSError, RuntimeError) as exc:
            raise StoreUnavailable(f"Could not open account database at {target}: {exc}") from exc

    def _now(self) -> str:
        return self._clock().isoformat()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, self._now()),
                )

    def _migrate_to_v1(self) -> None:
        """Create account, progress, session, and achievement tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_number TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_login TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """)
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_accounts_email ON accounts(email)")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS account_progress (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL REFERENCES accounts(id),
                    module_id TEXT NOT NULL,
                    lesson_id TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    UNIQUE (account_id, module_id, lesson_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS account_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL REFERENCES accounts(id),
                    session_start TEXT NOT NULL,
                    session_end TEXT,
                    duration_seconds INTEGER
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS account_achievements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id INTEGER NOT NULL REFERENCES accounts(id),
                    achievement_id TEXT NOT NULL,
                    earned_at TEXT NOT NULL,
                    UNIQUE (account_id, achievement_id)
                )
                """)

    def _exists(self, account_number: str) -> bool:
        grouped, bare = _lookup_forms(account_number)
        row = self._conn.execute(
            "SELECT COUNT(*) FROM accounts WHERE account_number = ? OR account_number = ?",
            (grouped, bare),
        ).fetchone()
        return int(row[0]) > 0

    def _find_active(self, account_number: str) -> Account:
        grouped, bare = _lookup_forms(account_number)
        row = self._conn.execute(
            """
            SELECT id, account_number, name, email, created_at, last_login, is_active
            FROM accounts
            WHERE (account_number = ? OR account_number = ?) AND is_active = 1
            """,
            (grouped, bare),
        ).fetchone()
        if row is None:
            raise AccountNotFound(f"No active account with number {grouped}")
        return _account_from_row(row)

    def account_exists(self, account_number: str) -> bool:
        """Return whether any account (active or not) uses this number."""
        with self._lock.read():
            return self._exists(account_number)

    def create_account(self, name: str, email: str, account_number: str) -> Account:
        """Create an account; the number is stored in canonical grouped form."""
        canonical = format_account_number(account_number)
        with self._lock.write():
            if self._exists(canonical):
                raise DuplicateAccount(f"Account number {canonical} is already in use.")
            now = self._now()
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        "INSERT INTO accounts (account_number, name, email, created_at) VALUES (?, ?, ?, ?)",
                        (canonical, name, email, now),
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateAccount(f"Account number {canonical} is already in use.") from exc
        row_id = cursor.lastrowid
        if row_id is None:
            raise StoreError("Could not create account.")
        return Account(
            id=int(row_id),
            account_number=canonical,
            name=name,
            email=email,
            created_at=now,
            last_login=None,
            is_active=True,
        )

    def find_account(self, account_number: str) -> Account:
        """Return the active account for a grouped or bare number."""
        with self._lock.read():
            return self._find_active(account_number)

    def sign_in(self, account_number: str) -> Account:
        """Look up an account and stamp its last login time."""
        with self._lock.write():
            account = self._find_active(account_number)
            now = self._now()
            try:
                with self._conn:
                    self._conn.execute("UPDATE accounts SET last_login = ? WHERE id = ?", (now, account.id))
            except sqlite3.Error:
                logger.warning("Failed to update last login for account %s", account.id, exc_info=True)
                return account
        return Account(
            id=account.id,
            account_number=account.account_number,
            name=account.name,
            email=account.email,
            created_at=account.created_at,
            last_login=now,
            is_active=account.is_active,
        )

    def deactivate_account(self, account_id: int) -> bool:
        """Mark an account inactive so it can no longer sign in."""
        with self._lock.write(), self._conn:
            cursor = self._conn.execute("UPDATE accounts SET is_active = 0 WHERE id = ?", (account_id,))
        return cursor.rowcount > 0

    def count_accounts(self) -> int:
        """Return the number of active accounts."""
        with self._lock.read():
            row = self._conn.execute("SELECT COUNT(*) FROM accounts WHERE is_active = 1").fetchone()
        return int(row[0])

    def generate_unique_account_number(self, generator: Callable[[], str] = generate_account_number) -> str:
        """Draw numbers from `generator` until one is unused.

        Gives up with `GenerationExhausted` after `MAX_GENERATION_ATTEMPTS` draws.
        """
        for _ in range(MAX_GENERATION_ATTEMPTS):
            candidate = generator()
            if not self.account_exists(candidate):
                return candidate
        raise GenerationExhausted(
            f"Failed to generate unique account number after {MAX_GENERATION_ATTEMPTS} attempts."
        )

    def start_session(self, account_id: int) -> int:
        """Open a session, closing any session the account still has open."""
        with self._lock.write():
            now_dt = self._clock()
            open_rows = self._conn.execute(
                "SELECT id, session_start FROM account_sessions WHERE account_id = ? AND session_end IS NULL",
                (account_id,),
            ).fetchall()
            with self._conn:
                for row in open_rows:
                    self._close_session(int(row["id"]), str(row["session_start"]), now_dt)
                cursor = self._conn.execute(
                    "INSERT INTO account_sessions (account_id, session_start) VALUES (?, ?)",
                    (account_id, now_dt.isoformat()),
                )
        row_id = cursor.lastrowid
        if row_id is None:
            raise StoreError("Could not start session.")
        return int(row_id)

    def _close_session(self, session_id: int, started: str, ended: datetime) -> None:
        duration = max(0, int((ended - datetime.fromisoformat(started)).total_seconds()))
        self._conn.execute(
            "UPDATE account_sessions SET session_end = ?, duration_seconds = ? WHERE id = ?",
            (ended.isoformat(), duration, session_id),
        )

    def end_session(self, session_id: int) -> None:
        """Close an open session and record its duration."""
        with self._lock.write():
            row = self._conn.execute(
                "SELECT session_start, session_end FROM account_sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                raise SessionUpdateError(f"Session {session_id} does not exist.")
            if row["session_end"] is not None:
                raise SessionUpdateError(f"Session {session_id} is already closed.")
            try:
                with self._conn:
                    self._close_session(session_id, str(row["session_start"]), self._clock())
            except sqlite3.Error as exc:
                raise SessionUpdateError(f"Could not close session {session_id}: {exc}") from exc

    def get_session(self, session_id: int) -> Session | None:
        """Return one session by id."""
        with self._lock.read():
            row = self._conn.execute(
                """
                SELECT id, account_id, session_start, session_end, duration_seconds
                FROM account_sessions
                WHERE id = ?
                """,
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return Session(
            id=int(row["id"]),
            account_id=int(row["account_id"]),
            start=str(row["session_start"]),
            end=str(row["session_end"]) if row["session_end"] is not None else None,
            duration_seconds=int(row["duration_seconds"]) if row["duration_seconds"] is not None else None,
        )

    def open_session_ids(self, account_id: int) -> list[int]:
        """Return ids of sessions not yet closed for an account."""
        with self._lock.read():
            rows = self._conn.execute(
                "SELECT id FROM account_sessions WHERE account_id = ? AND session_end IS NULL ORDER BY id",
                (account_id,),
            ).fetchall()
        return [int(row["id"]) for row in rows]

    def save_progress(self, account_id: int, module_id: str, lesson_id: str) -> None:
        """Record a completed lesson; re-completing refreshes `completed_at`."""
        with self._lock.write(), self._conn:
            self._conn.execute(
                """
                INSERT INTO account_progress (account_id, module_id, lesson_id, completed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(account_id, module_id, lesson_id) DO UPDATE SET
                    completed_at = excluded.completed_at
                """,
                (account_id, module_id, lesson_id, self._now()),
            )

    def get_progress(self, account_id: int) -> list[Progress]:
        """Return completed lessons, most recent first."""
        with self._lock.read():
            rows = self._conn.execute(
                """
                SELECT account_id, module_id, lesson_id, completed_at
                FROM account_progress
                WHERE account_id = ?
                ORDER BY completed_at DESC, id DESC
                """,
                (account_id,),
            ).fetchall()
        return [
            Progress(
                account_id=int(row["account_id"]),
                module_id=str(row["module_id"]),
                lesson_id=str(row["lesson_id"]),
                completed_at=str(row["completed_at"]),
            )
            for row in rows
        ]

    def award_achievement(self, account_id: int, achievement_id: str) -> bool:
        """Grant an achievement; returns False if it was already earned."""
        with self._lock.write(), self._conn:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO account_achievements (account_id, achievement_id, earned_at)
                VALUES (?, ?, ?)
                """,
                (account_id, achievement_id, self._now()),
            )
        return cursor.rowcount > 0

    def achievement_ids(self, account_id: int) -> set[str]:
        """Return ids of the achievements an account has earned."""
        with self._lock.read():
            rows = self._conn.execute(
                "SELECT achievement_id FROM account_achievements WHERE account_id = ?",
                (account_id,),
            ).fetchall()
        return {str(row["achievement_id"]) for row in rows}

    def get_stats(self, account_id: int) -> AccountStats:
        """Compute dashboard aggregates for one account."""
        cutoff = (self._clock() - timedelta(days=STREAK_WINDOW_DAYS)).date().isoformat()
        with self._lock.read():
            lessons = self._conn.execute(
                "SELECT COUNT(*) FROM account_progress WHERE account_id = ?",
                (account_id,),
            ).fetchone()[0]
            seconds = self._conn.execute(
                "SELECT COALESCE(SUM(duration_seconds), 0) FROM account_sessions WHERE account_id = ?",
                (account_id,),
            ).fetchone()[0]
            achievements = self._conn.execute(
                "SELECT COUNT(*) FROM account_achievements WHERE account_id = ?",
                (account_id,),
            ).fetchone()[0]
            streak = self._conn.execute(
                """
                SELECT COUNT(DISTINCT substr(session_start, 1, 10))
                FROM account_sessions
                WHERE account_id = ? AND session_start >= ?
                """,
                (account_id, cutoff),
            ).fetchone()[0]
        return AccountStats(
            lessons_completed=int(lessons),
            total_time_seconds=int(seconds),
            achievement_count=int(achievements),
            current_streak=int(streak),
        )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()


def _account_from_row(row: sqlite3.Row) -> Account:
    return Account(
        id=int(row["id"]),
        account_number=str(row["account_number"]),
        name=str(row["name"]),
        email=str(row["email"]),
        created_at=str(row["created_at"]),
        last_login=str(row["last_login"]) if row["last_login"] is not None else None,
        is_active=bool(row["is_active"]),
    )
