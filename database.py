"""
SQLite database layer for the Family Revision Companion.

Uses raw sqlite3 with WAL mode and parameterized queries.
A schema_version table handles migrations. Connections run in autocommit
mode; multi-statement units of work go through transaction().
"""

from __future__ import annotations

import fcntl
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from flask import current_app, g

from reward_config import ACHIEVEMENT_DEFINITIONS, QUEST_DEFINITIONS

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent / "revision.db"


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Profiles (identity and role come from the auth layer)
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'child',
    age_group TEXT NOT NULL DEFAULT 'child',
    parent_id TEXT REFERENCES profiles(id) ON DELETE SET NULL,
    pin_hash TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);

-- Question bank (read-only here)
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL DEFAULT '',
    theme_id TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT '',
    question TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_questions_theme ON questions(theme_id);

-- Spaced repetition
CREATE TABLE IF NOT EXISTS card_progress (
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    card_id TEXT NOT NULL,
    last_seen TEXT,
    next_due TEXT,
    interval INTEGER NOT NULL DEFAULT 0,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    repetitions INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY(profile_id, card_id)
);
CREATE INDEX IF NOT EXISTS idx_card_progress_due ON card_progress(profile_id, next_due);

CREATE TABLE IF NOT EXISTS card_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    card_id TEXT NOT NULL,
    date TEXT NOT NULL,
    result TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_card_history_card ON card_history(profile_id, card_id);

-- Sessions and streaks
CREATE TABLE IF NOT EXISTS profile_stats (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    total_sessions INTEGER NOT NULL DEFAULT 0,
    total_cards_studied INTEGER NOT NULL DEFAULT 0,
    current_streak INTEGER NOT NULL DEFAULT 0,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_session_date TEXT
);

CREATE TABLE IF NOT EXISTS weekly_streaks (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    current_weekly_streak INTEGER NOT NULL DEFAULT 0,
    longest_weekly_streak INTEGER NOT NULL DEFAULT 0,
    week_study_days TEXT NOT NULL DEFAULT '{}',
    last_week_completed TEXT
);

-- XP, coins, achievements
CREATE TABLE IF NOT EXISTS profile_xp (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    total_xp INTEGER NOT NULL DEFAULT 0,
    level INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS subject_xp (
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    subject_id TEXT NOT NULL,
    xp INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY(profile_id, subject_id)
);

CREATE TABLE IF NOT EXISTS profile_coins (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    coins INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS coin_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    amount INTEGER NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS achievements (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    icon TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT '',
    threshold INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS profile_achievements (
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    achievement_id TEXT NOT NULL REFERENCES achievements(id),
    unlocked_at TEXT NOT NULL,
    PRIMARY KEY(profile_id, achievement_id)
);

-- Quests
CREATE TABLE IF NOT EXISTS quest_definitions (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    target INTEGER NOT NULL,
    metric TEXT NOT NULL,
    xp_reward INTEGER NOT NULL DEFAULT 0,
    coin_reward INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS profile_quests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    quest_id TEXT NOT NULL REFERENCES quest_definitions(id),
    progress INTEGER NOT NULL DEFAULT 0,
    completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    assigned_date TEXT NOT NULL,
    UNIQUE(profile_id, quest_id, assigned_date)
);
CREATE INDEX IF NOT EXISTS idx_profile_quests_period ON profile_quests(profile_id, assigned_date);

CREATE TABLE IF NOT EXISTS profile_reward_state (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    last_session_date TEXT,
    daily_bonus_used TEXT,
    variable_rewards INTEGER NOT NULL DEFAULT 1
);

-- Tokens
CREATE TABLE IF NOT EXISTS profile_tokens (
    profile_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
    tokens INTEGER NOT NULL DEFAULT 0,
    token_rate REAL NOT NULL DEFAULT 0.10,
    daily_earned INTEGER NOT NULL DEFAULT 0,
    daily_reset_date TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS token_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    amount INTEGER NOT NULL,
    reason TEXT NOT NULL DEFAULT '',
    session_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS token_test_history (
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    test_key TEXT NOT NULL,
    times_completed INTEGER NOT NULL DEFAULT 0,
    best_score INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY(profile_id, test_key)
);

CREATE TABLE IF NOT EXISTS test_sessions (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    test_key TEXT NOT NULL,
    score INTEGER NOT NULL,
    difficulty TEXT NOT NULL DEFAULT 'medium',
    created_at TEXT NOT NULL
);

-- Audit trail
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    profile_id TEXT,
    action TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    ip_address TEXT NOT NULL DEFAULT '',
    user_agent TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


MIGRATIONS: list[tuple[int, str]] = [
    # Version 1 = base schema.
    # -----------------------------------------------------------
    # Migration 2: Idempotency keys for client reward sync batches
    (2, """
        CREATE TABLE IF NOT EXISTS sync_batches (
            profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            batch_id TEXT NOT NULL,
            xp INTEGER NOT NULL DEFAULT 0,
            coins INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            PRIMARY KEY(profile_id, batch_id)
        );
    """),
    # Migration 3: Streak freezes for weekly streaks
    (3, """
        ALTER TABLE weekly_streaks ADD COLUMN streak_freezes INTEGER NOT NULL DEFAULT 0;
    """),
]


def get_db() -> sqlite3.Connection:
    """Return a DB connection from Flask g, creating if needed."""
    if "db" not in g:
        db_path = current_app.config.get("DATABASE", str(DEFAULT_DB_PATH))
        g.db = sqlite3.connect(db_path, isolation_level=None, timeout=10)
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA journal_mode=WAL")
        g.db.execute("PRAGMA foreign_keys=ON")
    return g.db


def close_db(e=None) -> None:
    """Teardown handler — close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


@contextmanager
def transaction(db: sqlite3.Connection | None = None):
    """One all-or-nothing unit of work.

    BEGIN IMMEDIATE takes SQLite's write lock up front, so two events for
    the same profile are serialized rather than interleaved. Nested calls
    join the outer transaction.
    """
    db = db or get_db()
    if db.in_transaction:
        yield db
        return
    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.execute("ROLLBACK")
        raise
    else:
        db.execute("COMMIT")


@contextmanager
def savepoint(name: str, db: sqlite3.Connection | None = None):
    """Nested rollback point inside an open transaction."""
    db = db or get_db()
    db.execute(f"SAVEPOINT {name}")
    try:
        yield db
    except BaseException:
        db.execute(f"ROLLBACK TO SAVEPOINT {name}")
        db.execute(f"RELEASE SAVEPOINT {name}")
        raise
    else:
        db.execute(f"RELEASE SAVEPOINT {name}")


def seed_definitions(db: sqlite3.Connection) -> None:
    """Upsert achievement and quest definitions from reward_config."""
    db.executemany(
        "INSERT INTO achievements (id, name, description, icon, category, threshold) "
        "VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET "
        "name=excluded.name, description=excluded.description, icon=excluded.icon, "
        "category=excluded.category, threshold=excluded.threshold",
        ACHIEVEMENT_DEFINITIONS,
    )
    db.executemany(
        "INSERT INTO quest_definitions (id, type, title, description, target, metric, "
        "xp_reward, coin_reward) VALUES (?, ?, ?, ?, ?, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET "
        "type=excluded.type, title=excluded.title, description=excluded.description, "
        "target=excluded.target, metric=excluded.metric, xp_reward=excluded.xp_reward, "
        "coin_reward=excluded.coin_reward",
        QUEST_DEFINITIONS,
    )


def init_db() -> None:
    """Execute schema DDL to create all tables and seed definitions."""
    db = get_db()
    db.executescript(SCHEMA)
    with transaction(db):
        seed_definitions(db)
        row = db.execute("SELECT version FROM schema_version WHERE version = 1").fetchone()
        if not row:
            db.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (1, ?)",
                (datetime.now().isoformat(),),
            )


def run_migrations() -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking to prevent race conditions when multiple
    Gunicorn workers start simultaneously.
    """
    db_path = current_app.config.get("DATABASE", str(DEFAULT_DB_PATH))
    lock_file = None

    if db_path != ":memory:":
        lock_path = Path(db_path).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        db = get_db()
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            try:
                db.executescript(sql)
            except sqlite3.OperationalError as e:
                err_msg = str(e).lower()
                if "duplicate column" not in err_msg and "already exists" not in err_msg:
                    raise
            db.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, datetime.now().isoformat()),
            )
            logger.info("Applied migration %d", version)
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def init_app(app) -> None:
    """Register teardown and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True
