import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from momentum import migrations
from momentum.models import ActiveSession, Chain, CompletionHistory, ScheduledSession

_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "momentum.db"

# Use Postgres when DATABASE_URL, DATABASE_POSTGRES_URL, or SUPABASE_DB_URL is set
_DB_URL = (
    os.environ.get("DATABASE_URL")
    or os.environ.get("DATABASE_POSTGRES_URL")
    or os.environ.get("SUPABASE_DB_URL")
)
USE_PG = bool(_DB_URL)

CHAINS_KEY = "momentum_chains"
SCHEDULED_SESSIONS_KEY = "momentum_scheduled_sessions"
ACTIVE_SESSION_KEY = "momentum_active_session"
COMPLETION_HISTORY_KEY = "momentum_completion_history"


def _get_db_path():
    return os.environ.get("MOMENTUM_DB", str(_DEFAULT_DB_PATH))


def _pg_conn():
    import psycopg2
    from psycopg2.extras import RealDictCursor
    return psycopg2.connect(_DB_URL, cursor_factory=RealDictCursor)


def _sqlite_conn():
    conn = sqlite3.connect(_get_db_path())
    conn.row_factory = sqlite3.Row
    return conn


def get_connection():
    if USE_PG:
        return _pg_conn()
    return _sqlite_conn()


def _now_str() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def init_db():
    conn = get_connection()
    try:
        sql = """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """
        if USE_PG:
            conn.cursor().execute(sql)
        else:
            conn.execute(sql)
        conn.commit()
    finally:
        conn.close()


# ─── Raw key-value access ──────────────────────────────────────────────────


def _get(key: str):
    conn = get_connection()
    try:
        if USE_PG:
            cur = conn.cursor()
            cur.execute("SELECT value FROM kv_store WHERE key = %s", (key,))
            row = cur.fetchone()
        else:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(dict(row)["value"])
    finally:
        conn.close()


def _put(key: str, value) -> None:
    data = json.dumps(value, ensure_ascii=False)
    conn = get_connection()
    try:
        if USE_PG:
            cur = conn.cursor()
            cur.execute(
                """INSERT INTO kv_store (key, value, updated_at) VALUES (%s, %s, %s)
                   ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at""",
                (key, data, _now_str()),
            )
        else:
            conn.execute(
                """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                (key, data, _now_str()),
            )
        conn.commit()
    finally:
        conn.close()


def _delete(key: str) -> None:
    conn = get_connection()
    try:
        if USE_PG:
            conn.cursor().execute("DELETE FROM kv_store WHERE key = %s", (key,))
        else:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
    finally:
        conn.close()


def _dump(records) -> list[dict]:
    return [r.model_dump(mode="json", by_alias=True) for r in records]


# ─── Typed collections ─────────────────────────────────────────────────────


def get_chains() -> list[Chain]:
    now = datetime.now(timezone.utc)
    return migrations.migrate_chains(_get(CHAINS_KEY), now)


def save_chains(chains: list[Chain]) -> None:
    _put(CHAINS_KEY, migrations.wrap(_dump(chains)))


def get_scheduled_sessions() -> list[ScheduledSession]:
    return migrations.migrate_all(_get(SCHEDULED_SESSIONS_KEY), migrations.migrate_scheduled_session)


def save_scheduled_sessions(sessions: list[ScheduledSession]) -> None:
    _put(SCHEDULED_SESSIONS_KEY, migrations.wrap(_dump(sessions)))


def get_active_session() -> Optional[ActiveSession]:
    raw = _get(ACTIVE_SESSION_KEY)
    if not isinstance(raw, dict):
        return None
    sessions = migrations.migrate_all([raw], migrations.migrate_active_session)
    return sessions[0] if sessions else None


def save_active_session(session: Optional[ActiveSession]) -> None:
    if session is None:
        _delete(ACTIVE_SESSION_KEY)
        return
    _put(ACTIVE_SESSION_KEY, session.model_dump(mode="json", by_alias=True))


def get_completion_history() -> list[CompletionHistory]:
    return migrations.migrate_all(_get(COMPLETION_HISTORY_KEY), migrations.migrate_history)


def save_completion_history(history: list[CompletionHistory]) -> None:
    _put(COMPLETION_HISTORY_KEY, migrations.wrap(_dump(history)))
