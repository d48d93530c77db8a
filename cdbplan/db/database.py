"""SQLite persistent state store for the CDB plan manager.

Stores:
  - Runtime settings (retry policy, call timeout, lockdown replace mode)
  - Apply runs (state machine progress of every plan application)
  - Audit log (every external step issued, with its outcome)

The database file defaults to 'cdbplan.db' in the working directory.
Set CDBPLAN_DB_PATH env var to override.
"""

import json
import os
import sqlite3
import threading
import time
from typing import Optional

_DB_PATH = os.environ.get("CDBPLAN_DB_PATH", "cdbplan.db")
_local = threading.local()


def _get_conn() -> sqlite3.Connection:
    """Get a thread-local SQLite connection."""
    if not hasattr(_local, "conn") or _local.conn is None:
        _local.conn = sqlite3.connect(_DB_PATH, check_same_thread=False)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
    return _local.conn


def init_db(db_path: Optional[str] = None):
    """Initialize the database schema. Safe to call multiple times."""
    if db_path:
        global _DB_PATH
        _DB_PATH = db_path
        if hasattr(_local, "conn") and _local.conn:
            _local.conn.close()
            _local.conn = None

    db_dir = os.path.dirname(os.path.abspath(_DB_PATH))
    os.makedirs(db_dir, exist_ok=True)

    conn = _get_conn()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS config (
            key     TEXT PRIMARY KEY,
            value   TEXT NOT NULL,
            updated_at REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS apply_runs (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            plan        TEXT NOT NULL,
            backend     TEXT NOT NULL DEFAULT '',
            activate    INTEGER NOT NULL DEFAULT 0,
            state       TEXT NOT NULL DEFAULT 'EMPTY',
            outcome     TEXT NOT NULL DEFAULT 'RUNNING',
            current_step TEXT NOT NULL DEFAULT '',
            steps_completed TEXT NOT NULL DEFAULT '[]',
            error       TEXT,
            created_at  REAL NOT NULL,
            updated_at  REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS audit_log (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp   REAL NOT NULL,
            run_id      INTEGER,
            action      TEXT NOT NULL,
            plan        TEXT,
            profile     TEXT,
            detail      TEXT NOT NULL DEFAULT '{}',
            error       TEXT,
            FOREIGN KEY (run_id) REFERENCES apply_runs(id)
        );

        CREATE INDEX IF NOT EXISTS idx_apply_runs_plan ON apply_runs(plan);
        CREATE INDEX IF NOT EXISTS idx_apply_runs_outcome ON apply_runs(outcome);
        CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log(timestamp);
        CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action);
    """)
    conn.commit()


# ── Config CRUD ──────────────────────────────────────────────────────────────

def set_config(key: str, value: str):
    conn = _get_conn()
    conn.execute(
        "INSERT OR REPLACE INTO config (key, value, updated_at) VALUES (?, ?, ?)",
        (key, value, time.time()),
    )
    conn.commit()


def get_config(key: str, default: str = "") -> str:
    conn = _get_conn()
    row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


def get_all_config() -> dict:
    conn = _get_conn()
    rows = conn.execute("SELECT key, value FROM config").fetchall()
    return {r["key"]: r["value"] for r in rows}


def delete_config(key: str) -> bool:
    conn = _get_conn()
    cursor = conn.execute("DELETE FROM config WHERE key = ?", (key,))
    conn.commit()
    return cursor.rowcount > 0


def get_config_int(key: str, default: int) -> int:
    try:
        return int(get_config(key, str(default)))
    except ValueError:
        return default


def get_config_float(key: str, default: float) -> float:
    try:
        return float(get_config(key, str(default)))
    except ValueError:
        return default


# ── Seed defaults ────────────────────────────────────────────────────────────

def seed_defaults():
    """Seed default runtime settings if not present."""
    for key, value in [
        ("retry_attempts", "3"),
        ("retry_delay_seconds", "1"),
        ("call_timeout_seconds", "30"),
        ("lockdown_replace", "false"),
    ]:
        if not get_config(key):
            set_config(key, value)


# ── Apply Runs ───────────────────────────────────────────────────────────────

def create_run(plan: str, backend: str = "", activate: bool = False) -> int:
    conn = _get_conn()
    now = time.time()
    cursor = conn.execute(
        """INSERT INTO apply_runs
           (plan, backend, activate, state, outcome, current_step,
            steps_completed, created_at, updated_at)
           VALUES (?, ?, ?, 'EMPTY', 'RUNNING', '', '[]', ?, ?)""",
        (plan, backend, int(activate), now, now),
    )
    conn.commit()
    return cursor.lastrowid


def update_run(run_id: int, state: str = None, outcome: str = None,
               current_step: str = None, steps_completed: list = None,
               error: str = None):
    conn = _get_conn()
    updates = ["updated_at = ?"]
    params = [time.time()]
    if state:
        updates.append("state = ?")
        params.append(state)
    if outcome:
        updates.append("outcome = ?")
        params.append(outcome)
    if current_step:
        updates.append("current_step = ?")
        params.append(current_step)
    if steps_completed is not None:
        updates.append("steps_completed = ?")
        params.append(json.dumps(steps_completed))
    if error is not None:
        updates.append("error = ?")
        params.append(error)
    params.append(run_id)
    conn.execute(f"UPDATE apply_runs SET {', '.join(updates)} WHERE id = ?", params)
    conn.commit()


def get_run(run_id: int) -> Optional[dict]:
    conn = _get_conn()
    r = conn.execute("SELECT * FROM apply_runs WHERE id = ?", (run_id,)).fetchone()
    if not r:
        return None
    return _row_to_run(r)


def list_runs(limit: int = 50, plan: str = None, outcome: str = None) -> list[dict]:
    conn = _get_conn()
    query = "SELECT * FROM apply_runs WHERE 1=1"
    params = []
    if plan:
        query += " AND plan = ?"
        params.append(plan)
    if outcome:
        query += " AND outcome = ?"
        params.append(outcome)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    rows = conn.execute(query, params).fetchall()
    return [_row_to_run(r) for r in rows]


def _row_to_run(r) -> dict:
    return {
        "id": r["id"],
        "plan": r["plan"],
        "backend": r["backend"],
        "activate": bool(r["activate"]),
        "state": r["state"],
        "outcome": r["outcome"],
        "current_step": r["current_step"],
        "steps_completed": json.loads(r["steps_completed"]),
        "error": r["error"],
        "created_at": r["created_at"],
        "updated_at": r["updated_at"],
    }


# ── Audit Log ───────────────────────────────────────────────────────────────

def append_audit_log(action: str, run_id: int = None, plan: str = None,
                     profile: str = None, detail: dict = None, error: str = None) -> int:
    conn = _get_conn()
    cursor = conn.execute(
        """INSERT INTO audit_log
           (timestamp, run_id, action, plan, profile, detail, error)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (time.time(), run_id, action, plan, profile, json.dumps(detail or {}), error),
    )
    conn.commit()
    return cursor.lastrowid


def list_audit_log(limit: int = 100, action: str = None, run_id: int = None) -> list[dict]:
    conn = _get_conn()
    query = "SELECT * FROM audit_log WHERE 1=1"
    params = []
    if action:
        query += " AND action = ?"
        params.append(action)
    if run_id is not None:
        query += " AND run_id = ?"
        params.append(run_id)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    rows = conn.execute(query, params).fetchall()
    return [_row_to_audit(r) for r in rows]


def _row_to_audit(r) -> dict:
    return {
        "id": r["id"],
        "timestamp": r["timestamp"],
        "run_id": r["run_id"],
        "action": r["action"],
        "plan": r["plan"],
        "profile": r["profile"],
        "detail": json.loads(r["detail"]),
        "error": r["error"],
    }
