"""
Postgres audit trail for agent runs.

Tables:
  agent_runs  — one row per run, latest snapshot of its state

Each time the executor or a control endpoint changes a run, the whole run
record (steps and logs included) is upserted so the history survives
restarts. The live run objects stay in memory.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.extras

import config

log = logging.getLogger(__name__)

# ── Connection ────────────────────────────────────────────────────────

_pool: list[Any] = []


def _get_conn():
    """Get a Postgres connection (simple single-connection reuse)."""
    if _pool:
        conn = _pool[0]
        if not conn.closed:
            return conn
        _pool.clear()

    conn = psycopg2.connect(config.DATABASE_URL)
    conn.autocommit = True
    _pool.append(conn)
    return conn


@contextmanager
def get_cursor():
    conn = _get_conn()
    cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield cur
    finally:
        cur.close()


# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agent_runs (
    run_id            TEXT PRIMARY KEY,
    instruction       TEXT DEFAULT '',
    status            TEXT NOT NULL,
    current_location  TEXT DEFAULT '',
    last_snapshot     TEXT,
    error             TEXT,
    steps             JSONB DEFAULT '[]'::jsonb,
    logs              JSONB DEFAULT '[]'::jsonb,
    created_at        TIMESTAMPTZ,
    completed_at      TIMESTAMPTZ,
    updated_at        TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_agent_runs_status ON agent_runs(status);
"""


def init_db():
    """Create tables if they don't exist."""
    try:
        with get_cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Database schema initialized")
    except Exception as e:
        log.error("Failed to initialize database: %s", e)
        raise


# ── Run CRUD ──────────────────────────────────────────────────────────

def upsert_run(run: dict) -> None:
    """Insert or update a run record. ``run`` is ``Run.to_dict()`` output."""
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO agent_runs (
                run_id, instruction, status, current_location, last_snapshot,
                error, steps, logs, created_at, completed_at
            ) VALUES (
                %(run_id)s, %(instruction)s, %(status)s, %(current_location)s, %(last_snapshot)s,
                %(error)s, %(steps)s, %(logs)s, %(created_at)s, %(completed_at)s
            )
            ON CONFLICT (run_id) DO UPDATE SET
                status = EXCLUDED.status,
                current_location = EXCLUDED.current_location,
                last_snapshot = EXCLUDED.last_snapshot,
                error = EXCLUDED.error,
                steps = EXCLUDED.steps,
                logs = EXCLUDED.logs,
                completed_at = EXCLUDED.completed_at,
                updated_at = now()
        """, {
            "run_id": run["runId"],
            "instruction": run.get("instruction", ""),
            "status": run["status"],
            "current_location": run.get("currentLocation", ""),
            "last_snapshot": run.get("lastSnapshot"),
            "error": run.get("error"),
            "steps": json.dumps(run.get("steps", [])),
            "logs": json.dumps(run.get("logs", [])),
            "created_at": run.get("createdAt"),
            "completed_at": run.get("completedAt"),
        })


def get_run(run_id: str) -> dict | None:
    """Fetch a persisted run by ID."""
    with get_cursor() as cur:
        cur.execute("SELECT * FROM agent_runs WHERE run_id = %s", (run_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def list_runs(limit: int = 50, status: str | None = None) -> list[dict]:
    """List persisted runs, newest first."""
    with get_cursor() as cur:
        if status:
            cur.execute(
                "SELECT * FROM agent_runs WHERE status = %s ORDER BY created_at DESC LIMIT %s",
                (status, limit),
            )
        else:
            cur.execute(
                "SELECT * FROM agent_runs ORDER BY created_at DESC LIMIT %s",
                (limit,),
            )
        return [dict(row) for row in cur.fetchall()]
