"""PostgreSQL connection management and schema bootstrap."""

from __future__ import annotations

import psycopg

__all__ = ["SCHEMA_SQL", "ensure_schema", "get_connection"]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS doctor_sessions (
    id                      TEXT PRIMARY KEY,
    doctor_id               TEXT NOT NULL,
    hospital_id             TEXT,
    day_of_week             TEXT NOT NULL,
    start_time              TIME,
    end_time                TIME,
    max_tokens              INTEGER NOT NULL DEFAULT 0,
    avg_minutes_per_patient INTEGER DEFAULT 15,
    recall_enabled          BOOLEAN DEFAULT TRUE,
    recall_interval         INTEGER DEFAULT 5
                            CHECK (recall_interval BETWEEN 1 AND 20),
    is_active               BOOLEAN DEFAULT TRUE,
    current_token           INTEGER DEFAULT 0,
    last_recall_mark        INTEGER DEFAULT 0,
    cursor_day              DATE,
    last_token_called_at    TIMESTAMPTZ,
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS doctor_sessions_lookup
    ON doctor_sessions (doctor_id, day_of_week) WHERE is_active;

CREATE TABLE IF NOT EXISTS tokens (
    id                    TEXT PRIMARY KEY,
    session_id            TEXT NOT NULL REFERENCES doctor_sessions (id),
    doctor_id             TEXT NOT NULL,
    session_day           DATE NOT NULL,
    token_number          INTEGER NOT NULL,
    status                TEXT NOT NULL,
    patient_id            TEXT,
    missed                BOOLEAN DEFAULT FALSE,
    no_show_reason        TEXT,
    is_recalled           BOOLEAN DEFAULT FALSE,
    recall_count          INTEGER DEFAULT 0,
    last_recalled_at      TIMESTAMPTZ,
    actual_start          TIMESTAMPTZ,
    actual_end            TIMESTAMPTZ,
    attended_after_recall BOOLEAN DEFAULT FALSE,
    doctor_notes          TEXT,
    updated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (session_id, session_day, token_number)
);

CREATE TABLE IF NOT EXISTS token_call_history (
    event_id         TEXT PRIMARY KEY,
    session_id       TEXT NOT NULL REFERENCES doctor_sessions (id),
    token_id         TEXT REFERENCES tokens (id),
    session_day      DATE NOT NULL,
    token_number     INTEGER NOT NULL,
    call_type        TEXT NOT NULL DEFAULT 'normal',
    called_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    called_by        TEXT,
    recall_reason    TEXT,
    patient_attended BOOLEAN,
    skipped_reason   TEXT
);

CREATE INDEX IF NOT EXISTS token_call_history_token
    ON token_call_history (token_id, called_at DESC);
"""


def get_connection(dsn: str) -> psycopg.Connection[tuple[object, ...]]:
    """Create a new PostgreSQL connection."""
    return psycopg.connect(dsn, autocommit=False)


def ensure_schema(conn: psycopg.Connection[tuple[object, ...]]) -> None:
    """Create the queue tables if they do not exist yet."""
    with conn.transaction(), conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
