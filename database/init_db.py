"""
database/init_db.py
-------------------
SQLite database initialisation and connection helper.

Tables created:
    soil_samples – one row per submitted soil sample, including the values
                   derived from temperature and the submitting user's id

Design notes:
    - Uses WAL journal mode for better concurrent read performance.
    - Foreign keys enforced via PRAGMA.
    - All functions are idempotent (safe to call at every app startup).
    - Uses sqlite3.Row so rows can be accessed like dicts.

Usage:
    from database.init_db import init_db, get_connection
    init_db()                      # call once at startup
    conn = get_connection()        # get a connection for a request
"""

import os
import sqlite3

# Default database file lives inside the database/ package directory
DB_PATH = os.getenv(
    "SOILHEALTH_DB_PATH",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "soil_samples.db"),
)


# ─────────────────────────────────────────────────────────────────────────────
# Connection helper
# ─────────────────────────────────────────────────────────────────────────────

def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """
    Return a configured SQLite connection.

    Configuration:
        - row_factory = sqlite3.Row (dict-like row access)
        - foreign_keys = ON
        - journal_mode = WAL (better concurrency)

    The caller is responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path or DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


# ─────────────────────────────────────────────────────────────────────────────
# Schema DDL
# ─────────────────────────────────────────────────────────────────────────────

_DDL_STATEMENTS = [

    # ── Soil samples ───────────────────────────────────────────────────────
    """
    CREATE TABLE IF NOT EXISTS soil_samples (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id          TEXT    NOT NULL,
        municipality      TEXT    NOT NULL,
        location          TEXT,
        longitude         REAL    NOT NULL,
        latitude          REAL    NOT NULL,
        temperature       REAL    NOT NULL,
        ph_level          REAL    NOT NULL,
        fertility         REAL    NOT NULL,
        point_scale       INTEGER NOT NULL
                                  CHECK (point_scale BETWEEN 1 AND 5),
        derived_ph        REAL    NOT NULL,
        derived_fertility REAL    NOT NULL,
        nitrogen          REAL,
        phosphorus        REAL,
        potassium         REAL,
        created_at        TEXT    NOT NULL DEFAULT (datetime('now')),
        updated_at        TEXT    NOT NULL DEFAULT (datetime('now'))
    )
    """,

    # ── Indexes for dashboard / map queries ────────────────────────────────
    "CREATE INDEX IF NOT EXISTS idx_samples_municipality ON soil_samples(municipality)",
    "CREATE INDEX IF NOT EXISTS idx_samples_owner_id     ON soil_samples(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_samples_created_at   ON soil_samples(created_at DESC)",
]


# ─────────────────────────────────────────────────────────────────────────────
# Initialisation entry point
# ─────────────────────────────────────────────────────────────────────────────

def init_db(db_path: str | None = None) -> None:
    """
    Create all required tables and indexes if they do not already exist.
    Idempotent – safe to call every time the Flask app starts.

    Raises:
        sqlite3.Error: If the database file cannot be created or any DDL fails.
    """
    path = db_path or DB_PATH
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    conn = get_connection(path)
    try:
        with conn:
            for stmt in _DDL_STATEMENTS:
                conn.execute(stmt)
    finally:
        conn.close()

    print(f"[DB] SQLite database initialised → {path}")


# ─────────────────────────────────────────────────────────────────────────────
# Utility helpers
# ─────────────────────────────────────────────────────────────────────────────

def row_to_dict(row: sqlite3.Row) -> dict:
    """Convert a sqlite3.Row to a plain Python dict."""
    return dict(row)


def rows_to_list(rows: list[sqlite3.Row]) -> list[dict]:
    """Convert a list of sqlite3.Row objects to a list of dicts."""
    return [dict(r) for r in rows]


# ─────────────────────────────────────────────────────────────────────────────
# Run standalone: python database/init_db.py
# ─────────────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    init_db()
    print("[DB] All tables created successfully.")
