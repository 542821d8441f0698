"""
services/repository.py
----------------------
SoilSampleRepository — persistence boundary for soil samples.

Wraps a SQLite connection (see database/init_db.py) and exposes the
create / update / delete / list operations the API layer needs. Storage
failures are re-raised as RepositoryError; missing rows as NotFoundError.

Usage:
    from database.init_db import get_connection
    from services.repository import SoilSampleRepository

    repo = SoilSampleRepository(get_connection())
    sample_id = repo.create(record)
"""

import logging
import sqlite3

from database.init_db import row_to_dict, rows_to_list
from services.errors import NotFoundError, RepositoryError

logger = logging.getLogger(__name__)

# Columns a caller may write. id / timestamps are owned by the database.
WRITABLE_COLUMNS: tuple[str, ...] = (
    "owner_id",
    "municipality",
    "location",
    "longitude",
    "latitude",
    "temperature",
    "ph_level",
    "fertility",
    "point_scale",
    "derived_ph",
    "derived_fertility",
    "nitrogen",
    "phosphorus",
    "potassium",
)

_SELECT_COLUMNS = "id, " + ", ".join(WRITABLE_COLUMNS) + ", created_at, updated_at"

# SQLite INTEGER is a signed 64-bit value
_MAX_ROW_ID = 2**63 - 1


def _check_id(sample_id: int) -> None:
    if not (0 < sample_id <= _MAX_ROW_ID):
        raise NotFoundError(f"Sample with id={sample_id} not found")


class SoilSampleRepository:
    """CRUD access to the soil_samples table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ── Writes ─────────────────────────────────────────────────────────────

    def create(self, record: dict) -> int:
        """Insert a sample record and return its new id."""
        columns = [c for c in WRITABLE_COLUMNS if c in record]
        placeholders = ", ".join("?" for _ in columns)
        sql = (f"INSERT INTO soil_samples ({', '.join(columns)}) "
               f"VALUES ({placeholders})")
        try:
            with self.conn:
                cur = self.conn.execute(sql, [record[c] for c in columns])
        except sqlite3.Error as exc:
            logger.exception("Insert into soil_samples failed")
            raise RepositoryError("Database write failed") from exc
        return cur.lastrowid

    def update(self, sample_id: int, fields: dict) -> None:
        """Apply a partial update. Unknown keys are ignored."""
        _check_id(sample_id)
        columns = [c for c in WRITABLE_COLUMNS if c in fields]
        if not columns:
            self.get(sample_id)
            return

        assignments = ", ".join(f"{c} = ?" for c in columns)
        sql = (f"UPDATE soil_samples SET {assignments}, "
               f"updated_at = datetime('now') WHERE id = ?")
        try:
            with self.conn:
                cur = self.conn.execute(
                    sql, [fields[c] for c in columns] + [sample_id]
                )
        except sqlite3.Error as exc:
            logger.exception("Update of sample id=%s failed", sample_id)
            raise RepositoryError("Database write failed") from exc

        if cur.rowcount == 0:
            raise NotFoundError(f"Sample with id={sample_id} not found")

    def delete(self, sample_id: int) -> None:
        _check_id(sample_id)
        try:
            with self.conn:
                cur = self.conn.execute(
                    "DELETE FROM soil_samples WHERE id = ?", (sample_id,)
                )
        except sqlite3.Error as exc:
            logger.exception("Delete of sample id=%s failed", sample_id)
            raise RepositoryError("Database write failed") from exc

        if cur.rowcount == 0:
            raise NotFoundError(f"Sample with id={sample_id} not found")

    # ── Reads ──────────────────────────────────────────────────────────────

    def get(self, sample_id: int) -> dict:
        _check_id(sample_id)
        try:
            row = self.conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM soil_samples WHERE id = ?",
                (sample_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            logger.exception("Read of sample id=%s failed", sample_id)
            raise RepositoryError("Database read failed") from exc

        if row is None:
            raise NotFoundError(f"Sample with id={sample_id} not found")
        return row_to_dict(row)

    def list_all(self, municipality: str | None = None) -> list[dict]:
        """Return every sample, newest first, optionally for one municipality."""
        sql = f"SELECT {_SELECT_COLUMNS} FROM soil_samples"
        params: list = []
        if municipality:
            sql += " WHERE municipality = ?"
            params.append(municipality)
        sql += " ORDER BY created_at DESC, id DESC"

        try:
            rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Listing soil_samples failed")
            raise RepositoryError("Database read failed") from exc
        return rows_to_list(rows)

    def list_page(self,
                  municipality: str | None = None,
                  search: str | None = None,
                  owner_id: str | None = None,
                  page: int = 1,
                  per_page: int = 50) -> tuple[list[dict], int]:
        """
        Return one page of samples (newest first) and the total match count.

        Args:
            municipality: exact municipality slug filter
            search:       case-insensitive substring match on location
            owner_id:     only samples submitted by this user
            page:         1-based page number
            per_page:     page size
        """
        where_clauses: list[str] = []
        params: list             = []

        if municipality:
            where_clauses.append("municipality = ?")
            params.append(municipality)
        if search:
            where_clauses.append("LOWER(location) LIKE LOWER(?)")
            params.append(f"%{search}%")
        if owner_id:
            where_clauses.append("owner_id = ?")
            params.append(owner_id)

        where_sql = ("WHERE " + " AND ".join(where_clauses)) if where_clauses else ""
        offset    = (page - 1) * per_page

        try:
            total = self.conn.execute(
                f"SELECT COUNT(*) AS cnt FROM soil_samples {where_sql}", params
            ).fetchone()["cnt"]

            rows = self.conn.execute(
                f"""
                SELECT {_SELECT_COLUMNS}
                FROM soil_samples
                {where_sql}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                params + [per_page, offset],
            ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Paginated listing of soil_samples failed")
            raise RepositoryError("Database read failed") from exc

        return rows_to_list(rows), total
