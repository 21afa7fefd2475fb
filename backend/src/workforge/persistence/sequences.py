"""Sequence management for computed entity identifiers.

Provides yearly identifiers with format: {PREFIX}-{YYYY}-{NNNN}
Example: WO-2026-0001, INV-2026-0042

There is one sequence per prefix and year. Values are drawn on the caller's
connection, so an identifier drawn inside a rolled-back transaction is
released with it.

The increment is a single INSERT ... ON CONFLICT DO UPDATE ... RETURNING
statement, which both PostgreSQL and SQLite (3.35+) accept.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.engine import Connection

SEQUENCES_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS _sequences (
        prefix TEXT NOT NULL,
        year INTEGER NOT NULL,
        next_value INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (prefix, year)
    )
"""


def format_identifier(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:04d}"


class IdentifierSequence:
    """Draws identifiers from the ``_sequences`` table."""

    def __init__(self, conn: Connection):
        """Initialize the sequence.

        Args:
            conn: SQLAlchemy connection, normally inside the caller's transaction.
        """
        self.conn = conn

    def ensure_table(self) -> None:
        """Create the sequences table if it doesn't exist."""
        self.conn.execute(text(SEQUENCES_TABLE_SQL))

    def next_identifier(self, prefix: str, year: int | None = None) -> str:
        """Generate the next identifier for a prefix.

        Args:
            prefix: Identifier prefix, e.g. "WO"
            year: Sequence year (defaults to the current UTC year)

        Returns:
            Formatted identifier like "WO-2026-0001"
        """
        year = year or datetime.now(UTC).year
        return format_identifier(prefix, year, self.next_value(prefix, year))

    def next_value(self, prefix: str, year: int) -> int:
        """Get the next sequence value and increment atomically.

        next_value always holds the NEXT value to use; after the bump,
        next_value - 1 is the value drawn by this call.
        """
        row = self.conn.execute(
            text("""
                INSERT INTO _sequences (prefix, year, next_value)
                VALUES (:prefix, :year, 2)
                ON CONFLICT (prefix, year) DO UPDATE
                    SET next_value = _sequences.next_value + 1
                RETURNING next_value - 1 AS current_value
            """),
            {"prefix": prefix, "year": year},
        ).first()
        if row is None:
            raise RuntimeError("Sequence upsert returned no rows")
        return row[0]

    def current_value(self, prefix: str, year: int | None = None) -> int:
        """Get the last drawn value without incrementing.

        Returns 0 if no sequence exists yet.
        """
        year = year or datetime.now(UTC).year
        value = self.conn.execute(
            text("""
                SELECT next_value - 1 FROM _sequences
                WHERE prefix = :prefix AND year = :year
            """),
            {"prefix": prefix, "year": year},
        ).scalar()
        return value or 0

    def reset(self, prefix: str, year: int | None = None, start_value: int = 1) -> None:
        """Reset a sequence so the next drawn value is ``start_value``.

        Use with caution - can cause identifier collisions if records exist.
        """
        year = year or datetime.now(UTC).year
        self.conn.execute(
            text("""
                INSERT INTO _sequences (prefix, year, next_value)
                VALUES (:prefix, :year, :start)
                ON CONFLICT (prefix, year) DO UPDATE
                    SET next_value = excluded.next_value
            """),
            {"prefix": prefix, "year": year, "start": start_value},
        )
