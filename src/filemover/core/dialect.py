"""SQL dialect abstraction for the durable stores.

Repositories generate placeholders and insert-if-absent statements through
a ``Dialect`` so the same code runs on SQLite (tests, single node) and
PostgreSQL (shared deployments).

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.insert_or_ignore("fm_jobs", ["id", "status"])
    'INSERT OR IGNORE INTO fm_jobs (id, status) VALUES (?, ?)'

Guardrails:
    ❌ DON'T: Write backend-specific SQL in repositories
    ✅ DO: Use Dialect methods for placeholders and insert-if-absent

Tags:
    dialect, sql, portability, database, filemover
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """Protocol every SQL dialect implements."""

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str:
        """Return a single placeholder for the 0-based ``index``."""
        ...

    def placeholders(self, count: int) -> str:
        """Return ``count`` comma-separated placeholders."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently does nothing when the key already exists."""
        ...


class SQLiteDialect:
    """SQLite dialect — ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"


class PostgreSQLDialect:
    """PostgreSQL dialect — ``%s`` placeholders (psycopg)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT INTO {table} ({cols}) VALUES ({ph}) ON CONFLICT DO NOTHING"


def get_dialect(conn: Any) -> Dialect:
    """Pick a dialect from the connection's driver module."""
    module = type(conn).__module__
    if module.startswith("psycopg"):
        return PostgreSQLDialect()
    return SQLiteDialect()
