"""
Database connection protocol.

Repositories depend on this minimal synchronous shape instead of a driver,
so ``sqlite3.Connection`` works in tests and single-node deployments while
a psycopg connection works in production.

Guardrails:
    ❌ DON'T: Import sqlite3 or psycopg in repositories
    ✅ DO: Accept a ``Connection`` and a ``Dialect``
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """The subset of DB-API cursor behaviour repositories rely on."""

    rowcount: int

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    ``execute`` must return a cursor whose ``rowcount`` reflects the rows
    touched by an UPDATE/DELETE. Compare-and-set transitions depend on it.
    """

    def execute(self, sql: str, params: Any = ()) -> Cursor: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
