"""
DuckDB storage for log records.

Supports two modes:
- persistent: DuckDB file on disk
- ephemeral: in-memory DuckDB, gone when the connection closes

    db = LogDatabase("data/logs.duckdb")
    db.initialize()
    router.add_default_handler(db.handler(min_level="warning"))
    ...
    db.query(channel="app.http", min_level="error", limit=20)
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import duckdb

from chanlog.datastore.schema import (
    ALL_INDEXES,
    ALL_TABLES,
    DEFAULT_LOG_TABLE,
    JSON_COLUMNS,
    validate_identifier,
)
from chanlog.logger.records import LogLevel


class LogDatabase:
    """
    DuckDB connection manager with schema initialization and log queries.

    Usage:
        db = LogDatabase.ephemeral()
        db.initialize()
        handler = db.handler(buffer_size=1)
        conn = db.connection             # raw access
    """

    def __init__(self, path: str | Path | None = None, table: str = DEFAULT_LOG_TABLE):
        """
        Create database connection.

        Args:
            path: Path to DuckDB file. None = in-memory (ephemeral mode).
            table: Name of the logs table.
        """
        self._path = Path(path) if path else None
        self._mode = "persistent" if path else "ephemeral"
        self.table = validate_identifier(table)

        if self._path:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = duckdb.connect(str(self._path))
        else:
            self._conn = duckdb.connect(":memory:")

        self._initialized = False

    @classmethod
    def ephemeral(cls, table: str = DEFAULT_LOG_TABLE) -> "LogDatabase":
        """Create an in-memory database (no file)."""
        return cls(path=None, table=table)

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Raw DuckDB connection for queries."""
        return self._conn

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ── Schema Initialization ─────────────────────────────────────

    def initialize(self) -> dict:
        """
        Create the sequence, table and indexes. Safe to call repeatedly.

        Returns dict with counts: {tables: N, indexes: N}
        """
        results = {"tables": 0, "indexes": 0}
        for _, build in ALL_TABLES:
            self._execute_script(build(self.table))
            results["tables"] += 1
        for _, build in ALL_INDEXES:
            results["indexes"] += self._execute_script(build(self.table))
        self._initialized = True
        return results

    def _execute_script(self, script: str) -> int:
        statements = [s.strip() for s in script.split(";") if s.strip()]
        for statement in statements:
            self._conn.execute(statement)
        return len(statements)

    # ── Logger Integration ────────────────────────────────────────

    def handler(self, **kwargs):
        """A DatabaseHandler writing to this database's logs table."""
        from chanlog.logger.handlers import DatabaseHandler

        if not self._initialized:
            self.initialize()
        kwargs.setdefault("table", self.table)
        return DatabaseHandler(connection=self._conn, **kwargs)

    # ── Queries ───────────────────────────────────────────────────

    def query(
        self,
        channel: Optional[str] = None,
        level: Optional[int | str | LogLevel] = None,
        min_level: Optional[int | str | LogLevel] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        request_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict]:
        """
        Stored records, newest first, as dicts with context/extra parsed.

        channel matches the channel and its whole subtree ("app" matches
        "app.http"). level is an exact match, min_level a lower bound.
        start/end bound created_at; aware datetimes are converted to UTC.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if channel is not None:
            clauses.append("(channel = ? OR channel LIKE ?)")
            params += [channel, f"{channel}.%"]
        if level is not None:
            clauses.append("level_value = ?")
            params.append(int(LogLevel.from_value(level)))
        if min_level is not None:
            clauses.append("level_value >= ?")
            params.append(int(LogLevel.from_value(min_level)))
        if start is not None:
            clauses.append("created_at >= ?")
            params.append(_as_utc(start))
        if end is not None:
            clauses.append("created_at <= ?")
            params.append(_as_utc(end))
        if request_id is not None:
            clauses.append("request_id = ?")
            params.append(request_id)

        sql = f"SELECT * FROM {self.table}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))

        cursor = self._conn.execute(sql, params)
        columns = [d[0] for d in cursor.description]
        rows = []
        for values in cursor.fetchall():
            row = dict(zip(columns, values))
            for column in JSON_COLUMNS:
                if isinstance(row.get(column), str):
                    row[column] = json.loads(row[column])
            rows.append(row)
        return rows

    # ── Schema Introspection ──────────────────────────────────────

    def tables(self) -> list[str]:
        """List all user tables."""
        result = self._conn.execute(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'main' AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        ).fetchall()
        return [row[0] for row in result]

    def row_count(self, table_name: str | None = None) -> int:
        """Get row count for a table (the logs table by default)."""
        table_name = validate_identifier(table_name or self.table)
        result = self._conn.execute(
            f'SELECT COUNT(*) FROM "{table_name}"'
        ).fetchone()
        return result[0] if result else 0

    def status(self) -> dict:
        """Database status for diagnostics."""
        return {
            "mode": self._mode,
            "path": str(self._path) if self._path else ":memory:",
            "table": self.table,
            "initialized": self._initialized,
            "tables": {t: self.row_count(t) for t in self.tables()},
        }

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "LogDatabase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
