"""
Tests for DuckDB log storage.

Covers:
- Table, sequence and index creation (idempotent)
- Schema columns
- DatabaseHandler buffering, flushing and failure reporting
- Row mapping (request metadata lifted from extra/context)
- LogDatabase.query filters
- Persistent mode on disk
"""

from datetime import datetime, timedelta, timezone

import duckdb
import pytest

from chanlog.datastore.database import LogDatabase
from chanlog.datastore.schema import insert_statement, validate_identifier
from chanlog.logger.handlers import DatabaseHandler, record_to_row
from chanlog.logger.records import LogLevel, LogRecord
from chanlog.logger.routing import ChannelRouter


# ═══════════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def db():
    database = LogDatabase.ephemeral()
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def router(db):
    return ChannelRouter(default_handlers=[db.handler(buffer_size=1)], include_stack_traces=False)


def make_record(level=LogLevel.INFO, message="hello", context=None, extra=None, channel="app"):
    return LogRecord.create(channel, level, message, context, extra)


# ═══════════════════════════════════════════════════════════════════
#  Schema
# ═══════════════════════════════════════════════════════════════════

class TestSchema:
    def test_table_created(self, db):
        assert db.tables() == ["logs"]
        assert db.is_initialized
        assert db.mode == "ephemeral"

    def test_initialize_idempotent(self, db):
        result = db.initialize()
        assert result == {"tables": 2, "indexes": 5}

    def test_columns(self, db):
        columns = [
            row[0] for row in db.connection.execute(
                "SELECT column_name FROM information_schema.columns "
                "WHERE table_name = 'logs' ORDER BY ordinal_position"
            ).fetchall()
        ]
        assert columns == [
            "id", "channel", "level", "level_value", "message", "context", "extra",
            "created_at", "request_id", "user_id", "ip_address", "user_agent",
        ]

    def test_custom_table(self):
        with LogDatabase.ephemeral(table="audit_logs") as database:
            database.initialize()
            assert database.tables() == ["audit_logs"]

    def test_identifier_validation(self):
        assert validate_identifier("logs_2024") == "logs_2024"
        with pytest.raises(ValueError):
            validate_identifier("logs; DROP TABLE x")
        with pytest.raises(ValueError):
            LogDatabase.ephemeral(table="1logs")

    def test_insert_statement(self):
        sql = insert_statement("logs")
        assert sql.startswith("INSERT INTO logs (channel, level, level_value,")
        assert sql.count("?::JSON") == 2
        assert sql.count("?") == 11


# ═══════════════════════════════════════════════════════════════════
#  Handler
# ═══════════════════════════════════════════════════════════════════

class TestDatabaseHandler:
    def test_writes_through_router(self, db, router):
        router.channel("app.http").warning("slow request", {"path": "/health"}, duration_ms=1523)
        assert db.row_count() == 1
        (row,) = db.query()
        assert row["channel"] == "app.http"
        assert row["level"] == "WARNING"
        assert row["level_value"] == 300
        assert row["message"] == "slow request"
        assert row["context"] == {"path": "/health", "duration_ms": 1523}
        assert row["extra"] == {}

    def test_buffers_until_full(self, db):
        handler = db.handler(buffer_size=3)
        handler.handle(make_record())
        handler.handle(make_record())
        assert db.row_count() == 0
        assert handler.buffered_count == 2
        handler.handle(make_record())
        assert db.row_count() == 3
        assert handler.buffered_count == 0

    def test_flush_and_close(self, db):
        handler = db.handler(buffer_size=100)
        handler.handle(make_record())
        handler.close()
        assert db.row_count() == 1

    def test_unconnected_keeps_buffer(self, db):
        handler = DatabaseHandler(buffer_size=1)
        handler.handle(make_record())
        assert handler.buffered_count == 1
        handler.connect(db.connection)
        assert handler.buffered_count == 0
        assert db.row_count() == 1

    def test_failed_write_reported(self, capsys):
        conn = duckdb.connect(":memory:")
        handler = DatabaseHandler(connection=conn, buffer_size=1)
        handler.handle(make_record())
        assert handler.buffered_count == 1
        assert "could not write 1 records to 'logs'" in capsys.readouterr().err
        conn.close()

    def test_min_level(self, db):
        handler = db.handler(min_level="error", buffer_size=1)
        handler.handle(make_record(LogLevel.INFO))
        assert db.row_count() == 0

    def test_exception_stored_as_json(self, db):
        handler = db.handler(buffer_size=1)
        handler.handle(make_record(LogLevel.ERROR, "failed", {"exception": ValueError("bad")}))
        (row,) = db.query()
        assert row["context"]["exception"]["class"] == "ValueError"


class TestRowMapping:
    def test_metadata_lifted(self):
        record = make_record(
            context={"user_id": 42, "ip_address": "10.0.0.1"},
            extra={"request_id": "abc-123", "user_id": "u-7"},
        )
        row = record_to_row(record)
        assert row[:4] == ["app", "INFO", 200, "hello"]
        assert row[7:] == ["abc-123", "u-7", "10.0.0.1", None]

    def test_timestamp_naive_utc(self):
        record = make_record()
        created_at = record_to_row(record)[6]
        assert created_at.tzinfo is None
        assert created_at == record.timestamp.replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════

class TestQuery:
    @pytest.fixture(autouse=True)
    def seed(self, db):
        handler = db.handler(buffer_size=100)
        handler.handle(make_record(LogLevel.DEBUG, "d", channel="app"))
        handler.handle(make_record(LogLevel.ERROR, "e", channel="app.http", extra={"request_id": "r-1"}))
        handler.handle(make_record(LogLevel.WARNING, "w", channel="application"))
        handler.handle(make_record(LogLevel.CRITICAL, "c", channel="billing"))
        handler.flush()

    def test_channel_subtree(self, db):
        assert sorted(r["message"] for r in db.query(channel="app")) == ["d", "e"]

    def test_exact_level(self, db):
        assert [r["message"] for r in db.query(level="warning")] == ["w"]

    def test_min_level(self, db):
        assert sorted(r["message"] for r in db.query(min_level=LogLevel.ERROR)) == ["c", "e"]

    def test_request_id(self, db):
        assert [r["message"] for r in db.query(request_id="r-1")] == ["e"]

    def test_time_range(self, db):
        now = datetime.now(timezone.utc)
        assert len(db.query(start=now - timedelta(minutes=5))) == 4
        assert db.query(end=now - timedelta(minutes=5)) == []

    def test_newest_first_and_limit(self, db):
        assert [r["message"] for r in db.query(limit=2)] == ["c", "w"]

    def test_status(self, db):
        status = db.status()
        assert status["mode"] == "ephemeral"
        assert status["path"] == ":memory:"
        assert status["tables"] == {"logs": 4}


# ═══════════════════════════════════════════════════════════════════
#  Persistent Mode
# ═══════════════════════════════════════════════════════════════════

class TestPersistentMode:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "data" / "logs.duckdb"
        database = LogDatabase(path)
        assert database.mode == "persistent"
        handler = database.handler(buffer_size=1)
        handler.handle(make_record(message="kept"))
        database.close()

        with LogDatabase(path) as reopened:
            assert reopened.tables() == ["logs"]
            assert reopened.query()[0]["message"] == "kept"
