"""
DuckDB table and index DDL for stored log records.

The table name is configurable, so DDL is produced by functions that take a
validated identifier. ALL_TABLES / ALL_INDEXES list (name, ddl-builder)
pairs in creation order.

Row layout (one row per record):
    id           BIGINT     sequence-assigned primary key
    channel      VARCHAR    dotted channel name
    level        VARCHAR    level name, e.g. 'ERROR'
    level_value  INTEGER    numeric weight, e.g. 400
    message      VARCHAR
    context      JSON       normalized context
    extra        JSON       normalized extra
    created_at   TIMESTAMP  UTC, naive
    request_id / user_id / ip_address / user_agent  VARCHAR, lifted from extra or context
"""

import re

DEFAULT_LOG_TABLE = "logs"

IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Insert order matches handlers.record_to_row()
LOG_COLUMNS = [
    "channel",
    "level",
    "level_value",
    "message",
    "context",
    "extra",
    "created_at",
    "request_id",
    "user_id",
    "ip_address",
    "user_agent",
]

JSON_COLUMNS = {"context", "extra"}


def validate_identifier(name: str) -> str:
    """Table names are interpolated into SQL, so only plain identifiers pass."""
    if not isinstance(name, str) or not IDENTIFIER_RE.fullmatch(name):
        raise ValueError(f"Invalid table name {name!r}")
    return name


# ═══════════════════════════════════════════════════════════════════
#  logs
# ═══════════════════════════════════════════════════════════════════

def log_sequence(table: str = DEFAULT_LOG_TABLE) -> str:
    table = validate_identifier(table)
    return f"CREATE SEQUENCE IF NOT EXISTS {table}_id_seq START 1;"


def log_table(table: str = DEFAULT_LOG_TABLE) -> str:
    table = validate_identifier(table)
    return f"""
CREATE TABLE IF NOT EXISTS {table} (
    id BIGINT PRIMARY KEY DEFAULT nextval('{table}_id_seq'),
    channel VARCHAR NOT NULL,
    level VARCHAR NOT NULL,
    level_value INTEGER NOT NULL,
    message VARCHAR NOT NULL,
    context JSON,
    extra JSON,
    created_at TIMESTAMP NOT NULL,

    -- Request metadata
    request_id VARCHAR,
    user_id VARCHAR,
    ip_address VARCHAR,
    user_agent VARCHAR
);
"""


def log_indexes(table: str = DEFAULT_LOG_TABLE) -> str:
    table = validate_identifier(table)
    return f"""
CREATE INDEX IF NOT EXISTS idx_{table}_channel ON {table} (channel);
CREATE INDEX IF NOT EXISTS idx_{table}_level_value ON {table} (level_value);
CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table} (created_at);
CREATE INDEX IF NOT EXISTS idx_{table}_request_id ON {table} (request_id);
CREATE INDEX IF NOT EXISTS idx_{table}_channel_created ON {table} (channel, created_at);
"""


def insert_statement(table: str = DEFAULT_LOG_TABLE) -> str:
    """Parameterized INSERT for one row in LOG_COLUMNS order."""
    table = validate_identifier(table)
    placeholders = ", ".join("?::JSON" if c in JSON_COLUMNS else "?" for c in LOG_COLUMNS)
    return f"INSERT INTO {table} ({', '.join(LOG_COLUMNS)}) VALUES ({placeholders})"


# ═══════════════════════════════════════════════════════════════════
#  Registry of all DDL
# ═══════════════════════════════════════════════════════════════════

ALL_TABLES = [
    ("sequence", log_sequence),
    ("table", log_table),
]

ALL_INDEXES = [
    ("indexes", log_indexes),
]
