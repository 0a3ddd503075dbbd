"""
DuckDB persistence for log records.
"""

from chanlog.datastore.database import LogDatabase
from chanlog.datastore.schema import DEFAULT_LOG_TABLE, insert_statement

__all__ = ["LogDatabase", "DEFAULT_LOG_TABLE", "insert_statement"]
