"""
Log formatters.

Each handler can use a different formatter:
  - json:     structured JSON (JSONL batches or a JSON array)
  - line:     single-line template, e.g. "[%datetime%] %channel%.%level_name%: %message%"
  - detailed: dense multi-line with request/pid/memory metadata
  - pretty:   boxed sections for development terminals
"""

from chanlog.logger.formatters.base import LogFormatter, format_bytes
from chanlog.logger.formatters.structured import BatchMode, JsonFormatter
from chanlog.logger.formatters.line import (
    COMPACT_FORMAT,
    ENHANCED_FORMAT,
    SIMPLE_FORMAT,
    LineFormatter,
)
from chanlog.logger.formatters.detailed import DetailedFormatter
from chanlog.logger.formatters.pretty import PrettyFormatter

__all__ = [
    "LogFormatter",
    "BatchMode",
    "JsonFormatter",
    "LineFormatter",
    "DetailedFormatter",
    "PrettyFormatter",
    "SIMPLE_FORMAT",
    "ENHANCED_FORMAT",
    "COMPACT_FORMAT",
    "format_bytes",
]
