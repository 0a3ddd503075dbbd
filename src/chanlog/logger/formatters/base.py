"""
Formatter base class and helpers shared by the renderers.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Iterable

import psutil

from chanlog.logger.normalize import truncate
from chanlog.logger.records import LogRecord

# Exceptions json.dumps raises for data it cannot encode
ENCODE_ERRORS = (TypeError, ValueError, RecursionError)


class LogFormatter(ABC):
    """Base formatter. Transforms LogRecord → string."""

    @abstractmethod
    def format(self, record: LogRecord) -> str: ...

    def format_batch(self, records: Iterable[LogRecord]) -> str:
        """Concatenate the formatted records. Overridden where batches differ."""
        return "".join(self.format(record) for record in records)


def to_json(data: Any, escape_unicode: bool = False) -> str:
    """Compact JSON with unescaped slashes. Raises on unencodable data."""
    return json.dumps(
        data,
        ensure_ascii=escape_unicode,
        allow_nan=False,
        separators=(",", ":"),
    )


def encode_fallback(reason: BaseException | str, data: Any) -> str:
    """Stand-in payload when a record cannot be encoded."""
    return json.dumps({"encode_error": str(reason), "input_kind": type(data).__name__})


def format_number(value: float, places: int = 2) -> str:
    """Round and drop trailing zeros: 1523.0 → '1523', 12.3456 → '12.35'."""
    text = f"{round(float(value), places):.{places}f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def format_bytes(num_bytes: int | float) -> str:
    """Human-readable size, e.g. 47395635 → '45.2MB'."""
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    factor = 0
    while value >= 1024 and factor < len(units) - 1:
        value /= 1024
        factor += 1
    return f"{format_number(value, 1)}{units[factor]}"


def process_memory() -> int:
    """Resident set size of the current process in bytes."""
    return psutil.Process(os.getpid()).memory_info().rss


def kv_value(value: Any, max_length: int = 0, max_inline_json: int = 0) -> str:
    """
    Format a normalized value for key=value output.

    Strings longer than max_length are truncated, and mappings or lists whose
    JSON exceeds max_inline_json collapse to "[N items]". 0 disables either cap.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        if " " in value or "=" in value or '"' in value:
            return '"' + truncate(value.replace('"', '\\"'), max_length) + '"'
        return truncate(value, max_length)
    try:
        text = to_json(value)
    except ENCODE_ERRORS:
        return "[array]"
    if max_inline_json and len(text) > max_inline_json:
        return f"[{len(value)} items]"
    return text
