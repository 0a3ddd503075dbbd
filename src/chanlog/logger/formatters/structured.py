"""
Structured JSON formatter.

One JSON object per record, compatible with log shippers that expect JSONL:

    {"timestamp":"2024-01-15T10:30:00.123+00:00","level":"error",
     "level_name":"ERROR","channel":"app","message":"Database connection failed",
     "context":{"host":"db.example.com"},"extra":{"request_id":"abc-123"}}
"""

from enum import Enum
from typing import Any, Iterable, Mapping

from chanlog.logger.formatters.base import (
    ENCODE_ERRORS,
    LogFormatter,
    encode_fallback,
    to_json,
)
from chanlog.logger.normalize import filter_fields, normalize, truncate
from chanlog.logger.records import LogRecord


class BatchMode(str, Enum):
    NEWLINES = "newlines"  # one object per line (JSONL)
    JSON = "json"          # a single JSON array


class JsonFormatter(LogFormatter):
    """
    Structured JSON for aggregators and machine parsing.

    Context and extra are normalized (bounded depth, cycle-safe, exceptions
    serialized with their chain). If the final encoding fails the record is
    replaced by {"encode_error": ..., "input_kind": ...}.
    """

    def __init__(
        self,
        batch_mode: BatchMode | str = BatchMode.NEWLINES,
        append_newline: bool = True,
        ignore_empty_context_and_extra: bool = False,
        include_stacktraces: bool = True,
        include_fields: Iterable[str] | None = None,
        exclude_fields: Iterable[str] | None = None,
        escape_unicode: bool = False,
        max_length: int = 0,
    ):
        self.batch_mode = BatchMode(batch_mode)
        self.append_newline = append_newline
        self.ignore_empty_context_and_extra = ignore_empty_context_and_extra
        self.include_stacktraces = include_stacktraces
        self.include_fields = list(include_fields or [])
        self.exclude_fields = list(exclude_fields or [])
        self.escape_unicode = escape_unicode
        self.max_length = max(0, max_length)

    def format(self, record: LogRecord) -> str:
        data = self.normalize_record(record)
        return self._encode(data) + ("\n" if self.append_newline else "")

    def format_batch(self, records: Iterable[LogRecord]) -> str:
        normalized = [self.normalize_record(record) for record in records]
        if self.batch_mode is BatchMode.JSON:
            return self._encode(normalized) + ("\n" if self.append_newline else "")
        return "".join(self._encode(data) + "\n" for data in normalized)

    def normalize_record(self, record: LogRecord) -> dict[str, Any]:
        """The record as the dict that gets encoded, after field filters."""
        data: dict[str, Any] = {
            "timestamp": record.timestamp.isoformat(timespec="milliseconds"),
            "level": record.level_name.lower(),
            "level_name": record.level_name,
            "channel": record.channel,
            "message": record.message,
        }
        if record.context or not self.ignore_empty_context_and_extra:
            data["context"] = self._section(record.context)
        if record.extra or not self.ignore_empty_context_and_extra:
            data["extra"] = self._section(record.extra)
        return filter_fields(data, self.include_fields, self.exclude_fields)

    def _section(self, values: Mapping[str, Any]) -> Any:
        normalized = normalize(values, include_stacktraces=self.include_stacktraces)
        if self.max_length > 0:
            try:
                encoded = to_json(normalized, self.escape_unicode)
            except ENCODE_ERRORS:
                # Left to _encode, which emits the fallback payload
                return normalized
            if len(encoded) > self.max_length:
                return truncate(encoded, self.max_length)
        return normalized

    def _encode(self, data: Any) -> str:
        try:
            return to_json(data, self.escape_unicode)
        except ENCODE_ERRORS as exc:
            return encode_fallback(exc, data)
