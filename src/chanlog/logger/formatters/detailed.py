"""
Dense multi-line formatter for log files that stay grep-friendly.

    [2024-01-15 10:30:00.123456] [ERR] [app.db] [req:abc-123] [pid:12345] [mem:45.2MB] [1523ms]
      ▶ Database connection failed after 3 retries
      │ host=db.example.com port=5432 attempts=3
      │   at /srv/app/db.py:45 connect()
      └ ConnectionError in db.py:45 - Connection refused
"""

import os
from typing import Any, Mapping

from chanlog.logger.formatters.base import (
    LogFormatter,
    format_bytes,
    format_number,
    kv_value,
    process_memory,
)
from chanlog.logger.normalize import (
    MAX_TRACE_FRAMES,
    TRACE_TRUNCATED_MARKER,
    exception_frames,
    exception_location,
    format_trace,
    is_trace_like,
    normalize,
    sanitize,
    short_type_name,
    truncate,
)
from chanlog.logger.records import LogRecord

LEVEL_ICONS = {
    "DEBUG": "DBG",
    "INFO": "INF",
    "NOTICE": "NTC",
    "WARNING": "WRN",
    "ERROR": "ERR",
    "CRITICAL": "CRT",
    "ALERT": "ALT",
    "EMERGENCY": "EMG",
}

MIN_CONTEXT_LENGTH = 100
MAX_EXCEPTION_MESSAGE = 200
MAX_VALUE_LENGTH = 50
MAX_INLINE_JSON = 100


class DetailedFormatter(LogFormatter):
    """
    Header line with metadata, then one line per concern.

    Single-line mode (multi_line=False) keeps the header and joins message,
    context and exception summary with ' | ' on the next line.
    """

    def __init__(
        self,
        date_format: str = "%Y-%m-%d %H:%M:%S.%f",
        include_process_id: bool = True,
        include_memory_usage: bool = True,
        include_request_id: bool = True,
        request_id_key: str = "request_id",
        multi_line: bool = True,
        include_stack_traces: bool = True,
        max_context_length: int = 1000,
    ):
        self.date_format = date_format
        self.include_process_id = include_process_id
        self.include_memory_usage = include_memory_usage
        self.include_request_id = include_request_id
        self.request_id_key = request_id_key
        self.multi_line = multi_line
        self.include_stack_traces = include_stack_traces
        self.max_context_length = max_context_length

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    @max_context_length.setter
    def max_context_length(self, value: int) -> None:
        self._max_context_length = max(MIN_CONTEXT_LENGTH, value)

    def format(self, record: LogRecord) -> str:
        output = [self._header(record)]
        exception = record.context.get("exception")
        if not isinstance(exception, BaseException):
            exception = None

        context_text = self._key_values(record.context)

        if not self.multi_line:
            parts = [sanitize(record.message, " ")]
            if context_text:
                parts.append(context_text)
            if exception is not None:
                parts.append(self._exception_summary(exception))
            output.append("  " + " | ".join(parts))
            return "\n".join(output) + "\n"

        output.append("  ▶ " + sanitize(record.message))
        if context_text:
            output.append("  │ " + context_text)
        extra_text = self._key_values(record.extra)
        if extra_text:
            output.append("  │ " + extra_text)
        if self.include_stack_traces:
            for line in self._trace_lines(record, exception):
                prefix = "  │   " if line == TRACE_TRUNCATED_MARKER else "  │   at "
                output.append(prefix + line)

        if exception is not None:
            output.append("  └ " + self._exception_summary(exception))
        elif len(output) > 2 and output[-1].startswith("  │"):
            output[-1] = "  └" + output[-1][3:]
        return "\n".join(output) + "\n"

    # ── Header ────────────────────────────────────────────────────

    def _header(self, record: LogRecord) -> str:
        parts = [
            f"[{record.timestamp.strftime(self.date_format)}]",
            f"[{LEVEL_ICONS.get(record.level_name, record.level_name)}]",
            f"[{sanitize(record.channel, ' ')}]",
        ]

        if self.include_request_id:
            request_id = record.context.get(self.request_id_key)
            if request_id is None:
                request_id = record.extra.get(self.request_id_key)
            if request_id is not None:
                text = sanitize(request_id, " ")
                if len(text) > 12:
                    text = text[:8] + ".."
                parts.append(f"[req:{text}]")

        if self.include_process_id:
            parts.append(f"[pid:{os.getpid()}]")
        if self.include_memory_usage:
            parts.append(f"[mem:{format_bytes(process_memory())}]")

        duration = _duration_ms(record.context)
        if duration is not None:
            parts.append(f"[{format_number(duration)}ms]")
        return " ".join(parts)

    # ── Body ──────────────────────────────────────────────────────

    def _key_values(self, raw: Mapping[str, Any]) -> str:
        skip = {"exception", self.request_id_key, "duration_ms", "duration", "stack_trace"}
        data = normalize(raw, include_stacktraces=False)
        pairs = [
            f"{key}={kv_value(value, MAX_VALUE_LENGTH, MAX_INLINE_JSON)}"
            for key, value in data.items()
            if key not in skip and not is_trace_like(raw.get(key))
        ]
        if not pairs:
            return ""
        return truncate(sanitize(" ".join(pairs), " "), self.max_context_length)

    def _trace_lines(self, record: LogRecord, exception: BaseException | None) -> list[str]:
        lines: list[str] = []
        for key, value in record.context.items():
            if key == "stack_trace" or is_trace_like(value):
                lines.extend(_trace_strings(value))
        if exception is not None:
            lines.extend(format_trace(exception_frames(exception)))
        return [sanitize(line, " ") for line in lines]

    def _exception_summary(self, exc: BaseException) -> str:
        file, line = exception_location(exc)
        message = truncate(str(exc), MAX_EXCEPTION_MESSAGE)
        return f"{short_type_name(exc)} in {os.path.basename(file)}:{line} - {sanitize(message, ' ')}"


# ── Helpers ───────────────────────────────────────────────────────────

def _duration_ms(context: Mapping[str, Any]) -> float | None:
    try:
        if context.get("duration_ms") is not None:
            return float(context["duration_ms"])
        if context.get("duration") is not None:
            return float(context["duration"]) * 1000
    except (TypeError, ValueError):
        return None
    return None


def _trace_strings(value: Any) -> list[str]:
    """Trace-like values, pre-rendered frame lists and plain strings alike."""
    if is_trace_like(value):
        return format_trace(value)
    if isinstance(value, str):
        value = value.splitlines()
    if isinstance(value, (list, tuple)):
        lines = [str(item) for item in value[:MAX_TRACE_FRAMES]]
        if len(value) > MAX_TRACE_FRAMES:
            lines.append(TRACE_TRUNCATED_MARKER)
        return lines
    return []
