"""
Boxed multi-section formatter for development terminals.

    ┌──────────────────────────────────────────────────────────────────────────────┐
    │ 2024-01-15 10:30:00.123456 │ ERROR │ app.db
    ├──────────────────────────────────────────────────────────────────────────────┤
    │ MESSAGE: Database connection failed after 3 retries
    ├──────────────────────────────────────────────────────────────────────────────┤
    │ CONTEXT:
    │   host            ...... db.example.com
    │   port            ...... 5432
    ├──────────────────────────────────────────────────────────────────────────────┤
    │ EXCEPTION: ConnectionError
    │   Message: Connection refused
    │   File: /srv/app/db.py:45
    │   Trace:
    │     #0 db.py:45 → connect()
    └──────────────────────────────────────────────────────────────────────────────┘
"""

import os
import textwrap
from typing import Any, Mapping

from chanlog.logger.formatters.base import ENCODE_ERRORS, LogFormatter, to_json
from chanlog.logger.normalize import (
    exception_code,
    exception_frames,
    exception_location,
    normalize,
    previous_exception,
    sanitize,
    type_name,
)
from chanlog.logger.records import LogRecord

BOX_WIDTH = 80
TOP_LEFT, TOP_RIGHT = "┌", "┐"
BOTTOM_LEFT, BOTTOM_RIGHT = "└", "┘"
HORIZONTAL, VERTICAL = "─", "│"
T_LEFT, T_RIGHT = "├", "┤"

LEVEL_COLORS = {
    "DEBUG": "\033[36m",         # cyan
    "INFO": "\033[32m",          # green
    "NOTICE": "\033[34m",        # blue
    "WARNING": "\033[33m",       # yellow
    "ERROR": "\033[31m",         # red
    "CRITICAL": "\033[1;31m",    # bold red
    "ALERT": "\033[1;35m",       # bold magenta
    "EMERGENCY": "\033[1;37;41m",  # white on red
}
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"

MAX_STRING_LENGTH = 100
MAX_INLINE_ITEMS = 5


class PrettyFormatter(LogFormatter):
    """Human-readable box per record, optionally colored by severity."""

    def __init__(
        self,
        use_colors: bool = True,
        include_stack_traces: bool = True,
        max_trace_depth: int = 10,
        date_format: str = "%Y-%m-%d %H:%M:%S.%f",
        key_padding: int = 15,
    ):
        self.use_colors = use_colors
        self.include_stack_traces = include_stack_traces
        self.max_trace_depth = max(1, max_trace_depth)
        self.date_format = date_format
        self.key_padding = key_padding

    @property
    def key_padding(self) -> int:
        return self._key_padding

    @key_padding.setter
    def key_padding(self, value: int) -> None:
        self._key_padding = max(10, min(40, value))

    def format(self, record: LogRecord) -> str:
        output = [_border(TOP_LEFT, TOP_RIGHT), self._header(record), _border(T_LEFT, T_RIGHT)]
        output.append(self._message_section(sanitize(record.message)))

        for label, raw in (("CONTEXT", record.context), ("EXTRA", record.extra)):
            rows = self._key_value_rows(raw)
            if rows:
                output.append(_border(T_LEFT, T_RIGHT))
                output.append(f"{VERTICAL} {self._colorize(label + ':', BOLD)}")
                output.extend(rows)

        exception = record.context.get("exception")
        if isinstance(exception, BaseException):
            output.append(_border(T_LEFT, T_RIGHT))
            output.extend(self._exception_section(exception))

        output.append(_border(BOTTOM_LEFT, BOTTOM_RIGHT))
        output.append("")
        return "\n".join(output) + "\n"

    # ── Sections ──────────────────────────────────────────────────

    def _header(self, record: LogRecord) -> str:
        timestamp = self._colorize(record.timestamp.strftime(self.date_format), DIM)
        level = self._colorize(record.level_name, LEVEL_COLORS.get(record.level_name, ""))
        channel = self._colorize(sanitize(record.channel, " "), BOLD)
        return f"{VERTICAL} {timestamp} {VERTICAL} {level} {VERTICAL} {channel}"

    def _message_section(self, text: str) -> str:
        lines = _wrap(text, BOX_WIDTH - 4)
        output = f"{VERTICAL} {self._colorize('MESSAGE:', BOLD)} {lines[0]}"
        for line in lines[1:]:
            output += f"\n{VERTICAL}   {line}"
        return output

    def _key_value_rows(self, raw: Mapping[str, Any]) -> list[str]:
        data = normalize(raw, include_stacktraces=False)
        rows = []
        for key, value in data.items():
            if key == "exception" and isinstance(raw.get(key), BaseException):
                continue
            dots = self._colorize("." * max(1, self.key_padding - len(key) + 3), DIM)
            rows.append(
                f"{VERTICAL}   {sanitize(key, ' ').ljust(self.key_padding)} {dots} "
                f"{sanitize(self._value(value), ' ')}"
            )
        return rows

    def _exception_section(self, exc: BaseException) -> list[str]:
        label = self._colorize("EXCEPTION:", BOLD)
        lines = [f"{VERTICAL} {label} {self._colorize(type_name(exc), LEVEL_COLORS['ERROR'])}"]
        lines.append(f"{VERTICAL}   {self._colorize('Message:', DIM)} {sanitize(str(exc), ' ')}")

        code = exception_code(exc)
        if code != 0:
            lines.append(f"{VERTICAL}   {self._colorize('Code:', DIM)} {code}")

        file, line = exception_location(exc)
        lines.append(f"{VERTICAL}   {self._colorize('File:', DIM)} {file}:{line}")

        if self.include_stack_traces:
            lines.append(f"{VERTICAL}   {self._colorize('Trace:', DIM)}")
            frames = exception_frames(exc)
            for i, frame in enumerate(frames[:self.max_trace_depth]):
                location = f"{os.path.basename(frame.filename)}:{frame.lineno}"
                lines.append(
                    f"{VERTICAL}     {self._colorize(f'#{i}', DIM)} {location} "
                    f"{self._colorize('→', DIM)} {frame.name}()"
                )
            if len(frames) > self.max_trace_depth:
                remaining = len(frames) - self.max_trace_depth
                lines.append(
                    f"{VERTICAL}     {self._colorize(f'... and {remaining} more frames', DIM)}"
                )

        previous = previous_exception(exc)
        if previous is not None:
            lines.append(
                f"{VERTICAL}   {self._colorize('Caused by:', DIM)} "
                f"{type_name(previous)}: {sanitize(str(previous), ' ')}"
            )
        return lines

    # ── Values ────────────────────────────────────────────────────

    def _value(self, value: Any) -> str:
        if value is None:
            return self._colorize("null", DIM)
        if isinstance(value, bool):
            return self._colorize("true" if value else "false", DIM)
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            if len(value) > MAX_STRING_LENGTH:
                return value[:MAX_STRING_LENGTH] + self._colorize("...", DIM)
            return value
        if not value:
            return self._colorize("[]" if isinstance(value, list) else "{}", DIM)

        if isinstance(value, list):
            simple = not any(isinstance(item, (list, dict)) for item in value)
            if simple and len(value) <= MAX_INLINE_ITEMS:
                return _json_or(value, "[...]")
            return self._colorize(f"[array with {len(value)} items]", DIM)

        text = _json_or(value, "")
        if text and len(text) <= MAX_STRING_LENGTH:
            return text
        return self._colorize(f"[{len(value)} items]", DIM)

    def _colorize(self, text: str, code: str) -> str:
        if not self.use_colors or not code:
            return text
        return f"{code}{text}{RESET}"


# ── Helpers ───────────────────────────────────────────────────────────

def _border(left: str, right: str) -> str:
    return left + HORIZONTAL * (BOX_WIDTH - 2) + right


def _wrap(text: str, width: int) -> list[str]:
    lines: list[str] = []
    for paragraph in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if len(paragraph) <= width:
            lines.append(paragraph)
        else:
            lines.extend(textwrap.wrap(paragraph, width, break_long_words=True))
    return lines or [""]


def _json_or(value: Any, default: str) -> str:
    try:
        return to_json(value)
    except ENCODE_ERRORS:
        return default
