"""
Single-line text formatter driven by a placeholder template.

    SIMPLE:   [2024-01-15 10:30:00] app.ERROR: Connection failed {"host":"db1"} {}
    ENHANCED: [2024-01-15 10:30:00] [ERROR] app | Connection failed | host=db1
    COMPACT:  [2024-01-15 10:30:00] ERROR Connection failed

Placeholders: %datetime% %channel% %level_name% %level% %message% %context%
%context_kv% %extra% %extra_kv% %pid% %memory%. Anything else between percent
signs is copied literally.
"""

import os
import re
from typing import Any, Mapping

from chanlog.logger.formatters.base import (
    ENCODE_ERRORS,
    LogFormatter,
    encode_fallback,
    format_bytes,
    kv_value,
    process_memory,
    to_json,
)
from chanlog.logger.normalize import (
    collapse_newlines,
    normalize,
    sanitize,
    truncate,
)
from chanlog.logger.records import LogRecord

SIMPLE_FORMAT = "[%datetime%] %channel%.%level_name%: %message% %context% %extra%\n"
ENHANCED_FORMAT = "[%datetime%] [%level_name%] %channel% | %message% | %context_kv%\n"
COMPACT_FORMAT = "[%datetime%] %level_name% %message%\n"

PLACEHOLDERS = (
    "datetime", "channel", "level_name", "level", "message",
    "context_kv", "context", "extra_kv", "extra", "pid", "memory",
)

_PLACEHOLDER_RE = re.compile(
    "%(" + "|".join(sorted(PLACEHOLDERS, key=len, reverse=True)) + ")%"
)
_LEADING_SEPARATOR_RE = re.compile(r"^[ \t|]+")
_TRAILING_SEPARATOR_RE = re.compile(r"[ \t|]+$")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")

MESSAGE_NEWLINE = " ⏎ "


def parse_template(template: str) -> list[tuple[bool, str]]:
    """
    Split a template into (is_placeholder, text) tokens.

    For placeholders, text is the bare name ("message" for %message%).
    """
    tokens: list[tuple[bool, str]] = []
    position = 0
    for match in _PLACEHOLDER_RE.finditer(template):
        if match.start() > position:
            tokens.append((False, template[position:match.start()]))
        tokens.append((True, match.group(1)))
        position = match.end()
    if position < len(template):
        tokens.append((False, template[position:]))
    return tokens


class LineFormatter(LogFormatter):
    """
    Template interpreter for single-line output.

    A placeholder that renders empty takes its separator with it: the run of
    spaces and '|' on its left, or failing that on its right, is removed.
    Unless allow_inline_line_breaks is set, the output holds no newline
    except exactly one at the end.
    """

    def __init__(
        self,
        format: str | None = None,
        date_format: str = "%Y-%m-%d %H:%M:%S",
        allow_inline_line_breaks: bool = False,
        ignore_empty_context_and_extra: bool = False,
        include_stacktraces: bool = True,
        max_context_length: int = 1000,
        include_process_id: bool = False,
        include_memory_usage: bool = False,
        level_padding: int = 0,
    ):
        self.format_string = format or SIMPLE_FORMAT
        self.date_format = date_format
        self.allow_inline_line_breaks = allow_inline_line_breaks
        self.ignore_empty_context_and_extra = ignore_empty_context_and_extra
        self.include_stacktraces = include_stacktraces
        self.max_context_length = max(0, max_context_length)
        self.include_process_id = include_process_id
        self.include_memory_usage = include_memory_usage
        self.level_padding = max(0, level_padding)

    @property
    def format_string(self) -> str:
        return self._format

    @format_string.setter
    def format_string(self, value: str) -> None:
        self._format = value
        self._tokens = parse_template(value)

    def use_enhanced_format(self) -> "LineFormatter":
        self.format_string = ENHANCED_FORMAT
        self.ignore_empty_context_and_extra = True
        return self

    # ── Rendering ─────────────────────────────────────────────────

    def format(self, record: LogRecord) -> str:
        names = {text for is_field, text in self._tokens if is_field}
        values = self._render_fields(record, names)

        parts = [
            [is_field, values[text] if is_field else text]
            for is_field, text in self._tokens
        ]
        for i, (is_field, text) in enumerate(parts):
            if is_field and text == "":
                _drop_separator(parts, i)

        output = "".join(text for _, text in parts)
        output = _TRAILING_SPACE_RE.sub("\n", output)

        if not self.allow_inline_line_breaks:
            return collapse_newlines(output, " ").rstrip() + "\n"
        output = output.rstrip(" \t")
        return output if output.endswith("\n") else output + "\n"

    def _render_fields(self, record: LogRecord, names: set[str]) -> dict[str, str]:
        message_newline = None if self.allow_inline_line_breaks else MESSAGE_NEWLINE
        values = {
            "datetime": record.timestamp.strftime(self.date_format),
            "channel": sanitize(record.channel, MESSAGE_NEWLINE),
            "level_name": record.level_name.ljust(self.level_padding),
            "level": record.level_name.lower(),
            "message": sanitize(record.message, message_newline),
            "pid": f"[pid:{os.getpid()}]" if self.include_process_id else "",
            "memory": "",
        }
        if "memory" in names and self.include_memory_usage:
            values["memory"] = f"[mem:{format_bytes(process_memory())}]"

        for section, raw in (("context", record.context), ("extra", record.extra)):
            if not ({section, f"{section}_kv"} & names):
                continue
            json_text, kv_text = self._render_section(raw)
            values[section] = json_text
            values[f"{section}_kv"] = kv_text
        return values

    def _render_section(self, raw: Mapping[str, Any]) -> tuple[str, str]:
        if self.ignore_empty_context_and_extra and not raw:
            return "", ""

        data = normalize(raw, include_stacktraces=self.include_stacktraces)
        try:
            json_text = to_json(data)
        except ENCODE_ERRORS as exc:
            json_text = encode_fallback(exc, data)
        json_text = truncate(json_text, self.max_context_length)

        pairs = [
            f"{key}={kv_value(value)}"
            for key, value in data.items()
            if key != "exception" and not isinstance(raw.get(key), BaseException)
        ]
        kv_text = truncate(" ".join(pairs), self.max_context_length)
        return json_text, kv_text


# ── Helpers ───────────────────────────────────────────────────────────

def _drop_separator(parts: list[list], index: int) -> None:
    """Remove the separator run next to an empty placeholder, left side first."""
    if index > 0 and not parts[index - 1][0]:
        left = parts[index - 1][1]
        stripped = _TRAILING_SEPARATOR_RE.sub("", left)
        if stripped != left:
            parts[index - 1][1] = stripped
            return
    if index + 1 < len(parts) and not parts[index + 1][0]:
        parts[index + 1][1] = _LEADING_SEPARATOR_RE.sub("", parts[index + 1][1])
