"""
Value normalization shared by every formatter.

Turns arbitrary context/extra values into bounded, JSON-safe trees and
exception chains into bounded descriptive dicts. Every function here is total:
cyclic or deeply nested input terminates with a marker instead of recursing
without bound.
"""

import os
import re
import traceback
from collections.abc import Mapping, Set
from datetime import date, datetime, time
from enum import Enum
from types import TracebackType
from typing import Any, Iterable, Protocol, runtime_checkable
from uuid import UUID

MAX_EXCEPTION_DEPTH = 10
MAX_TRACE_FRAMES = 20
DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_ITEMS = 1000

MAX_DEPTH_MARKER = "[max depth reached]"
TRACE_TRUNCATED_MARKER = "... (truncated)"
ELLIPSIS = "..."

# CSI escape sequences (colors, cursor movement)
_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
# C0 controls and DEL, except tab, LF and CR
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_NEWLINE_RE = re.compile(r"\r\n|\r|\n")


@runtime_checkable
class SelfDescribing(Protocol):
    """Objects that know how to reduce themselves to primitive structures."""

    def to_log_value(self) -> Any: ...


# ── Strings ───────────────────────────────────────────────────────────

def sanitize(text: Any, newline: str | None = None) -> str:
    """
    Strip ANSI escape sequences and control characters (tab excepted).

    newline=None keeps line breaks; any other value replaces each line break
    with that token.
    """
    text = _ANSI_RE.sub("", str(text))
    if newline is not None:
        text = _NEWLINE_RE.sub(newline, text)
    return _CONTROL_RE.sub("", text)


def collapse_newlines(text: str, replacement: str = " ") -> str:
    return _NEWLINE_RE.sub(replacement, text)


def truncate(text: str, max_length: int, marker: str = ELLIPSIS) -> str:
    """Cut text to max_length and mark the cut. 0 means unlimited."""
    if max_length > 0 and len(text) > max_length:
        return text[:max_length] + marker
    return text


def type_name(value: Any) -> str:
    cls = type(value)
    if cls.__module__ in ("builtins", "__main__"):
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def short_type_name(value: Any) -> str:
    return type(value).__qualname__


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception as exc:
        return f"[{type_name(value)} error: {exc}]"


# ── Field filtering ───────────────────────────────────────────────────

def filter_fields(
    data: Mapping[str, Any],
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Top-level whitelist then blacklist. Nested content is never inspected."""
    result = dict(data)
    if include:
        keep = set(include)
        result = {k: v for k, v in result.items() if k in keep}
    if exclude:
        drop = set(exclude)
        result = {k: v for k, v in result.items() if k not in drop}
    return result


# ── Traces ────────────────────────────────────────────────────────────

def is_trace_like(value: Any) -> bool:
    """True for tracebacks, stack summaries and lists of frame descriptions."""
    if isinstance(value, (TracebackType, traceback.StackSummary)):
        return True
    if isinstance(value, (list, tuple)) and value:
        return all(
            isinstance(frame, traceback.FrameSummary)
            or (isinstance(frame, Mapping) and "file" in frame and "line" in frame)
            for frame in value
        )
    return False


def format_frame(frame: Any) -> str:
    """One frame as 'file:line function()'."""
    if isinstance(frame, traceback.FrameSummary):
        return f"{frame.filename}:{frame.lineno} {frame.name}()"
    file = frame.get("file") or "[internal]"
    line = frame.get("line") or 0
    function = frame.get("function") or ""
    call = function if function.endswith(")") else f"{function}()"
    return f"{file}:{line} {call}"


def _frames_of(value: Any) -> list:
    if isinstance(value, TracebackType):
        # innermost (raise point) first
        return list(reversed(traceback.extract_tb(value)))
    return list(value)


def format_trace(value: Any, limit: int = MAX_TRACE_FRAMES) -> list[str]:
    """Render a trace-like value, keeping at most `limit` frames."""
    frames = _frames_of(value)
    formatted = [format_frame(frame) for frame in frames[:limit]]
    if len(frames) > limit:
        formatted.append(TRACE_TRUNCATED_MARKER)
    return formatted


# ── Exceptions ────────────────────────────────────────────────────────

def exception_frames(exc: BaseException) -> list[traceback.FrameSummary]:
    """Frames of an exception's traceback, innermost first."""
    if exc.__traceback__ is None:
        return []
    return list(reversed(traceback.extract_tb(exc.__traceback__)))


def exception_location(exc: BaseException) -> tuple[str, int]:
    """File and line where the exception was raised."""
    tb = exc.__traceback__
    if tb is None:
        return "unknown", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


def exception_code(exc: BaseException) -> int:
    for attr in ("code", "errno"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


def previous_exception(exc: BaseException) -> BaseException | None:
    """Explicit cause, else the implicit context unless suppressed."""
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__


def serialize_exception(
    exc: BaseException,
    include_trace: bool = True,
    depth: int = 0,
) -> dict[str, Any]:
    """
    Describe an exception and its chain of previous exceptions.

    The chain is cut at MAX_EXCEPTION_DEPTH with a terminal marker node, which
    also bounds accidentally cyclic chains.
    """
    if depth >= MAX_EXCEPTION_DEPTH:
        return {"class": type_name(exc), "message": MAX_DEPTH_MARKER}

    file, line = exception_location(exc)
    data: dict[str, Any] = {
        "class": type_name(exc),
        "message": _safe_str(exc),
        "code": exception_code(exc),
        "file": file,
        "line": line,
    }
    if include_trace:
        data["trace"] = format_trace(exception_frames(exc))

    previous = previous_exception(exc)
    if previous is not None:
        data["previous"] = serialize_exception(previous, include_trace, depth + 1)
    return data


# ── Structures ────────────────────────────────────────────────────────

def normalize(
    value: Any,
    *,
    include_stacktraces: bool = True,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> Any:
    """Reduce any value to None/bool/int/float/str/dict/list."""
    return _normalize(value, 0, set(), include_stacktraces, max_depth, max_items)


def _normalize(
    value: Any,
    depth: int,
    ancestors: set[int],
    traces: bool,
    max_depth: int,
    max_items: int,
) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, BaseException):
        return serialize_exception(value, traces)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return _normalize(value.value, depth, ancestors, traces, max_depth, max_items)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (UUID, os.PathLike)):
        return str(value)
    if is_trace_like(value):
        return format_trace(value)

    is_container = isinstance(value, (Mapping, list, tuple, Set))
    if not is_container and not isinstance(value, SelfDescribing):
        return f"[{type_name(value)}]"

    if depth >= max_depth:
        return {"_truncated": True}

    marker = id(value)
    if marker in ancestors:
        return f"[circular reference: {type_name(value)}]"
    ancestors.add(marker)
    try:
        if not is_container:
            try:
                described = value.to_log_value()
            except Exception as exc:
                return f"[{type_name(value)} error: {exc}]"
            if described is value:
                return f"[{type_name(value)}]"
            return _normalize(described, depth + 1, ancestors, traces, max_depth, max_items)

        if isinstance(value, Mapping):
            result: dict[str, Any] = {}
            for count, (key, item) in enumerate(value.items()):
                if count >= max_items:
                    result[ELLIPSIS] = (
                        f"Over {max_items} items ({len(value)} total), aborting normalization"
                    )
                    break
                result[str(key)] = _normalize(
                    item, depth + 1, ancestors, traces, max_depth, max_items
                )
            return result

        items = list(value)
        normalized = [
            _normalize(item, depth + 1, ancestors, traces, max_depth, max_items)
            for item in items[:max_items]
        ]
        if len(items) > max_items:
            normalized.append(f"... ({len(items) - max_items} more items)")
        return normalized
    finally:
        ancestors.discard(marker)
