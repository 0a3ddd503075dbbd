"""
Log handlers (output destinations).

One channel, many handlers. Each handler receives every record its channel
resolves to, applies its own min_level and renders with its own formatter.

Handlers that hold resources (files, buffers, database connections) release
them on close() and reacquire them lazily on the next record, since one
handler instance may be shared by several channels.
"""

import gzip
import shutil
import sys
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TextIO

from chanlog.datastore.schema import DEFAULT_LOG_TABLE, insert_statement
from chanlog.logger.core import report_error
from chanlog.logger.formatters import (
    DetailedFormatter,
    JsonFormatter,
    LineFormatter,
    LogFormatter,
)
from chanlog.logger.formatters.base import ENCODE_ERRORS, encode_fallback, to_json
from chanlog.logger.normalize import normalize
from chanlog.logger.records import LogLevel, LogRecord


class LogHandler(ABC):
    """Base handler. Receives records and writes them somewhere."""

    def __init__(
        self,
        name: str,
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
    ):
        self.name = name
        self.min_level = LogLevel.from_value(min_level)
        self._formatter = formatter

    @property
    def formatter(self) -> LogFormatter:
        if self._formatter is None:
            self._formatter = self._default_formatter()
        return self._formatter

    @formatter.setter
    def formatter(self, value: LogFormatter) -> None:
        self._formatter = value

    def _default_formatter(self) -> LogFormatter:
        """Subclass-specific default."""
        return LineFormatter()

    def handles(self, record: LogRecord) -> bool:
        return record.level >= self.min_level

    def handle(self, record: LogRecord) -> None:
        """Entry point used by channel loggers: level check, then emit."""
        if self.handles(record):
            self.emit(record)

    def handle_batch(self, records: Iterable[LogRecord]) -> None:
        for record in records:
            self.handle(record)

    @abstractmethod
    def emit(self, record: LogRecord) -> None:
        """Write a log record. Called only after the level check passes."""
        ...

    def flush(self) -> None:
        """Flush any buffered records. Override in buffered handlers."""
        pass

    def close(self) -> None:
        """Cleanup. Override if the handler holds resources."""
        self.flush()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class StreamHandler(LogHandler):
    """Writes formatted records to a text stream (stderr when none is given)."""

    def __init__(
        self,
        name: str = "stream",
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
        stream: TextIO | None = None,
    ):
        super().__init__(name, min_level, formatter)
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        # Resolved per write so redirected sys.stderr is honoured
        return self._stream if self._stream is not None else sys.stderr

    def emit(self, record: LogRecord) -> None:
        formatted = self.formatter.format(record)
        with self._lock:
            self.stream.write(formatted)

    def flush(self) -> None:
        with self._lock:
            self.stream.flush()


class TerminalHandler(LogHandler):
    """
    Writes to stdout/stderr with ANSI color coding.
    ERROR+ goes to stderr, everything else to stdout.
    """

    COLORS = {
        LogLevel.DEBUG: "\033[36m",       # cyan
        LogLevel.INFO: "\033[37m",        # white/default
        LogLevel.NOTICE: "\033[97m",      # bright white
        LogLevel.WARNING: "\033[33m",     # yellow
        LogLevel.ERROR: "\033[31m",       # red
        LogLevel.CRITICAL: "\033[1;91m",  # bold bright red
        LogLevel.ALERT: "\033[1;35m",     # bold magenta
        LogLevel.EMERGENCY: "\033[1;37;41m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(
        self,
        name: str = "terminal",
        min_level: int | str | LogLevel = LogLevel.INFO,
        formatter: LogFormatter | None = None,
        color: bool = True,
    ):
        super().__init__(name, min_level, formatter)
        self.color = color

    def emit(self, record: LogRecord) -> None:
        formatted = self.formatter.format(record).rstrip("\n")
        if self.color:
            formatted = f"{self.COLORS.get(record.level, '')}{formatted}{self.RESET}"
        stream = sys.stderr if record.level >= LogLevel.ERROR else sys.stdout
        print(formatted, file=stream, flush=True)


class FileHandler(LogHandler):
    """
    Appends to a .log file.

    Daily/hourly rotation opens a new dated file when the record's period
    changes. max_file_size > 0 additionally renames a full file to
    <stem>_<timestamp><suffix> and starts over. With compress, the file rotated
    away from is gzipped. Each time a file is opened the archives are pruned
    to the newest max_files and those older than retention_days are removed
    (0 disables either).
    """

    PERIOD_FORMATS = {"daily": "%Y-%m-%d", "hourly": "%Y-%m-%d-%H"}

    def __init__(
        self,
        name: str = "file",
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
        path: str | Path = "logs/app.log",
        rotation: str = "none",
        retention_days: int = 30,
        max_file_size: int = 0,
        max_files: int = 0,
        compress: bool = False,
    ):
        super().__init__(name, min_level, formatter)
        if rotation != "none" and rotation not in self.PERIOD_FORMATS:
            raise ValueError(f"Unknown rotation '{rotation}'. Valid: none, daily, hourly")
        self.base_path = Path(path)
        self.rotation = rotation
        self.retention_days = max(0, retention_days)
        self.max_file_size = max(0, max_file_size)
        self.max_files = max(0, max_files)
        self.compress = compress
        self._current_path: Optional[Path] = None
        self._size = 0
        self._file = None
        self._lock = threading.Lock()

    def _default_formatter(self) -> LogFormatter:
        return LineFormatter()

    def path_for(self, record_date: datetime) -> Path:
        """File a record dated record_date is written to."""
        if self.rotation == "none":
            return self.base_path
        period = record_date.strftime(self.PERIOD_FORMATS[self.rotation])
        return self.base_path.parent / f"{self.base_path.stem}_{period}{self._suffix}"

    @property
    def _suffix(self) -> str:
        return self.base_path.suffix or ".log"

    def _ensure_file(self, record_date: datetime) -> None:
        """Open or rotate file as needed. Must hold self._lock."""
        target = self.path_for(record_date)
        full = self.max_file_size > 0 and self._size >= self.max_file_size
        if self._file is not None and target == self._current_path and not full:
            return

        if self._file is not None:
            self._file.close()
            self._file = None
            if self._current_path != target:
                self._archive(self._current_path)

        if self.max_file_size and target.exists() and target.stat().st_size >= self.max_file_size:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
            rolled = target.with_name(f"{self.base_path.stem}_{stamp}{self._suffix}")
            target.rename(rolled)
            self._archive(rolled)

        target.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(target, "a", encoding="utf-8")
        self._current_path = target
        self._size = target.stat().st_size
        self._prune()

    def _archive(self, path: Path) -> None:
        if self.compress and path.exists() and path.stat().st_size > 0:
            compress_file(path)

    def _prune(self) -> None:
        """Apply retention_days and max_files to the archives. Must hold self._lock."""
        self.cleanup_old_files()
        if not self.max_files:
            return
        archives = sorted(
            (f for f in self.archives() if f != self._current_path),
            key=lambda f: (f.stat().st_mtime, f.name),
        )
        for f in archives[:-self.max_files]:
            f.unlink()

    def archives(self) -> list[Path]:
        """Dated and rotated files of this log, compressed or not."""
        if not self.base_path.parent.exists():
            return []
        stem = self.base_path.stem
        suffixes = (self._suffix, self._suffix + ".gz")
        return [
            f for f in self.base_path.parent.glob(f"{stem}_*")
            if f.is_file()
            and f.name.endswith(suffixes)
            and f.name[len(stem) + 1:len(stem) + 2].isdigit()
        ]

    def emit(self, record: LogRecord) -> None:
        formatted = self.formatter.format(record)
        if not formatted.endswith("\n"):
            formatted += "\n"
        with self._lock:
            self._ensure_file(record.timestamp)
            self._file.write(formatted)
            self._size += len(formatted.encode("utf-8"))

    def flush(self) -> None:
        with self._lock:
            if self._file:
                self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file:
                self._file.close()
                self._file = None
                self._current_path = None

    def cleanup_old_files(self) -> int:
        """Remove archives older than retention_days. Returns count removed."""
        if not self.retention_days:
            return 0
        cutoff = datetime.now(timezone.utc).timestamp() - (self.retention_days * 86400)
        removed = 0
        for f in self.archives():
            if f != self._current_path and f.stat().st_mtime < cutoff:
                f.unlink()
                removed += 1
        return removed


def compress_file(path: Path) -> Path:
    """Gzip path to path.gz and remove the original. Returns the new path."""
    target = path.with_name(path.name + ".gz")
    try:
        with open(path, "rb") as src, gzip.open(target, "wb", compresslevel=9) as dst:
            shutil.copyfileobj(src, dst, 65536)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    path.unlink()
    return target


class CollectorHandler(LogHandler):
    """
    Ring buffer of the last N records.
    In-memory window for diagnostics and tests. Does not grow unbounded.
    """

    def __init__(
        self,
        name: str = "collector",
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
        ring_buffer_size: int = 10000,
    ):
        super().__init__(name, min_level, formatter)
        self._buffer: deque[LogRecord] = deque(maxlen=ring_buffer_size)
        self._lock = threading.Lock()

    def _default_formatter(self) -> LogFormatter:
        return DetailedFormatter(include_memory_usage=False)

    def emit(self, record: LogRecord) -> None:
        with self._lock:
            self._buffer.append(record)

    def get_recent(
        self,
        n: int = 100,
        channel: str | None = None,
        min_level: int | str | LogLevel | None = None,
    ) -> list[LogRecord]:
        """Most recent records, optionally limited to a channel subtree or level."""
        with self._lock:
            records = list(self._buffer)

        if channel:
            records = [
                r for r in records
                if r.channel == channel or r.channel.startswith(channel + ".")
            ]
        if min_level is not None:
            threshold = LogLevel.from_value(min_level)
            records = [r for r in records if r.level >= threshold]

        return records[-n:] if n > 0 else []

    def formatted(self, n: int = 100) -> list[str]:
        """The most recent records rendered with this handler's formatter."""
        return [self.formatter.format(r) for r in self.get_recent(n)]

    @property
    def records(self) -> list[LogRecord]:
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    @property
    def count(self) -> int:
        return len(self._buffer)


class DatabaseHandler(LogHandler):
    """
    Writes records to the DuckDB logs table.

    Records are buffered and written when the buffer fills, on flush() or on
    close(). Until a connection is attached they stay buffered. A failed write
    keeps the records and is reported on stderr.
    """

    def __init__(
        self,
        name: str = "database",
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
        connection=None,
        table: str = DEFAULT_LOG_TABLE,
        buffer_size: int = 100,
    ):
        super().__init__(name, min_level, formatter)
        self.table = table
        self.buffer_size = max(1, buffer_size)
        self._insert_sql = insert_statement(table)
        self._connection = connection
        self._buffer: list[LogRecord] = []
        self._lock = threading.Lock()

    def _default_formatter(self) -> LogFormatter:
        return JsonFormatter(append_newline=False)

    def connect(self, connection) -> None:
        """Attach a DuckDB connection and write anything already buffered."""
        self._connection = connection
        self.flush()

    def emit(self, record: LogRecord) -> None:
        with self._lock:
            self._buffer.append(record)
            if len(self._buffer) >= self.buffer_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        """Write buffered records. Must hold self._lock."""
        if not self._buffer or self._connection is None:
            return
        try:
            self._connection.executemany(
                self._insert_sql, [record_to_row(r) for r in self._buffer]
            )
        except Exception as exc:
            report_error(
                f"database handler '{self.name}' could not write "
                f"{len(self._buffer)} records to '{self.table}'",
                exc,
            )
            return
        self._buffer.clear()

    @property
    def buffered_count(self) -> int:
        return len(self._buffer)

    def close(self) -> None:
        self.flush()


def record_to_row(record: LogRecord) -> list[Any]:
    """Column values for one logs row, in insert order."""

    def lookup(key: str) -> Any:
        value = record.extra.get(key)
        if value is None:
            value = record.context.get(key)
        return None if value is None else str(value)

    return [
        record.channel,
        record.level_name,
        int(record.level),
        record.message,
        _json_column(record.context),
        _json_column(record.extra),
        record.timestamp.astimezone(timezone.utc).replace(tzinfo=None),
        lookup("request_id"),
        lookup("user_id"),
        lookup("ip_address"),
        lookup("user_agent"),
    ]


def _json_column(values) -> str:
    data = normalize(values)
    try:
        return to_json(data)
    except ENCODE_ERRORS as exc:
        return encode_fallback(exc, data)


SYSLOG_PRIORITIES = {
    LogLevel.DEBUG: "LOG_DEBUG",
    LogLevel.INFO: "LOG_INFO",
    LogLevel.NOTICE: "LOG_NOTICE",
    LogLevel.WARNING: "LOG_WARNING",
    LogLevel.ERROR: "LOG_ERR",
    LogLevel.CRITICAL: "LOG_CRIT",
    LogLevel.ALERT: "LOG_ALERT",
    LogLevel.EMERGENCY: "LOG_EMERG",
}

SYSLOG_FACILITIES = (
    "kern", "user", "mail", "daemon", "auth", "syslog", "lpr", "news", "uucp", "cron",
    "local0", "local1", "local2", "local3", "local4", "local5", "local6", "local7",
)


class SyslogHandler(LogHandler):
    """
    Local syslog sink (Unix only). The connection opens on the first record.
    Syslog stamps time and host itself, so the default format leaves them out.
    """

    def __init__(
        self,
        name: str = "syslog",
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        formatter: LogFormatter | None = None,
        ident: str = "chanlog",
        facility: str = "user",
        include_pid: bool = True,
    ):
        super().__init__(name, min_level, formatter)
        if facility not in SYSLOG_FACILITIES:
            raise ValueError(f"Unknown syslog facility '{facility}'")
        self.ident = ident
        self.facility = facility
        self.include_pid = include_pid
        self._syslog = None
        self._lock = threading.Lock()

    def _default_formatter(self) -> LogFormatter:
        return LineFormatter(
            format="%channel%.%level_name%: %message% %context%",
            ignore_empty_context_and_extra=True,
        )

    def _open(self):
        """Must hold self._lock."""
        import syslog

        options = syslog.LOG_PID if self.include_pid else 0
        syslog.openlog(self.ident, options, getattr(syslog, f"LOG_{self.facility.upper()}"))
        self._syslog = syslog
        return syslog

    def emit(self, record: LogRecord) -> None:
        message = self.formatter.format(record).rstrip("\r\n")
        with self._lock:
            module = self._syslog or self._open()
            module.syslog(getattr(module, SYSLOG_PRIORITIES[record.level]), message)

    def close(self) -> None:
        with self._lock:
            if self._syslog is not None:
                self._syslog.closelog()
                self._syslog = None


# ── Wrapping handlers ─────────────────────────────────────────────────

class GroupHandler(LogHandler):
    """
    Sends each record to several handlers, each applying its own min_level.
    A failing member is reported and the rest still receive the record.
    """

    def __init__(self, handlers: Iterable[LogHandler], name: str = "group"):
        super().__init__(name, LogLevel.DEBUG, None)
        self.handlers: list[LogHandler] = []
        for handler in handlers:
            self.add_handler(handler)

    def add_handler(self, handler: LogHandler) -> "GroupHandler":
        if not isinstance(handler, LogHandler):
            raise TypeError(f"Expected LogHandler, got {type(handler).__name__}")
        self.handlers.append(handler)
        return self

    def handles(self, record: LogRecord) -> bool:
        return any(handler.handles(record) for handler in self.handlers)

    def emit(self, record: LogRecord) -> None:
        for handler in self.handlers:
            self._each(handler, "handle", handler.handle, record)

    def handle_batch(self, records: Iterable[LogRecord]) -> None:
        records = list(records)
        for handler in self.handlers:
            self._each(handler, "batch", handler.handle_batch, records)

    def flush(self) -> None:
        for handler in self.handlers:
            self._each(handler, "flush", handler.flush)

    def close(self) -> None:
        for handler in self.handlers:
            self._each(handler, "close", handler.close)

    def _each(self, handler: LogHandler, action: str, fn: Callable, *args: Any) -> None:
        try:
            fn(*args)
        except Exception as exc:
            report_error(f"group handler '{self.name}': {action} failed for '{handler.name}'", exc)


class FilterHandler(LogHandler):
    """Forwards records within [min_level, max_level] that pass a predicate."""

    def __init__(
        self,
        handler: LogHandler,
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        max_level: int | str | LogLevel = LogLevel.EMERGENCY,
        predicate: Callable[[LogRecord], bool] | None = None,
        name: str | None = None,
    ):
        super().__init__(name or f"filter({handler.name})", min_level, None)
        self.handler = handler
        self.max_level = LogLevel.from_value(max_level)
        self.predicate = predicate

    @property
    def formatter(self) -> LogFormatter:
        return self.handler.formatter

    @formatter.setter
    def formatter(self, value: LogFormatter) -> None:
        self.handler.formatter = value

    def handles(self, record: LogRecord) -> bool:
        if not self.min_level <= record.level <= self.max_level:
            return False
        return self.predicate is None or bool(self.predicate(record))

    def emit(self, record: LogRecord) -> None:
        self.handler.handle(record)

    def flush(self) -> None:
        self.handler.flush()

    def close(self) -> None:
        self.handler.close()


class BufferHandler(LogHandler):
    """
    Holds records and forwards them to another handler on flush.

    buffer_limit > 0 bounds the buffer: on overflow it either flushes or drops
    the oldest record. A record at flush_level or above flushes immediately
    when flush_on_error is set. With flush_only_on_error a flush without any
    record at flush_level discards the buffer instead of forwarding it.
    """

    MAX_CONSECUTIVE_FAILURES = 3

    def __init__(
        self,
        handler: LogHandler,
        buffer_limit: int = 0,
        flush_on_overflow: bool = True,
        flush_on_error: bool = False,
        flush_only_on_error: bool = False,
        flush_level: int | str | LogLevel = LogLevel.ERROR,
        name: str | None = None,
    ):
        super().__init__(name or f"buffer({handler.name})", LogLevel.DEBUG, None)
        self.handler = handler
        self.buffer_limit = max(0, buffer_limit)
        self.flush_on_overflow = flush_on_overflow
        self.flush_on_error = flush_on_error
        self.flush_only_on_error = flush_only_on_error
        self.flush_level = LogLevel.from_value(flush_level)
        self._buffer: list[LogRecord] = []
        self._failures = 0
        self._lock = threading.RLock()

    @property
    def formatter(self) -> LogFormatter:
        return self.handler.formatter

    @formatter.setter
    def formatter(self, value: LogFormatter) -> None:
        self.handler.formatter = value

    def emit(self, record: LogRecord) -> None:
        with self._lock:
            self._buffer.append(record)
            if self.buffer_limit and len(self._buffer) > self.buffer_limit:
                if self.flush_on_overflow:
                    self.flush()
                else:
                    self._buffer.pop(0)
            if self.flush_on_error and record.level >= self.flush_level:
                self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self._buffer:
                return
            if self.flush_only_on_error and not any(
                r.level >= self.flush_level for r in self._buffer
            ):
                self._buffer.clear()
                return
            pending = list(self._buffer)
            try:
                self.handler.handle_batch(pending)
                self.handler.flush()
            except Exception as exc:
                self._failures += 1
                report_error(
                    f"buffer handler '{self.name}' flush failed (attempt {self._failures})", exc
                )
                if self._failures >= self.MAX_CONSECUTIVE_FAILURES:
                    report_error(f"buffer handler '{self.name}' discarding {len(pending)} records")
                    self._buffer.clear()
                    self._failures = 0
                return
            del self._buffer[:len(pending)]
            self._failures = 0

    @property
    def buffered(self) -> list[LogRecord]:
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def close(self) -> None:
        self.flush()
        self.handler.close()
