"""
Record processors.

A processor is any callable taking a LogRecord and returning a (modified)
LogRecord. They run in resolution order before handlers see the record.
The classes here cover the common cases; plain functions work just as well:

    def add_version(record):
        return record.with_changes(extra={**record.extra, "version": "1.4"})
"""

import os
import platform
import re
import socket
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Mapping

import psutil

from chanlog.logger.formatters.base import format_bytes, format_number, process_memory
from chanlog.logger.records import LogRecord

REQUEST_ID_PATTERN = re.compile(r"[a-zA-Z0-9\-]{1,64}")


class LogProcessor(ABC):
    """Base processor. Subclasses return a new record, never mutate one."""

    name = "processor"

    @abstractmethod
    def __call__(self, record: LogRecord) -> LogRecord: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ContextProcessor(LogProcessor):
    """Static key/values added to every record (extra by default, else context)."""

    name = "context"

    def __init__(self, context: Mapping[str, Any] | None = None, add_to_extra: bool = True):
        self._context: dict[str, Any] = dict(context or {})
        self.add_to_extra = add_to_extra

    def set(self, key: str, value: Any) -> "ContextProcessor":
        self._context[key] = value
        return self

    def get(self, key: str) -> Any:
        return self._context.get(key)

    def merge(self, context: Mapping[str, Any]) -> "ContextProcessor":
        self._context.update(context)
        return self

    def remove(self, key: str) -> "ContextProcessor":
        self._context.pop(key, None)
        return self

    def clear(self) -> "ContextProcessor":
        self._context.clear()
        return self

    def all(self) -> dict[str, Any]:
        return dict(self._context)

    def __call__(self, record: LogRecord) -> LogRecord:
        if not self._context:
            return record
        # Values already on the record win
        if self.add_to_extra:
            return record.with_changes(extra={**self._context, **record.extra})
        return record.with_changes(context={**self._context, **record.context})


class HostnameProcessor(LogProcessor):
    """Adds hostname, and optionally environment and Python version, to extra."""

    name = "hostname"

    def __init__(
        self,
        environment: str | None = None,
        include_python_version: bool = False,
        server_ip: str | None = None,
    ):
        self.environment = environment or os.environ.get("APP_ENV") or None
        self.include_python_version = include_python_version
        self.server_ip = server_ip
        self._hostname: str | None = None

    @property
    def hostname(self) -> str:
        if self._hostname is None:
            self._hostname = socket.gethostname() or "unknown"
        return self._hostname

    def __call__(self, record: LogRecord) -> LogRecord:
        extra = dict(record.extra)
        extra["hostname"] = self.hostname
        if self.server_ip is not None:
            extra["server_ip"] = self.server_ip
        if self.include_python_version:
            extra["python_version"] = platform.python_version()
        if self.environment is not None:
            extra["environment"] = self.environment
        return record.with_changes(extra=extra)


class MemoryProcessor(LogProcessor):
    """Adds process memory (RSS) to extra, formatted ('45.2MB') or in bytes."""

    name = "memory"

    def __init__(
        self,
        format_values: bool = True,
        include_percent: bool = False,
        include_limit: bool = False,
    ):
        self.format_values = format_values
        self.include_percent = include_percent
        self.include_limit = include_limit

    def _value(self, num_bytes: int) -> str | int:
        return format_bytes(num_bytes) if self.format_values else num_bytes

    def __call__(self, record: LogRecord) -> LogRecord:
        extra = dict(record.extra)
        usage = process_memory()
        extra["memory_usage"] = self._value(usage)
        if self.include_limit or self.include_percent:
            limit = psutil.virtual_memory().total
            if self.include_limit:
                extra["memory_limit"] = self._value(limit)
            if self.include_percent and limit > 0:
                extra["memory_percent"] = round(usage / limit * 100, 1)
        return record.with_changes(extra=extra)


class ExecutionTimeProcessor(LogProcessor):
    """Adds milliseconds elapsed since start (construction or start())."""

    name = "execution_time"

    def __init__(self, start_time: float | None = None, include_formatted: bool = True):
        self.start_time = start_time if start_time is not None else time.perf_counter()
        self.include_formatted = include_formatted

    def start(self) -> "ExecutionTimeProcessor":
        self.start_time = time.perf_counter()
        return self

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def __call__(self, record: LogRecord) -> LogRecord:
        elapsed = self.elapsed_ms()
        extra = dict(record.extra)
        extra["execution_time_ms"] = round(elapsed, 2)
        if self.include_formatted:
            extra["execution_time"] = format_duration(elapsed)
        return record.with_changes(extra=extra)


class RequestIdProcessor(LogProcessor):
    """
    Adds a request/correlation id to extra.

    An id taken from headers must match REQUEST_ID_PATTERN; anything else is
    replaced by a generated UUID so untrusted input never reaches the logs.
    """

    name = "request_id"

    def __init__(
        self,
        request_id: str | None = None,
        headers: Mapping[str, str] | None = None,
        header_name: str = "X-Request-ID",
    ):
        self.header_name = header_name
        candidate = request_id
        if candidate is None and headers:
            wanted = header_name.lower()
            candidate = next(
                (v for k, v in headers.items() if k.lower() == wanted), None
            )
        self._request_id = candidate if is_valid_request_id(candidate) else generate_request_id()

    @property
    def request_id(self) -> str:
        return self._request_id

    def set_request_id(self, request_id: str) -> "RequestIdProcessor":
        if not is_valid_request_id(request_id):
            raise ValueError(
                f"Invalid request id {request_id!r}: expected 1-64 letters, digits or '-'"
            )
        self._request_id = request_id
        return self

    def regenerate(self) -> str:
        self._request_id = generate_request_id()
        return self._request_id

    def __call__(self, record: LogRecord) -> LogRecord:
        return record.with_changes(extra={**record.extra, "request_id": self._request_id})


# ── Helpers ───────────────────────────────────────────────────────────

def is_valid_request_id(value: Any) -> bool:
    return isinstance(value, str) and REQUEST_ID_PATTERN.fullmatch(value) is not None


def generate_request_id() -> str:
    return str(uuid.uuid4())


def format_duration(ms: float) -> str:
    """Human-readable duration: '850us', '12.5ms', '3.2s', '2m 5.3s'."""
    if ms < 1:
        return f"{format_number(ms * 1000)}us"
    if ms < 1000:
        return f"{format_number(ms)}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{format_number(seconds)}s"
    minutes, remainder = divmod(seconds, 60)
    return f"{int(minutes)}m {format_number(remainder, 1)}s"
