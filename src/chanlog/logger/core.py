"""
ChannelLogger: the per-channel logging handle.

A handle owns its global context and a reference to its resolved pipeline
(handlers + processors). The router swaps that reference whenever
configuration changes, so a log call always reads one consistent snapshot
without taking a lock.

    log = router.channel("app.http")
    log.info("Request served", {"path": "/health"}, status=200)
    log.exception("Upstream failed", exc)
"""

import os
import random
import sys
import traceback
from typing import TYPE_CHECKING, Any, Callable, Mapping, NamedTuple

from chanlog.logger.records import ERROR_LEVELS, LogLevel, LogRecord

if TYPE_CHECKING:
    from chanlog.logger.routing import ChannelRouter

MAX_STACK_FRAMES = 5
_LOGGER_DIR = os.path.dirname(os.path.abspath(__file__))

ShouldEmit = Callable[[str, LogLevel], bool]


class ResolvedConfig(NamedTuple):
    """Effective handlers and processors of one channel."""
    handlers: tuple = ()
    processors: tuple = ()


def report_error(message: str, exc: BaseException | None = None) -> None:
    """
    Report an internal failure on stderr.

    Used wherever a handler, processor or predicate fails: logging must never
    raise into the caller, but failures are not silent either.
    """
    detail = f": {type(exc).__name__}: {exc}" if exc is not None else ""
    print(f"[chanlog] {message}{detail}", file=sys.stderr, flush=True)


class _Binding:
    """State shared by a handle and the children derived from it."""

    __slots__ = ("pipeline", "enabled", "min_level", "closed")

    def __init__(self, pipeline: ResolvedConfig, enabled: bool, min_level: LogLevel):
        self.pipeline = pipeline
        self.enabled = enabled
        self.min_level = min_level
        self.closed = False


class ChannelLogger:
    """
    Logging API for one channel.

    Emission order: level gate → should_emit predicate → sampling → context
    merge → processors → every handler. Only an invalid level raises; handler
    and processor failures are reported on stderr and skipped.
    """

    DEBUG = LogLevel.DEBUG
    INFO = LogLevel.INFO
    NOTICE = LogLevel.NOTICE
    WARNING = LogLevel.WARNING
    ERROR = LogLevel.ERROR
    CRITICAL = LogLevel.CRITICAL
    ALERT = LogLevel.ALERT
    EMERGENCY = LogLevel.EMERGENCY

    def __init__(
        self,
        channel: str,
        handlers=(),
        processors=(),
        *,
        router: "ChannelRouter | None" = None,
        should_emit: ShouldEmit | None = None,
        include_stack_traces: bool = True,
        enabled: bool = True,
        min_level: int | str | LogLevel = LogLevel.DEBUG,
        context: Mapping[str, Any] | None = None,
    ):
        self.channel = channel
        self.should_emit = should_emit
        self.include_stack_traces = include_stack_traces
        self.sampling_rate = 1.0
        self.level_sampling_rates: dict[LogLevel, float] = {}
        self._router = router
        self._global_context: dict[str, Any] = {}
        self._context: dict[str, Any] = dict(context or {})
        self._binding = _Binding(
            ResolvedConfig(tuple(handlers), tuple(processors)),
            enabled,
            LogLevel.from_value(min_level),
        )

    # ── Pipeline ──────────────────────────────────────────────────

    @property
    def handlers(self) -> tuple:
        return self._binding.pipeline.handlers

    @property
    def processors(self) -> tuple:
        return self._binding.pipeline.processors

    @property
    def enabled(self) -> bool:
        return self._binding.enabled

    @property
    def min_level(self) -> LogLevel:
        return self._binding.min_level

    @property
    def closed(self) -> bool:
        return self._binding.closed

    def rebind(
        self,
        resolved: ResolvedConfig,
        enabled: bool | None = None,
        min_level: LogLevel | None = None,
    ) -> None:
        """Swap in a freshly resolved pipeline. Called by the router."""
        if enabled is not None:
            self._binding.enabled = enabled
        if min_level is not None:
            self._binding.min_level = min_level
        self._binding.pipeline = resolved

    # ── Global Context ────────────────────────────────────────────

    @property
    def global_context(self) -> dict[str, Any]:
        return dict(self._global_context)

    def set_global_context(self, context: Mapping[str, Any]) -> "ChannelLogger":
        """Replace the context merged into every record of this handle."""
        self._global_context = dict(context)
        return self

    def add_global_context(self, key: str, value: Any) -> "ChannelLogger":
        self._global_context[key] = value
        return self

    # ── Sampling ──────────────────────────────────────────────────

    def set_sampling_rate(self, rate: float) -> "ChannelLogger":
        """Fraction of non-error records kept, clamped to [0, 1]."""
        self.sampling_rate = max(0.0, min(1.0, float(rate)))
        return self

    def set_level_sampling_rate(self, level: int | str | LogLevel, rate: float) -> "ChannelLogger":
        self.level_sampling_rates[LogLevel.from_value(level)] = max(0.0, min(1.0, float(rate)))
        return self

    def _sampled_in(self, level: LogLevel) -> bool:
        rate = self.level_sampling_rates.get(level, self.sampling_rate)
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return random.random() < rate

    # ── Core Logging ──────────────────────────────────────────────

    def log(
        self,
        level: int | str | LogLevel,
        message: Any,
        context: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> None:
        level = LogLevel.from_value(level)

        binding = self._binding
        if not binding.enabled or level < binding.min_level:
            return
        if not self._passes_filter(level):
            return
        if level not in ERROR_LEVELS and not self._sampled_in(level):
            return

        merged: dict[str, Any] = {}
        if self._router is not None:
            merged.update(self._router.global_context)
        merged.update(self._global_context)
        merged.update(self._context)
        if context:
            merged.update(context)
        merged.update(fields)

        if (
            self.include_stack_traces
            and level in ERROR_LEVELS
            and "exception" not in merged
            and "stack_trace" not in merged
        ):
            merged["stack_trace"] = _caller_frames()

        record = LogRecord.create(self.channel, level, str(message), merged)
        pipeline = binding.pipeline

        for processor in pipeline.processors:
            try:
                processed = processor(record)
            except Exception as exc:
                report_error(f"processor {_describe(processor)} failed on '{self.channel}'", exc)
                continue
            if isinstance(processed, LogRecord):
                record = processed
            else:
                report_error(
                    f"processor {_describe(processor)} returned "
                    f"{type(processed).__name__} instead of a LogRecord"
                )

        for handler in pipeline.handlers:
            try:
                handler.handle(record)
            except Exception as exc:
                # One broken sink must not starve the others
                report_error(f"handler {_describe(handler)} failed on '{self.channel}'", exc)

    def _passes_filter(self, level: LogLevel) -> bool:
        if self.should_emit is None:
            return True
        try:
            return bool(self.should_emit(self.channel, level))
        except Exception as exc:
            report_error(f"should_emit failed for '{self.channel}', emitting anyway", exc)
            return True

    # ── Convenience Methods ───────────────────────────────────────

    def debug(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.DEBUG, message, context, **fields)

    def info(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.INFO, message, context, **fields)

    def notice(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.NOTICE, message, context, **fields)

    def warning(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.WARNING, message, context, **fields)

    def error(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.ERROR, message, context, **fields)

    def critical(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.CRITICAL, message, context, **fields)

    def alert(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.ALERT, message, context, **fields)

    def emergency(self, message: Any, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log(LogLevel.EMERGENCY, message, context, **fields)

    def exception(
        self,
        message: Any,
        exc: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
        level: int | str | LogLevel = LogLevel.ERROR,
        **fields: Any,
    ) -> None:
        """Log with an exception under the 'exception' key (defaults to the one being handled)."""
        merged = dict(context or {})
        merged["exception"] = exc if exc is not None else sys.exc_info()[1]
        self.log(level, message, merged, **fields)

    # ── Derived Handles ───────────────────────────────────────────

    def with_context(self, **context: Any) -> "ChannelLogger":
        """Child handle on the same pipeline with extra bound context."""
        return self._derive(self.channel, {**self._context, **context})

    def with_channel(self, sub_channel: str) -> "ChannelLogger":
        """Child handle named '<channel>.<sub_channel>' on the same pipeline."""
        from chanlog.logger.routing import validate_channel_name

        name = validate_channel_name(f"{self.channel}.{sub_channel}")
        return self._derive(name, dict(self._context))

    def _derive(self, channel: str, context: dict[str, Any]) -> "ChannelLogger":
        child = ChannelLogger.__new__(ChannelLogger)
        child.channel = channel
        child.should_emit = self.should_emit
        child.include_stack_traces = self.include_stack_traces
        child.sampling_rate = self.sampling_rate
        child.level_sampling_rates = dict(self.level_sampling_rates)
        child._router = self._router
        child._global_context = dict(self._global_context)
        child._context = context
        child._binding = self._binding
        return child

    # ── Status & Cleanup ──────────────────────────────────────────

    def status(self) -> dict:
        pipeline = self._binding.pipeline
        return {
            "channel": self.channel,
            "enabled": self.enabled,
            "min_level": self.min_level.name,
            "handlers": [_describe(h) for h in pipeline.handlers],
            "processors": [_describe(p) for p in pipeline.processors],
            "sampling_rate": self.sampling_rate,
            "closed": self.closed,
        }

    def flush(self) -> None:
        for handler in self._binding.pipeline.handlers:
            try:
                handler.flush()
            except Exception as exc:
                report_error(f"flush failed for handler {_describe(handler)}", exc)

    def close(self) -> None:
        """Close every handler once. Later calls are no-ops."""
        binding = self._binding
        if binding.closed:
            return
        binding.closed = True
        for handler in binding.pipeline.handlers:
            try:
                handler.close()
            except Exception as exc:
                report_error(f"close failed for handler {_describe(handler)}", exc)

    def __repr__(self) -> str:
        return f"ChannelLogger({self.channel!r})"


# ── Helpers ───────────────────────────────────────────────────────────

def _describe(obj: Any) -> str:
    name = getattr(obj, "name", None)
    if isinstance(name, str) and name:
        return name
    return getattr(obj, "__name__", type(obj).__name__)


def _caller_frames() -> list[dict[str, Any]]:
    """Innermost caller frames outside the logger package."""
    frames = []
    for frame in reversed(traceback.extract_stack()):
        if os.path.dirname(os.path.abspath(frame.filename)) == _LOGGER_DIR:
            continue
        frames.append({"file": frame.filename, "line": frame.lineno, "function": frame.name})
        if len(frames) >= MAX_STACK_FRAMES:
            break
    return frames
