"""
Channel router.

Maps hierarchical channel names ("app", "app.http", "app.http.client") to the
handlers and processors that serve them.

Resolution rules for channel a.b.c:
1. Processors: the default processors, then explicit processors of a, a.b,
   a.b.c in that order. Defaults are always included.
2. Handlers: explicit handlers of a, a.b, a.b.c in that order. Only when no
   prefix declares handlers at all do the default handlers apply.
3. enabled/level settings come from the longest configured prefix.

Resolutions are cached per channel. Every configuration change clears the
cache and rebinds the live handles to their fresh resolution.
"""

import re
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from chanlog.logger.core import ChannelLogger, ResolvedConfig, ShouldEmit
from chanlog.logger.records import LogLevel

CHANNEL_NAME_RE = re.compile(r"[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*")


def validate_channel_name(name: Any) -> str:
    """Return name if it is a valid dotted channel name, else raise ValueError."""
    if not isinstance(name, str) or not CHANNEL_NAME_RE.fullmatch(name):
        raise ValueError(
            f"Invalid channel name {name!r}: expected dot-separated segments "
            f"of letters, digits, '_' or '-'"
        )
    return name


def channel_prefixes(name: str) -> list[str]:
    """'a.b.c' → ['a', 'a.b', 'a.b.c']"""
    parts = name.split(".")
    return [".".join(parts[:i]) for i in range(1, len(parts) + 1)]


@dataclass
class ChannelSwitches:
    """Per-channel switches. None means inherit from the parent channel."""
    enabled: bool | None = None
    level: LogLevel | None = None


class ChannelRouter:
    """
    Channel configuration, resolution cache and lazily created handles.

    Usage:
        router = ChannelRouter(default_handlers=[CollectorHandler()])
        router.set_channel_handlers("app", [FileHandler(path="logs/app.log")])
        router.channel("app.http").error("boom", host="db1")   # → FileHandler only
    """

    def __init__(
        self,
        default_handlers: Iterable | None = None,
        default_processors: Iterable | None = None,
        should_emit: ShouldEmit | None = None,
        include_stack_traces: bool = True,
        global_context: Mapping[str, Any] | None = None,
    ):
        self._lock = threading.RLock()
        self._default_handlers: list = _checked_handlers(default_handlers or [])
        self._default_processors: list = _checked_processors(default_processors or [])
        self._channel_handlers: dict[str, list] = {}
        self._channel_processors: dict[str, list] = {}
        self._settings: dict[str, ChannelSwitches] = {}
        self._cache: dict[str, ResolvedConfig] = {}
        self._handles: dict[str, ChannelLogger] = {}
        self._global_context: Mapping[str, Any] = MappingProxyType(dict(global_context or {}))
        self._should_emit = should_emit
        self.include_stack_traces = include_stack_traces

    # ── Handles ───────────────────────────────────────────────────

    def channel(self, name: str) -> ChannelLogger:
        """The handle for a channel. Created on first use, identical afterwards."""
        validate_channel_name(name)
        with self._lock:
            handle = self._handles.get(name)
            if handle is None:
                handle = self._create_handle(name)
                self._handles[name] = handle
            return handle

    get = channel

    def _create_handle(self, name: str) -> ChannelLogger:
        """Must hold self._lock."""
        resolved = self._resolve_locked(name)
        enabled, level = self._effective_settings(name)
        return ChannelLogger(
            name,
            resolved.handlers,
            resolved.processors,
            router=self,
            should_emit=self._should_emit,
            include_stack_traces=self.include_stack_traces,
            enabled=enabled,
            min_level=level,
        )

    def emit(
        self,
        channel: str,
        level: int | str | LogLevel,
        message: Any,
        context: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> None:
        self.channel(channel).log(level, message, context, **fields)

    def channels(self) -> list[str]:
        """Channels that are configured or have a live handle."""
        with self._lock:
            names = (
                set(self._channel_handlers)
                | set(self._channel_processors)
                | set(self._settings)
                | set(self._handles)
            )
        return sorted(names)

    def has_channel(self, name: str) -> bool:
        return name in self.channels()

    # ── Resolution ────────────────────────────────────────────────

    def resolve(self, name: str) -> ResolvedConfig:
        validate_channel_name(name)
        with self._lock:
            return self._resolve_locked(name)

    def resolve_handlers(self, name: str) -> tuple:
        return self.resolve(name).handlers

    def resolve_processors(self, name: str) -> tuple:
        return self.resolve(name).processors

    def _resolve_locked(self, name: str) -> ResolvedConfig:
        """Must hold self._lock."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        handlers: list = []
        processors: list = list(self._default_processors)
        explicit = False
        for prefix in channel_prefixes(name):
            if prefix in self._channel_handlers:
                explicit = True
                handlers.extend(self._channel_handlers[prefix])
            processors.extend(self._channel_processors.get(prefix, ()))
        if not explicit:
            handlers = list(self._default_handlers)

        resolved = ResolvedConfig(tuple(handlers), tuple(processors))
        self._cache[name] = resolved
        return resolved

    def _effective_settings(self, name: str) -> tuple[bool, LogLevel]:
        enabled, level = True, LogLevel.DEBUG
        for prefix in channel_prefixes(name):
            settings = self._settings.get(prefix)
            if settings is None:
                continue
            if settings.enabled is not None:
                enabled = settings.enabled
            if settings.level is not None:
                level = settings.level
        return enabled, level

    def _invalidate(self) -> None:
        """Clear the cache and rebind live handles. Must hold self._lock."""
        self._cache.clear()
        for name, handle in self._handles.items():
            enabled, level = self._effective_settings(name)
            handle.rebind(self._resolve_locked(name), enabled, level)

    # ── Handler Configuration ─────────────────────────────────────

    def set_channel_handlers(self, name: str, handlers: Iterable) -> None:
        """
        Replace a channel's explicit handlers. An empty list is still an
        explicit entry: it silences the channel subtree's defaults.
        """
        validate_channel_name(name)
        checked = _checked_handlers(handlers)
        with self._lock:
            self._channel_handlers[name] = checked
            stale = self._handles.pop(name, None)
            self._invalidate()
            if stale is not None:
                stale.close()
                self._handles[name] = self._create_handle(name)

    def add_channel_handler(self, name: str, handler) -> None:
        validate_channel_name(name)
        (checked,) = _checked_handlers([handler])
        with self._lock:
            self._channel_handlers.setdefault(name, []).append(checked)
            self._invalidate()

    def set_default_handler(self, handlers) -> None:
        """Replace the default handlers with one handler or a list of them."""
        checked = _checked_handlers(_as_list(handlers))
        with self._lock:
            self._default_handlers = checked
            self._invalidate()

    def add_default_handler(self, handler) -> None:
        (checked,) = _checked_handlers([handler])
        with self._lock:
            self._default_handlers.append(checked)
            self._invalidate()

    # ── Processor Configuration ───────────────────────────────────

    def set_channel_processors(self, name: str, processors: Iterable) -> None:
        validate_channel_name(name)
        checked = _checked_processors(processors)
        with self._lock:
            self._channel_processors[name] = checked
            self._invalidate()

    def add_channel_processor(self, name: str, processor) -> None:
        validate_channel_name(name)
        (checked,) = _checked_processors([processor])
        with self._lock:
            self._channel_processors.setdefault(name, []).append(checked)
            self._invalidate()

    def set_default_processor(self, processors) -> None:
        """Replace the default processors with one processor or a list of them."""
        checked = _checked_processors(_as_list(processors))
        with self._lock:
            self._default_processors = checked
            self._invalidate()

    def add_default_processor(self, processor) -> None:
        (checked,) = _checked_processors([processor])
        with self._lock:
            self._default_processors.append(checked)
            self._invalidate()

    # ── Channel Settings ──────────────────────────────────────────

    def configure_channel(
        self,
        name: str,
        enabled: bool | None = None,
        level: int | str | LogLevel | None = None,
    ) -> None:
        """Enable/disable a channel subtree or set its minimum level."""
        validate_channel_name(name)
        resolved_level = LogLevel.from_value(level) if level is not None else None
        with self._lock:
            settings = self._settings.setdefault(name, ChannelSwitches())
            if enabled is not None:
                settings.enabled = bool(enabled)
            if resolved_level is not None:
                settings.level = resolved_level
            self._invalidate()

    def channel_settings(self, name: str) -> dict:
        validate_channel_name(name)
        with self._lock:
            enabled, level = self._effective_settings(name)
        return {"enabled": enabled, "level": level.name}

    # ── Global Context & Filtering ────────────────────────────────

    @property
    def global_context(self) -> Mapping[str, Any]:
        """Read-only snapshot merged into every record's context first."""
        return self._global_context

    def set_global_context(self, context: Mapping[str, Any]) -> None:
        with self._lock:
            self._global_context = MappingProxyType(dict(context))

    def add_global_context(self, key: str, value: Any) -> None:
        with self._lock:
            self._global_context = MappingProxyType({**self._global_context, key: value})

    @property
    def should_emit(self) -> ShouldEmit | None:
        return self._should_emit

    @should_emit.setter
    def should_emit(self, predicate: ShouldEmit | None) -> None:
        if predicate is not None and not callable(predicate):
            raise TypeError(f"should_emit must be callable, got {type(predicate).__name__}")
        with self._lock:
            self._should_emit = predicate
            for handle in self._handles.values():
                handle.should_emit = predicate

    # ── Status & Cleanup ──────────────────────────────────────────

    def status(self) -> dict:
        """Configuration snapshot for diagnostics."""
        with self._lock:
            return {
                "default_handlers": [_name_of(h) for h in self._default_handlers],
                "default_processors": [_name_of(p) for p in self._default_processors],
                "channels": {
                    name: {
                        "handlers": [_name_of(h) for h in self._channel_handlers.get(name, ())]
                        if name in self._channel_handlers else None,
                        "processors": [_name_of(p) for p in self._channel_processors.get(name, ())],
                        **self.channel_settings(name),
                    }
                    for name in self.channels()
                },
                "live_handles": sorted(self._handles),
                "cached_resolutions": len(self._cache),
                "global_context": sorted(self._global_context),
            }

    def flush_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            handle.flush()

    def close_all(self) -> None:
        """Close every live handle. Later channel() calls create fresh handles."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.close()


# ── Helpers ───────────────────────────────────────────────────────────

def _as_list(value) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _checked_handlers(handlers: Iterable) -> list:
    if isinstance(handlers, (str, bytes)) or not isinstance(handlers, Iterable):
        raise TypeError(f"Expected a list of handlers, got {type(handlers).__name__}")
    checked = list(handlers)
    for handler in checked:
        if not (callable(getattr(handler, "handle", None)) and callable(getattr(handler, "close", None))):
            raise TypeError(
                f"Not a handler: {handler!r} (needs handle() and close() methods)"
            )
    return checked


def _checked_processors(processors: Iterable) -> list:
    if isinstance(processors, (str, bytes)) or not isinstance(processors, Iterable):
        raise TypeError(f"Expected a list of processors, got {type(processors).__name__}")
    checked = list(processors)
    for processor in checked:
        if not callable(processor):
            raise TypeError(f"Not a processor: {processor!r} (must be callable)")
    return checked


def _name_of(obj: Any) -> str:
    name = getattr(obj, "name", None)
    if isinstance(name, str) and name:
        return name
    return getattr(obj, "__name__", type(obj).__name__)
