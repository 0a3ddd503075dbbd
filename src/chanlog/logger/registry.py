"""
Logger registry.

Process-wide directory of named channel loggers, for code that cannot be
handed a logger explicitly:

    LoggerRegistry.instance().register(router.channel("app"))
    ...
    log = LoggerRegistry.instance().get()          # default channel
    audit = LoggerRegistry.instance().get("audit")

Independent registries can be created with LoggerRegistry() (tests do).
"""

from __future__ import annotations

import threading
from typing import Optional

from chanlog.logger.core import ChannelLogger

DEFAULT_CHANNEL = "app"


class LoggerRegistry:
    """
    Name → ChannelLogger map with a default entry. Singleton via instance().

    The first registered logger becomes the default unless another one is
    registered with set_as_default=True or set_default_channel() is called.
    """

    _instance: Optional["LoggerRegistry"] = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._loggers: dict[str, ChannelLogger] = {}
        self._default_channel: str | None = None
        self._lock = threading.Lock()

    @classmethod
    def instance(cls) -> "LoggerRegistry":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the process-wide registry. For testing only."""
        with cls._instance_lock:
            cls._instance = None

    # ── Registration ──────────────────────────────────────────────

    def register(
        self,
        logger: ChannelLogger,
        name: str = DEFAULT_CHANNEL,
        set_as_default: bool = False,
    ) -> None:
        """Register (or replace) a logger under name."""
        if not isinstance(logger, ChannelLogger):
            raise TypeError(f"Expected ChannelLogger, got {type(logger).__name__}")
        with self._lock:
            self._loggers[name] = logger
            if set_as_default or self._default_channel is None:
                self._default_channel = name

    def unregister(self, name: str) -> ChannelLogger | None:
        """Remove a logger. Returns it (for closing) or None."""
        with self._lock:
            logger = self._loggers.pop(name, None)
            if self._default_channel == name:
                self._default_channel = next(iter(self._loggers), None)
            return logger

    # ── Lookup ────────────────────────────────────────────────────

    def get(self, name: str | None = None) -> ChannelLogger | None:
        """Logger registered under name (default channel when None), or None."""
        with self._lock:
            return self._loggers.get(self._key(name))

    def has(self, name: str | None = None) -> bool:
        with self._lock:
            return self._key(name) in self._loggers

    def _key(self, name: str | None) -> str:
        return name or self._default_channel or DEFAULT_CHANNEL

    @property
    def default_channel(self) -> str:
        return self._default_channel or DEFAULT_CHANNEL

    def set_default_channel(self, name: str) -> None:
        """Name looked up by get() without arguments. Need not be registered yet."""
        with self._lock:
            self._default_channel = name

    def channels(self) -> list[str]:
        with self._lock:
            return sorted(self._loggers)

    @property
    def count(self) -> int:
        return len(self._loggers)

    # ── Cleanup ───────────────────────────────────────────────────

    def clear(self, close: bool = False) -> None:
        """Forget every logger, optionally closing them first."""
        with self._lock:
            loggers = list(self._loggers.values())
            self._loggers.clear()
            self._default_channel = None
        if close:
            for logger in loggers:
                logger.close()
