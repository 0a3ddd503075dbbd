"""
Log records and level definitions.

Eight ordered severities with fixed integer weights (DEBUG=100 … EMERGENCY=600).
Weights are used for every threshold comparison and map one-to-one onto names.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Mapping


class LogLevel(IntEnum):
    """Severity levels, ordered by weight."""
    DEBUG = 100
    INFO = 200
    NOTICE = 250
    WARNING = 300
    ERROR = 400
    CRITICAL = 500
    ALERT = 550
    EMERGENCY = 600

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        """Resolve level from string name, case-insensitive."""
        name_upper = name.strip().upper()
        if name_upper == "WARN":
            name_upper = "WARNING"
        try:
            return cls[name_upper]
        except KeyError:
            raise ValueError(
                f"Unknown log level '{name}'. "
                f"Valid levels: {', '.join(m.name for m in cls)}"
            )

    @classmethod
    def from_value(cls, value: "int | str | LogLevel") -> "LogLevel":
        """Resolve level from a LogLevel, an integer weight or a name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise TypeError("Expected int or str for level, got bool")
        if isinstance(value, str):
            return cls.from_name(value)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(
                    f"No level with weight {value}. "
                    f"Valid weights: {', '.join(f'{m.name}={m.value}' for m in cls)}"
                )
        raise TypeError(f"Expected int or str for level, got {type(value).__name__}")


# Map for display: level weight → name string
LEVEL_NAMES: dict[int, str] = {member.value: member.name for member in LogLevel}

ERROR_LEVELS = frozenset(
    {LogLevel.ERROR, LogLevel.CRITICAL, LogLevel.ALERT, LogLevel.EMERGENCY}
)


def level_name(level: int) -> str:
    """Get display name for a level weight. Falls back to numeric string."""
    return LEVEL_NAMES.get(level, str(level))


def _freeze(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class LogRecord:
    """
    Immutable log record. Created by ChannelLogger.log(), passed through
    processors (which return modified copies) and then to handlers.

    context and extra are read-only views; use with_changes() to derive a
    record with different values.
    """
    timestamp: datetime
    channel: str
    level: LogLevel
    message: str
    context: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", LogLevel.from_value(self.level))
        object.__setattr__(self, "context", _freeze(self.context))
        object.__setattr__(self, "extra", _freeze(self.extra))

    @property
    def level_name(self) -> str:
        return self.level.name

    @classmethod
    def create(
        cls,
        channel: str,
        level: "int | str | LogLevel",
        message: str,
        context: Mapping[str, Any] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> "LogRecord":
        """Factory method with auto-timestamp and level resolution."""
        return cls(
            timestamp=datetime.now(timezone.utc),
            channel=channel,
            level=LogLevel.from_value(level),
            message=str(message),
            context=context or {},
            extra=extra or {},
        )

    def with_changes(self, **changes: Any) -> "LogRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)
