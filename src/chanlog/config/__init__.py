"""
Pydantic configuration schemas for chanlog.

Handlers and processors are declared once by name and referenced from the
defaults and from channels, so one handler instance can serve many channels:

    handlers:
      console: {type: terminal, min_level: info, formatter: line}
      app_file:
        type: file
        path: logs/app.log
        formatter: {type: json, options: {ignore_empty_context_and_extra: true}}
    processors:
      host: {type: hostname, options: {environment: production}}
    default_handlers: [console]
    default_processors: [host]
    channels:
      app: {handlers: [app_file]}
      app.sql: {level: warning}
    global_context: {service: billing}

Usage:
    config = LoggingConfig.from_yaml("logging.yaml")
    router = build_router(config)          # chanlog.logger.factory
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from chanlog.logger.records import LogLevel
from chanlog.logger.routing import validate_channel_name


# ═══════════════════════════════════════════════════════════════════
#  Enums
# ═══════════════════════════════════════════════════════════════════

class FormatterType(str, Enum):
    JSON = "json"
    LINE = "line"
    DETAILED = "detailed"
    PRETTY = "pretty"


class HandlerType(str, Enum):
    STREAM = "stream"
    TERMINAL = "terminal"
    FILE = "file"
    COLLECTOR = "collector"
    DATABASE = "database"
    SYSLOG = "syslog"
    GROUP = "group"


class ProcessorType(str, Enum):
    CONTEXT = "context"
    HOSTNAME = "hostname"
    MEMORY = "memory"
    EXECUTION_TIME = "execution_time"
    REQUEST_ID = "request_id"


def _check_level(value: int | str | None) -> int | str | None:
    if value is not None:
        LogLevel.from_value(value)
    return value


# ═══════════════════════════════════════════════════════════════════
#  Components
# ═══════════════════════════════════════════════════════════════════

class FormatterConfig(BaseModel):
    type: FormatterType = FormatterType.LINE
    options: dict[str, Any] = Field(default_factory=dict)  # constructor keyword arguments


class HandlerConfig(BaseModel):
    type: HandlerType
    min_level: int | str = "debug"
    formatter: Optional[FormatterConfig] = None
    color: Optional[bool] = None              # terminal
    stream: Optional[str] = None              # stream: 'stdout' or 'stderr'
    path: Optional[str] = None                # file
    rotation: Optional[str] = None            # file: 'none', 'daily' or 'hourly'
    retention_days: Optional[int] = None      # file
    max_file_size: Optional[int] = None       # file, bytes
    max_files: Optional[int] = None           # file
    compress: Optional[bool] = None           # file, gzip rotated files
    buffer_size: Optional[int] = None         # database
    database_path: Optional[str] = None       # database, None = in-memory
    table: Optional[str] = None               # database
    ring_buffer_size: Optional[int] = None    # collector
    ident: Optional[str] = None               # syslog
    facility: Optional[str] = None            # syslog
    handlers: Optional[list[str]] = None      # group: member handler names

    @field_validator("formatter", mode="before")
    @classmethod
    def formatter_shorthand(cls, value: Any) -> Any:
        """Allow `formatter: json` as shorthand for `formatter: {type: json}`."""
        if isinstance(value, str):
            return {"type": value}
        return value

    @field_validator("min_level")
    @classmethod
    def level_known(cls, value: int | str) -> int | str:
        return _check_level(value)

    @field_validator("stream")
    @classmethod
    def stream_known(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in ("stdout", "stderr"):
            raise ValueError(f"stream must be 'stdout' or 'stderr', got '{value}'")
        return value

    @field_validator("rotation")
    @classmethod
    def rotation_known(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in ("none", "daily", "hourly"):
            raise ValueError(f"rotation must be 'none', 'daily' or 'hourly', got '{value}'")
        return value

    @model_validator(mode="after")
    def required_fields(self) -> "HandlerConfig":
        if self.type == HandlerType.FILE and not self.path:
            raise ValueError("file handler requires 'path'")
        if self.type == HandlerType.GROUP and not self.handlers:
            raise ValueError("group handler requires 'handlers'")
        return self


class ProcessorConfig(BaseModel):
    type: ProcessorType
    options: dict[str, Any] = Field(default_factory=dict)


class ChannelSettings(BaseModel):
    """None for handlers/processors means 'inherit', [] is an explicit empty list."""
    handlers: Optional[list[str]] = None
    processors: Optional[list[str]] = None
    enabled: Optional[bool] = None
    level: Optional[int | str] = None

    @field_validator("level")
    @classmethod
    def level_known(cls, value: int | str | None) -> int | str | None:
        return _check_level(value)


# ═══════════════════════════════════════════════════════════════════
#  Top-Level Logging Config
# ═══════════════════════════════════════════════════════════════════

class LoggingConfig(BaseModel):
    handlers: dict[str, HandlerConfig] = Field(default_factory=dict)
    processors: dict[str, ProcessorConfig] = Field(default_factory=dict)
    default_handlers: list[str] = Field(default_factory=list)
    default_processors: list[str] = Field(default_factory=list)
    channels: dict[str, ChannelSettings] = Field(default_factory=dict)
    global_context: dict[str, Any] = Field(default_factory=dict)
    include_stack_traces: bool = True
    default_channel: str = "app"

    # ── Metadata (auto-generated) ─────────────────────────────────
    source_yaml: Optional[str] = Field(None, exclude=True)

    @field_validator("channels")
    @classmethod
    def channel_names_valid(cls, value: dict[str, ChannelSettings]) -> dict[str, ChannelSettings]:
        for name in value:
            validate_channel_name(name)
        return value

    @field_validator("default_channel")
    @classmethod
    def default_channel_valid(cls, value: str) -> str:
        return validate_channel_name(value)

    @model_validator(mode="after")
    def references_resolve(self) -> "LoggingConfig":
        """Every handler/processor name used must be declared."""
        handler_refs = [("default_handlers", n) for n in self.default_handlers]
        processor_refs = [("default_processors", n) for n in self.default_processors]
        for channel, settings in self.channels.items():
            handler_refs += [(f"channels.{channel}", n) for n in settings.handlers or []]
            processor_refs += [(f"channels.{channel}", n) for n in settings.processors or []]

        for group, cfg in self.handlers.items():
            if cfg.type != HandlerType.GROUP:
                continue
            for name in cfg.handlers:
                if name not in self.handlers:
                    raise ValueError(f"handlers.{group}: unknown handler '{name}'")
                if self.handlers[name].type == HandlerType.GROUP:
                    raise ValueError(f"handlers.{group}: groups cannot contain group '{name}'")
        for where, name in handler_refs:
            if name not in self.handlers:
                raise ValueError(f"{where}: unknown handler '{name}'")
        for where, name in processor_refs:
            if name not in self.processors:
                raise ValueError(f"{where}: unknown processor '{name}'")
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "LoggingConfig":
        """Load and validate from a YAML file."""
        path = Path(path)
        raw = path.read_text(encoding="utf-8")
        config = cls.from_yaml_string(raw)
        return config

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "LoggingConfig":
        """Load and validate from a YAML string. A 'logging:' wrapper key is accepted."""
        data = yaml.safe_load(yaml_string) or {}
        if isinstance(data, dict) and set(data) == {"logging"}:
            data = data["logging"] or {}
        config = cls.model_validate(data)
        config.source_yaml = yaml_string
        return config

    @classmethod
    def from_dict(cls, data: dict) -> "LoggingConfig":
        """Load and validate from a dict."""
        return cls.model_validate(data)

    def to_dict(self, exclude_none: bool = True) -> dict:
        """Export as a plain dict (enums as their values)."""
        return self.model_dump(mode="json", exclude_none=exclude_none)
