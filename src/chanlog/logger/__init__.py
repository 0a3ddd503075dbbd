"""
chanlog channel logger

Hierarchical channels ("app", "app.http", "app.http.client") routed to
shared handlers and processors by a ChannelRouter.
"""

from chanlog.logger.records import LogRecord, LogLevel
from chanlog.logger.core import ChannelLogger, ResolvedConfig
from chanlog.logger.handlers import (
    LogHandler,
    StreamHandler,
    TerminalHandler,
    FileHandler,
    CollectorHandler,
    DatabaseHandler,
    SyslogHandler,
    GroupHandler,
    FilterHandler,
    BufferHandler,
)
from chanlog.logger.processors import (
    LogProcessor,
    ContextProcessor,
    HostnameProcessor,
    MemoryProcessor,
    ExecutionTimeProcessor,
    RequestIdProcessor,
)
from chanlog.logger.routing import ChannelRouter, validate_channel_name
from chanlog.logger.registry import LoggerRegistry
from chanlog.logger.formatters import (
    LogFormatter,
    JsonFormatter,
    LineFormatter,
    DetailedFormatter,
    PrettyFormatter,
)
from chanlog.logger.normalize import normalize
from chanlog.logger.factory import build_router, development, production, container

__all__ = [
    "LogRecord",
    "LogLevel",
    "ChannelLogger",
    "ResolvedConfig",
    "LogHandler",
    "StreamHandler",
    "TerminalHandler",
    "FileHandler",
    "CollectorHandler",
    "DatabaseHandler",
    "SyslogHandler",
    "GroupHandler",
    "FilterHandler",
    "BufferHandler",
    "LogProcessor",
    "ContextProcessor",
    "HostnameProcessor",
    "MemoryProcessor",
    "ExecutionTimeProcessor",
    "RequestIdProcessor",
    "ChannelRouter",
    "validate_channel_name",
    "LoggerRegistry",
    "LogFormatter",
    "JsonFormatter",
    "LineFormatter",
    "DetailedFormatter",
    "PrettyFormatter",
    "normalize",
    "build_router",
    "development",
    "production",
    "container",
]
