"""
chanlog: channel-based structured logging.
"""

from chanlog.logger import (
    ChannelLogger,
    ChannelRouter,
    LoggerRegistry,
    LogLevel,
    LogRecord,
    build_router,
)
from chanlog.config import LoggingConfig

__version__ = "0.1.0"

__all__ = [
    "ChannelLogger",
    "ChannelRouter",
    "LoggerRegistry",
    "LogLevel",
    "LogRecord",
    "LoggingConfig",
    "build_router",
]
