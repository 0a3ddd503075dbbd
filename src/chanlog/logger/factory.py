"""
Builds routers, handlers, formatters and processors from configuration.

    router = build_router(LoggingConfig.from_yaml("logging.yaml"))
    router = development()                  # pretty terminal output, DEBUG
    router = production("/var/log/app")     # JSON files + error file
    router = container()                    # JSON on stdout, no files
"""

import sys
from pathlib import Path
from typing import Any, Callable

from chanlog.config import (
    FormatterConfig,
    FormatterType,
    HandlerConfig,
    HandlerType,
    LoggingConfig,
    ProcessorConfig,
    ProcessorType,
)
from chanlog.logger.core import ShouldEmit
from chanlog.logger.formatters import (
    DetailedFormatter,
    JsonFormatter,
    LineFormatter,
    LogFormatter,
    PrettyFormatter,
)
from chanlog.logger.handlers import (
    CollectorHandler,
    FileHandler,
    FilterHandler,
    GroupHandler,
    LogHandler,
    StreamHandler,
    SyslogHandler,
    TerminalHandler,
)
from chanlog.logger.processors import (
    ContextProcessor,
    ExecutionTimeProcessor,
    HostnameProcessor,
    LogProcessor,
    MemoryProcessor,
    RequestIdProcessor,
)
from chanlog.logger.records import LogLevel
from chanlog.logger.routing import ChannelRouter

FORMATTERS: dict[FormatterType, Callable[..., LogFormatter]] = {
    FormatterType.JSON: JsonFormatter,
    FormatterType.LINE: LineFormatter,
    FormatterType.DETAILED: DetailedFormatter,
    FormatterType.PRETTY: PrettyFormatter,
}

PROCESSORS: dict[ProcessorType, Callable[..., LogProcessor]] = {
    ProcessorType.CONTEXT: ContextProcessor,
    ProcessorType.HOSTNAME: HostnameProcessor,
    ProcessorType.MEMORY: MemoryProcessor,
    ProcessorType.EXECUTION_TIME: ExecutionTimeProcessor,
    ProcessorType.REQUEST_ID: RequestIdProcessor,
}


def build_formatter(cfg: FormatterConfig | dict | str) -> LogFormatter:
    """Build a formatter; options are passed as constructor keywords."""
    if isinstance(cfg, str):
        cfg = FormatterConfig(type=cfg)
    elif isinstance(cfg, dict):
        cfg = FormatterConfig.model_validate(cfg)
    try:
        return FORMATTERS[cfg.type](**cfg.options)
    except TypeError as exc:
        raise ValueError(f"Invalid options for {cfg.type.value} formatter: {exc}") from exc


def build_processor(cfg: ProcessorConfig | dict) -> LogProcessor:
    if isinstance(cfg, dict):
        cfg = ProcessorConfig.model_validate(cfg)
    try:
        return PROCESSORS[cfg.type](**cfg.options)
    except TypeError as exc:
        raise ValueError(f"Invalid options for {cfg.type.value} processor: {exc}") from exc


def build_handler(
    name: str,
    cfg: HandlerConfig | dict,
    members: dict[str, LogHandler] | None = None,
) -> LogHandler:
    """
    Build a handler from its config. Unset options keep the handler's defaults.
    A group takes its member handlers from members, by name.
    """
    if isinstance(cfg, dict):
        cfg = HandlerConfig.model_validate(cfg)

    min_level = LogLevel.from_value(cfg.min_level)
    formatter = build_formatter(cfg.formatter) if cfg.formatter is not None else None
    options = _set_options(cfg, "color", "path", "rotation", "retention_days", "max_file_size",
                           "max_files", "compress", "buffer_size", "table", "ring_buffer_size",
                           "ident", "facility")

    if cfg.type == HandlerType.STREAM:
        stream = sys.stdout if cfg.stream == "stdout" else None
        return StreamHandler(name=name, min_level=min_level, formatter=formatter, stream=stream)
    if cfg.type == HandlerType.TERMINAL:
        return TerminalHandler(name=name, min_level=min_level, formatter=formatter,
                               **_pick(options, "color"))
    if cfg.type == HandlerType.FILE:
        return FileHandler(name=name, min_level=min_level, formatter=formatter,
                           **_pick(options, "path", "rotation", "retention_days",
                                    "max_file_size", "max_files", "compress"))
    if cfg.type == HandlerType.COLLECTOR:
        return CollectorHandler(name=name, min_level=min_level, formatter=formatter,
                                **_pick(options, "ring_buffer_size"))
    if cfg.type == HandlerType.DATABASE:
        from chanlog.datastore import LogDatabase

        database = LogDatabase(cfg.database_path, table=cfg.table or "logs")
        database.initialize()
        return database.handler(name=name, min_level=min_level, formatter=formatter,
                                **_pick(options, "buffer_size"))
    if cfg.type == HandlerType.SYSLOG:
        return SyslogHandler(name=name, min_level=min_level, formatter=formatter,
                             **_pick(options, "ident", "facility"))
    if cfg.type == HandlerType.GROUP:
        missing = [n for n in cfg.handlers if n not in (members or {})]
        if missing:
            raise ValueError(f"group handler '{name}': unknown members {missing}")
        return GroupHandler([members[n] for n in cfg.handlers], name=name)
    raise ValueError(f"Unknown handler type '{cfg.type}' for handler '{name}'")


def build_router(
    config: LoggingConfig | dict,
    should_emit: ShouldEmit | None = None,
) -> ChannelRouter:
    """A router with every declared handler/processor built once and shared."""
    if isinstance(config, dict):
        config = LoggingConfig.from_dict(config)

    handlers = {
        name: build_handler(name, cfg)
        for name, cfg in config.handlers.items()
        if cfg.type != HandlerType.GROUP
    }
    for name, cfg in config.handlers.items():
        if cfg.type == HandlerType.GROUP:
            handlers[name] = build_handler(name, cfg, handlers)
    processors = {name: build_processor(cfg) for name, cfg in config.processors.items()}

    router = ChannelRouter(
        default_handlers=[handlers[n] for n in config.default_handlers],
        default_processors=[processors[n] for n in config.default_processors],
        should_emit=should_emit,
        include_stack_traces=config.include_stack_traces,
        global_context=config.global_context,
    )
    for channel, settings in config.channels.items():
        if settings.handlers is not None:
            router.set_channel_handlers(channel, [handlers[n] for n in settings.handlers])
        if settings.processors is not None:
            router.set_channel_processors(channel, [processors[n] for n in settings.processors])
        if settings.enabled is not None or settings.level is not None:
            router.configure_channel(channel, enabled=settings.enabled, level=settings.level)
    return router


# ── Presets ───────────────────────────────────────────────────────────

def development(level: int | str | LogLevel = LogLevel.DEBUG) -> ChannelRouter:
    """Colored boxed output on the terminal, everything from DEBUG up."""
    terminal = TerminalHandler(
        name="terminal",
        min_level=level,
        formatter=PrettyFormatter(use_colors=True),
        color=False,
    )
    return ChannelRouter(
        default_handlers=[terminal],
        default_processors=[ExecutionTimeProcessor()],
    )


def production(
    log_dir: str | Path,
    level: int | str | LogLevel = LogLevel.INFO,
    environment: str | None = None,
) -> ChannelRouter:
    """
    Daily-rotated JSON log plus a separate detailed error log.

    Writes <log_dir>/app_YYYY-MM-DD.log (level and up) and
    <log_dir>/error_YYYY-MM-DD.log (ERROR and up).
    """
    log_dir = Path(log_dir)
    app_file = FileHandler(
        name="app_file",
        min_level=level,
        formatter=JsonFormatter(),
        path=log_dir / "app.log",
        rotation="daily",
    )
    error_file = FileHandler(
        name="error_file",
        min_level=LogLevel.ERROR,
        formatter=DetailedFormatter(),
        path=log_dir / "error.log",
        rotation="daily",
    )
    return ChannelRouter(
        default_handlers=[app_file, error_file],
        default_processors=[
            HostnameProcessor(environment=environment),
            RequestIdProcessor(),
        ],
    )


def container(level: int | str | LogLevel = LogLevel.INFO) -> ChannelRouter:
    """JSON lines for log collectors: below ERROR on stdout, ERROR and up on stderr."""
    json_formatter = JsonFormatter()
    stdout = FilterHandler(
        StreamHandler(name="stdout", formatter=json_formatter, stream=sys.stdout),
        min_level=level,
        max_level=LogLevel.WARNING,
        name="stdout",
    )
    stderr = StreamHandler(
        name="stderr",
        min_level=max(LogLevel.from_value(level), LogLevel.ERROR),
        formatter=json_formatter,
    )
    return ChannelRouter(
        default_handlers=[stdout, stderr],
        default_processors=[HostnameProcessor()],
    )


# ── Helpers ───────────────────────────────────────────────────────────

def _set_options(cfg: HandlerConfig, *names: str) -> dict[str, Any]:
    return {n: getattr(cfg, n) for n in names if getattr(cfg, n) is not None}


def _pick(options: dict[str, Any], *names: str) -> dict[str, Any]:
    return {n: options[n] for n in names if n in options}
