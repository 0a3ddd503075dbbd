"""
Tests for logging configuration schemas.

Covers:
- HandlerConfig validation and shorthands
- LoggingConfig reference checks and channel names
- YAML loading (plain and wrapped in 'logging:')
- Export via to_dict
"""

import pytest
from pydantic import ValidationError

from chanlog.config import (
    ChannelSettings,
    FormatterConfig,
    FormatterType,
    HandlerConfig,
    HandlerType,
    LoggingConfig,
    ProcessorConfig,
    ProcessorType,
)

YAML_CONFIG = """
handlers:
  console: {type: terminal, min_level: info, formatter: line, color: false}
  app_file:
    type: file
    path: logs/app.log
    rotation: daily
    formatter: {type: json, options: {ignore_empty_context_and_extra: true}}
  memory: {type: collector, ring_buffer_size: 50}
processors:
  host: {type: hostname, options: {environment: production}}
  rid: {type: request_id}
default_handlers: [console]
default_processors: [host]
channels:
  app: {handlers: [app_file], processors: [rid]}
  app.sql: {level: warning}
  noisy: {enabled: false}
global_context: {service: billing}
"""


# ═══════════════════════════════════════════════════════════════════
#  Components
# ═══════════════════════════════════════════════════════════════════

class TestHandlerConfig:
    def test_minimal(self):
        cfg = HandlerConfig(type="collector")
        assert cfg.type == HandlerType.COLLECTOR
        assert cfg.min_level == "debug"
        assert cfg.formatter is None

    def test_formatter_shorthand(self):
        cfg = HandlerConfig(type="terminal", formatter="pretty")
        assert cfg.formatter == FormatterConfig(type=FormatterType.PRETTY)

    def test_numeric_level(self):
        assert HandlerConfig(type="terminal", min_level=300).min_level == 300

    def test_unknown_level(self):
        with pytest.raises(ValidationError, match="Unknown log level"):
            HandlerConfig(type="terminal", min_level="loud")

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            HandlerConfig(type="smtp")

    def test_file_requires_path(self):
        with pytest.raises(ValidationError, match="requires 'path'"):
            HandlerConfig(type="file")

    def test_rotation_checked(self):
        with pytest.raises(ValidationError, match="rotation"):
            HandlerConfig(type="file", path="x.log", rotation="weekly")

    def test_file_rotation_options(self):
        cfg = HandlerConfig(
            type="file", path="x.log", rotation="hourly",
            max_file_size=1048576, max_files=5, compress=True,
        )
        assert cfg.rotation == "hourly"
        assert cfg.max_file_size == 1048576
        assert cfg.compress is True

    def test_group_requires_handlers(self):
        with pytest.raises(ValidationError, match="requires 'handlers'"):
            HandlerConfig(type="group")

    def test_syslog(self):
        cfg = HandlerConfig(type="syslog", ident="billing", facility="local0")
        assert cfg.type == HandlerType.SYSLOG

    def test_stream_checked(self):
        assert HandlerConfig(type="stream", stream="stdout").stream == "stdout"
        with pytest.raises(ValidationError, match="stream"):
            HandlerConfig(type="stream", stream="stdlog")


class TestSmallModels:
    def test_processor_config(self):
        cfg = ProcessorConfig(type="memory", options={"include_percent": True})
        assert cfg.type == ProcessorType.MEMORY

    def test_channel_settings_inherit(self):
        settings = ChannelSettings()
        assert settings.handlers is None
        assert settings.enabled is None

    def test_channel_settings_level(self):
        with pytest.raises(ValidationError):
            ChannelSettings(level=123)


# ═══════════════════════════════════════════════════════════════════
#  Logging Config
# ═══════════════════════════════════════════════════════════════════

class TestLoggingConfig:
    def test_empty(self):
        cfg = LoggingConfig()
        assert cfg.handlers == {}
        assert cfg.default_channel == "app"
        assert cfg.include_stack_traces is True

    def test_from_yaml_string(self):
        cfg = LoggingConfig.from_yaml_string(YAML_CONFIG)
        assert cfg.handlers["app_file"].formatter.type == FormatterType.JSON
        assert cfg.handlers["memory"].ring_buffer_size == 50
        assert cfg.channels["app"].handlers == ["app_file"]
        assert cfg.channels["app.sql"].level == "warning"
        assert cfg.channels["noisy"].enabled is False
        assert cfg.global_context == {"service": "billing"}
        assert cfg.source_yaml == YAML_CONFIG

    def test_logging_wrapper(self):
        cfg = LoggingConfig.from_yaml_string("logging:\n  default_channel: audit\n")
        assert cfg.default_channel == "audit"

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "logging.yaml"
        path.write_text(YAML_CONFIG)
        assert "console" in LoggingConfig.from_yaml(path).handlers

    def test_empty_yaml(self):
        assert LoggingConfig.from_yaml_string("").handlers == {}

    def test_unknown_default_handler(self):
        with pytest.raises(ValidationError, match="unknown handler 'ghost'"):
            LoggingConfig.from_dict({"default_handlers": ["ghost"]})

    def test_unknown_channel_processor(self):
        with pytest.raises(ValidationError, match="channels.app: unknown processor 'ghost'"):
            LoggingConfig.from_dict({"channels": {"app": {"processors": ["ghost"]}}})

    def test_unknown_group_member(self):
        with pytest.raises(ValidationError, match="handlers.fanout: unknown handler 'ghost'"):
            LoggingConfig.from_dict({"handlers": {"fanout": {"type": "group", "handlers": ["ghost"]}}})

    def test_nested_group_rejected(self):
        with pytest.raises(ValidationError, match="groups cannot contain group 'inner'"):
            LoggingConfig.from_dict({
                "handlers": {
                    "memory": {"type": "collector"},
                    "inner": {"type": "group", "handlers": ["memory"]},
                    "outer": {"type": "group", "handlers": ["inner"]},
                },
            })

    def test_invalid_channel_name(self):
        with pytest.raises(ValidationError, match="Invalid channel name"):
            LoggingConfig.from_dict({"channels": {"bad name": {}}})

    def test_invalid_default_channel(self):
        with pytest.raises(ValidationError):
            LoggingConfig(default_channel="a..b")

    def test_to_dict(self):
        data = LoggingConfig.from_yaml_string(YAML_CONFIG).to_dict()
        assert data["handlers"]["console"]["type"] == "terminal"
        assert "source_yaml" not in data
        assert "path" not in data["handlers"]["console"]
        # exported data validates again
        assert LoggingConfig.from_dict(data).to_dict() == data
