"""Tests for Bridge structured logging."""

import logging

import structlog

from bridge.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        logger = get_logger("test")
        logger.info("test message")
        assert logging.getLogger().level == logging.INFO

    def test_configure_with_debug_level(self):
        """Should accept DEBUG level."""
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        get_logger("test").debug("debug message")

    def test_configure_with_text_format(self):
        """Should accept text format for development."""
        configure_logging(level="INFO", format="text")
        get_logger("test").info("text format message")

    def test_unknown_level_falls_back_to_info(self):
        """An unknown level name should fall back to INFO."""
        configure_logging(level="CHATTY")
        assert logging.getLogger().level == logging.INFO

    def test_stdlib_records_use_structlog_formatter(self):
        """Library modules logging through stdlib should be rendered by structlog."""
        configure_logging(level="INFO", format="json")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_configure_multiple_times(self):
        """Reconfiguring should not stack handlers."""
        configure_logging(level="INFO")
        configure_logging(level="DEBUG")
        assert len(logging.getLogger().handlers) == 1


class TestGetLogger:
    """Tests for logger creation."""

    def test_get_logger_with_name(self):
        """Should create logger with specified name."""
        assert get_logger("bridge.patterns") is not None

    def test_get_logger_without_name(self):
        """Should create logger without name."""
        assert get_logger() is not None


class TestContextBinding:
    """Tests for context variable binding."""

    def teardown_method(self):
        clear_context()

    def test_bind_context(self):
        """Bound values should appear in the context."""
        bind_context(data_dir="/tmp/bridge")
        assert structlog.contextvars.get_contextvars()["data_dir"] == "/tmp/bridge"

    def test_unbind_context(self):
        """Unbinding should remove only the given keys."""
        bind_context(data_dir="/tmp/bridge", record_id="exp_1")
        unbind_context("record_id")
        context = structlog.contextvars.get_contextvars()
        assert "record_id" not in context
        assert context["data_dir"] == "/tmp/bridge"

    def test_clear_context(self):
        """Clearing should remove everything."""
        bind_context(data_dir="/tmp/bridge")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
