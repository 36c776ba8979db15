"""Tests for cgmctl logging configuration."""

import logging
import sys

import pytest

from cgmctl.core.logging import (
    TRACE,
    ProviderContext,
    ProviderLoggerAdapter,
    get_logger,
    get_provider_logger,
    mask_email,
    redact_url,
    setup_logging,
)

pytestmark = pytest.mark.unit


class TestTraceLevelSetup:
    """Test custom TRACE level setup."""

    def test_trace_level_value(self):
        """Test TRACE level is set correctly."""
        assert TRACE == 5

    def test_trace_level_name(self):
        """Test TRACE level name is registered."""
        assert logging.getLevelName(TRACE) == "TRACE"
        assert logging.getLevelName("TRACE") == TRACE

    def test_trace_method_exists(self):
        """Test trace method is added to Logger."""
        logger = logging.getLogger("test.trace")
        assert callable(logger.trace)


class TestSetupLogging:
    """Test setup_logging function."""

    @pytest.mark.parametrize("verbosity,level", [
        (0, logging.WARNING),
        (1, logging.INFO),
        (2, logging.DEBUG),
        (3, TRACE),
        (10, TRACE),
    ])
    def test_verbosity_levels(self, verbosity, level):
        logger = setup_logging(verbosity=verbosity)

        assert logger.level == level

    def test_quiet_overrides_verbosity(self):
        """Test quiet flag sets ERROR level."""
        logger = setup_logging(verbosity=3, quiet=True)

        assert logger.level == logging.ERROR

    def test_returns_cgmctl_logger(self):
        logger = setup_logging()

        assert logger.name == "cgmctl"

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging(verbosity=0)
        logger = setup_logging(verbosity=1)

        assert len(logger.handlers) == 1

    def test_handler_writes_to_stderr(self):
        """Log output must not mix with command output on stdout."""
        logger = setup_logging(verbosity=1)

        handler = logger.handlers[0]
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream == sys.stderr


class TestLogFormat:
    """Test log message formatting."""

    def test_warning_format_minimal(self):
        logger = setup_logging(verbosity=0)
        fmt = logger.handlers[0].formatter._fmt

        assert "%(message)s" in fmt
        assert "%(levelname)" not in fmt

    def test_info_format_simple(self):
        logger = setup_logging(verbosity=1)
        fmt = logger.handlers[0].formatter._fmt

        assert "%(levelname)s" in fmt
        assert "%(asctime)s" not in fmt

    def test_debug_format_detailed(self):
        logger = setup_logging(verbosity=2)
        fmt = logger.handlers[0].formatter._fmt

        assert "%(asctime)s" in fmt
        assert "%(name)s" in fmt


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_with_name(self):
        assert get_logger("cgmctl.providers.nightscout").name == "cgmctl.providers.nightscout"

    def test_get_logger_without_name(self):
        assert get_logger().name == "cgmctl"

    def test_child_logger_inherits_level(self):
        setup_logging(verbosity=1)

        child = get_logger("cgmctl.test.child")
        assert child.getEffectiveLevel() == logging.INFO


class TestProviderContext:
    """Test provider context prefixes."""

    def test_empty_context_has_no_prefix(self):
        assert ProviderContext().format_prefix() == ""

    def test_provider_only(self):
        assert ProviderContext(provider="nightscout").format_prefix() == "[nightscout]"

    def test_provider_and_generation(self):
        ctx = ProviderContext(provider="librelink", generation=2)
        assert ctx.format_prefix() == "[librelink:2]"


class TestProviderLoggerAdapter:
    """Test ProviderLoggerAdapter."""

    def test_messages_are_prefixed(self, caplog):
        adapter = get_provider_logger("cgmctl.test.adapter", provider="nightscout", generation=0)

        with caplog.at_level(logging.INFO, logger="cgmctl.test.adapter"):
            adapter.info("History fetched")

        assert "[nightscout:0] History fetched" in caplog.text

    def test_update_context(self):
        adapter = ProviderLoggerAdapter(
            logging.getLogger("cgmctl.test.update"), ProviderContext(provider="nightscout")
        )

        adapter.update_context(provider="librelink", generation=3, unknown="ignored")

        msg, _ = adapter.process("switched", {})
        assert msg == "[librelink:3] switched"
        assert not hasattr(adapter.context, "unknown")


class TestRedaction:
    """Credentials never appear in log text."""

    def test_redact_token(self):
        url = "https://ns.example.com/api/v1/entries.json?count=1&token=secret-abc"
        assert redact_url(url) == "https://ns.example.com/api/v1/entries.json?count=1&token=***"

    def test_redact_leaves_other_urls_alone(self):
        url = "https://ns.example.com/api/v1/entries.json?count=1"
        assert redact_url(url) == url

    def test_mask_email(self):
        assert mask_email("someone@example.com") == "som***"

    def test_mask_missing_email(self):
        assert mask_email(None) == "NOT SET"
        assert mask_email("") == "NOT SET"
