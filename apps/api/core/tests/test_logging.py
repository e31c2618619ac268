"""Tests for structured logging setup."""

import structlog

from apps.api.core.logging import setup_logging


class TestStructuredLogging:
    """Test structlog outputs structured JSON."""

    def test_setup_logging_configures_structlog(self):
        """After setup, structlog.get_logger() should return a bound logger."""
        setup_logging(log_level="DEBUG", json_output=True)
        logger = structlog.get_logger()
        assert logger is not None

    def test_setup_logging_dev_mode(self):
        """Dev mode should configure console renderer without errors."""
        setup_logging(log_level="DEBUG", json_output=False)
        logger = structlog.get_logger()
        assert logger is not None

    def test_ingestion_context_binds_and_clears(self):
        """Bound user and adapter appear in contextvars until cleared."""
        from apps.api.core.logging import bind_ingestion_context, clear_ingestion_context

        bind_ingestion_context("u-1", "background")
        assert structlog.contextvars.get_contextvars() == {"user_id": "u-1", "adapter": "background"}

        clear_ingestion_context()
        assert structlog.contextvars.get_contextvars() == {}
