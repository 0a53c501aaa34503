"""Tests for logging configuration."""
import logging

import pytest
import structlog

from app.utils.logger import bound_context, configure_logging, get_logger


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield root_logger
    root_logger.handlers = handlers
    root_logger.setLevel(level)


@pytest.mark.unit
class TestLogger:
    """Tests for logger utilities."""

    def test_configure_logging_sets_level(self, restore_root_logger):
        configure_logging(log_level="WARNING", log_format="console")

        assert restore_root_logger.level == logging.WARNING
        assert len(restore_root_logger.handlers) == 1

    def test_configure_logging_twice_does_not_stack_handlers(self, restore_root_logger):
        configure_logging(log_level="INFO")
        configure_logging(log_level="INFO")

        assert len(restore_root_logger.handlers) == 1

    def test_get_logger(self):
        logger = get_logger("tests.logger")

        assert hasattr(logger, "info")
        assert hasattr(logger, "bind")

    def test_bound_context(self):
        with bound_context(era_file_id=12, task_id="task-1"):
            assert structlog.contextvars.get_contextvars() == {"era_file_id": 12, "task_id": "task-1"}

        assert "era_file_id" not in structlog.contextvars.get_contextvars()

    def test_bound_context_nested(self):
        with bound_context(era_file_id=12):
            with bound_context(claim="CLM001"):
                assert structlog.contextvars.get_contextvars() == {"era_file_id": 12, "claim": "CLM001"}
            assert structlog.contextvars.get_contextvars() == {"era_file_id": 12}
