"""Unit tests for core logger module."""
import logging
from logging.handlers import TimedRotatingFileHandler

from tradesim.core.logger import setup_logging


class TestSetupLoggingBasics:
    def test_setup_logging_returns_logger(self):
        """Test that setup_logging returns a Logger instance."""
        log = setup_logging("TS_TEST")
        assert isinstance(log, logging.Logger)

    def test_setup_logging_default_level(self):
        """Test that default log level is INFO."""
        log = setup_logging("TS_DEFAULT")
        assert log.level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test setting DEBUG log level."""
        log = setup_logging("TS_DEBUG", level="debug")
        assert log.level == logging.DEBUG

    def test_invalid_level_defaults_to_info(self):
        """Test that an unknown level falls back to INFO."""
        log = setup_logging("TS_INVALID", level="LOUD")
        assert log.level == logging.INFO


class TestSetupLoggingHandlers:
    def test_console_handler_format(self):
        """Test that the console handler uses the standard format."""
        log = setup_logging("TS_FORMAT")
        handler = log.handlers[0]
        assert isinstance(handler, logging.StreamHandler)
        fmt = handler.formatter._fmt
        for key in ("%(asctime)s", "%(name)s", "%(levelname)s", "%(message)s"):
            assert key in fmt

    def test_repeated_setup_does_not_duplicate_handlers(self):
        """Test that repeated setup only updates the level."""
        log = setup_logging("TS_DUP", level="DEBUG")
        count = len(log.handlers)
        again = setup_logging("TS_DUP", level="WARNING")
        assert again is log
        assert len(again.handlers) == count
        assert again.level == logging.WARNING

    def test_file_handler_created_with_log_dir(self, tmp_path):
        """Test that a rotating file handler writes to log_dir."""
        log_dir = tmp_path / "logs"
        log = setup_logging("TS_FILE", log_dir=str(log_dir))
        file_handlers = [h for h in log.handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert log_dir.exists()
        log.info("written")
        file_handlers[0].flush()
        assert "written" in (log_dir / "TS_FILE.log").read_text(encoding="utf-8")


class TestSetupLoggingFunctionality:
    def test_logger_respects_level(self, caplog):
        """Test that logger filters messages below its level."""
        with caplog.at_level(logging.INFO):
            log = setup_logging("TS_LEVEL", level="INFO")
            log.debug("Debug message")
            log.info("Info message")
        assert "Debug message" not in caplog.text
        assert "Info message" in caplog.text
