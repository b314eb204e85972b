"""Tests for invoicer.logging_setup module."""

import logging
from logging.handlers import RotatingFileHandler

from invoicer.config import Config, Directories, LoggingConfig
from invoicer.logging_setup import setup_logging


class TestSetupLogging:
    def test_console_handler(self):
        setup_logging(Config())
        logger = logging.getLogger("invoicer")
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_verbose_forces_debug(self):
        setup_logging(Config(), verbose=True)
        assert logging.getLogger("invoicer").level == logging.DEBUG

    def test_file_output_rotating(self, tmp_path):
        log_file = tmp_path / "logs" / "invoicer.log"
        config = Config(logging=LoggingConfig(output="file", file=str(log_file)))
        setup_logging(config)
        handlers = logging.getLogger("invoicer").handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], RotatingFileHandler)
        assert log_file.parent.is_dir()
        handlers[0].close()

    def test_file_output_without_rotation(self, tmp_path):
        config = Config(logging=LoggingConfig(output="both", file=str(tmp_path / "x.log"), rotate=False))
        setup_logging(config)
        handlers = logging.getLogger("invoicer").handlers
        assert len(handlers) == 2
        assert type(handlers[1]) is logging.FileHandler
        handlers[1].close()

    def test_second_call_is_noop(self):
        setup_logging(Config(logging=LoggingConfig(level="WARNING")))
        setup_logging(Config(), verbose=True)
        assert logging.getLogger("invoicer").level == logging.WARNING

    def test_unknown_level_defaults_to_info(self):
        setup_logging(Config(logging=LoggingConfig(level="chatty")))
        assert logging.getLogger("invoicer").level == logging.INFO

    def test_log_file_relative_to_config_dir(self, tmp_path):
        config = Config(
            directories=Directories(config="${WORKING_DIR}/conf", working_dir=tmp_path),
            logging=LoggingConfig(output="file", file="${CONFIG_DIR}/logs/invoicer.log"),
        )
        setup_logging(config)
        handler = logging.getLogger("invoicer").handlers[0]
        assert handler.baseFilename == str(tmp_path / "conf" / "logs" / "invoicer.log")

    def test_messages_reach_file(self, tmp_path):
        config = Config(
            directories=Directories(working_dir=tmp_path),
            logging=LoggingConfig(output="file", file="invoicer.log"),
        )
        setup_logging(config)
        logging.getLogger("invoicer.invoicer").warning("acme: skipped")
        logging.getLogger("invoicer").handlers[0].flush()
        assert "WARNING [invoicer.invoicer] acme: skipped" in (tmp_path / "invoicer.log").read_text()


class TestConsoleFormat:
    def test_plain(self):
        setup_logging(Config())
        assert logging.getLogger("invoicer").handlers[0].formatter._fmt == "%(levelname)s: %(message)s"

    def test_verbose_names_logger(self):
        setup_logging(Config(), verbose=True)
        assert "%(name)s" in logging.getLogger("invoicer").handlers[0].formatter._fmt
