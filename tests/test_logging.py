"""Tests for logging setup."""

import io
import logging
from logging.handlers import RotatingFileHandler

import pytest

from plantree.logging_config import LOGGER_NAME, get_logger, setup_logging


@pytest.fixture
def clean_logger():
	"""Detach handlers so each test configures the package logger from scratch."""
	logger = logging.getLogger(LOGGER_NAME)
	saved = list(logger.handlers)
	saved_level = logger.level
	logger.handlers.clear()
	yield logger
	for handler in logger.handlers:
		handler.close()
	logger.handlers[:] = saved
	logger.setLevel(saved_level)


def test_console_only(clean_logger):
	stream = io.StringIO()
	logger = setup_logging("WARNING", stream=stream)

	assert logger is clean_logger
	assert logger.level == logging.WARNING
	assert len(logger.handlers) == 1

	get_logger("engine").warning("careful")
	assert "careful" in stream.getvalue()


def test_file_handler(clean_logger, tmp_path):
	logger = setup_logging("INFO", log_dir=tmp_path / "logs", stream=io.StringIO())

	file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
	assert len(file_handlers) == 1
	assert (tmp_path / "logs").is_dir()

	get_logger("store").info("written")
	file_handlers[0].flush()
	assert "written" in (tmp_path / "logs" / "plantree.log").read_text()


def test_setup_is_idempotent(clean_logger, tmp_path):
	setup_logging("INFO", log_dir=tmp_path, stream=io.StringIO())
	setup_logging("DEBUG", log_dir=tmp_path, stream=io.StringIO())

	assert len(clean_logger.handlers) == 2
	assert clean_logger.level == logging.DEBUG


def test_unknown_level_falls_back_to_info(clean_logger):
	logger = setup_logging("LOUD", stream=io.StringIO())
	assert logger.level == logging.INFO
