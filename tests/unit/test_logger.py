"""
Unit tests for the logger module.

The CLI prints JSON reports on stdout, so the logger must never write there.
"""

import io
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import pytest

from chatguard.utils.logger import set_level, setup_logger


@pytest.fixture
def fresh_logger(tmp_path):
    """A uniquely named logger writing under tmp_path; handlers removed afterwards."""
    created = []

    def _make(name):
        log = setup_logger(name, log_dir=str(tmp_path))
        created.append(log)
        return log

    yield _make

    for log in created:
        for handler in log.handlers[:]:
            handler.close()
            log.removeHandler(handler)
        log._chatguard_configured = False


class TestLoggerStdoutProtection:
    """Logger output must stay off stdout."""

    def test_logger_never_writes_to_stdout(self, fresh_logger):
        original_stdout = sys.stdout
        captured_stdout = io.StringIO()
        sys.stdout = captured_stdout
        try:
            test_logger = fresh_logger("TestLoggerStdout")
            test_logger.info("Info message")
            test_logger.error("Error message")
            for handler in test_logger.handlers:
                handler.flush()
        finally:
            sys.stdout = original_stdout

        assert captured_stdout.getvalue() == ""

    def test_no_handler_targets_stdout(self, fresh_logger):
        test_logger = fresh_logger("TestLoggerHandlers")

        for handler in test_logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(
                handler, logging.FileHandler
            ):
                assert handler.stream is not sys.stdout


class TestLoggerConfiguration:
    def test_rotating_file_handler(self, fresh_logger, tmp_path):
        test_logger = fresh_logger("TestLoggerFile")

        file_handlers = [
            h for h in test_logger.handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 5 * 1024 * 1024
        assert file_handlers[0].backupCount == 3

        test_logger.warning("written to file")
        file_handlers[0].flush()
        with open(os.path.join(tmp_path, "chatguard.log"), encoding="utf-8") as f:
            assert "written to file" in f.read()

    def test_setup_twice_does_not_duplicate_handlers(self, fresh_logger):
        first = fresh_logger("TestLoggerTwice")
        count = len(first.handlers)

        second = fresh_logger("TestLoggerTwice")

        assert second is first
        assert len(second.handlers) == count

    def test_unwritable_log_dir_falls_back_to_stderr(self, tmp_path, capsys):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")

        test_logger = setup_logger("TestLoggerNoDir", log_dir=str(blocker / "logs"))
        try:
            assert not any(
                isinstance(h, RotatingFileHandler) for h in test_logger.handlers
            )
            assert "file logging disabled" in capsys.readouterr().err
        finally:
            for handler in test_logger.handlers[:]:
                test_logger.removeHandler(handler)
            test_logger._chatguard_configured = False

    def test_log_dir_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CHATGUARD_LOG_DIR", str(tmp_path / "envlogs"))
        test_logger = setup_logger("TestLoggerEnvDir")
        try:
            assert os.path.isdir(tmp_path / "envlogs")
        finally:
            for handler in test_logger.handlers[:]:
                handler.close()
                test_logger.removeHandler(handler)
            test_logger._chatguard_configured = False


class TestSetLevel:
    def test_set_level_by_name(self):
        package_logger = logging.getLogger("chatguard")
        previous = package_logger.level
        try:
            set_level("debug")
            assert package_logger.level == logging.DEBUG
        finally:
            package_logger.setLevel(previous)

    def test_unknown_level_is_ignored(self):
        package_logger = logging.getLogger("chatguard")
        previous = package_logger.level

        set_level("LOUD")

        assert package_logger.level == previous

    def test_module_loggers_are_children(self):
        from chatguard.core import pipeline

        assert pipeline.logger.name.startswith("chatguard.")
