"""Tests for logging setup and configuration."""

import json
import logging
from pathlib import Path

import pytest

from core.logging.context import get_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    DEFAULT_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    NOISY_LOGGERS,
    ArchivingTimedRotatingFileHandler,
    get_log_file_path,
    get_logger,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    noisy_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, noisy_level in noisy_levels.items():
        logging.getLogger(name).setLevel(noisy_level)


class TestGetLogFilePath:
    def test_stage_and_worker_in_name(self):
        path = get_log_file_path(Path("logs"), stage="consumer", worker_id="happy-tiger")

        assert path.name.startswith("relay_consumer_")
        assert path.name.endswith("_happy-tiger.log")

    def test_without_stage_or_worker(self):
        path = get_log_file_path(Path("logs"))

        assert path.name.startswith("relay_")
        assert path.suffix == ".log"
        assert path.name.count("_") == 2

    def test_date_subfolder(self):
        path = get_log_file_path(Path("logs"), stage="tailer")

        assert path.parent.parent == Path("logs")
        assert len(path.parent.name) == len("2026-01-05")


class TestArchivingTimedRotatingFileHandler:
    def test_default_archive_dir(self, tmp_path):
        handler = ArchivingTimedRotatingFileHandler(tmp_path / "relay.log")
        try:
            assert handler.archive_dir == tmp_path / "archive"
            assert handler.archive_dir.is_dir()
        finally:
            handler.close()

    def test_rollover_moves_rotated_files(self, tmp_path):
        archive = tmp_path / "old"
        handler = ArchivingTimedRotatingFileHandler(
            tmp_path / "relay.log", when="S", archive_dir=archive
        )
        try:
            handler.emit(logging.makeLogRecord({"msg": "before rollover"}))
            handler.doRollover()
        finally:
            handler.close()

        assert (tmp_path / "relay.log").exists()
        assert list(tmp_path.glob("relay.log.*")) == []
        assert len(list(archive.glob("relay.log.*"))) == 1


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    def test_defaults(self):
        assert DEFAULT_LOG_DIR == Path("logs")
        assert DEFAULT_BACKUP_COUNT == 24

    def test_file_and_console_handlers(self, tmp_path):
        setup_logging(stage="consumer", log_dir=tmp_path, worker_id="w1")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 2
        file_handler = next(h for h in handlers if isinstance(h, ArchivingTimedRotatingFileHandler))
        assert isinstance(file_handler.formatter, JSONFormatter)
        assert Path(file_handler.baseFilename).name.endswith("_w1.log")
        assert file_handler.archive_dir.parent == tmp_path / "archive"

    def test_sets_log_context(self, tmp_path):
        setup_logging(stage="traffic", log_dir=tmp_path, worker_id="w2")

        context = get_log_context()
        assert context["stage"] == "traffic"
        assert context["worker_id"] == "w2"

    def test_writes_json_lines(self, tmp_path):
        logger = setup_logging(stage="consumer", log_dir=tmp_path)
        logger.info("hello", extra={"queue": "maxwell_consumer"})
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = next(tmp_path.rglob("relay_consumer_*.log"))
        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        hello = next(e for e in entries if e["message"] == "hello")
        assert hello["queue"] == "maxwell_consumer"
        assert hello["stage"] == "consumer"

    def test_plain_text_file_format(self, tmp_path):
        setup_logging(log_dir=tmp_path, json_format=False)

        file_handler = next(
            h for h in logging.getLogger().handlers
            if isinstance(h, ArchivingTimedRotatingFileHandler)
        )
        assert not isinstance(file_handler.formatter, JSONFormatter)

    def test_stdout_only(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, ConsoleFormatter)
        assert handlers[0].level == logging.DEBUG
        assert list(tmp_path.iterdir()) == []

    def test_suppresses_noisy_loggers(self, tmp_path):
        setup_logging(log_to_stdout=True)

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_returns_named_logger(self):
        logger = setup_logging(name="relay.test", log_to_stdout=True)

        assert logger.name == "relay.test"
        assert get_logger("relay.test") is logger
