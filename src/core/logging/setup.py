"""Process-wide logging, configured once by each entry point."""

import logging
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "H"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 24
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# AMQP, MongoDB and HTTP driver chatter, capped at WARNING
NOISY_LOGGERS = [
    "aio_pika",
    "aiormq",
    "aiormq.connection",
    "pamqp",
    "pymongo",
    "pymongo.serverSelection",
    "pymongo.connection",
    "pymongo.topology",
    "motor",
    "aiohttp",
    "aiohttp.access",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    Rotating file handler that moves rotated files out of the live directory.

        logs/2026-01-05/relay_consumer_0105_1430_quick-brown-fox.log
        logs/archive/2026-01-05/relay_consumer_0105_1430_quick-brown-fox.log.2026-01-05_14
    """

    def __init__(self, filename, when="midnight", interval=1, backupCount=0,
                 encoding=None, delay=False, utc=False, archive_dir=None):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        self.archive_dir = Path(archive_dir) if archive_dir else Path(self.baseFilename).parent / "archive"
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()
        live = Path(self.baseFilename)
        for rotated in live.parent.glob(f"{live.name}.*"):
            try:
                shutil.move(str(rotated), str(self.archive_dir / rotated.name))
            except OSError as e:
                # Logging from inside a handler would recurse
                print(f"Warning: Failed to archive {rotated}: {e}", file=sys.stderr)


def get_log_file_path(log_dir: Path, stage: str | None = None, worker_id: str | None = None) -> Path:
    """
    {log_dir}/{YYYY-MM-DD}/relay[_{stage}]_{MMDD}_{HHMM}[_{worker_id}].log

    The worker id keeps concurrent consumer processes in separate files.
    """
    now = datetime.now()
    parts = ["relay"]
    if stage:
        parts.append(stage)
    parts += [now.strftime("%m%d"), now.strftime("%H%M")]
    if worker_id:
        parts.append(worker_id)
    return log_dir / now.strftime("%Y-%m-%d") / f"{'_'.join(parts)}.log"


def _file_handler(
    log_file: Path,
    log_dir: Path,
    json_format: bool,
    level: int,
    when: str,
    interval: int,
    backup_count: int,
) -> ArchivingTimedRotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        # Archive mirrors the date subfolder: logs/archive/2026-01-05/
        archive_dir = log_dir / "archive" / log_file.relative_to(log_dir).parent
    except ValueError:
        archive_dir = log_file.parent / "archive"

    handler = ArchivingTimedRotatingFileHandler(
        log_file,
        when=when,
        interval=interval,
        backupCount=backup_count,
        encoding="utf-8",
        archive_dir=archive_dir,
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "relay",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Replace the root logger's handlers for this process.

    By default: colored console at `console_level` plus an hourly rotating
    JSON file at `file_level` under `log_dir`. With log_to_stdout (containers)
    the console handler alone runs at `file_level` and nothing touches disk.

    Args:
        name: Logger to return
        stage: consumer, traffic or tailer; goes into the log context and file name
        log_dir: Base directory for log files (default: ./logs)
        json_format: JSON lines in the file instead of plain text
        console_level: Console level when also writing a file
        file_level: File level, or console level in stdout-only mode
        rotation_when: TimedRotatingFileHandler `when` ('H', 'midnight', ...)
        rotation_interval: TimedRotatingFileHandler `interval`
        backup_count: Rotated files kept
        suppress_noisy: Cap NOISY_LOGGERS at WARNING
        worker_id: Goes into the log context and file name
        log_to_stdout: Console only
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    context = {key: value for key, value in (("stage", stage), ("worker_id", worker_id)) if value}
    if context:
        set_log_context(**context)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())

    log_file = None
    if log_to_stdout:
        console_handler.setLevel(file_level)
    else:
        console_handler.setLevel(console_level)
        log_file = get_log_file_path(log_dir, stage=stage, worker_id=worker_id)
        root_logger.addHandler(
            _file_handler(
                log_file,
                log_dir,
                json_format,
                file_level,
                rotation_when,
                rotation_interval,
                backup_count,
            )
        )
    root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized: stdout-only mode"
        if log_file is None
        else f"Logging initialized: file={log_file}, json={json_format}"
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
