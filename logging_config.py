"""Logging setup for the headline pipeline."""
import logging
import logging.handlers
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

FILE_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s'
CONSOLE_FORMAT = '[%(asctime)s] %(message)s'


def setup_logging(log_dir: Optional[Path] = None, retention_days: int = 30, verbose: bool = False):
    """Configure console logging, plus a daily file log when log_dir is given.

    Args:
        log_dir: Directory for log files (created if missing). None disables file logging.
        retention_days: How many days of log files to keep
        verbose: If True, console shows DEBUG messages
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        cleanup_old_logs(log_dir, retention_days)

        log_file = log_dir / f"{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_file,
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8',
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return root_logger


def cleanup_old_logs(log_dir: Path, retention_days: int) -> int:
    """Delete YYYY-MM-DD.log files older than retention_days. Returns number removed."""
    if not log_dir.exists():
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    removed = 0

    for log_file in log_dir.glob('*.log'):
        try:
            file_date = datetime.strptime(log_file.stem, '%Y-%m-%d')
        except ValueError:
            continue
        if file_date < cutoff_date:
            try:
                log_file.unlink()
                removed += 1
                logging.debug(f"Deleted old log file: {log_file.name}")
            except OSError:
                continue

    return removed
