"""
Logging setup for Volume Radar.

Log files written under LOG_DIR:
- system.log: everything at the configured level
- events.log: one line per anomaly inserted into the live feed
- errors.log: ERROR and above

Files rotate at 50 MB with 5 backups; files untouched for a week are removed
at startup.
"""
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Dict, Union

LOG_DIR = Path("logs")

MAX_BYTES = 50 * 1024 * 1024
BACKUP_COUNT = 5
LOG_RETENTION_DAYS = 7

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Union[str, Path] = LOG_DIR) -> Dict[str, logging.Logger]:
    """
    Install console and rotating file handlers.

    Replaces any handlers already attached to the root and `events` loggers,
    so calling it twice does not duplicate output.

    Returns:
        {'system': root logger, 'events': anomaly event logger}
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(_rotating_handler(log_dir / "system.log", level, formatter))
    root.addHandler(_rotating_handler(log_dir / "errors.log", logging.ERROR, formatter))

    # Anomalies get their own file and still reach the console and system.log
    events = logging.getLogger('events')
    events.handlers.clear()
    events.addHandler(_rotating_handler(log_dir / "events.log", logging.INFO, formatter))
    events.propagate = True

    removed = cleanup_old_logs(log_dir)

    root.info(
        f"Logging to {log_dir.absolute()} at {log_level.upper()} "
        f"({MAX_BYTES // (1024 * 1024)} MB x {BACKUP_COUNT} backups, "
        f"{LOG_RETENTION_DAYS} day retention, {removed} stale files removed)"
    )

    return {'system': root, 'events': events}


def cleanup_old_logs(log_dir: Union[str, Path] = LOG_DIR) -> int:
    """Remove log files and rotated backups older than LOG_RETENTION_DAYS. Returns the count."""
    cutoff = time.time() - LOG_RETENTION_DAYS * 24 * 3600
    removed = 0

    for path in Path(log_dir).glob("*.log*"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as e:
            logging.getLogger(__name__).error(f"Could not remove old log {path}: {e}")

    return removed
