"""
Logging Setup and Failure Tracking

Configures the "waymirror" logger hierarchy for a run and keeps the list of
downloads that ended in failure, so the run can report them at the end.
"""

import logging
import logging.handlers
import os
import sys
import threading
from datetime import datetime
from typing import Optional, Dict, Any, List
from pathlib import Path


LOG_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(threadName)s | %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# (file suffix, level, max bytes, backups)
LOG_FILES = (
    ("", logging.DEBUG, 10 * 1024 * 1024, 5),
    ("_errors", logging.ERROR, 5 * 1024 * 1024, 3),
)


class MirrorLogger:
    """
    Log sinks for one process: progress on stdout, a rotating debug log and
    a rotating errors-only log under log_dir.
    """

    def __init__(self, log_dir: str = "logs", app_name: str = "waymirror"):
        self.log_dir = Path(log_dir)
        self.app_name = app_name
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _file_handler(self, suffix: str, level: int, max_bytes: int, backups: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}{suffix}.log",
            maxBytes=max_bytes,
            backupCount=backups,
            encoding='utf-8',
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        return handler

    def setup_logger(self, level: int = logging.INFO) -> logging.Logger:
        """
        Attach the handlers to the package logger.

        Calling it again only adjusts the console level.

        Args:
            level: Console logging level; the log files always get DEBUG/ERROR
        """
        logger = logging.getLogger(self.app_name)
        logger.setLevel(logging.DEBUG)

        if logger.handlers:
            for handler in logger.handlers:
                if not isinstance(handler, logging.FileHandler):
                    handler.setLevel(level)
            return logger

        for suffix, file_level, max_bytes, backups in LOG_FILES:
            logger.addHandler(self._file_handler(suffix, file_level, max_bytes, backups))

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console)
        return logger


class FailureTracker:
    """
    Thread-safe record of URLs that could not be downloaded.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._failures: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def record(self, url: str, error: Exception) -> None:
        """
        Record a download that exhausted its retries or failed terminally.

        Args:
            url: Original URL of the snapshot
            error: The exception that ended the download
        """
        entry = {
            'url': url,
            'error': str(error),
            'type': type(error).__name__,
            'timestamp': datetime.now(),
        }
        with self._lock:
            self._failures.append(entry)
        self.logger.debug(f"Recorded failure for {url}: {entry['type']}: {entry['error']}")

    @property
    def failures(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._failures)

    def __len__(self) -> int:
        with self._lock:
            return len(self._failures)

    def has_failures(self) -> bool:
        return len(self) > 0

    def get_summary(self) -> Dict[str, Any]:
        failures = self.failures
        type_counts: Dict[str, int] = {}
        for failure in failures:
            type_counts[failure['type']] = type_counts.get(failure['type'], 0) + 1
        return {
            'total_failures': len(failures),
            'failure_types': type_counts,
            'recent_failures': failures[-5:],
        }

    def log_summary(self) -> None:
        summary = self.get_summary()
        if not summary['total_failures']:
            return
        counts = ", ".join(f"{name}: {count}" for name, count in sorted(summary['failure_types'].items()))
        self.logger.error(f"Failed downloads summary ({summary['total_failures']} total; {counts}):")
        for failure in self.failures:
            self.logger.error(f"  {failure['url']} - {failure['error']}")

    def save_report(self, output_path: str) -> None:
        """
        Save a plain-text failure report.

        Args:
            output_path: Path where the report should be saved
        """
        failures = self.failures
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write("WAYMIRROR FAILURE REPORT\n")
            f.write("=" * 50 + "\n\n")
            f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Total Failures: {len(failures)}\n\n")
            for failure in failures:
                f.write(f"[{failure['timestamp']:%Y-%m-%d %H:%M:%S}] {failure['url']}\n")
                f.write(f"Type: {failure['type']}\n")
                f.write(f"Message: {failure['error']}\n")
                f.write("-" * 30 + "\n")
        self.logger.info(f"Failure report saved to: {output_path}")


# Global logger instance
_logger_instance: Optional[MirrorLogger] = None


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger under the package namespace.

    Args:
        name: Name of the module/component (optional)
    """
    if name:
        return logging.getLogger(f"waymirror.{name}")
    return logging.getLogger("waymirror")


def initialize_logging(log_dir: str = "logs", level: Optional[int] = None) -> logging.Logger:
    """
    Initialize the global logging system.

    Args:
        log_dir: Directory for log files
        level: Console level; DEBUG when the DEBUG environment variable is set,
            INFO otherwise
    """
    global _logger_instance
    if level is None:
        level = logging.DEBUG if os.environ.get('DEBUG') else logging.INFO
    _logger_instance = MirrorLogger(log_dir)
    logger = _logger_instance.setup_logger(level)
    logger.debug(f"Python version: {sys.version}")
    logger.debug(f"Working directory: {os.getcwd()}")
    logger.debug(f"Log directory: {_logger_instance.log_dir.absolute()}")
    return logger
