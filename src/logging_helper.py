"""
Logging helper module for terminal-first logging.
All output goes to stdout with formatted prefixes, and also to a log file
when SCHEDULE_ICS_LOG_DIR is set.
"""

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

_lock = threading.Lock()
_log_file = None
_log_file_path: Optional[Path] = None


def _open_log_file():
    """Open the timestamped log file on first use, if a log dir is configured."""
    global _log_file, _log_file_path
    if _log_file is not None:
        return _log_file

    log_dir = os.getenv("SCHEDULE_ICS_LOG_DIR")
    if not log_dir:
        return None

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    _log_file_path = path / f"schedule_ics_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    _log_file = open(_log_file_path, 'a', encoding='utf-8')
    return _log_file


def _log(message: str):
    """Write message to stdout and, if configured, the log file."""
    # Extraction runs on worker threads; keep lines whole.
    with _lock:
        print(message)
        log_file = _open_log_file()
        if log_file is not None:
            log_file.write(message + '\n')
            log_file.flush()


class Log:
    """Simple logging class that outputs to stdout and log file with formatted prefixes."""

    @staticmethod
    def section(title: str):
        """Print a section header: blank line + '===== TITLE ====='"""
        _log("")
        _log(f"===== {title} =====")

    @staticmethod
    def info(message: str):
        """Print an info message: '[INFO] message'"""
        _log(f"[INFO] {message}")

    @staticmethod
    def warn(message: str):
        """Print a warning message: '[WARN] message'"""
        _log(f"[WARN] {message}")

    @staticmethod
    def error(message: str):
        """Print an error message: '[ERROR] message'"""
        _log(f"[ERROR] {message}")

    @staticmethod
    def kv(pairs: dict):
        """
        Print key-value pairs: '[KV] key=value | key2=value2'

        Args:
            pairs: Dictionary of key-value pairs to print
        """
        kv_string = " | ".join([f"{k}={v}" for k, v in pairs.items()])
        _log(f"[KV] {kv_string}")

    @staticmethod
    def get_log_path() -> Optional[str]:
        """Get the path to the current log file, or None when logging to stdout only."""
        _open_log_file()
        return str(_log_file_path) if _log_file_path is not None else None
