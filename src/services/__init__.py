"""
Services package - Application services.

Contains:
- logging: console and daily-file logging configuration
"""

from .logging import configure_logging, get_log_file_path, cleanup_old_logs

__all__ = [
    "configure_logging",
    "get_log_file_path",
    "cleanup_old_logs",
]
