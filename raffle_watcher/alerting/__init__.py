"""Logging setup and operator notices."""

from .logger import Notice, NoticeFormatter, NoticeLogger, setup_app_logging

__all__ = ["Notice", "NoticeFormatter", "NoticeLogger", "setup_app_logging"]
