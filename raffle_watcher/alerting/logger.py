"""Operator notices - formats and outputs notable events to console and file."""

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..models import WinnerRecord

SOURCE_DEGRADED = "source_degraded"
SOURCE_RECOVERED = "source_recovered"
WINNER_SELECTED = "winner_selected"
NO_PARTICIPANTS = "no_participants"


@dataclass
class Notice:
    """An operator-facing notice."""

    notice_type: str
    details: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


class NoticeFormatter(logging.Formatter):
    """Custom formatter for notice messages."""

    HEADER = """
================================================================================
{timestamp} | NOTICE | {notice_type}
--------------------------------------------------------------------------------
"""
    FOOTER = "================================================================================\n"

    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, "notice"):
            return self._format_notice(record.notice)
        return super().format(record)

    def _format_notice(self, notice: Notice) -> str:
        header = self.HEADER.format(
            timestamp=notice.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            notice_type=notice.notice_type.upper().replace("_", " "),
        )
        width = max((len(key) for key in notice.details), default=0) + 2
        lines = [f"  {(key + ':').ljust(width)} {value}" for key, value in notice.details.items()]
        return header + "\n".join(lines) + "\n" + self.FOOTER


class NoticeLogger:
    """Handles notice output to console and file."""

    def __init__(
        self,
        log_file: str | Path,
        log_level: str = "INFO",
        max_file_size_mb: int = 10,
        backup_count: int = 5,
    ):
        self.log_file = Path(log_file)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self.backup_count = backup_count

        self._logger = logging.getLogger("raffle_watcher.notices")
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging handlers."""
        self._logger.setLevel(self.log_level)
        self._logger.handlers.clear()
        self._logger.propagate = False

        # Ensure log directory exists
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(NoticeFormatter())
        self._logger.addHandler(console_handler)

        # File handler with rotation
        file_handler = RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(NoticeFormatter())
        self._logger.addHandler(file_handler)

    def log_notice(self, notice: Notice, level: int = logging.WARNING):
        """Log a notice to console and file."""
        record = self._logger.makeRecord(
            name="raffle_watcher.notices",
            level=level,
            fn="",
            lno=0,
            msg=f"Notice: {notice.notice_type}",
            args=(),
            exc_info=None,
        )
        record.notice = notice
        self._logger.handle(record)

    def source_transition(self, label: str, source: str, state: str):
        """Matches the transition callback of FallbackSource."""
        notice_type = SOURCE_DEGRADED if state == "degraded" else SOURCE_RECOVERED
        self.log_notice(
            Notice(notice_type, {"Watcher": label, "Preferred": source, "State": state}),
            logging.WARNING if notice_type == SOURCE_DEGRADED else logging.INFO,
        )

    def winner_selected(self, winner: WinnerRecord):
        self.log_notice(
            Notice(
                WINNER_SELECTED,
                {
                    "Raffle": winner.raffle_id,
                    "Winner": winner.wallet,
                    "Tickets": f"{winner.ticket_count} of {winner.total_tickets}",
                    "Participants": winner.total_participants,
                    "Ticket #": winner.winning_ticket_number,
                    "Method": winner.selection_method,
                },
            ),
            logging.INFO,
        )

    def no_participants(self, raffle_id: str):
        self.log_notice(Notice(NO_PARTICIPANTS, {"Raffle": raffle_id}))


def setup_app_logging(level: str = "INFO"):
    """Set up application-wide logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
