"""Database layer."""

from .models import SCHEMA
from .repository import EventRow, Job, Raffle, Repository

__all__ = ["SCHEMA", "Repository", "Raffle", "Job", "EventRow"]
