"""Background workers."""

from .ticket_worker import TicketWorker

__all__ = ["TicketWorker"]
