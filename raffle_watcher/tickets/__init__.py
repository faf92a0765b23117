"""Ticket arithmetic: purchase allocation and stake bonuses."""

from .allocation import (
    MAX_TICKET_COUNT,
    calculate_ticket_count,
    calculate_ticket_removal,
    tickets_from_raw,
)
from .stake_bonus import StakeSummary, requested_adjustment, stake_bonus, unstake_clawback

__all__ = [
    "MAX_TICKET_COUNT",
    "calculate_ticket_count",
    "calculate_ticket_removal",
    "tickets_from_raw",
    "StakeSummary",
    "requested_adjustment",
    "stake_bonus",
    "unstake_clawback",
]
