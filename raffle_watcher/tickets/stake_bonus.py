"""Stake bonus accounting.

Staking grants a bonus proportional to the tickets a wallet already holds.
Unstaking claws the bonus back in proportion to how much of the currently
staked balance is withdrawn, reconstructed from the wallet's stake ledger.
"""

from dataclasses import dataclass
from typing import Iterable

from ..models import STAKE, UNSTAKE, RaffleContext, StakeLedgerEntry
from .allocation import RATIO_PRECISION, clamp_tickets, scale_ratio

BASIS_POINTS = 10_000


@dataclass(frozen=True)
class StakeSummary:
    total_staked: int
    total_unstaked: int
    total_bonus_awarded: int

    @property
    def current_staked(self) -> int:
        return self.total_staked - self.total_unstaked


def stake_bonus(current_tickets: int, bonus_percent: int) -> int:
    """Bonus for staking: floor(current tickets * percent / 100)."""
    if current_tickets <= 0 or bonus_percent <= 0:
        return 0
    return clamp_tickets((current_tickets * bonus_percent) // 100)


def requested_adjustment(raw_amount: int, decimals: int, context: RaffleContext) -> int:
    """
    Detection-time bonus estimate from the staked amount itself.

    Stored with each stake ledger entry; an unstake with no staked balance
    behind it removes this amount.
    """
    if raw_amount <= 0:
        return 0
    bonus_ratio = (scale_ratio(context.tickets_per_token) * context.bonus_percent) // 100
    tickets = (raw_amount * bonus_ratio) // (10**decimals * RATIO_PRECISION)
    return clamp_tickets(tickets)


def summarize(entries: Iterable[StakeLedgerEntry]) -> StakeSummary:
    staked = unstaked = bonus = 0
    for entry in entries:
        if entry.direction == STAKE:
            staked += entry.raw_amount
            bonus += entry.bonus_granted
        elif entry.direction == UNSTAKE:
            unstaked += entry.raw_amount
    return StakeSummary(total_staked=staked, total_unstaked=unstaked, total_bonus_awarded=bonus)


def unstake_clawback(
    entries: Iterable[StakeLedgerEntry],
    unstake_amount: int,
    requested: int,
) -> int:
    """
    Tickets to remove for an unstake.

    Args:
        entries: Prior processed stake ledger entries of the wallet in this raffle
        unstake_amount: Raw amount being unstaked
        requested: Detection-time adjustment recorded for this unstake

    Returns:
        Non-negative number of tickets to remove
    """
    summary = summarize(entries)
    if summary.current_staked <= 0:
        return max(requested, 0)

    proportion = (max(unstake_amount, 0) * BASIS_POINTS) // summary.current_staked
    proportion = min(proportion, BASIS_POINTS)
    return max((summary.total_bonus_awarded * proportion) // BASIS_POINTS, 0)
