"""Winner selection for ended raffles."""

import logging
import secrets
from typing import Callable

from ..alerting import NoticeLogger
from ..db import Repository
from ..models import RaffleStatus, WinnerRecord
from .randomness import SuiRandomnessOracle, draw_winner

logger = logging.getLogger(__name__)


class RaffleNotEndedError(RuntimeError):
    """Winner selection was requested for a raffle that has not ended."""


class WinnerSelector:
    """
    Picks one ticket-weighted winner per raffle.

    Selecting twice is a no-op that returns the existing record. A raffle
    with no ticket holders is closed without a winner.
    """

    def __init__(
        self,
        repository: Repository,
        oracle: SuiRandomnessOracle | None = None,
        notices: NoticeLogger | None = None,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ):
        self.repository = repository
        self.oracle = oracle
        self.notices = notices
        self.randbelow = randbelow

    async def select(self, raffle_id: str) -> WinnerRecord | None:
        """
        Select and persist the winner of an ended raffle.

        Args:
            raffle_id: Raffle to conclude

        Returns:
            The winner record, or None when nobody held tickets

        Raises:
            LookupError: If the raffle does not exist
            RaffleNotEndedError: If the raffle is still active or was cancelled
        """
        raffle = await self.repository.get_raffle(raffle_id)
        if raffle is None:
            raise LookupError(f"Raffle {raffle_id} not found")

        existing = await self.repository.get_winner(raffle_id)
        if existing is not None:
            logger.info(f"Raffle {raffle_id} already has a winner: {existing.wallet}")
            return existing

        if raffle.status == RaffleStatus.WINNER_SELECTED:
            return None
        if raffle.status != RaffleStatus.ENDED:
            raise RaffleNotEndedError(f"Raffle {raffle_id} is {raffle.status}, not ended")

        participants = await self.repository.get_ticket_weights(raffle_id)
        if not participants:
            logger.warning(f"No tickets found for raffle {raffle_id}, closing without a winner")
            async with self.repository.transaction():
                await self.repository.set_raffle_status(raffle_id, RaffleStatus.WINNER_SELECTED)
            if self.notices:
                self.notices.no_participants(raffle_id)
            return None

        weights = [count for _, count in participants]
        draw = await draw_winner(weights, raffle_id, self.oracle, self.randbelow)
        wallet, ticket_count = participants[draw.index]

        record = WinnerRecord(
            raffle_id=raffle_id,
            wallet=wallet,
            ticket_count=ticket_count,
            winning_ticket_number=draw.winning_ticket,
            selection_method=draw.method,
            total_tickets=sum(weights),
            total_participants=len(participants),
            randomness_proof=draw.proof,
        )

        async with self.repository.transaction():
            # A concurrent selection may have finished while drawing
            existing = await self.repository.get_winner(raffle_id)
            if existing is not None:
                return existing
            await self.repository.save_winner(record)
            await self.repository.set_raffle_status(raffle_id, RaffleStatus.WINNER_SELECTED)

        logger.info(
            f"Winner selected for raffle {raffle_id}: {wallet} with {ticket_count} of "
            f"{record.total_tickets} tickets (method: {draw.method})"
        )
        if self.notices:
            self.notices.winner_selected(record)
        return record
