"""Event handlers - turn normalized events into recorded ledger rows and queued jobs."""

import logging
from typing import Protocol

from ..db import Repository
from ..ingestion import SwapClassifier
from ..ingestion.sources import DEFAULT_DECIMALS
from ..models import (
    BUY,
    SELL,
    SOURCE_LEDGER,
    STAKE,
    UNSTAKE,
    AllocationJob,
    NormalizedEvent,
    RaffleContext,
)
from ..tickets import calculate_ticket_count, calculate_ticket_removal, requested_adjustment

logger = logging.getLogger(__name__)

ALLOCATE_TICKETS = "allocate-tickets"
REMOVE_TICKETS = "remove-tickets"
ADJUST_STAKE = "adjust-stake"


class EventHandler(Protocol):
    """Protocol for per-kind event handlers."""

    KIND: str

    async def handle(self, event: NormalizedEvent, context: RaffleContext) -> AllocationJob | None:
        """Record the event and return the job it produced, if any."""
        ...


def _short(wallet: str | None) -> str:
    return f"{wallet[:10]}..." if wallet else "<unknown>"


class BuyHandler:
    """
    Credits purchases.

    Ledger transfers are only counted when the transaction was an exchange
    swap; indexer trades are swaps by construction. Purchases below the
    raffle minimum are recorded as processed without a job.
    """

    KIND = BUY

    def __init__(self, repository: Repository, classifier: SwapClassifier | None = None):
        self.repository = repository
        self.classifier = classifier

    async def handle(self, event: NormalizedEvent, context: RaffleContext) -> AllocationJob | None:
        if event.is_malformed:
            logger.warning(f"Skipping malformed buy event {event.event_key}")
            return None

        if event.source == SOURCE_LEDGER and self.classifier is not None:
            if not await self.classifier.is_swap(event.tx_ref):
                logger.debug(f"Transfer {event.tx_ref} is not a swap, ignoring")
                return None

        tickets = calculate_ticket_count(event, context)

        async with self.repository.transaction():
            event_id = await self.repository.record_buy_event(
                context.raffle_id, event, tickets, processed=tickets == 0
            )
            if event_id is None:
                logger.debug(f"Buy {event.tx_ref} already recorded for raffle {context.raffle_id}")
                return None
            if tickets == 0:
                return None

            job = AllocationJob(
                raffle_id=context.raffle_id,
                wallet=event.wallet.lower(),
                ticket_delta=tickets,
                tx_ref=event.tx_ref,
                event_id=event_id,
            )
            await self.repository.enqueue_job(ALLOCATE_TICKETS, job.to_payload())

        logger.info(
            f"Buy detected: {_short(event.wallet)} bought {event.amount_text or event.raw_amount} "
            f"via {event.source}, {tickets} tickets queued"
        )
        return job


class SellHandler:
    """Forfeits tickets for sales; no minimum applies."""

    KIND = SELL

    def __init__(self, repository: Repository):
        self.repository = repository

    async def handle(self, event: NormalizedEvent, context: RaffleContext) -> AllocationJob | None:
        if event.is_malformed:
            logger.warning(f"Skipping malformed sell event {event.event_key}")
            return None

        tickets = calculate_ticket_removal(event, context)

        async with self.repository.transaction():
            event_id = await self.repository.record_sell_event(
                context.raffle_id, event, tickets, processed=tickets == 0
            )
            if event_id is None or tickets == 0:
                return None

            job = AllocationJob(
                raffle_id=context.raffle_id,
                wallet=event.wallet.lower(),
                ticket_delta=-tickets,
                tx_ref=event.tx_ref,
                event_id=event_id,
            )
            await self.repository.enqueue_job(REMOVE_TICKETS, job.to_payload())

        logger.info(f"Sell detected: {_short(event.wallet)}, up to {tickets} tickets to remove")
        return job


class StakeHandler:
    """Appends stake and unstake events to the stake ledger for the worker to settle."""

    def __init__(self, repository: Repository, direction: str = STAKE):
        self.repository = repository
        self.KIND = direction

    async def handle(self, event: NormalizedEvent, context: RaffleContext) -> AllocationJob | None:
        if event.is_malformed or event.raw_amount is None:
            logger.warning(f"Skipping malformed {self.KIND} event {event.event_key}")
            return None

        decimals = event.decimals if event.decimals is not None else DEFAULT_DECIMALS
        requested = requested_adjustment(event.raw_amount, decimals, context)

        async with self.repository.transaction():
            event_id = await self.repository.record_stake_event(
                context.raffle_id, event, self.KIND, requested
            )
            if event_id is None:
                return None

            job = AllocationJob(
                raffle_id=context.raffle_id,
                wallet=event.wallet.lower(),
                ticket_delta=requested if self.KIND == STAKE else -requested,
                tx_ref=event.tx_ref,
                event_id=event_id,
            )
            await self.repository.enqueue_job(ADJUST_STAKE, job.to_payload())

        logger.info(f"{self.KIND.capitalize()} detected: {_short(event.wallet)} {event.amount_text or event.raw_amount}")
        return job


def build_handler(kind: str, repository: Repository, classifier: SwapClassifier | None = None) -> EventHandler:
    """Return the handler for an event kind."""
    if kind == BUY:
        return BuyHandler(repository, classifier)
    if kind == SELL:
        return SellHandler(repository)
    if kind in (STAKE, UNSTAKE):
        return StakeHandler(repository, direction=kind)
    raise ValueError(f"Unknown event kind: {kind}")
