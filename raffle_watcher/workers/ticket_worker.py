"""Ticket worker - applies queued ticket mutations to the ticket ledger."""

import asyncio
import logging

from ..db import EventRow, Job, Repository
from ..models import BUY, SELL, STAKE, UNSTAKE, AllocationJob, RaffleStatus
from ..tickets import stake_bonus, unstake_clawback
from ..watcher.handlers import ADJUST_STAKE, ALLOCATE_TICKETS, REMOVE_TICKETS

logger = logging.getLogger(__name__)

JOB_KINDS = {
    ALLOCATE_TICKETS: BUY,
    REMOVE_TICKETS: SELL,
    ADJUST_STAKE: STAKE,
}


class TicketWorker:
    """
    Drains the job queue, one job at a time.

    Each job is applied inside a single repository transaction together with
    marking its event processed and the job done, so a crash mid-job leaves
    nothing half applied. Delivery is at-least-once; an event already marked
    processed is acknowledged without touching tickets again.
    """

    def __init__(self, repository: Repository, poll_interval_s: float = 1.0, max_attempts: int = 5):
        self.repository = repository
        self.poll_interval_s = poll_interval_s
        self.max_attempts = max_attempts
        self._task: asyncio.Task | None = None
        self._processed = 0
        self._failed = 0

    async def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="ticket-worker")
            logger.info("Ticket worker started")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info(f"Ticket worker stopped ({self._processed} jobs done, {self._failed} failed attempts)")

    async def _run(self):
        while True:
            try:
                worked = await self.run_once()
            except Exception as e:
                logger.error(f"Ticket worker loop error: {e}", exc_info=True)
                worked = False
            if not worked:
                await asyncio.sleep(self.poll_interval_s)

    async def run_once(self) -> bool:
        """Process the oldest pending job, if any. Returns True when a job was claimed."""
        job = await self.repository.claim_job()
        if job is None:
            return False
        await self.process(job)
        return True

    async def drain(self) -> int:
        """Process jobs until the queue is empty."""
        count = 0
        while await self.run_once():
            count += 1
        return count

    async def process(self, job: Job) -> int | None:
        """
        Apply a job, recording a failed attempt if it raises.

        Returns:
            Signed ticket change applied, or None if the attempt failed
        """
        try:
            delta = await self.apply(job)
        except Exception as e:
            self._failed += 1
            status = await self.repository.fail_job(job.id, str(e), self.max_attempts)
            logger.error(f"Job {job.id} ({job.name}) failed, now {status}: {e}", exc_info=True)
            return None

        self._processed += 1
        return delta

    async def apply(self, job: Job) -> int:
        if job.name not in JOB_KINDS:
            raise ValueError(f"Unknown job type: {job.name}")

        allocation = AllocationJob.from_payload(job.payload)

        async with self.repository.transaction():
            event = await self.repository.get_event(JOB_KINDS[job.name], allocation.event_id)
            if event is None:
                logger.warning(f"Job {job.id}: event {allocation.event_id} not found, dropping")
                await self.repository.complete_job(job.id)
                return 0

            if event.processed:
                logger.debug(f"Job {job.id}: {allocation.tx_ref} already processed")
                await self.repository.complete_job(job.id)
                return 0

            raffle = await self.repository.get_raffle(allocation.raffle_id)
            if raffle is None or raffle.status in RaffleStatus.CLOSED:
                reason = "not found" if raffle is None else raffle.status
                logger.info(f"Raffle {allocation.raffle_id} is {reason}, ignoring {event.kind} {allocation.tx_ref}")
                await self.repository.mark_event_processed(
                    event.kind, event.id, None if event.kind == BUY else 0
                )
                await self.repository.complete_job(job.id)
                return 0

            if event.kind == BUY:
                delta = await self._allocate(allocation, event)
            elif event.kind == SELL:
                delta = await self._remove(allocation, event)
            elif event.kind == STAKE:
                delta = await self._stake(allocation, event, raffle.context().bonus_percent)
            elif event.kind == UNSTAKE:
                delta = await self._unstake(allocation, event)
            else:
                raise ValueError(f"Unknown stake type: {event.kind}")

            await self.repository.complete_job(job.id)
            return delta

    async def _allocate(self, allocation: AllocationJob, event: EventRow) -> int:
        total = await self.repository.add_tickets(allocation.raffle_id, allocation.wallet, allocation.ticket_delta)
        await self.repository.mark_event_processed(BUY, event.id)
        logger.info(f"Allocated {allocation.ticket_delta} tickets to {allocation.wallet}, balance {total}")
        return allocation.ticket_delta

    async def _remove(self, allocation: AllocationJob, event: EventRow) -> int:
        current = await self.repository.get_ticket_count(allocation.raffle_id, allocation.wallet)
        if current is None:
            logger.info(f"No tickets found for {allocation.wallet} to remove")
            await self.repository.mark_event_processed(SELL, event.id, 0)
            return 0

        new_count = max(0, current - abs(allocation.ticket_delta))
        await self.repository.set_ticket_count(allocation.raffle_id, allocation.wallet, new_count)
        await self.repository.mark_event_processed(SELL, event.id, current - new_count)
        logger.info(
            f"Removed {current - new_count} tickets (requested {abs(allocation.ticket_delta)}) "
            f"from {allocation.wallet}, balance {new_count}"
        )
        return new_count - current

    async def _stake(self, allocation: AllocationJob, event: EventRow, bonus_percent: int) -> int:
        current = await self.repository.get_ticket_count(allocation.raffle_id, allocation.wallet)
        if current is None:
            logger.info(f"No tickets for {allocation.wallet} in raffle {allocation.raffle_id}, no stake bonus")
            await self.repository.mark_event_processed(STAKE, event.id, 0)
            return 0

        bonus = stake_bonus(current, bonus_percent)
        if bonus > 0:
            await self.repository.add_tickets(allocation.raffle_id, allocation.wallet, bonus)
        await self.repository.mark_event_processed(STAKE, event.id, bonus)
        logger.info(f"Stake bonus {bonus} ({bonus_percent}%) for {allocation.wallet}, balance {current + bonus}")
        return bonus

    async def _unstake(self, allocation: AllocationJob, event: EventRow) -> int:
        current = await self.repository.get_ticket_count(allocation.raffle_id, allocation.wallet)
        if current is None:
            logger.info(f"No tickets for {allocation.wallet} in raffle {allocation.raffle_id}, nothing to claw back")
            await self.repository.mark_event_processed(UNSTAKE, event.id, 0)
            return 0

        history = await self.repository.get_stake_history(
            allocation.raffle_id, allocation.wallet, exclude_event_id=event.id
        )
        clawback = unstake_clawback(history, event.raw_amount or 0, event.requested_adjustment)
        new_count = max(0, current - clawback)
        await self.repository.set_ticket_count(allocation.raffle_id, allocation.wallet, new_count)
        await self.repository.mark_event_processed(UNSTAKE, event.id, current - new_count)
        logger.info(f"Unstake removed {current - new_count} bonus tickets from {allocation.wallet}, balance {new_count}")
        return new_count - current
