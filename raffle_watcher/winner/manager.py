"""Raffle manager - ends raffles past their end time and triggers winner selection."""

import asyncio
import logging
from datetime import datetime

from ..db import Repository
from ..models import RaffleStatus
from .selector import WinnerSelector

logger = logging.getLogger(__name__)


class RaffleManager:
    """Periodically moves expired raffles to ended and concludes them."""

    def __init__(self, repository: Repository, selector: WinnerSelector, check_interval_s: float = 60.0):
        self.repository = repository
        self.selector = selector
        self.check_interval_s = check_interval_s
        self._task: asyncio.Task | None = None

    async def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="raffle-manager")
            logger.info(f"Raffle manager started (every {self.check_interval_s:.0f}s)")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        while True:
            try:
                await self.check_once()
            except Exception as e:
                logger.error(f"Error checking raffles: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval_s)

    async def check_once(self, now: datetime | None = None) -> list[str]:
        """
        End expired raffles and select winners for every ended raffle.

        Raffles left in ended by an earlier failed selection are retried here.

        Returns:
            IDs of raffles concluded during this check
        """
        for raffle in await self.repository.get_raffles_past_end(now):
            async with self.repository.transaction():
                await self.repository.set_raffle_status(raffle.id, RaffleStatus.ENDED)
            logger.info(f"Raffle {raffle.id} ended at {raffle.end_time.isoformat()}")

        concluded = []
        for raffle in await self.repository.get_raffles_by_status(RaffleStatus.ENDED):
            try:
                await self.selector.select(raffle.id)
            except Exception as e:
                logger.error(f"Winner selection failed for raffle {raffle.id}, will retry: {e}", exc_info=True)
                continue
            concluded.append(raffle.id)

        return concluded
