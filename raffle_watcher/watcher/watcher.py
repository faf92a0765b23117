"""Event watcher - polls one source for one raffle and event kind."""

import asyncio
import logging

from ..ingestion import EventSource, Watermark
from ..models import RaffleContext
from .handlers import EventHandler

logger = logging.getLogger(__name__)


class WatcherState:
    IDLE = "idle"
    INITIALIZING = "initializing"
    POLLING = "polling"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class EventWatcher:
    """
    Polls an event source on a fixed interval and hands new events to a handler.

    The first poll after ``start()`` only seeds the watermark: whatever is
    already on chain is considered seen. Afterwards each event is handed to
    the handler exactly once per watcher lifetime, in ascending time order.
    An event is recorded in the watermark only after its handler returns, so a
    handler failure leaves it (and the rest of the batch) for the next tick.
    """

    def __init__(
        self,
        kind: str,
        context: RaffleContext,
        source: EventSource,
        handler: EventHandler,
        poll_interval_s: float = 10.0,
        watermark: Watermark | None = None,
    ):
        self.kind = kind
        self.context = context
        self.source = source
        self.handler = handler
        self.poll_interval_s = poll_interval_s
        self.watermark = watermark or Watermark()
        self.state = WatcherState.IDLE
        self._task: asyncio.Task | None = None
        self._events_handled = 0

    @property
    def label(self) -> str:
        return f"[{self.context.raffle_id}/{self.kind}]"

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Seed the watermark from the current tip and start polling."""
        if self.is_running:
            logger.debug(f"{self.label} watcher already running")
            return

        self.state = WatcherState.INITIALIZING
        self.watermark.reset()

        try:
            tip = await self.source.poll(self.watermark)
            self.watermark.seed(tip)
            logger.info(
                f"{self.label} watcher initialized with {len(self.watermark)} existing events "
                f"via {self.source.name}"
            )
        except Exception as e:
            # Start from "now"; events before startup are not replayed
            logger.warning(f"{self.label} initial poll failed, starting from current time: {e}")
            self.watermark.seed([])

        self.state = WatcherState.POLLING
        self._task = asyncio.create_task(self._run(), name=f"watcher-{self.context.raffle_id}-{self.kind}")

    async def stop(self):
        """Cancel polling and forget the watermark."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.watermark.reset()
        self.state = WatcherState.STOPPED
        logger.info(f"{self.label} watcher stopped after {self._events_handled} events")

    def update_context(self, context: RaffleContext):
        """
        Swap in new raffle settings without losing progress.

        Raises:
            ValueError: If the new context describes a different raffle or token
        """
        if not context.same_identity(self.context):
            raise ValueError(
                f"{self.label} cannot update context to raffle {context.raffle_id} "
                f"token {context.token}; restart the watcher instead"
            )
        self.context = context

    async def _run(self):
        while True:
            await asyncio.sleep(self.poll_interval_s)
            await self.poll_once()

    async def poll_once(self) -> int:
        """
        Run one poll cycle.

        Returns:
            Number of events handed to the handler
        """
        try:
            events = await self.source.poll(self.watermark)
        except Exception as e:
            logger.error(f"{self.label} poll via {self.source.name} failed: {e}")
            return 0

        self._update_state()
        handled = 0

        for event in events:
            if event.event_key in self.watermark:
                continue
            if self.watermark.is_behind(event):
                self.watermark.mark_seen(event.event_key)
                continue

            try:
                await self.handler.handle(event, self.context)
            except Exception as e:
                logger.error(
                    f"{self.label} handler failed on {event.event_key}, retrying next poll: {e}",
                    exc_info=True,
                )
                break

            self.watermark.record(event)
            handled += 1

        self.watermark.compact()
        self._events_handled += handled
        return handled

    def _update_state(self):
        degraded = getattr(self.source, "degraded", False)
        self.state = WatcherState.DEGRADED if degraded else WatcherState.POLLING
