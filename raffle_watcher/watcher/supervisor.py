"""Watcher supervisor - keeps one watcher per active raffle and event kind."""

import asyncio
import logging

from ..api import BlockberryClient, SuiRpcClient
from ..config import Config
from ..db import Raffle, Repository
from ..ingestion import (
    EventSource,
    FallbackSource,
    IndexerTradeSource,
    LedgerStakeSource,
    LedgerTransferSource,
    SwapClassifier,
    TokenDecimals,
    Watermark,
)
from ..ingestion.sources import SourceTransition
from ..models import BUY, SELL, STAKE, UNSTAKE, RaffleContext
from .handlers import build_handler
from .watcher import EventWatcher

logger = logging.getLogger(__name__)


class WatcherSupervisor:
    """
    Reconciles running watchers against the active raffles in the database.

    The periodic refresh is the only place that decides which raffles are
    watched. A raffle whose token changed gets fresh watchers; one whose
    settings changed keeps its watchers and their progress.
    """

    def __init__(
        self,
        config: Config,
        repository: Repository,
        rpc: SuiRpcClient,
        indexer: BlockberryClient | None = None,
        classifier: SwapClassifier | None = None,
        on_transition: SourceTransition | None = None,
    ):
        self.config = config
        self.repository = repository
        self.rpc = rpc
        self.indexer = indexer
        self.classifier = classifier
        self.on_transition = on_transition
        self.decimals = TokenDecimals(rpc, default=config.tickets.default_decimals)
        self.watchers: dict[tuple[str, str], EventWatcher] = {}
        self._task: asyncio.Task | None = None

    @property
    def kinds(self) -> tuple[str, ...]:
        if self.config.staking.enabled:
            return (BUY, SELL, STAKE, UNSTAKE)
        return (BUY, SELL)

    @property
    def indexer_enabled(self) -> bool:
        return self.indexer is not None and self.indexer.is_configured()

    async def start(self):
        """Run an immediate refresh, then refresh on the configured interval."""
        if self.indexer_enabled:
            logger.info("Indexing API configured, buys and sells prefer it over the ledger")
        else:
            logger.info("No indexing API key, buys and sells are read from the ledger only")

        await self.refresh()
        self._task = asyncio.create_task(self._run(), name="watcher-supervisor")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

        for watcher in self.watchers.values():
            await watcher.stop()
        self.watchers.clear()

    async def _run(self):
        while True:
            await asyncio.sleep(self.config.watcher.refresh_interval_s)
            await self.refresh()

    async def refresh(self):
        """Start, update, or stop watchers to match the active raffles."""
        try:
            raffles = await self.repository.get_active_raffles()
        except Exception as e:
            logger.error(f"Error loading active raffles: {e}", exc_info=True)
            return

        active_ids = {raffle.id for raffle in raffles}

        for key in [key for key in self.watchers if key[0] not in active_ids]:
            watcher = self.watchers.pop(key)
            logger.info(f"Raffle {key[0]} is no longer active, stopping its {key[1]} watcher")
            await watcher.stop()

        for raffle in raffles:
            await self._reconcile(raffle)

    async def _reconcile(self, raffle: Raffle):
        context = raffle.context()

        for kind in self.kinds:
            key = (raffle.id, kind)
            existing = self.watchers.get(key)

            if existing is not None:
                if existing.context.same_identity(context):
                    existing.update_context(context)
                    continue
                logger.info(f"Raffle {raffle.id} token changed, restarting its {kind} watcher")
                await existing.stop()

            watcher = self.build_watcher(kind, context)
            self.watchers[key] = watcher
            await watcher.start()

    def build_watcher(self, kind: str, context: RaffleContext) -> EventWatcher:
        return EventWatcher(
            kind=kind,
            context=context,
            source=self.build_source(kind, context),
            handler=build_handler(kind, self.repository, self.classifier),
            poll_interval_s=self.config.watcher.poll_interval_s,
            watermark=Watermark(
                max_keys=self.config.watcher.max_seen_keys,
                keep_keys=self.config.watcher.keep_seen_keys,
            ),
        )

    def build_source(self, kind: str, context: RaffleContext) -> EventSource:
        """Ledger source for the kind, behind the indexer when one is configured."""
        ledger_config = self.config.ledger

        if kind in (STAKE, UNSTAKE):
            event_type = (
                self.config.staking.stake_event_type
                if kind == STAKE
                else self.config.staking.unstake_event_type
            )
            return LedgerStakeSource(
                self.rpc,
                self.decimals,
                context.token,
                event_type,
                page_limit=ledger_config.page_limit,
                max_pages=ledger_config.max_pages,
                direction=kind,
            )

        ledger = LedgerTransferSource(
            self.rpc,
            self.decimals,
            context.token,
            ledger_config.transfer_event_template.format(coin_type=context.token),
            page_limit=ledger_config.page_limit,
            max_pages=ledger_config.max_pages,
            kind=kind,
        )
        if not self.indexer_enabled:
            return ledger

        indexer = IndexerTradeSource(
            self.indexer,
            self.decimals,
            context.token,
            kind=kind,
            page_limit=self.config.indexer.page_limit,
            max_pages=self.config.indexer.max_pages,
        )
        return FallbackSource(
            preferred=indexer,
            alternative=ledger,
            failure_threshold=self.config.watcher.failure_threshold,
            probe_probability=self.config.watcher.probe_probability,
            on_transition=self.on_transition,
            label=f"[{context.raffle_id}/{kind}]",
        )
