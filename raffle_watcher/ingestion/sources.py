"""Event sources - ledger queries and the indexing API behind one poll interface."""

import dataclasses
import logging
import random
from typing import Callable, Protocol

from ..api import BlockberryClient, SuiRpcClient
from ..models import BUY, SELL, NormalizedEvent
from .fields import parse_timestamp, pick_string
from .normalize import (
    TIMESTAMP_PATHS,
    normalize_indexer_buys,
    normalize_indexer_sells,
    normalize_stake_event,
    normalize_transfer_event,
)
from .watermark import Watermark

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 9


class EventSource(Protocol):
    """Anything that can be polled for new normalized events."""

    name: str

    async def poll(self, watermark: Watermark) -> list[NormalizedEvent]:
        """Return events newer than the watermark, oldest first."""
        ...


class TokenDecimals:
    """Caches coin decimals looked up from ledger metadata."""

    def __init__(self, rpc: SuiRpcClient, default: int = DEFAULT_DECIMALS):
        self.rpc = rpc
        self.default = default
        self._cache: dict[str, int] = {}

    async def get(self, coin_type: str) -> int:
        if coin_type in self._cache:
            return self._cache[coin_type]

        try:
            metadata = await self.rpc.get_token_metadata(coin_type)
            decimals = int((metadata or {}).get("decimals", self.default))
        except Exception as e:
            logger.warning(
                f"Failed to fetch metadata for {coin_type}, defaulting decimals to {self.default}: {e}"
            )
            decimals = self.default

        self._cache[coin_type] = decimals
        return decimals

    def clear(self):
        self._cache.clear()


class LedgerSource:
    """Shared page walk over suix_queryEvents, newest first."""

    name = "ledger"

    def __init__(
        self,
        rpc: SuiRpcClient,
        decimals: TokenDecimals,
        token: str,
        event_type: str,
        page_limit: int = 50,
        max_pages: int = 1,
    ):
        self.rpc = rpc
        self.decimals = decimals
        self.token = token
        self.event_type = event_type
        self.page_limit = page_limit
        self.max_pages = max_pages

    async def _fetch_raw(self, watermark: Watermark) -> list[dict]:
        """Fetch raw events newest first, paging back while still ahead of the watermark."""
        collected: list[dict] = []
        cursor = None

        for _ in range(self.max_pages):
            page = await self.rpc.query_events(
                self.event_type,
                limit=self.page_limit,
                descending=True,
                cursor=cursor,
            )
            collected.extend(page.data)

            if not page.data or not page.has_next_page or not page.next_cursor:
                break
            if not watermark.initialized:
                break
            oldest = parse_timestamp(page.data[-1].get("timestampMs"), 0)
            if oldest <= watermark.last_processed_ms:
                break
            cursor = page.next_cursor

        # Delivered newest first; processing needs ascending order
        collected.reverse()
        return collected


class LedgerTransferSource(LedgerSource):
    """Coin transfer events for the raffle token, read as buys or sells."""

    def __init__(self, *args, kind: str = BUY, **kwargs):
        super().__init__(*args, **kwargs)
        self.kind = kind

    async def poll(self, watermark: Watermark) -> list[NormalizedEvent]:
        raw_events = await self._fetch_raw(watermark)
        decimals = await self.decimals.get(self.token) if raw_events else None
        events: list[NormalizedEvent] = []

        for raw in raw_events:
            event = normalize_transfer_event(raw, self.token, decimals)
            if event is None:
                continue

            if self.kind == SELL:
                event = await self._as_sell(event, watermark)
                if event is None:
                    continue

            events.append(event)

        return events

    async def _as_sell(self, event: NormalizedEvent, watermark: Watermark) -> NormalizedEvent | None:
        """
        Re-attribute a transfer to its sender; drop self-transfers.

        A sale can emit several transfers (pool, fee recipient), so each one is
        settled under its own txDigest:eventSeq reference.
        """
        digest = event.tx_ref
        event = dataclasses.replace(event, tx_ref=event.event_key)

        # The seed poll only needs keys and timestamps
        if not watermark.initialized or watermark.should_skip(event):
            return event

        sender = await self.rpc.get_transaction_sender(digest)
        recipient = event.extra.get("recipient")
        if sender and recipient and sender == recipient:
            logger.debug(f"Ignoring self-transfer {event.event_key}")
            return None
        return dataclasses.replace(event, wallet=sender)


class LedgerStakeSource(LedgerSource):
    """Stake or unstake events of the staking pool, filtered to the raffle token."""

    def __init__(self, *args, direction: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.direction = direction

    async def poll(self, watermark: Watermark) -> list[NormalizedEvent]:
        raw_events = await self._fetch_raw(watermark)
        decimals = await self.decimals.get(self.token) if raw_events else None
        events = []
        for raw in raw_events:
            event = normalize_stake_event(raw, self.token, self.direction, decimals)
            if event is not None:
                events.append(event)
        return events


class IndexerTradeSource:
    """Trade rows from the indexing API, read as buys or sells."""

    name = "indexer"

    def __init__(
        self,
        client: BlockberryClient,
        decimals: TokenDecimals,
        token: str,
        kind: str = BUY,
        page_limit: int = 100,
        max_pages: int = 3,
    ):
        self.client = client
        self.decimals = decimals
        self.token = token
        self.kind = kind
        self.page_limit = page_limit
        self.max_pages = max_pages

    async def poll(self, watermark: Watermark) -> list[NormalizedEvent]:
        normalize = normalize_indexer_sells if self.kind == SELL else normalize_indexer_buys
        events: list[NormalizedEvent] = []
        cursor = None

        for _ in range(self.max_pages):
            page = await self.client.fetch_trades(
                self.token,
                limit=self.page_limit,
                cursor=cursor,
                order="desc",
            )
            events.extend(normalize(page.trades, self.token))

            if not page.trades or not page.next_cursor or not watermark.initialized:
                break
            timestamps = [parse_timestamp(pick_string(t, TIMESTAMP_PATHS), 0) for t in page.trades]
            if min(timestamps) <= watermark.last_processed_ms:
                break
            cursor = page.next_cursor

        events.sort(key=lambda e: e.timestamp_ms)

        if not watermark.initialized:
            return events

        resolved = []
        for event in events:
            if event.decimals is None and not watermark.should_skip(event):
                event = dataclasses.replace(event, decimals=await self.decimals.get(event.coin_type))
            resolved.append(event)
        return resolved


SourceTransition = Callable[[str, str, str], None]


class FallbackSource:
    """
    Preferred source with automatic fallback to an alternative.

    After ``failure_threshold`` consecutive preferred failures, polls go to the
    alternative. While degraded, each poll probes the preferred source with
    probability ``probe_probability``; a successful probe switches back.
    """

    def __init__(
        self,
        preferred: EventSource,
        alternative: EventSource | None = None,
        failure_threshold: int = 3,
        probe_probability: float = 0.1,
        rng: Callable[[], float] = random.random,
        on_transition: SourceTransition | None = None,
        label: str = "",
    ):
        self.preferred = preferred
        self.alternative = alternative
        self.failure_threshold = failure_threshold
        self.probe_probability = probe_probability
        self.rng = rng
        self.on_transition = on_transition
        self.label = label
        self.failure_count = 0
        self.degraded = False

    @property
    def active(self) -> EventSource:
        if self.degraded and self.alternative is not None:
            return self.alternative
        return self.preferred

    @property
    def name(self) -> str:
        return self.active.name

    def reset(self):
        self.failure_count = 0
        self.degraded = False

    async def poll(self, watermark: Watermark) -> list[NormalizedEvent]:
        if self.alternative is None:
            return await self.preferred.poll(watermark)

        if not self.degraded:
            try:
                events = await self.preferred.poll(watermark)
            except Exception as e:
                self.failure_count += 1
                logger.error(
                    f"{self.label} {self.preferred.name} poll attempt "
                    f"{self.failure_count}/{self.failure_threshold} failed: {e}"
                )
                if self.failure_count < self.failure_threshold:
                    raise
                self.degraded = True
                logger.warning(
                    f"{self.label} {self.preferred.name} failed {self.failure_count} times, "
                    f"falling back to {self.alternative.name}"
                )
                self._notify("degraded")
            else:
                self.failure_count = 0
                return events

        elif self.rng() < self.probe_probability:
            try:
                await self.preferred.poll(Watermark())
            except Exception as e:
                logger.debug(f"{self.label} {self.preferred.name} still unavailable: {e}")
            else:
                self.reset()
                logger.info(
                    f"{self.label} {self.preferred.name} recovered, switching back from "
                    f"{self.alternative.name}"
                )
                self._notify("recovered")
                return []

        return await self.alternative.poll(watermark)

    def _notify(self, state: str):
        if self.on_transition:
            self.on_transition(self.label, self.preferred.name, state)
