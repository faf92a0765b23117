"""Shared fixtures and fakes for the raffle watcher tests."""

from datetime import timedelta
from decimal import Decimal

import pytest

from raffle_watcher.api import EventPage, TradePage
from raffle_watcher.db import Repository
from raffle_watcher.db.repository import utcnow
from raffle_watcher.models import SOURCE_INDEXER, NormalizedEvent, RaffleContext

TOKEN = "0xabc123::moon::MOON"
ONE_TOKEN = 10**9


class FakeSource:
    """Event source returning queued results; exceptions in the queue are raised."""

    def __init__(self, name: str = "fake", results=None):
        self.name = name
        self.results = list(results or [])
        self.default: list = []
        self.calls = 0

    async def poll(self, watermark):
        self.calls += 1
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, Exception):
            raise result
        return list(result)


class FakeRpc:
    """Stands in for SuiRpcClient; event pages are served in order."""

    def __init__(self, transactions=None, epoch: str = "42", decimals: int = 9, pages=None, senders=None):
        self.transactions = transactions or {}
        self.epoch = epoch
        self.decimals = decimals
        self.pages = list(pages or [])
        self.senders = senders or {}
        self.requested: list[str] = []
        self.event_types: list[str] = []
        self.cursors: list = []
        self.sender_lookups: list[str] = []
        self.metadata_calls = 0

    async def get_transaction(self, digest):
        self.requested.append(digest)
        result = self.transactions[digest]
        if isinstance(result, Exception):
            raise result
        return result

    async def get_transaction_sender(self, digest):
        self.sender_lookups.append(digest)
        return self.senders.get(digest)

    async def query_events(self, event_type, limit=50, descending=True, cursor=None):
        self.event_types.append(event_type)
        self.cursors.append(cursor)
        if self.pages:
            return self.pages.pop(0)
        return EventPage(data=[], next_cursor=None, has_next_page=False)

    async def get_token_metadata(self, coin_type):
        self.metadata_calls += 1
        return {"decimals": self.decimals}

    async def get_latest_epoch(self):
        if isinstance(self.epoch, Exception):
            raise self.epoch
        return self.epoch


class FakeIndexer:
    """Stands in for BlockberryClient; trade pages are served in order."""

    def __init__(self, pages=None):
        self.pages = list(pages or [])
        self.cursors: list = []

    def is_configured(self) -> bool:
        return True

    async def fetch_trades(self, token, limit=100, cursor=None, order="desc"):
        self.cursors.append(cursor)
        if self.pages:
            return self.pages.pop(0)
        return TradePage(trades=[], next_cursor=None)


class FakeClassifier:
    def __init__(self, swaps=()):
        self.swaps = set(swaps)

    async def is_swap(self, tx_ref):
        return tx_ref in self.swaps


@pytest.fixture
def context() -> RaffleContext:
    return RaffleContext(raffle_id="r1", token=TOKEN, tickets_per_token=Decimal("100"))


@pytest.fixture
def make_event():
    def _make(
        key: str = "tx1:0",
        tx_ref: str | None = None,
        wallet: str | None = "0xBuyer",
        raw_amount: int | None = ONE_TOKEN,
        decimals: int | None = 9,
        timestamp_ms: int = 1_700_000_000_000,
        source: str = SOURCE_INDEXER,
        amount_text: str | None = None,
    ) -> NormalizedEvent:
        return NormalizedEvent(
            event_key=key,
            tx_ref=tx_ref or key.split(":")[0],
            wallet=wallet,
            raw_amount=raw_amount,
            coin_type=TOKEN,
            timestamp_ms=timestamp_ms,
            decimals=decimals,
            amount_text=amount_text,
            source=source,
        )

    return _make


@pytest.fixture
def open_repository(tmp_path):
    """Async factory: an initialized repository, optionally with raffle r1 created."""

    async def _open(with_raffle: bool = True, **raffle_kwargs) -> Repository:
        repository = Repository(tmp_path / "raffle.db")
        await repository.initialize()
        if with_raffle:
            raffle_kwargs.setdefault("end_time", utcnow() + timedelta(days=1))
            await repository.create_raffle("r1", TOKEN, **raffle_kwargs)
        return repository

    return _open


def ledger_event(digest: str, seq: int, timestamp_ms: int, **parsed) -> dict:
    """A raw suix_queryEvents row."""
    return {
        "id": {"txDigest": digest, "eventSeq": str(seq)},
        "timestampMs": str(timestamp_ms),
        "parsedJson": parsed,
    }
