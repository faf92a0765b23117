"""Domain types shared by the watchers, calculators, and workers."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

# Event kinds, one watcher per kind per raffle
BUY = "buy"
SELL = "sell"
STAKE = "stake"
UNSTAKE = "unstake"
EVENT_KINDS = (BUY, SELL, STAKE, UNSTAKE)

# Where a normalized event came from
SOURCE_LEDGER = "ledger"
SOURCE_INDEXER = "indexer"

DEFAULT_TICKETS_PER_TOKEN = Decimal("100")
DEFAULT_STAKING_BONUS_PERCENT = 25


class RaffleStatus:
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"
    WINNER_SELECTED = "winner_selected"

    # Ticket mutations are refused once a raffle reaches one of these
    CLOSED = (CANCELLED, WINNER_SELECTED)


@dataclass(frozen=True)
class RaffleContext:
    """Immutable snapshot of the raffle a watcher operates against."""

    raffle_id: str
    token: str  # monitored coin type
    tickets_per_token: Decimal = DEFAULT_TICKETS_PER_TOKEN
    minimum_purchase: Decimal | None = None
    staking_bonus_percent: int | None = None

    @property
    def bonus_percent(self) -> int:
        if self.staking_bonus_percent is None:
            return DEFAULT_STAKING_BONUS_PERCENT
        return self.staking_bonus_percent

    def same_identity(self, other: "RaffleContext | None") -> bool:
        """True when both snapshots describe the same raffle and token."""
        if other is None:
            return False
        return self.raffle_id == other.raffle_id and self.token == other.token


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical shape of a ledger event or indexer trade row."""

    event_key: str  # txRef:subIndex, unique within its source
    tx_ref: str  # idempotency key for the downstream worker
    wallet: str | None
    raw_amount: int | None
    coin_type: str
    timestamp_ms: int
    decimals: int | None = None
    amount_text: str | None = None  # pre-formatted amount, legacy path only
    source: str = SOURCE_LEDGER
    extra: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def is_malformed(self) -> bool:
        """Missing the wallet or any usable amount."""
        if not self.wallet:
            return True
        return self.raw_amount is None and not self.amount_text


@dataclass(frozen=True)
class AllocationJob:
    """A ticket mutation handed to the durable queue."""

    raffle_id: str
    wallet: str
    ticket_delta: int  # signed; stake jobs carry the detection-time estimate
    tx_ref: str
    event_id: int

    def to_payload(self) -> dict:
        return {
            "raffle_id": self.raffle_id,
            "wallet": self.wallet,
            "ticket_delta": self.ticket_delta,
            "tx_ref": self.tx_ref,
            "event_id": self.event_id,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "AllocationJob":
        return cls(
            raffle_id=payload["raffle_id"],
            wallet=payload["wallet"],
            ticket_delta=int(payload["ticket_delta"]),
            tx_ref=payload["tx_ref"],
            event_id=int(payload["event_id"]),
        )


@dataclass(frozen=True)
class StakeLedgerEntry:
    """One processed stake or unstake, as recorded for a wallet."""

    wallet: str
    raffle_id: str
    direction: str  # stake or unstake
    raw_amount: int
    bonus_granted: int  # always 0 for unstake entries
    timestamp: datetime


@dataclass
class WinnerRecord:
    """The single winner of a concluded raffle."""

    raffle_id: str
    wallet: str
    ticket_count: int
    winning_ticket_number: int
    selection_method: str  # on-chain or client-side
    total_tickets: int
    total_participants: int
    randomness_proof: dict | None = None
    selected_at: datetime | None = None
    id: int | None = None
