"""Database repository for raffles, tickets, event ledgers, winners, and jobs."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import aiosqlite

from ..models import (
    BUY,
    DEFAULT_TICKETS_PER_TOKEN,
    SELL,
    STAKE,
    UNSTAKE,
    NormalizedEvent,
    RaffleContext,
    RaffleStatus,
    StakeLedgerEntry,
    WinnerRecord,
)
from .models import SCHEMA

logger = logging.getLogger(__name__)

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_FAILED = "failed"

# Event table and the column holding the ticket effect, per event kind
EVENT_TABLES = {
    BUY: ("buy_events", "ticket_count"),
    SELL: ("sell_events", "tickets_removed"),
    STAKE: ("stake_events", "tickets_adjusted"),
    UNSTAKE: ("stake_events", "tickets_adjusted"),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decimal(value: str | None) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(value)


@dataclass
class Raffle:
    """A raffle row."""

    id: str
    token: str
    start_time: datetime
    end_time: datetime
    status: str
    started: bool
    tickets_per_token: Decimal
    minimum_purchase: Decimal | None
    staking_bonus_percent: int | None
    prize_description: str | None = None

    def context(self) -> RaffleContext:
        return RaffleContext(
            raffle_id=self.id,
            token=self.token,
            tickets_per_token=self.tickets_per_token,
            minimum_purchase=self.minimum_purchase,
            staking_bonus_percent=self.staking_bonus_percent,
        )

    def is_watchable(self, now: datetime) -> bool:
        return self.status == RaffleStatus.ACTIVE and self.started and self.end_time > now


@dataclass
class Job:
    """A queued unit of work."""

    id: int
    name: str
    payload: dict
    status: str
    attempts: int
    last_error: str | None = None


@dataclass
class EventRow:
    """The columns of a recorded event the worker needs."""

    id: int
    kind: str
    raffle_id: str
    wallet_address: str
    raw_amount: int | None
    tickets: int
    processed: bool
    requested_adjustment: int = 0


class Repository:
    """
    Database repository for all persistence operations.

    Writes go through ``transaction()``, which serializes them behind one lock
    and commits or rolls back as a unit. Methods documented as "inside a
    transaction" must only be called from within it.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._in_transaction = False

    async def initialize(self):
        """Initialize the database and create tables."""
        # Ensure directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        # Create tables
        await self._connection.executescript(SCHEMA)

        # Jobs claimed by a previous process never finished; hand them out again
        await self._connection.execute(
            "UPDATE jobs SET status = ? WHERE status = ?", (JOB_PENDING, JOB_RUNNING)
        )
        await self._connection.commit()

        logger.info(f"Database initialized at {self.db_path}")

    async def close(self):
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if not self._connection:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._connection

    @asynccontextmanager
    async def transaction(self):
        """Hold the write lock and commit on exit, rolling back on error."""
        async with self._write_lock:
            self._in_transaction = True
            try:
                yield self
                await self.conn.commit()
            except BaseException:
                await self.conn.rollback()
                raise
            finally:
                self._in_transaction = False

    def _require_transaction(self):
        if not self._in_transaction:
            raise RuntimeError("Write attempted outside Repository.transaction()")

    # Raffle Operations

    async def create_raffle(
        self,
        raffle_id: str,
        token: str,
        end_time: datetime,
        start_time: datetime | None = None,
        tickets_per_token: Decimal | str | None = None,
        minimum_purchase: Decimal | str | None = None,
        staking_bonus_percent: int | None = None,
        started: bool = True,
        status: str = RaffleStatus.ACTIVE,
        prize_description: str | None = None,
    ):
        """Create a raffle in its own transaction."""
        async with self.transaction():
            await self.conn.execute(
                """
                INSERT INTO raffles (
                    id, token, start_time, end_time, prize_description, minimum_purchase,
                    tickets_per_token, staking_bonus_percent, status, started
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    raffle_id,
                    token,
                    (start_time or utcnow()).isoformat(),
                    end_time.isoformat(),
                    prize_description,
                    str(minimum_purchase) if minimum_purchase is not None else None,
                    str(tickets_per_token if tickets_per_token is not None else DEFAULT_TICKETS_PER_TOKEN),
                    staking_bonus_percent,
                    status,
                    1 if started else 0,
                ),
            )

    async def get_raffle(self, raffle_id: str) -> Raffle | None:
        async with self.conn.execute("SELECT * FROM raffles WHERE id = ?", (raffle_id,)) as cursor:
            row = await cursor.fetchone()
            return self._raffle_from_row(row) if row else None

    async def get_raffles_by_status(self, status: str) -> list[Raffle]:
        async with self.conn.execute(
            "SELECT * FROM raffles WHERE status = ? ORDER BY created_at, id", (status,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._raffle_from_row(row) for row in rows]

    async def get_active_raffles(self, now: datetime | None = None) -> list[Raffle]:
        """Raffles that should currently be watched."""
        now = now or utcnow()
        raffles = await self.get_raffles_by_status(RaffleStatus.ACTIVE)
        return [raffle for raffle in raffles if raffle.is_watchable(now)]

    async def get_raffles_past_end(self, now: datetime | None = None) -> list[Raffle]:
        """Active raffles whose end time has passed."""
        now = now or utcnow()
        raffles = await self.get_raffles_by_status(RaffleStatus.ACTIVE)
        return [raffle for raffle in raffles if raffle.end_time <= now]

    async def set_raffle_status(self, raffle_id: str, status: str):
        """Update a raffle's status (inside a transaction)."""
        self._require_transaction()
        await self.conn.execute("UPDATE raffles SET status = ? WHERE id = ?", (status, raffle_id))

    async def set_raffle_started(self, raffle_id: str, started: bool = True):
        async with self.transaction():
            await self.conn.execute(
                "UPDATE raffles SET started = ? WHERE id = ?", (1 if started else 0, raffle_id)
            )

    def _raffle_from_row(self, row: aiosqlite.Row) -> Raffle:
        bonus = row["staking_bonus_percent"]
        return Raffle(
            id=row["id"],
            token=row["token"],
            start_time=parse_datetime(row["start_time"]),
            end_time=parse_datetime(row["end_time"]),
            status=row["status"],
            started=bool(row["started"]),
            tickets_per_token=_decimal(row["tickets_per_token"]) or DEFAULT_TICKETS_PER_TOKEN,
            minimum_purchase=_decimal(row["minimum_purchase"]),
            staking_bonus_percent=int(bonus) if bonus is not None else None,
            prize_description=row["prize_description"],
        )

    # Event Ledger Operations

    async def _insert_event(self, sql: str, params: tuple) -> int | None:
        async with self.conn.execute(sql, params) as cursor:
            if cursor.rowcount == 0:
                return None
            return cursor.lastrowid

    async def record_buy_event(
        self,
        raffle_id: str,
        event: NormalizedEvent,
        ticket_count: int,
        processed: bool = False,
    ) -> int | None:
        """
        Record a detected purchase (inside a transaction).

        Returns:
            The new row id, or None when the transaction was already recorded
        """
        self._require_transaction()
        return await self._insert_event(
            """
            INSERT OR IGNORE INTO buy_events (
                raffle_id, wallet_address, raw_amount, token_amount, ticket_count,
                transaction_hash, source, timestamp, processed
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._event_params(raffle_id, event, ticket_count, processed),
        )

    async def record_sell_event(
        self,
        raffle_id: str,
        event: NormalizedEvent,
        tickets_removed: int,
        processed: bool = False,
    ) -> int | None:
        """Record a detected sale (inside a transaction); None on duplicates."""
        self._require_transaction()
        return await self._insert_event(
            """
            INSERT OR IGNORE INTO sell_events (
                raffle_id, wallet_address, raw_amount, token_amount, tickets_removed,
                transaction_hash, source, timestamp, processed
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._event_params(raffle_id, event, tickets_removed, processed),
        )

    async def record_stake_event(
        self,
        raffle_id: str,
        event: NormalizedEvent,
        direction: str,
        requested_adjustment: int,
    ) -> int | None:
        """Append a stake ledger entry (inside a transaction); None on duplicates."""
        self._require_transaction()
        return await self._insert_event(
            """
            INSERT OR IGNORE INTO stake_events (
                raffle_id, wallet_address, stake_type, raw_amount, token_amount,
                requested_adjustment, transaction_hash, staking_pool, staking_account, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                raffle_id,
                event.wallet.lower(),
                direction,
                str(event.raw_amount or 0),
                event.amount_text,
                requested_adjustment,
                event.tx_ref,
                event.extra.get("staking_pool"),
                event.extra.get("staking_account"),
                self._event_time(event),
            ),
        )

    def _event_params(self, raffle_id: str, event: NormalizedEvent, tickets: int, processed: bool) -> tuple:
        return (
            raffle_id,
            event.wallet.lower(),
            str(event.raw_amount) if event.raw_amount is not None else None,
            event.amount_text,
            tickets,
            event.tx_ref,
            event.source,
            self._event_time(event),
            1 if processed else 0,
        )

    @staticmethod
    def _event_time(event: NormalizedEvent) -> str:
        return datetime.fromtimestamp(event.timestamp_ms / 1000, tz=timezone.utc).isoformat()

    async def get_event(self, kind: str, event_id: int) -> EventRow | None:
        """Load a recorded event of the given kind."""
        table, column = EVENT_TABLES[kind]
        async with self.conn.execute(f"SELECT * FROM {table} WHERE id = ?", (event_id,)) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None

            keys = row.keys()
            return EventRow(
                id=row["id"],
                kind=row["stake_type"] if "stake_type" in keys else kind,
                raffle_id=row["raffle_id"],
                wallet_address=row["wallet_address"],
                raw_amount=int(row["raw_amount"]) if row["raw_amount"] else None,
                tickets=row[column],
                processed=bool(row["processed"]),
                requested_adjustment=row["requested_adjustment"] if "requested_adjustment" in keys else 0,
            )

    async def find_event_id(self, kind: str, raffle_id: str, tx_ref: str) -> int | None:
        table, _ = EVENT_TABLES[kind]
        async with self.conn.execute(
            f"SELECT id FROM {table} WHERE raffle_id = ? AND transaction_hash = ?",
            (raffle_id, tx_ref),
        ) as cursor:
            row = await cursor.fetchone()
            return row["id"] if row else None

    async def mark_event_processed(self, kind: str, event_id: int, tickets: int | None = None):
        """Flag an event processed, optionally recording its actual ticket effect (inside a transaction)."""
        self._require_transaction()
        table, column = EVENT_TABLES[kind]
        if tickets is None:
            await self.conn.execute(f"UPDATE {table} SET processed = 1 WHERE id = ?", (event_id,))
        else:
            await self.conn.execute(
                f"UPDATE {table} SET processed = 1, {column} = ? WHERE id = ?", (tickets, event_id)
            )

    async def get_stake_history(
        self,
        raffle_id: str,
        wallet: str,
        exclude_event_id: int | None = None,
    ) -> list[StakeLedgerEntry]:
        """Processed stake ledger entries of a wallet, oldest first."""
        async with self.conn.execute(
            """
            SELECT * FROM stake_events
            WHERE raffle_id = ? AND wallet_address = ? AND processed = 1 AND id != ?
            ORDER BY timestamp, id
            """,
            (raffle_id, wallet.lower(), exclude_event_id or -1),
        ) as cursor:
            rows = await cursor.fetchall()

            return [
                StakeLedgerEntry(
                    wallet=row["wallet_address"],
                    raffle_id=row["raffle_id"],
                    direction=row["stake_type"],
                    raw_amount=int(row["raw_amount"]),
                    bonus_granted=row["tickets_adjusted"] if row["stake_type"] == STAKE else 0,
                    timestamp=parse_datetime(row["timestamp"]),
                )
                for row in rows
            ]

    # Ticket Operations

    async def get_ticket_count(self, raffle_id: str, wallet: str) -> int | None:
        """Current ticket count, or None when the wallet has no ticket row."""
        async with self.conn.execute(
            "SELECT ticket_count FROM tickets WHERE raffle_id = ? AND wallet_address = ?",
            (raffle_id, wallet.lower()),
        ) as cursor:
            row = await cursor.fetchone()
            return row["ticket_count"] if row else None

    async def add_tickets(self, raffle_id: str, wallet: str, count: int) -> int:
        """Upsert-increment a wallet's tickets (inside a transaction); returns the new count."""
        self._require_transaction()
        now = utcnow().isoformat()
        await self.conn.execute(
            """
            INSERT INTO tickets (raffle_id, wallet_address, ticket_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(raffle_id, wallet_address) DO UPDATE SET
                ticket_count = tickets.ticket_count + excluded.ticket_count,
                updated_at = excluded.updated_at
            """,
            (raffle_id, wallet.lower(), count, now, now),
        )
        return await self.get_ticket_count(raffle_id, wallet) or 0

    async def set_ticket_count(self, raffle_id: str, wallet: str, count: int):
        """Overwrite an existing ticket row (inside a transaction)."""
        self._require_transaction()
        await self.conn.execute(
            """
            UPDATE tickets SET ticket_count = ?, updated_at = ?
            WHERE raffle_id = ? AND wallet_address = ?
            """,
            (max(count, 0), utcnow().isoformat(), raffle_id, wallet.lower()),
        )

    async def get_ticket_weights(self, raffle_id: str) -> list[tuple[str, int]]:
        """Wallets holding tickets, in ticket row insertion order."""
        async with self.conn.execute(
            """
            SELECT wallet_address, ticket_count FROM tickets
            WHERE raffle_id = ? AND ticket_count > 0
            ORDER BY id
            """,
            (raffle_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [(row["wallet_address"], row["ticket_count"]) for row in rows]

    # Winner Operations

    async def get_winner(self, raffle_id: str) -> WinnerRecord | None:
        async with self.conn.execute(
            "SELECT * FROM winners WHERE raffle_id = ?", (raffle_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None

            return WinnerRecord(
                id=row["id"],
                raffle_id=row["raffle_id"],
                wallet=row["wallet_address"],
                ticket_count=row["ticket_count"],
                winning_ticket_number=row["winning_ticket_number"],
                selection_method=row["selection_method"],
                total_tickets=row["total_tickets"],
                total_participants=row["total_participants"],
                randomness_proof=json.loads(row["randomness_proof"]) if row["randomness_proof"] else None,
                selected_at=parse_datetime(row["selected_at"]),
            )

    async def save_winner(self, record: WinnerRecord) -> int:
        """Save the winner record (inside a transaction) and return its ID."""
        self._require_transaction()
        selected_at = record.selected_at or utcnow()
        async with self.conn.execute(
            """
            INSERT INTO winners (
                raffle_id, wallet_address, ticket_count, winning_ticket_number,
                selection_method, randomness_proof, total_tickets, total_participants, selected_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.raffle_id,
                record.wallet,
                record.ticket_count,
                record.winning_ticket_number,
                record.selection_method,
                json.dumps(record.randomness_proof) if record.randomness_proof else None,
                record.total_tickets,
                record.total_participants,
                selected_at.isoformat(),
            ),
        ) as cursor:
            winner_id = cursor.lastrowid

        record.id = winner_id
        record.selected_at = selected_at
        return winner_id or 0

    # Job Queue Operations

    async def enqueue_job(self, name: str, payload: dict) -> int:
        """Append a pending job (inside a transaction) and return its ID."""
        self._require_transaction()
        now = utcnow().isoformat()
        async with self.conn.execute(
            """
            INSERT INTO jobs (name, payload, status, attempts, created_at, updated_at)
            VALUES (?, ?, ?, 0, ?, ?)
            """,
            (name, json.dumps(payload), JOB_PENDING, now, now),
        ) as cursor:
            job_id = cursor.lastrowid
        return job_id or 0

    async def claim_job(self) -> Job | None:
        """Claim the oldest pending job in its own transaction."""
        async with self.transaction():
            async with self.conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY id LIMIT 1", (JOB_PENDING,)
            ) as cursor:
                row = await cursor.fetchone()
            if not row:
                return None

            await self.conn.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                (JOB_RUNNING, utcnow().isoformat(), row["id"]),
            )
            return self._job_from_row(row, status=JOB_RUNNING)

    async def complete_job(self, job_id: int):
        """Mark a job done (inside a transaction)."""
        self._require_transaction()
        await self.conn.execute(
            "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
            (JOB_DONE, utcnow().isoformat(), job_id),
        )

    async def fail_job(self, job_id: int, error: str, max_attempts: int) -> str:
        """
        Record a failed attempt in its own transaction.

        Returns:
            The job's new status: pending for another try, failed when exhausted
        """
        async with self.transaction():
            async with self.conn.execute("SELECT attempts FROM jobs WHERE id = ?", (job_id,)) as cursor:
                row = await cursor.fetchone()
            attempts = (row["attempts"] if row else 0) + 1
            status = JOB_FAILED if attempts >= max_attempts else JOB_PENDING

            await self.conn.execute(
                """
                UPDATE jobs SET status = ?, attempts = ?, last_error = ?, updated_at = ?
                WHERE id = ?
                """,
                (status, attempts, error, utcnow().isoformat(), job_id),
            )
            return status

    async def get_job(self, job_id: int) -> Job | None:
        async with self.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cursor:
            row = await cursor.fetchone()
            return self._job_from_row(row) if row else None

    async def count_jobs(self, status: str | None = None) -> int:
        if status is None:
            sql, params = "SELECT COUNT(*) AS count FROM jobs", ()
        else:
            sql, params = "SELECT COUNT(*) AS count FROM jobs WHERE status = ?", (status,)
        async with self.conn.execute(sql, params) as cursor:
            row = await cursor.fetchone()
            return row["count"] if row else 0

    @staticmethod
    def _job_from_row(row: aiosqlite.Row, status: str | None = None) -> Job:
        return Job(
            id=row["id"],
            name=row["name"],
            payload=json.loads(row["payload"]),
            status=status or row["status"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )
