"""Randomness for winner draws: ledger-anchored with a client-side fallback."""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from ..api import SuiRpcClient

logger = logging.getLogger(__name__)

METHOD_ON_CHAIN = "on-chain"
METHOD_CLIENT_SIDE = "client-side"


@dataclass(frozen=True)
class Draw:
    """Outcome of a weighted draw."""

    index: int
    winning_ticket: int
    method: str
    proof: dict | None = None


def weighted_pick(weights: Sequence[int], r: int) -> int:
    """
    Index of the first cumulative weight strictly greater than ``r``.

    Args:
        weights: Non-negative weights in a fixed order
        r: Winning ticket number in [0, sum(weights))

    Returns:
        The selected index
    """
    total = sum(weights)
    if total <= 0:
        raise ValueError("Total weight is zero")
    if not 0 <= r < total:
        raise ValueError(f"Ticket number {r} outside [0, {total})")

    cumulative = 0
    for index, weight in enumerate(weights):
        cumulative += weight
        if r < cumulative:
            return index
    return len(weights) - 1


def client_side_weighted_random(
    weights: Sequence[int],
    randbelow: Callable[[int], int] = secrets.randbelow,
) -> Draw:
    """Weighted draw from the local CSPRNG."""
    total = sum(weights)
    if total <= 0:
        raise ValueError("Total weight is zero")
    r = randbelow(total)
    return Draw(index=weighted_pick(weights, r), winning_ticket=r, method=METHOD_CLIENT_SIDE)


def hashed_ticket(epoch: str, seed: str, total: int) -> int:
    digest = hashlib.sha256(f"{epoch}-{seed}".encode()).digest()
    return int.from_bytes(digest, "big") % total


class SuiRandomnessOracle:
    """
    Derives the winning ticket from the current ledger epoch.

    The ticket is sha256("{epoch}-{raffle_id}-{timestamp_ms}") modulo the
    total ticket count; the proof carries everything needed to recompute it.
    """

    def __init__(
        self,
        rpc: SuiRpcClient,
        package_id: str = "",
        randomness_object_id: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.rpc = rpc
        self.package_id = package_id
        self.randomness_object_id = randomness_object_id
        self.clock = clock

    def is_configured(self) -> bool:
        return bool(self.package_id and self.randomness_object_id)

    async def weighted_random(self, weights: Sequence[int], raffle_id: str) -> Draw:
        """
        Weighted draw anchored to the latest epoch.

        Raises:
            RuntimeError: If the oracle is not configured
        """
        if not self.is_configured():
            raise RuntimeError("Ledger randomness not configured")

        total = sum(weights)
        if total <= 0:
            raise ValueError("Total weight is zero")

        epoch = await self.rpc.get_latest_epoch()
        timestamp = int(self.clock() * 1000)
        seed = f"{raffle_id}-{timestamp}"
        r = hashed_ticket(epoch, seed, total)

        proof = {
            "epoch": epoch,
            "raffle_id": raffle_id,
            "timestamp": timestamp,
            "seed_hash": hashlib.sha256(f"{epoch}-{seed}".encode()).hexdigest(),
        }
        return Draw(index=weighted_pick(weights, r), winning_ticket=r, method=METHOD_ON_CHAIN, proof=proof)

    @staticmethod
    def verify(winning_ticket: int, total: int, proof: dict) -> bool:
        """Recompute the ticket number from a proof."""
        seed = f"{proof['raffle_id']}-{proof['timestamp']}"
        return hashed_ticket(str(proof["epoch"]), seed, total) == winning_ticket


async def draw_winner(
    weights: Sequence[int],
    raffle_id: str,
    oracle: SuiRandomnessOracle | None = None,
    randbelow: Callable[[int], int] = secrets.randbelow,
) -> Draw:
    """Draw with the oracle when configured, falling back to the local CSPRNG on any failure."""
    if oracle is not None and oracle.is_configured():
        try:
            return await oracle.weighted_random(weights, raffle_id)
        except Exception as e:
            logger.warning(f"Ledger randomness failed for raffle {raffle_id}, using client-side draw: {e}")
    return client_side_weighted_random(weights, randbelow)
