"""Raffle conclusion: randomness, winner selection, and the end-of-raffle check."""

from .manager import RaffleManager
from .randomness import (
    METHOD_CLIENT_SIDE,
    METHOD_ON_CHAIN,
    Draw,
    SuiRandomnessOracle,
    client_side_weighted_random,
    draw_winner,
    weighted_pick,
)
from .selector import RaffleNotEndedError, WinnerSelector

__all__ = [
    "RaffleManager",
    "METHOD_CLIENT_SIDE",
    "METHOD_ON_CHAIN",
    "Draw",
    "SuiRandomnessOracle",
    "client_side_weighted_random",
    "draw_winner",
    "weighted_pick",
    "RaffleNotEndedError",
    "WinnerSelector",
]
