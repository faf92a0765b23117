import asyncio
from datetime import timedelta

import pytest

from raffle_watcher.db.repository import utcnow
from raffle_watcher.models import RaffleStatus
from raffle_watcher.winner import (
    METHOD_CLIENT_SIDE,
    METHOD_ON_CHAIN,
    RaffleManager,
    RaffleNotEndedError,
    SuiRandomnessOracle,
    WinnerSelector,
    client_side_weighted_random,
    draw_winner,
    weighted_pick,
)

from conftest import FakeRpc


@pytest.mark.parametrize("r, expected", [(0, 0), (9, 0), (10, 1), (35, 1), (39, 1), (40, 2), (99, 2)])
def test_weighted_pick(r, expected):
    assert weighted_pick([10, 30, 60], r) == expected


def test_weighted_pick_rejects_out_of_range():
    with pytest.raises(ValueError):
        weighted_pick([10, 30, 60], 100)
    with pytest.raises(ValueError):
        weighted_pick([0, 0], 0)


def test_client_side_draw_is_deterministic_given_randomness():
    draw = client_side_weighted_random([10, 30, 60], randbelow=lambda total: 35)
    assert (draw.index, draw.winning_ticket, draw.method) == (1, 35, METHOD_CLIENT_SIDE)


def test_oracle_draw_is_verifiable():
    oracle = SuiRandomnessOracle(FakeRpc(epoch="812"), "0xpkg", "0x8", clock=lambda: 1_700_000_000.0)
    draw = asyncio.run(oracle.weighted_random([10, 30, 60], "r1"))

    assert draw.method == METHOD_ON_CHAIN
    assert draw.proof["epoch"] == "812"
    assert draw.proof["timestamp"] == 1_700_000_000_000
    assert 0 <= draw.winning_ticket < 100
    assert draw.index == weighted_pick([10, 30, 60], draw.winning_ticket)
    assert SuiRandomnessOracle.verify(draw.winning_ticket, 100, draw.proof)


def test_oracle_failure_falls_back_to_client_side():
    oracle = SuiRandomnessOracle(FakeRpc(epoch=RuntimeError("node down")), "0xpkg", "0x8")
    draw = asyncio.run(draw_winner([10, 30, 60], "r1", oracle, randbelow=lambda total: 5))
    assert (draw.index, draw.method) == (0, METHOD_CLIENT_SIDE)


def test_unconfigured_oracle_is_skipped():
    oracle = SuiRandomnessOracle(FakeRpc(), package_id="", randomness_object_id="")
    assert not oracle.is_configured()
    draw = asyncio.run(draw_winner([1], "r1", oracle, randbelow=lambda total: 0))
    assert draw.method == METHOD_CLIENT_SIDE


async def seed_tickets(repo, holdings):
    async with repo.transaction():
        for wallet, count in holdings:
            await repo.add_tickets("r1", wallet, count)


def test_selects_weighted_winner_once(open_repository):
    async def scenario():
        repo = await open_repository(status=RaffleStatus.ENDED)
        await seed_tickets(repo, [("0xa", 10), ("0xb", 30), ("0xc", 60), ("0xd", 0)])
        selector = WinnerSelector(repo, randbelow=lambda total: 35)

        first = await selector.select("r1")
        again = await selector.select("r1")
        raffle = await repo.get_raffle("r1")
        await repo.close()
        return first, again, raffle

    first, again, raffle = asyncio.run(scenario())

    assert first.wallet == "0xb"
    assert first.ticket_count == 30
    assert first.winning_ticket_number == 35
    assert first.total_tickets == 100
    assert first.total_participants == 3
    assert again.id == first.id
    assert raffle.status == RaffleStatus.WINNER_SELECTED


def test_no_participants_closes_without_winner(open_repository):
    async def scenario():
        repo = await open_repository(status=RaffleStatus.ENDED)
        result = await WinnerSelector(repo).select("r1")
        raffle = await repo.get_raffle("r1")
        winner = await repo.get_winner("r1")
        await repo.close()
        return result, raffle, winner

    result, raffle, winner = asyncio.run(scenario())
    assert result is None
    assert raffle.status == RaffleStatus.WINNER_SELECTED
    assert winner is None


def test_active_raffle_cannot_be_concluded(open_repository):
    async def scenario():
        repo = await open_repository()
        try:
            with pytest.raises(RaffleNotEndedError):
                await WinnerSelector(repo).select("r1")
        finally:
            await repo.close()

    asyncio.run(scenario())


def test_manager_ends_expired_raffles_and_selects(open_repository):
    async def scenario():
        repo = await open_repository(end_time=utcnow() - timedelta(minutes=1))
        await seed_tickets(repo, [("0xonly", 5)])
        manager = RaffleManager(repo, WinnerSelector(repo, randbelow=lambda total: 0))

        concluded = await manager.check_once()
        winner = await repo.get_winner("r1")
        active = await repo.get_active_raffles()
        await repo.close()
        return concluded, winner, active

    concluded, winner, active = asyncio.run(scenario())
    assert concluded == ["r1"]
    assert winner.wallet == "0xonly"
    assert active == []


def test_manager_leaves_running_raffles_alone(open_repository):
    async def scenario():
        repo = await open_repository()
        concluded = await RaffleManager(repo, WinnerSelector(repo)).check_once()
        raffle = await repo.get_raffle("r1")
        await repo.close()
        return concluded, raffle

    concluded, raffle = asyncio.run(scenario())
    assert concluded == []
    assert raffle.status == RaffleStatus.ACTIVE
