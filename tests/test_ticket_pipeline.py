"""Handlers, durable queue and ticket worker against a temporary SQLite database."""

import asyncio
from decimal import Decimal

from raffle_watcher.api import EventPage
from raffle_watcher.db.repository import JOB_DONE, JOB_FAILED, JOB_PENDING
from raffle_watcher.ingestion import LedgerTransferSource, TokenDecimals, Watermark
from raffle_watcher.models import SELL, SOURCE_LEDGER, STAKE, UNSTAKE, RaffleContext, RaffleStatus
from raffle_watcher.watcher import BuyHandler, SellHandler, StakeHandler
from raffle_watcher.workers import TicketWorker

from conftest import ONE_TOKEN, TOKEN, FakeClassifier, FakeRpc, ledger_event


def test_buy_is_recorded_once_and_allocated(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        handler = BuyHandler(repo)
        worker = TicketWorker(repo)

        job = await handler.handle(make_event(key="B1:0", wallet="0xAlice", raw_amount=2 * ONE_TOKEN), context)
        duplicate = await handler.handle(make_event(key="B1:1", wallet="0xAlice", raw_amount=2 * ONE_TOKEN), context)
        processed = await worker.drain()

        tickets = await repo.get_ticket_count("r1", "0xalice")
        pending = await repo.count_jobs(JOB_PENDING)
        await repo.close()
        return job, duplicate, processed, tickets, pending

    job, duplicate, processed, tickets, pending = asyncio.run(scenario())

    assert job.ticket_delta == 200
    assert duplicate is None
    assert processed == 1
    assert tickets == 200
    assert pending == 0


def test_below_minimum_is_recorded_without_job(open_repository, make_event):
    context = RaffleContext("r1", TOKEN, Decimal("100"), minimum_purchase=Decimal("5"))

    async def scenario():
        repo = await open_repository()
        job = await BuyHandler(repo).handle(make_event(key="B2:0"), context)
        event_id = await repo.find_event_id("buy", "r1", "B2")
        event = await repo.get_event("buy", event_id)
        jobs = await repo.count_jobs()
        await repo.close()
        return job, event, jobs

    job, event, jobs = asyncio.run(scenario())
    assert job is None
    assert event.processed
    assert event.tickets == 0
    assert jobs == 0


def test_ledger_transfers_must_be_swaps(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        handler = BuyHandler(repo, FakeClassifier(swaps={"SWAP"}))
        transfer = await handler.handle(make_event(key="PLAIN:0", source=SOURCE_LEDGER), context)
        swap = await handler.handle(make_event(key="SWAP:0", source=SOURCE_LEDGER), context)
        await repo.close()
        return transfer, swap

    transfer, swap = asyncio.run(scenario())
    assert transfer is None
    assert swap.ticket_delta == 100


def test_malformed_events_are_skipped(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        result = await BuyHandler(repo).handle(make_event(wallet=None), context)
        jobs = await repo.count_jobs()
        await repo.close()
        return result, jobs

    assert asyncio.run(scenario()) == (None, 0)


def test_sell_never_goes_below_zero(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        worker = TicketWorker(repo)
        await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xBob"), context)
        await SellHandler(repo).handle(make_event(key="S:0", wallet="0xBob", raw_amount=5 * ONE_TOKEN), context)
        await worker.drain()
        tickets = await repo.get_ticket_count("r1", "0xbob")
        sell = await repo.get_event("sell", await repo.find_event_id("sell", "r1", "S"))
        await repo.close()
        return tickets, sell

    tickets, sell = asyncio.run(scenario())
    assert tickets == 0
    assert sell.processed
    assert sell.tickets == 100


def test_sell_without_tickets_is_a_no_op(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        await SellHandler(repo).handle(make_event(key="S:0", wallet="0xNobody"), context)
        await TicketWorker(repo).drain()
        tickets = await repo.get_ticket_count("r1", "0xnobody")
        await repo.close()
        return tickets

    assert asyncio.run(scenario()) is None


def test_stake_and_unstake_are_symmetric(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        worker = TicketWorker(repo)
        await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xCarol"), context)
        await worker.drain()

        await StakeHandler(repo, STAKE).handle(make_event(key="ST:0", tx_ref="ST:0", wallet="0xCarol", raw_amount=1_000), context)
        await worker.drain()
        after_stake = await repo.get_ticket_count("r1", "0xcarol")

        await StakeHandler(repo, UNSTAKE).handle(make_event(key="UN:0", tx_ref="UN:0", wallet="0xCarol", raw_amount=1_000), context)
        await worker.drain()
        after_unstake = await repo.get_ticket_count("r1", "0xcarol")
        await repo.close()
        return after_stake, after_unstake

    assert asyncio.run(scenario()) == (125, 100)


def test_partial_unstake_claws_back_proportionally(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        worker = TicketWorker(repo)
        await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xDan", raw_amount=8 * ONE_TOKEN // 10), context)
        await worker.drain()
        await StakeHandler(repo, STAKE).handle(make_event(key="ST:0", tx_ref="ST:0", wallet="0xDan", raw_amount=1_000), context)
        await worker.drain()
        await StakeHandler(repo, UNSTAKE).handle(make_event(key="UN:0", tx_ref="UN:0", wallet="0xDan", raw_amount=500), context)
        await worker.drain()
        tickets = await repo.get_ticket_count("r1", "0xdan")
        await repo.close()
        return tickets

    # 80 tickets, +20 bonus, half unstaked removes 10
    assert asyncio.run(scenario()) == 90


def test_partial_unstake_after_two_stakes(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        worker = TicketWorker(repo)
        await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xFay", raw_amount=4 * ONE_TOKEN // 10), context)
        await worker.drain()
        for key in ("ST1:0", "ST2:0"):
            await StakeHandler(repo, STAKE).handle(make_event(key=key, tx_ref=key, wallet="0xFay", raw_amount=1_000), context)
            await worker.drain()
        staked = await repo.get_ticket_count("r1", "0xfay")
        await StakeHandler(repo, UNSTAKE).handle(make_event(key="UN:0", tx_ref="UN:0", wallet="0xFay", raw_amount=1_000), context)
        await worker.drain()
        unstaked = await repo.get_ticket_count("r1", "0xfay")
        await repo.close()
        return staked, unstaked

    # 40 tickets, +10 then +12; half the balance unstaked removes half of 22
    assert asyncio.run(scenario()) == (62, 51)


def test_each_transfer_of_a_sale_forfeits_tickets(open_repository, context):
    rpc = FakeRpc(
        pages=[
            EventPage(
                data=[
                    ledger_event("SELLTX", 1, 1_700_000_000_001, recipient="0xfee", amount=str(ONE_TOKEN)),
                    ledger_event("SELLTX", 0, 1_700_000_000_000, recipient="0xpool", amount=str(4 * ONE_TOKEN)),
                ],
                next_cursor=None,
                has_next_page=False,
            )
        ],
        senders={"SELLTX": "0xSeller"},
    )

    async def scenario():
        repo = await open_repository()
        async with repo.transaction():
            await repo.add_tickets("r1", "0xseller", 1_000)

        watermark = Watermark()
        watermark.seed([], fallback_ms=0)
        source = LedgerTransferSource(rpc, TokenDecimals(rpc), TOKEN, "0x2::coin::TransferEvent", kind=SELL)
        events = await source.poll(watermark)

        handler = SellHandler(repo)
        jobs = [await handler.handle(event, context) for event in events]
        await TicketWorker(repo).drain()
        tickets = await repo.get_ticket_count("r1", "0xseller")
        await repo.close()
        return events, jobs, tickets

    events, jobs, tickets = asyncio.run(scenario())

    assert [e.tx_ref for e in events] == ["SELLTX:0", "SELLTX:1"]
    assert all(job is not None for job in jobs)
    assert tickets == 500


def test_stake_without_tickets_grants_nothing(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        await StakeHandler(repo, STAKE).handle(make_event(key="ST:0", tx_ref="ST:0", wallet="0xEve", raw_amount=1_000), context)
        await TicketWorker(repo).drain()
        event = await repo.get_event(STAKE, await repo.find_event_id(STAKE, "r1", "ST:0"))
        tickets = await repo.get_ticket_count("r1", "0xeve")
        await repo.close()
        return event, tickets

    event, tickets = asyncio.run(scenario())
    assert event.processed
    assert event.tickets == 0
    assert tickets is None


def test_closed_raffle_refuses_mutations(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository(status=RaffleStatus.WINNER_SELECTED)
        await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xLate"), context)
        await TicketWorker(repo).drain()
        event = await repo.get_event("buy", await repo.find_event_id("buy", "r1", "B"))
        tickets = await repo.get_ticket_count("r1", "0xlate")
        await repo.close()
        return event, tickets

    event, tickets = asyncio.run(scenario())
    assert event.processed
    assert tickets is None


def test_redelivered_job_is_applied_once(open_repository, context, make_event):
    async def scenario():
        repo = await open_repository()
        worker = TicketWorker(repo)
        job = await BuyHandler(repo).handle(make_event(key="B:0", wallet="0xFay"), context)
        await worker.drain()

        async with repo.transaction():
            await repo.enqueue_job("allocate-tickets", job.to_payload())
        await worker.drain()

        tickets = await repo.get_ticket_count("r1", "0xfay")
        done = await repo.count_jobs(JOB_DONE)
        await repo.close()
        return tickets, done

    assert asyncio.run(scenario()) == (100, 2)


def test_failing_job_is_retried_then_failed(open_repository):
    async def scenario():
        repo = await open_repository()
        async with repo.transaction():
            job_id = await repo.enqueue_job("unknown-job", {})
        worker = TicketWorker(repo, max_attempts=2)

        await worker.run_once()
        first = await repo.get_job(job_id)
        await worker.run_once()
        second = await repo.get_job(job_id)
        await repo.close()
        return first, second

    first, second = asyncio.run(scenario())
    assert (first.status, first.attempts) == (JOB_PENDING, 1)
    assert (second.status, second.attempts) == (JOB_FAILED, 2)
    assert "unknown-job" in second.last_error


def test_writes_outside_transaction_are_rejected(open_repository):
    async def scenario():
        repo = await open_repository(with_raffle=False)
        try:
            await repo.add_tickets("r1", "0xw", 1)
        except RuntimeError as e:
            return str(e)
        finally:
            await repo.close()

    assert "transaction" in asyncio.run(scenario())
