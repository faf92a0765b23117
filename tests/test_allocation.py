from decimal import Decimal

from raffle_watcher.models import RaffleContext
from raffle_watcher.tickets import (
    MAX_TICKET_COUNT,
    calculate_ticket_count,
    calculate_ticket_removal,
    tickets_from_raw,
)
from raffle_watcher.tickets.allocation import legacy_ticket_count, scale_ratio

from conftest import ONE_TOKEN, TOKEN


def test_fractional_ratio_keeps_full_precision():
    assert tickets_from_raw(5 * 10**12, 9, Decimal("0.0002")) == 1


def test_ratio_is_fixed_to_six_places():
    assert scale_ratio(Decimal("0.0000005")) == 0
    assert scale_ratio(Decimal("1.2345678")) == 1_234_567
    assert tickets_from_raw(ONE_TOKEN, 9, Decimal("0.0000005")) == 0


def test_whole_tokens_times_ratio(context, make_event):
    event = make_event(raw_amount=3 * ONE_TOKEN + ONE_TOKEN // 2)
    assert calculate_ticket_count(event, context) == 350


def test_minimum_purchase_boundary(make_event):
    context = RaffleContext("r1", TOKEN, Decimal("100"), minimum_purchase=Decimal("10"))

    assert calculate_ticket_count(make_event(raw_amount=10 * ONE_TOKEN), context) == 1000
    assert calculate_ticket_count(make_event(raw_amount=10 * ONE_TOKEN - 1), context) == 0


def test_sells_ignore_minimum(make_event):
    context = RaffleContext("r1", TOKEN, Decimal("100"), minimum_purchase=Decimal("10"))
    assert calculate_ticket_removal(make_event(raw_amount=ONE_TOKEN), context) == 100


def test_overflow_is_clamped():
    assert tickets_from_raw(10**40, 9, Decimal("100")) == MAX_TICKET_COUNT


def test_non_positive_amounts_earn_nothing():
    assert tickets_from_raw(0, 9, Decimal("100")) == 0
    assert tickets_from_raw(-5, 9, Decimal("100")) == 0


def test_legacy_path_without_raw_amount(context, make_event):
    event = make_event(raw_amount=None, decimals=None, amount_text="2.5")
    assert calculate_ticket_count(event, context) == 250


def test_legacy_path_never_raises():
    assert legacy_ticket_count("not-a-number", Decimal("100")) == 0
    assert legacy_ticket_count(None, Decimal("100")) == 0
    assert legacy_ticket_count("nan", Decimal("100")) == 0
    assert legacy_ticket_count("inf", Decimal("100")) == MAX_TICKET_COUNT
