"""Ticket allocation - converts purchase and sale amounts into ticket counts.

All arithmetic on raw amounts is done with Python integers. The configured
tickets-per-token ratio is fixed to six decimal places first:

    tickets = floor(raw * floor(ratio * 10^6) / (10^decimals * 10^6))

Floats appear only in ``legacy_ticket_count``, used when an event carries a
pre-formatted amount string but no raw amount or decimals.
"""

import logging
import math
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from ..models import NormalizedEvent, RaffleContext

logger = logging.getLogger(__name__)

RATIO_PRECISION = 10**6

# Largest count the ticket ledger and its consumers represent exactly
MAX_TICKET_COUNT = 2**53 - 1


def scale_ratio(ratio: Decimal) -> int:
    """floor(ratio * 10^6) as an integer."""
    return int((Decimal(ratio) * RATIO_PRECISION).to_integral_value(rounding=ROUND_FLOOR))


def clamp_tickets(tickets: int, wallet: str | None = None) -> int:
    if tickets > MAX_TICKET_COUNT:
        logger.warning(
            f"Calculated ticket count {tickets} exceeds {MAX_TICKET_COUNT}, clamping "
            f"(wallet {wallet or 'unknown'})"
        )
        return MAX_TICKET_COUNT
    return max(tickets, 0)


def tickets_from_raw(raw_amount: int, decimals: int, ratio: Decimal, wallet: str | None = None) -> int:
    """
    Exact ticket count for a raw token amount.

    Args:
        raw_amount: Amount in the token's smallest unit
        decimals: Token decimals
        ratio: Tickets per whole token
        wallet: Only used for log context

    Returns:
        Non-negative ticket count, clamped to MAX_TICKET_COUNT
    """
    if raw_amount <= 0 or decimals < 0:
        return 0
    scaled = scale_ratio(ratio)
    tickets = (raw_amount * scaled) // (10**decimals * RATIO_PRECISION)
    return clamp_tickets(tickets, wallet)


def legacy_ticket_count(amount_text: str | None, ratio: Decimal) -> int:
    """Degraded-precision path: floor(float(amount) * ratio)."""
    if not amount_text:
        return 0
    try:
        value = float(amount_text) * float(ratio)
    except ValueError:
        return 0
    if math.isnan(value) or value <= 0:
        return 0
    if math.isinf(value):
        return MAX_TICKET_COUNT
    return clamp_tickets(math.floor(value))


def purchase_amount(event: NormalizedEvent) -> Decimal | None:
    """Amount in whole tokens, preferring raw/decimals over the formatted string."""
    if event.raw_amount is not None and event.decimals is not None:
        return Decimal(event.raw_amount).scaleb(-event.decimals)
    if event.amount_text:
        try:
            return Decimal(event.amount_text)
        except InvalidOperation:
            return None
    return None


def meets_minimum(event: NormalizedEvent, minimum: Decimal | None) -> bool:
    """A purchase of exactly the minimum qualifies; anything below does not."""
    if minimum is None:
        return True
    amount = purchase_amount(event)
    if amount is None:
        return True
    return amount >= minimum


def _ticket_count(event: NormalizedEvent, ratio: Decimal) -> int:
    if event.raw_amount is not None and event.decimals is not None:
        return tickets_from_raw(event.raw_amount, event.decimals, ratio, event.wallet)
    return legacy_ticket_count(event.amount_text, ratio)


def calculate_ticket_count(event: NormalizedEvent, context: RaffleContext) -> int:
    """
    Tickets earned by a purchase event.

    Args:
        event: Normalized buy event
        context: Raffle the purchase counts towards

    Returns:
        Non-negative integer ticket count
    """
    if not meets_minimum(event, context.minimum_purchase):
        logger.info(
            f"Purchase {purchase_amount(event)} is below minimum {context.minimum_purchase}, "
            f"no tickets for {event.wallet} ({event.tx_ref})"
        )
        return 0
    return _ticket_count(event, context.tickets_per_token)


def calculate_ticket_removal(event: NormalizedEvent, context: RaffleContext) -> int:
    """Tickets forfeited by a sale event (no minimum applies)."""
    return _ticket_count(event, context.tickets_per_token)
