"""Normalization of raw ledger events and indexer trade rows into NormalizedEvent."""

import logging
from typing import Any

from ..models import SOURCE_INDEXER, SOURCE_LEDGER, STAKE, NormalizedEvent
from .fields import (
    format_amount,
    get_nested_value,
    normalize_address,
    now_ms,
    parse_int,
    parse_timestamp,
    pick_number,
    pick_string,
)

logger = logging.getLogger(__name__)

# Candidate paths, in priority order, for indexer trade rows
DIGEST_PATHS = (
    "txDigest",
    "transactionDigest",
    "digest",
    "tx_hash",
    "txHash",
    "transactionHash",
    "transaction_block",
    "transactionBlock",
)
TIMESTAMP_PATHS = (
    "timestampMs",
    "timestamp",
    "time",
    "executedAt",
    "executed_at",
    "blockTimestamp",
    "checkpointTimestampMs",
    "createdAt",
    "created_at",
)
DIRECTION_PATHS = ("direction", "side", "tradeSide", "swapSide", "orderSide")
COIN_OUT_PATHS = (
    "outCoin.coinType",
    "outCoin.type",
    "coinTypeOut",
    "coin_type_out",
    "tokenOut.coinType",
    "tokenOutType",
    "coinOut.coin_type",
    "coinsOut.0.coinType",
    "coins_out.0.coin_type",
    "coins.0.coinType",
)
COIN_IN_PATHS = (
    "inCoin.coinType",
    "inCoin.type",
    "coinTypeIn",
    "coin_type_in",
    "tokenIn.coinType",
    "tokenInType",
    "coinIn.coin_type",
    "coinsIn.0.coinType",
    "coins_in.0.coin_type",
    "coins.1.coinType",
)
BUYER_PATHS = (
    "buyerAddress",
    "buyer",
    "accountAddress",
    "walletAddress",
    "traderAddress",
    "trader",
    "recipientAddress",
    "toAddress",
    "owner",
    "userAddress",
    "address",
    "ownerAddress",
    "owner.addressOwner",
)
SELLER_PATHS = ("senderAddress", "sellerAddress", "traderAddress", "address", "owner", "walletAddress")
AMOUNT_OUT_PATHS = (
    "outCoin.amount",
    "outCoin.amount_raw",
    "amountOut",
    "amount_out",
    "tokenOutAmount",
    "outAmount",
    "amount",
    "receivedAmount",
    "amountReceived",
    "coin.amount",
    "coinsOut.0.amount",
    "coins_out.0.amount_raw",
    "coins.0.amount",
)
DECIMALS_PATHS = (
    "outCoin.decimals",
    "coin.decimals",
    "decimals",
    "tokenOutDecimals",
    "decimalsOut",
    "coinsOut.0.decimals",
    "coins_out.0.decimals",
    "coins.0.decimals",
)
SEQUENCE_PATHS = (
    "eventSeq",
    "eventIndex",
    "event_index",
    "seq",
    "sequence",
    "swapIndex",
    "swap_index",
    "id",
)
CHANGE_OWNER_PATHS = ("owner.AddressOwner", "owner.addressOwner", "ownerAddress", "addressOwner")

# Keys looked up inside a ledger event's parsedJson (and its nested "fields")
RECIPIENT_KEYS = ("recipient", "to", "toAddress", "to_addr", "to_address", "dst_addr", "receiver")
AMOUNT_KEYS = ("amount", "quantity", "value", "coinAmount")


def ledger_event_key(event: dict) -> str | None:
    """Key a ledger event by txDigest:eventSeq."""
    event_id = event.get("id") or {}
    digest = event_id.get("txDigest")
    seq = event_id.get("eventSeq")
    if not digest or seq is None:
        return None
    return f"{digest}:{seq}"


def _search_parsed(data: Any, keys: tuple[str, ...]) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return str(value)
    return _search_parsed(data.get("fields"), keys)


def extract_recipient(parsed: dict) -> str | None:
    return _search_parsed(parsed, RECIPIENT_KEYS)


def extract_amount(parsed: dict) -> str | None:
    return _search_parsed(parsed, AMOUNT_KEYS)


def normalize_transfer_event(
    event: dict,
    coin_type: str,
    decimals: int | None,
    wallet: str | None = None,
) -> NormalizedEvent | None:
    """
    Normalize a coin transfer event from the ledger.

    Args:
        event: Raw event as returned by suix_queryEvents
        coin_type: Coin type being watched
        decimals: Decimals of the coin, if known
        wallet: Wallet to credit; defaults to the transfer recipient

    Returns:
        NormalizedEvent, or None when the event cannot be keyed
    """
    event_key = ledger_event_key(event)
    if not event_key:
        return None

    parsed = event.get("parsedJson") or {}
    if wallet is None:
        wallet = extract_recipient(parsed)
    raw_amount = parse_int(extract_amount(parsed))

    return NormalizedEvent(
        event_key=event_key,
        tx_ref=event["id"]["txDigest"],
        wallet=wallet,
        raw_amount=raw_amount,
        coin_type=coin_type,
        timestamp_ms=parse_timestamp(event.get("timestampMs")),
        decimals=decimals,
        amount_text=(
            format_amount(raw_amount, decimals)
            if raw_amount is not None and decimals is not None
            else None
        ),
        source=SOURCE_LEDGER,
        extra={"recipient": extract_recipient(parsed)},
    )


def normalize_stake_event(
    event: dict,
    token: str,
    direction: str,
    decimals: int | None,
) -> NormalizedEvent | None:
    """
    Normalize a staking-pool stake or unstake event.

    Returns None for events about other tokens or without a key.
    """
    event_key = ledger_event_key(event)
    if not event_key:
        return None

    parsed = event.get("parsedJson") or {}
    token_address = parsed.get("token_address")
    if not token_address or normalize_address(token) not in normalize_address(str(token_address)):
        return None

    wallet_field = "staker" if direction == STAKE else "unstaker"
    raw_amount = parse_int(parsed.get("amount"))

    return NormalizedEvent(
        event_key=event_key,
        # Several stake events can share one transaction
        tx_ref=event_key,
        wallet=parsed.get(wallet_field) or None,
        raw_amount=raw_amount,
        coin_type=token,
        timestamp_ms=parse_timestamp(event.get("timestampMs")),
        decimals=decimals,
        source=SOURCE_LEDGER,
        extra={
            "staking_pool": parsed.get("staking_pool"),
            "staking_account": parsed.get("staking_account"),
        },
    )


def _trade_timestamp(trade: dict) -> int:
    candidate = pick_string(trade, TIMESTAMP_PATHS)
    return parse_timestamp(candidate, now_ms())


def _buys_from_balance_changes(trade: dict, digest: str, timestamp: int, target: str) -> list[NormalizedEvent]:
    changes = get_nested_value(trade, "balanceChanges")
    if not isinstance(changes, list):
        return []

    events = []
    for index, change in enumerate(changes):
        if not isinstance(change, dict):
            continue
        change_coin = pick_string(change, ("coinType",))
        if not change_coin or change_coin.lower() != target:
            continue
        amount = parse_int(pick_string(change, ("amount",)))
        if amount is None or amount <= 0:
            continue
        wallet = pick_string(change, CHANGE_OWNER_PATHS)
        if not wallet:
            logger.debug(f"Balance change without owner in {digest}")
            continue
        decimals = pick_number(change, ("decimals",))
        events.append(
            NormalizedEvent(
                event_key=f"{digest}:{wallet}:{index}",
                tx_ref=digest,
                wallet=wallet,
                raw_amount=amount,
                coin_type=change_coin,
                timestamp_ms=timestamp,
                decimals=int(decimals) if decimals is not None else None,
                source=SOURCE_INDEXER,
            )
        )
    return events


def _is_buy(trade: dict, target: str) -> bool | None:
    """Decide buy/sell from a trade row; None when the row is about another coin."""
    direction = (pick_string(trade, DIRECTION_PATHS) or "").lower()
    if direction == "buy":
        return True
    if direction == "sell":
        return False

    coin_out = (pick_string(trade, COIN_OUT_PATHS) or "").lower()
    coin_in = (pick_string(trade, COIN_IN_PATHS) or "").lower()
    if coin_out and coin_out == target:
        return True
    if coin_in and coin_in == target:
        return False
    if coin_out and target in coin_out:
        return True
    if coin_in and target in coin_in:
        return False
    return None


def normalize_indexer_buys(trades: list[dict], token: str) -> list[NormalizedEvent]:
    """Extract purchases of ``token`` from raw indexer trade rows."""
    target = token.strip().lower()
    results: list[NormalizedEvent] = []

    for index, trade in enumerate(trades):
        if not isinstance(trade, dict):
            continue
        digest = pick_string(trade, DIGEST_PATHS)
        if not digest:
            logger.debug("Indexer trade missing transaction digest")
            continue
        timestamp = _trade_timestamp(trade)

        from_changes = _buys_from_balance_changes(trade, digest, timestamp, target)
        if from_changes:
            results.extend(from_changes)
            continue

        if not _is_buy(trade, target):
            continue

        sequence = pick_string(trade, SEQUENCE_PATHS) or f"{timestamp}:{index}"
        decimals = pick_number(trade, DECIMALS_PATHS)
        results.append(
            NormalizedEvent(
                event_key=f"{digest}:{sequence}",
                tx_ref=digest,
                wallet=pick_string(trade, BUYER_PATHS),
                raw_amount=parse_int(pick_string(trade, AMOUNT_OUT_PATHS)),
                coin_type=pick_string(trade, COIN_OUT_PATHS) or token,
                timestamp_ms=timestamp,
                decimals=int(decimals) if decimals is not None else None,
                source=SOURCE_INDEXER,
            )
        )

    return results


def normalize_indexer_sells(trades: list[dict], token: str) -> list[NormalizedEvent]:
    """Extract sales of ``token``: trades with a negative balance change of it."""
    target = normalize_address(token)
    results: list[NormalizedEvent] = []

    for trade in trades:
        if not isinstance(trade, dict):
            continue
        digest = pick_string(trade, DIGEST_PATHS)
        if not digest:
            continue
        changes = trade.get("balanceChanges")
        if not isinstance(changes, list):
            continue

        target_change = next(
            (
                change
                for change in changes
                if isinstance(change, dict)
                and target in normalize_address(str(change.get("coinType") or ""))
            ),
            None,
        )
        if target_change is None:
            continue

        amount = parse_int(target_change.get("amount"))
        if amount is None or amount >= 0:
            continue

        timestamp = _trade_timestamp(trade)
        wallet = pick_string(target_change, CHANGE_OWNER_PATHS) or pick_string(trade, SELLER_PATHS)
        results.append(
            NormalizedEvent(
                event_key=f"{digest}:{pick_string(trade, SEQUENCE_PATHS) or 0}",
                tx_ref=digest,
                wallet=wallet,
                raw_amount=-amount,
                coin_type=target_change.get("coinType") or token,
                timestamp_ms=timestamp,
                source=SOURCE_INDEXER,
            )
        )

    return results
