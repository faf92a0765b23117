"""Swap classifier - tells exchange purchases apart from plain wallet transfers."""

import logging
from collections import OrderedDict
from typing import Iterable

from ..api import SuiRpcClient
from .fields import normalize_address

logger = logging.getLogger(__name__)

DEFAULT_FUNCTION_KEYWORDS = ("swap", "trade", "exchange")


def move_calls(transaction: dict) -> list[dict]:
    """Return the MoveCall commands of a programmable transaction block."""
    data = (transaction.get("transaction") or {}).get("data") or {}
    kind = data.get("transaction") or {}
    commands = kind.get("transactions") or []
    return [
        command["MoveCall"]
        for command in commands
        if isinstance(command, dict) and isinstance(command.get("MoveCall"), dict)
    ]


class SwapClassifier:
    """
    Decides whether a transaction invoked an AMM swap.

    A transaction counts as a swap when any of its Move calls targets a known
    exchange package, or calls a function whose name mentions swap/trade/
    exchange. Transactions with no Move calls at all are plain transfers.
    Lookup failures classify as "not a swap" so a transfer is never credited
    by accident.
    """

    CACHE_SIZE = 1000

    def __init__(
        self,
        rpc: SuiRpcClient,
        exchange_packages: Iterable[str] = (),
        function_keywords: Iterable[str] = DEFAULT_FUNCTION_KEYWORDS,
    ):
        self.rpc = rpc
        self.exchange_packages = {normalize_address(p) for p in exchange_packages}
        self.function_keywords = tuple(k.lower() for k in function_keywords)
        self._cache: OrderedDict[str, bool] = OrderedDict()

    async def is_swap(self, tx_ref: str) -> bool:
        """
        Classify the transaction behind a transaction reference.

        Args:
            tx_ref: Transaction digest, optionally suffixed with ":subIndex"

        Returns:
            True if the transaction invoked an exchange swap
        """
        digest = tx_ref.split(":", 1)[0]
        if digest in self._cache:
            self._cache.move_to_end(digest)
            return self._cache[digest]

        try:
            transaction = await self.rpc.get_transaction(digest)
        except Exception as e:
            logger.warning(f"Could not classify {digest}, treating as non-swap: {e}")
            return False

        result = self.classify(transaction)
        self._remember(digest, result)
        return result

    def classify(self, transaction: dict) -> bool:
        """Classify an already fetched transaction block."""
        calls = move_calls(transaction)
        if not calls:
            return False

        for call in calls:
            package = normalize_address(str(call.get("package") or ""))
            if package and package in self.exchange_packages:
                return True
            function = str(call.get("function") or "").lower()
            if any(keyword in function for keyword in self.function_keywords):
                return True

        return False

    def _remember(self, digest: str, result: bool):
        self._cache[digest] = result
        if len(self._cache) > self.CACHE_SIZE:
            self._cache.popitem(last=False)
