"""Client for the Sui fullnode JSON-RPC API - events, transactions, coin metadata."""

import itertools
import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """The node answered with a JSON-RPC error object."""


@dataclass
class EventPage:
    """One page of a suix_queryEvents response."""

    data: list[dict]
    next_cursor: dict | None
    has_next_page: bool


class SuiRpcClient:
    """Async client for Sui JSON-RPC point queries."""

    def __init__(
        self,
        rpc_url: str = "https://fullnode.mainnet.sui.io:443",
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._ids = itertools.count(1)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        data = response.json()
        if "error" in data:
            raise RpcError(f"{method} failed: {data['error']}")
        return data.get("result")

    async def query_events(
        self,
        event_type: str,
        limit: int = 50,
        descending: bool = True,
        cursor: dict | None = None,
    ) -> EventPage:
        """
        Query Move events of a single type.

        Args:
            event_type: Fully qualified Move event type
            limit: Page size
            descending: Newest first when True
            cursor: Cursor returned by a previous page

        Returns:
            EventPage with raw event dicts in the requested order
        """
        result = await self._call(
            "suix_queryEvents",
            [{"MoveEventType": event_type}, cursor, limit, descending],
        )
        result = result or {}
        return EventPage(
            data=list(result.get("data") or []),
            next_cursor=result.get("nextCursor"),
            has_next_page=bool(result.get("hasNextPage")),
        )

    async def get_transaction(self, digest: str) -> dict:
        """Fetch a transaction block including its programmable commands."""
        result = await self._call(
            "sui_getTransactionBlock",
            [digest, {"showInput": True, "showEffects": False, "showEvents": False}],
        )
        if not result:
            raise RpcError(f"Transaction {digest} not found")
        return result

    async def get_transaction_sender(self, digest: str) -> str | None:
        """Return the sender of a transaction, or None when it cannot be read."""
        try:
            tx = await self.get_transaction(digest)
        except (httpx.HTTPError, RpcError) as e:
            logger.debug(f"Could not read sender of {digest}: {e}")
            return None
        return ((tx.get("transaction") or {}).get("data") or {}).get("sender")

    async def get_token_metadata(self, coin_type: str) -> dict | None:
        """Fetch coin metadata (decimals, symbol, ...) for a coin type."""
        return await self._call("suix_getCoinMetadata", [coin_type])

    async def get_latest_epoch(self) -> str:
        """Return the current epoch number as reported by the system state."""
        result = await self._call("suix_getLatestSuiSystemState", [])
        epoch = (result or {}).get("epoch")
        if epoch is None:
            raise RpcError("System state did not include an epoch")
        return str(epoch)
