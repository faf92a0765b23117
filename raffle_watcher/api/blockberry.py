"""Client for the Blockberry indexing API - fetches DEX trades for a coin."""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class IndexerNotConfiguredError(RuntimeError):
    """The indexing API was called without an API key."""


@dataclass
class TradePage:
    """One page of raw trade rows plus whatever cursor the API returned."""

    trades: list[dict]
    next_cursor: str | None


class BlockberryClient:
    """Client for the Blockberry trades endpoint."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.blockberry.one/v1/sui",
        trades_path: str = "defi/trades",
        filter_param: str = "coinType",
        order_param: str = "order",
        cursor_param: str = "cursor",
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.trades_path = trades_path.lstrip("/")
        self.filter_param = filter_param
        self.order_param = order_param
        self.cursor_param = cursor_param
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

        if not self.api_key:
            logger.warning("Blockberry API key not configured; indexer will remain inactive")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def fetch_trades(
        self,
        token: str,
        limit: int = 100,
        cursor: str | None = None,
        order: str = "desc",
    ) -> TradePage:
        """
        Fetch one page of trades for a coin type.

        Args:
            token: Coin type to filter on
            limit: Page size
            cursor: Cursor from a previous page
            order: "desc" (newest first) or "asc"

        Returns:
            TradePage with raw trade rows
        """
        if not self.is_configured():
            raise IndexerNotConfiguredError("Blockberry client called without an API key")

        params = {
            self.filter_param: token,
            "limit": limit,
            self.order_param: order,
        }
        if cursor:
            params[self.cursor_param] = cursor

        response = await self._client.get(
            f"{self.base_url}/{self.trades_path}",
            params=params,
            headers={
                "Accept": "application/json",
                "x-api-key": self.api_key,
            },
        )
        response.raise_for_status()

        data = response.json()

        if isinstance(data, list):
            return TradePage(trades=data, next_cursor=None)

        trades = data.get("data")
        if not isinstance(trades, list):
            logger.warning("Blockberry trade response missing data array")
            return TradePage(trades=[], next_cursor=None)

        return TradePage(trades=trades, next_cursor=self.extract_next_cursor(data))

    @staticmethod
    def extract_next_cursor(response: dict) -> str | None:
        """Find the pagination cursor, whichever field the API used this time."""
        for key in ("nextCursor", "cursor", "next_page_token"):
            if response.get(key):
                return str(response[key])

        page_info = response.get("pageInfo") or {}
        for key in ("nextCursor", "endCursor"):
            if page_info.get(key):
                return str(page_info[key])

        return None
