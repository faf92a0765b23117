"""Ledger and indexing API clients."""

from .blockberry import BlockberryClient, IndexerNotConfiguredError, TradePage
from .sui_rpc import EventPage, RpcError, SuiRpcClient

__all__ = [
    "BlockberryClient",
    "IndexerNotConfiguredError",
    "TradePage",
    "SuiRpcClient",
    "EventPage",
    "RpcError",
]
