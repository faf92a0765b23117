"""Event ingestion: normalization, classification, sources, and watermarks."""

from .classifier import SwapClassifier
from .sources import (
    EventSource,
    FallbackSource,
    IndexerTradeSource,
    LedgerStakeSource,
    LedgerTransferSource,
    TokenDecimals,
)
from .watermark import Watermark

__all__ = [
    "SwapClassifier",
    "EventSource",
    "FallbackSource",
    "IndexerTradeSource",
    "LedgerStakeSource",
    "LedgerTransferSource",
    "TokenDecimals",
    "Watermark",
]
