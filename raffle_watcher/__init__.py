"""Raffle watcher - Sui event ingestion and ticket allocation."""

__version__ = "0.1.0"
