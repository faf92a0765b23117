"""Main entry point for the raffle watcher."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .alerting import NoticeLogger, setup_app_logging
from .api import BlockberryClient, SuiRpcClient
from .config import Config, load_config
from .db import Repository
from .ingestion import SwapClassifier
from .watcher import WatcherSupervisor
from .winner import RaffleManager, SuiRandomnessOracle, WinnerSelector
from .workers import TicketWorker

logger = logging.getLogger(__name__)


class RaffleWatcherApp:
    """Main application class that orchestrates all components."""

    def __init__(self, config: Config):
        self.config = config

        # Initialize components
        self.repository = Repository(config.database.path)
        self.rpc = SuiRpcClient(config.ledger.rpc_url, timeout_s=config.ledger.timeout_s)
        self.indexer = BlockberryClient(
            api_key=config.indexer.api_key,
            base_url=config.indexer.base_url,
            trades_path=config.indexer.trades_path,
            timeout_s=config.indexer.timeout_s,
        )
        self.notices = NoticeLogger(
            log_file=config.logging.file,
            log_level=config.logging.level,
            max_file_size_mb=config.logging.max_file_size_mb,
            backup_count=config.logging.backup_count,
        )

        self.classifier = SwapClassifier(
            self.rpc,
            exchange_packages=config.classifier.exchange_packages,
            function_keywords=config.classifier.function_keywords,
        )
        self.supervisor = WatcherSupervisor(
            config,
            self.repository,
            self.rpc,
            indexer=self.indexer,
            classifier=self.classifier,
            on_transition=self.notices.source_transition,
        )
        self.worker = TicketWorker(
            self.repository,
            poll_interval_s=config.worker.poll_interval_s,
            max_attempts=config.worker.max_attempts,
        )
        oracle = SuiRandomnessOracle(
            self.rpc,
            package_id=config.randomness.package_id,
            randomness_object_id=config.randomness.randomness_object_id,
        )
        self.selector = WinnerSelector(self.repository, oracle=oracle, notices=self.notices)
        self.manager = RaffleManager(
            self.repository,
            self.selector,
            check_interval_s=config.raffle_manager.check_interval_s,
        )

    async def start(self):
        """Start all components."""
        logger.info("Starting raffle watcher...")

        # Initialize database
        await self.repository.initialize()

        await self.worker.start()
        await self.supervisor.start()
        await self.manager.start()

        logger.info(
            f"Watching {len(self.supervisor.watchers)} raffle event streams, "
            f"polling every {self.config.watcher.poll_interval_s:.0f}s"
        )

    async def stop(self):
        """Stop the watcher gracefully."""
        logger.info("Stopping raffle watcher...")

        await self.manager.stop()
        await self.supervisor.stop()
        await self.worker.stop()
        await self.rpc.close()
        await self.indexer.close()
        await self.repository.close()


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Raffle watcher - Track token purchases and stakes into raffle tickets"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def main_async(args):
    """Async main function."""
    # Load configuration
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    config = load_config(config_path)

    # Override log level if debug flag is set
    if args.debug:
        config.logging.level = "DEBUG"

    # Set up logging
    setup_app_logging(config.logging.level)

    app = RaffleWatcherApp(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await app.start()

    # Wait for shutdown signal
    await shutdown_event.wait()

    await app.stop()


def main():
    """Main entry point."""
    args = parse_args()

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
