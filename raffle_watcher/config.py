"""Configuration loader for the raffle watcher."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

MOONBAGS_STAKE_EVENT = (
    "0x8f70ad5db84e1a99b542f86ccfb1a932ca7ba010a2fa12a1504d839ff4c111c6::moonbags_stake::StakeEvent"
)
MOONBAGS_UNSTAKE_EVENT = (
    "0x8f70ad5db84e1a99b542f86ccfb1a932ca7ba010a2fa12a1504d839ff4c111c6::moonbags_stake::UnstakeEvent"
)


@dataclass
class LedgerConfig:
    rpc_url: str = "https://fullnode.mainnet.sui.io:443"
    timeout_s: float = 30.0
    page_limit: int = 50
    max_pages: int = 3
    # Formatted with the raffle's coin type
    transfer_event_template: str = "0x2::coin::TransferEvent<{coin_type}>"


@dataclass
class IndexerConfig:
    base_url: str = "https://api.blockberry.one/v1/sui"
    api_key: str = ""
    trades_path: str = "defi/trades"
    page_limit: int = 100
    max_pages: int = 3
    timeout_s: float = 30.0


@dataclass
class WatcherConfig:
    poll_interval_s: float = 10.0
    refresh_interval_s: float = 30.0
    # Fallback from the indexer to the ledger
    failure_threshold: int = 3
    probe_probability: float = 0.1
    # Watermark compaction
    max_seen_keys: int = 200
    keep_seen_keys: int = 100


@dataclass
class ClassifierConfig:
    exchange_packages: list[str] = field(default_factory=list)
    function_keywords: list[str] = field(default_factory=lambda: ["swap", "trade", "exchange"])


@dataclass
class StakingConfig:
    enabled: bool = True
    stake_event_type: str = MOONBAGS_STAKE_EVENT
    unstake_event_type: str = MOONBAGS_UNSTAKE_EVENT


@dataclass
class TicketsConfig:
    default_decimals: int = 9


@dataclass
class RandomnessConfig:
    package_id: str = ""
    randomness_object_id: str = ""


@dataclass
class WorkerConfig:
    poll_interval_s: float = 1.0
    max_attempts: int = 5


@dataclass
class RaffleManagerConfig:
    check_interval_s: float = 60.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "logs/notices.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class DatabaseConfig:
    path: str = "data/raffle_watcher.db"


@dataclass
class Config:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    tickets: TicketsConfig = field(default_factory=TicketsConfig)
    randomness: RandomnessConfig = field(default_factory=RandomnessConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    raffle_manager: RaffleManagerConfig = field(default_factory=RaffleManagerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load configuration from YAML file; omitted sections and keys take their defaults."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = Config(
        ledger=LedgerConfig(**(raw.get("ledger") or {})),
        indexer=IndexerConfig(**(raw.get("indexer") or {})),
        watcher=WatcherConfig(**(raw.get("watcher") or {})),
        classifier=ClassifierConfig(**(raw.get("classifier") or {})),
        staking=StakingConfig(**(raw.get("staking") or {})),
        tickets=TicketsConfig(**(raw.get("tickets") or {})),
        randomness=RandomnessConfig(**(raw.get("randomness") or {})),
        worker=WorkerConfig(**(raw.get("worker") or {})),
        raffle_manager=RaffleManagerConfig(**(raw.get("raffle_manager") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
        database=DatabaseConfig(**(raw.get("database") or {})),
    )

    # Secrets may stay out of the file
    if not config.indexer.api_key:
        config.indexer.api_key = os.environ.get("BLOCKBERRY_API_KEY", "")

    return config
