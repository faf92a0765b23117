"""SQLite database schema."""

SCHEMA = """
-- Raffles created by operators; watched while active, started and not past end_time
CREATE TABLE IF NOT EXISTS raffles (
    id TEXT PRIMARY KEY,
    token TEXT NOT NULL,
    start_time TIMESTAMP NOT NULL,
    end_time TIMESTAMP NOT NULL,
    prize_description TEXT,
    minimum_purchase TEXT,
    tickets_per_token TEXT DEFAULT '100',
    staking_bonus_percent INTEGER DEFAULT 25,
    status TEXT NOT NULL DEFAULT 'active',
    started INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Ticket balance per wallet per raffle
CREATE TABLE IF NOT EXISTS tickets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raffle_id TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    ticket_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    UNIQUE (raffle_id, wallet_address)
);

-- Detected purchases; transaction_hash is the idempotency key
CREATE TABLE IF NOT EXISTS buy_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raffle_id TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    raw_amount TEXT,
    token_amount TEXT,
    ticket_count INTEGER NOT NULL,
    transaction_hash TEXT NOT NULL,
    source TEXT NOT NULL,
    timestamp TIMESTAMP NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    UNIQUE (raffle_id, transaction_hash)
);

CREATE TABLE IF NOT EXISTS sell_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raffle_id TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    raw_amount TEXT,
    token_amount TEXT,
    tickets_removed INTEGER NOT NULL,
    transaction_hash TEXT NOT NULL,
    source TEXT NOT NULL,
    timestamp TIMESTAMP NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    UNIQUE (raffle_id, transaction_hash)
);

-- Append-only stake ledger; tickets_adjusted is the bonus actually applied
CREATE TABLE IF NOT EXISTS stake_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raffle_id TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    stake_type TEXT NOT NULL,
    raw_amount TEXT NOT NULL,
    token_amount TEXT,
    requested_adjustment INTEGER NOT NULL DEFAULT 0,
    tickets_adjusted INTEGER NOT NULL DEFAULT 0,
    transaction_hash TEXT NOT NULL,
    staking_pool TEXT,
    staking_account TEXT,
    timestamp TIMESTAMP NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    UNIQUE (raffle_id, transaction_hash)
);

CREATE TABLE IF NOT EXISTS winners (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raffle_id TEXT NOT NULL UNIQUE,
    wallet_address TEXT NOT NULL,
    ticket_count INTEGER NOT NULL,
    winning_ticket_number INTEGER NOT NULL,
    selection_method TEXT NOT NULL,
    randomness_proof TEXT,
    total_tickets INTEGER NOT NULL,
    total_participants INTEGER NOT NULL,
    selected_at TIMESTAMP NOT NULL
);

-- Durable work queue between the watchers and the ticket worker
CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_raffles_status ON raffles(status);
CREATE INDEX IF NOT EXISTS idx_tickets_raffle ON tickets(raffle_id);
CREATE INDEX IF NOT EXISTS idx_stake_events_wallet ON stake_events(raffle_id, wallet_address);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, id);
"""
