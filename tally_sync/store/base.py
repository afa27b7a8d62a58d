"""
Base database utilities.

Provides connection management and DDL for the sync tables.
"""
from __future__ import annotations
import psycopg
from psycopg.rows import dict_row
from typing import Optional
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from ..config import AppSettings

# Tables owned by the sync subsystem. Business tables (bills, purchase_vouchers,
# ledger_transactions, sales_returns) belong to the back office schema.
SYNC_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS tally_config (
    id SERIAL PRIMARY KEY,
    tally_url VARCHAR(255) DEFAULT 'http://localhost:9000',
    company_name VARCHAR(255),
    api_key_encrypted TEXT,
    api_secret_encrypted TEXT,
    connection_type VARCHAR(50) DEFAULT 'gateway',
    enabled BOOLEAN DEFAULT false,
    sync_mode VARCHAR(50) DEFAULT 'manual',
    auto_sync_enabled BOOLEAN DEFAULT false,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS tally_sync_log (
    id SERIAL PRIMARY KEY,
    transaction_type VARCHAR(50) NOT NULL,
    transaction_id INTEGER NOT NULL,
    transaction_ref VARCHAR(100),
    sync_status VARCHAR(50) DEFAULT 'pending',
    sync_attempts INTEGER DEFAULT 0,
    last_sync_at TIMESTAMP,
    last_error TEXT,
    tally_response TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_tally_sync_log_transaction
    ON tally_sync_log(transaction_type, transaction_id);
CREATE INDEX IF NOT EXISTS idx_tally_sync_log_status ON tally_sync_log(sync_status);
"""


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(psycopg.OperationalError),
    before_sleep=lambda retry_state: logger.warning(
        f"Retrying database connection (attempt {retry_state.attempt_number})..."
    ),
    reraise=True,
)
def get_connection(settings: Optional[AppSettings] = None):
    """
    Create a database connection.

    Returns an autocommit psycopg connection yielding dict rows.
    """
    settings = settings or AppSettings.from_env()
    return psycopg.connect(settings.db_url, autocommit=True, row_factory=dict_row)


class DatabaseStore:
    """
    Base class for database access.

    Opens the connection lazily and reopens it if it was closed.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self.settings = settings or AppSettings.from_env()
        self._conn = None

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = get_connection(self.settings)
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def ensure_schema(self):
        """Create the sync tables and indexes if they don't exist."""
        with self.conn.cursor() as cur:
            cur.execute(SYNC_SCHEMA_DDL)
        logger.info("Tally sync tables initialized")
