"""
PostgreSQL implementation of the SyncStore interface.
"""
from __future__ import annotations
from typing import Any, Mapping, Optional
from loguru import logger
from .base import DatabaseStore
from ..models import SyncConfig, SyncLogEntry

# Where each transaction type lives in the back office schema
TRANSACTION_TABLES = {
    "sales_bill": "bills",
    "purchase_voucher": "purchase_vouchers",
    "cash_entry": "ledger_transactions",
    "payment_receipt": "ledger_transactions",
    "sales_return": "sales_returns",
}

CONFIG_COLUMNS = (
    "tally_url",
    "company_name",
    "enabled",
    "sync_mode",
    "auto_sync_enabled",
    "connection_type",
    "api_key_encrypted",
    "api_secret_encrypted",
)


class PostgresSyncStore(DatabaseStore):
    """
    Storage for the sync subsystem.

    Supports:
    - Transaction lookup by (type, id)
    - tally_config read and partial update
    - tally_sync_log upsert and queries
    """

    def get_transaction(self, transaction_type: str, transaction_id: int) -> Optional[Mapping[str, Any]]:
        """Fetch the stored transaction, or None if it no longer exists."""
        table = TRANSACTION_TABLES.get(transaction_type)
        if table is None:
            raise ValueError(
                f"Unknown transaction type: {transaction_type}. Valid: {list(TRANSACTION_TABLES)}"
            )
        with self.conn.cursor() as cur:
            cur.execute(f"SELECT * FROM {table} WHERE id = %s", (transaction_id,))
            return cur.fetchone()

    def get_config(self) -> Optional[SyncConfig]:
        with self.conn.cursor() as cur:
            cur.execute("SELECT * FROM tally_config ORDER BY id DESC LIMIT 1")
            row = cur.fetchone()
        return SyncConfig.model_validate(row) if row else None

    def upsert_config(self, values: Mapping[str, Any]) -> SyncConfig:
        """
        Update the latest tally_config row with the given columns, or insert one.

        Columns not in ``values`` are left as stored.
        """
        unknown = set(values) - set(CONFIG_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown config columns: {sorted(unknown)}")
        columns = [c for c in CONFIG_COLUMNS if c in values]
        params = {c: values[c] for c in columns}

        with self.conn.cursor() as cur:
            cur.execute("SELECT id FROM tally_config ORDER BY id DESC LIMIT 1")
            existing = cur.fetchone()
            if existing:
                assignments = [f"{c} = %({c})s" for c in columns]
                assignments.append("updated_at = CURRENT_TIMESTAMP")
                params["id"] = existing["id"]
                cur.execute(
                    f"""
                    UPDATE tally_config
                    SET {", ".join(assignments)}
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    params,
                )
            elif columns:
                cur.execute(
                    f"""
                    INSERT INTO tally_config ({", ".join(columns)})
                    VALUES ({", ".join(f"%({c})s" for c in columns)})
                    RETURNING *
                    """,
                    params,
                )
            else:
                cur.execute("INSERT INTO tally_config DEFAULT VALUES RETURNING *")
            row = cur.fetchone()
        logger.debug(f"Saved tally_config columns: {columns}")
        return SyncConfig.model_validate(row)

    def upsert_sync_log_entry(
        self,
        transaction_type: str,
        transaction_id: int,
        transaction_ref: Optional[str],
        status: str,
        error: Optional[str] = None,
        response: Optional[str] = None,
    ) -> SyncLogEntry:
        """
        Atomic insert-or-increment keyed by (transaction_type, transaction_id).

        Relies on the unique index uq_tally_sync_log_transaction.
        """
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO tally_sync_log
                    (transaction_type, transaction_id, transaction_ref,
                     sync_status, sync_attempts, last_sync_at, last_error, tally_response)
                VALUES (%s, %s, %s, %s, 1, CURRENT_TIMESTAMP, %s, %s)
                ON CONFLICT (transaction_type, transaction_id) DO UPDATE SET
                    transaction_ref = COALESCE(EXCLUDED.transaction_ref, tally_sync_log.transaction_ref),
                    sync_status = EXCLUDED.sync_status,
                    sync_attempts = tally_sync_log.sync_attempts + 1,
                    last_sync_at = EXCLUDED.last_sync_at,
                    last_error = EXCLUDED.last_error,
                    tally_response = EXCLUDED.tally_response,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING *
                """,
                (transaction_type, transaction_id, transaction_ref, status, error, response),
            )
            return SyncLogEntry.model_validate(cur.fetchone())

    def query_failed_sync_log_entries(self, max_attempts: int) -> list[SyncLogEntry]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM tally_sync_log
                WHERE sync_status = 'failed'
                  AND sync_attempts < %s
                ORDER BY created_at ASC, id ASC
                """,
                (max_attempts,),
            )
            return [SyncLogEntry.model_validate(row) for row in cur.fetchall()]

    def query_sync_log_entries(self, limit: int, status: Optional[str] = None) -> list[SyncLogEntry]:
        where = "WHERE sync_status = %s" if status else ""
        params: tuple = (status, limit) if status else (limit,)
        with self.conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT * FROM tally_sync_log
                {where}
                ORDER BY last_sync_at DESC NULLS LAST, id DESC
                LIMIT %s
                """,
                params,
            )
            return [SyncLogEntry.model_validate(row) for row in cur.fetchall()]
