"""
Sync ledger: one row per (transaction_type, transaction_id).

Each attempt is an upsert that increments ``sync_attempts``; the attempt
count is the only thing that decides whether the retry sweep may pick an
entry up again.
"""
from __future__ import annotations
import json
from typing import Any, Optional
from loguru import logger
from .models import SYNC_STATUSES, SyncLogEntry, SyncStore


class SyncLedger:
    def __init__(self, store: SyncStore):
        self.store = store

    def record_attempt(
        self,
        transaction_type: str,
        transaction_id: int,
        transaction_ref: Optional[str],
        status: str,
        error: Optional[str] = None,
        response: Any = None,
    ) -> SyncLogEntry:
        """
        Record one sync attempt.

        Inserts a row with one attempt on first sight of (type, id), otherwise
        bumps the attempt count and overwrites status, error, response and
        timestamp.
        """
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}. Valid: {list(SYNC_STATUSES)}")
        if response is not None and not isinstance(response, str):
            response = json.dumps(response, default=str)

        entry = self.store.upsert_sync_log_entry(
            transaction_type,
            transaction_id,
            transaction_ref,
            status,
            error=error,
            response=response,
        )
        logger.debug(
            f"Recorded {status} for {transaction_type}:{transaction_id} "
            f"(attempt {entry.sync_attempts})"
        )
        return entry

    def list_failed(self, max_attempts: int) -> list[SyncLogEntry]:
        """Failed entries still under the attempt cap, oldest first."""
        if max_attempts < 1:
            return []
        return self.store.query_failed_sync_log_entries(max_attempts)

    def list_entries(self, limit: int = 100, status: Optional[str] = None) -> list[SyncLogEntry]:
        """Most recent entries first, optionally filtered by status."""
        if status is not None and status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}. Valid: {list(SYNC_STATUSES)}")
        return self.store.query_sync_log_entries(max(limit, 0), status)
