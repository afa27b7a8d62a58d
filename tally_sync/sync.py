"""
Sync orchestration: business transactions -> Tally, with outcome tracking.

Provides:
- Per-kind sync entry points (sales bills, purchase vouchers, cash entries,
  payments/receipts, sales returns) sharing one pipeline
- Retry sweep over failed ledger entries below the attempt cap
- Sync log listing, connection test, config read/update

Sync entry points never raise. They are called from business event handlers,
and a broken Tally link must not block finalizing a bill.
"""
from __future__ import annotations
from typing import Any, Mapping, Optional, Union
from loguru import logger

from .client import TallyClient, TallyDeliveryError
from .config import AppSettings
from .crypto import CredentialCipher
from .encoder import EncodingDefect
from .kinds import TransactionKind, get_kind
from .ledger import SyncLedger
from .models import ConfigUpdate, ResolvedConfig, SyncConfig, SyncLogEntry, SyncStore


class TallySyncService:
    """
    Main synchronization orchestrator.

    Usage:
        with TallySyncService(PostgresSyncStore(settings), settings) as service:
            service.sync_sales_bill(bill, auto_sync=True)
            service.retry_failed_syncs()
            service.get_sync_logs(limit=50, status="failed")
    """

    def __init__(
        self,
        store: SyncStore,
        settings: Optional[AppSettings] = None,
        client: Optional[TallyClient] = None,
        cipher: Optional[CredentialCipher] = None,
    ):
        self.settings = settings or AppSettings.from_env()
        self.store = store
        self.ledger = SyncLedger(store)
        self.client = client or TallyClient()
        self.cipher = cipher or CredentialCipher.from_settings(self.settings)

    # -- configuration -----------------------------------------------------

    def load_config(self) -> SyncConfig:
        """Read the current tally_config row, creating the default one on first use."""
        config = self.store.get_config()
        if config is None:
            logger.info("No Tally config found, creating default (disabled, manual)")
            config = self.store.upsert_config({
                "tally_url": self.settings.default_tally_url,
                "company_name": self.settings.default_company,
                "enabled": False,
                "sync_mode": "manual",
                "auto_sync_enabled": False,
            })
        return config

    def resolve_config(self, config: SyncConfig) -> ResolvedConfig:
        """Decrypt credentials for the duration of one call."""
        return ResolvedConfig(
            tally_url=config.tally_url,
            company_name=config.company_name,
            connection_type=config.connection_type,
            api_key=self.cipher.decrypt(config.api_key_encrypted),
            api_secret=self.cipher.decrypt(config.api_secret_encrypted),
            timeout=self.settings.request_timeout,
        )

    def get_config(self) -> dict:
        """Current config without secrets."""
        return self.load_config().safe_view()

    def update_config(self, changes: Union[ConfigUpdate, Mapping[str, Any]]) -> dict:
        """
        Partially update the config.

        Omitted (or None) fields keep their stored value. Credentials are
        re-encrypted only when a new non-empty plaintext is given; otherwise
        the stored ciphertext is kept as is.
        """
        update = changes if isinstance(changes, ConfigUpdate) else ConfigUpdate.model_validate(changes)
        self.load_config()

        values = update.model_dump(exclude_unset=True, exclude_none=True, exclude={"api_key", "api_secret"})
        if update.api_key is not None and update.api_key.get_secret_value():
            values["api_key_encrypted"] = self.cipher.encrypt(update.api_key.get_secret_value())
        if update.api_secret is not None and update.api_secret.get_secret_value():
            values["api_secret_encrypted"] = self.cipher.encrypt(update.api_secret.get_secret_value())

        config = self.store.upsert_config(values)
        logger.info(f"Tally config updated: {sorted(values)}")
        return config.safe_view()

    # -- sync pipeline -----------------------------------------------------

    def _record(
        self,
        kind: TransactionKind,
        transaction_id: Any,
        ref: Optional[str],
        status: str,
        error: Optional[str] = None,
        response: Any = None,
    ) -> None:
        if transaction_id is None:
            logger.error(f"Not recording {status} for {kind.name} {ref}: record has no id")
            return
        try:
            self.ledger.record_attempt(kind.name, transaction_id, ref, status, error=error, response=response)
        except Exception:
            # Ledger failures never reach business callers
            logger.exception(f"Could not record Tally sync for {kind.name}:{transaction_id}")

    def _failed(self, kind: TransactionKind, transaction_id: Any, ref: Optional[str], error: str) -> dict:
        self._record(kind, transaction_id, ref, "failed", error=error)
        return {"success": False, "type": kind.label, kind.key_field: ref, "error": error}

    def sync(
        self,
        kind: Union[str, TransactionKind],
        record: Mapping[str, Any],
        auto_sync: bool = False,
    ) -> dict:
        """
        Sync one transaction to Tally.

        Args:
            kind: Transaction kind or its name (e.g. 'sales_bill')
            record: Stored transaction row
            auto_sync: True when triggered by a business event rather than an operator

        Returns:
            Dict with success, type, the natural reference and either
            tally_response or error. Disabled sync returns success=False
            with skipped=True and writes nothing.
        """
        kind = kind if isinstance(kind, TransactionKind) else get_kind(kind)
        ref = kind.natural_key(record)
        transaction_id = record.get("id")

        try:
            config = self.load_config()
        except Exception as e:
            logger.exception(f"Could not read Tally config for {kind.label} {ref}")
            return self._failed(kind, transaction_id, ref, f"Could not read Tally config: {e}")

        if not config.enabled:
            return {"success": False, "type": kind.label, kind.key_field: ref,
                    "skipped": True, "message": "Tally integration is disabled"}
        if auto_sync and not config.should_auto_sync:
            return {"success": False, "type": kind.label, kind.key_field: ref,
                    "skipped": True, "message": "Auto-sync is disabled"}

        if transaction_id is None:
            logger.error(f"{kind.label} {ref} has no id; cannot track its Tally sync")
            return {"success": False, "type": kind.label, kind.key_field: ref,
                    "error": "Transaction has no id"}

        try:
            resolved = self.resolve_config(config)
            document = kind.encode(record)
            delivery = self.client.deliver(
                document,
                resolved.tally_url,
                timeout=resolved.timeout,
                company=resolved.company_name,
                headers=resolved.auth_headers(),
            )
        except EncodingDefect as e:
            # Bad data upstream; retrying will not help until the record is fixed
            logger.error(f"Cannot encode {kind.label} {ref} (id {transaction_id}): {e}")
            return self._failed(kind, transaction_id, ref, f"Encoding error: {e}")
        except TallyDeliveryError as e:
            logger.warning(f"Tally sync failed for {kind.label} {ref}: {e}")
            return self._failed(kind, transaction_id, ref, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error syncing {kind.label} {ref}")
            return self._failed(kind, transaction_id, ref, str(e))

        response = delivery.model_dump()
        self._record(kind, transaction_id, ref, "success", response=response)
        logger.info(f"Synced {kind.label} {ref} to Tally")
        return {"success": True, "type": kind.label, kind.key_field: ref, "tally_response": response}

    def sync_sales_bill(self, bill: Mapping[str, Any], auto_sync: bool = False) -> dict:
        return self.sync("sales_bill", bill, auto_sync)

    def sync_purchase_voucher(self, pv: Mapping[str, Any], auto_sync: bool = False) -> dict:
        return self.sync("purchase_voucher", pv, auto_sync)

    def sync_cash_entry(self, txn: Mapping[str, Any], auto_sync: bool = False) -> dict:
        return self.sync("cash_entry", txn, auto_sync)

    def sync_payment_receipt(self, txn: Mapping[str, Any], auto_sync: bool = False) -> dict:
        return self.sync("payment_receipt", txn, auto_sync)

    def sync_sales_return(self, sales_return: Mapping[str, Any], auto_sync: bool = False) -> dict:
        return self.sync("sales_return", sales_return, auto_sync)

    def sync_transaction(self, transaction_type: str, transaction_id: int) -> dict:
        """Fetch a stored transaction and sync it (operator-triggered, ignores the retry cap)."""
        kind = get_kind(transaction_type)
        record = kind.fetch(self.store, transaction_id)
        if record is None:
            return {"success": False, "type": kind.label, "transaction_id": transaction_id,
                    "error": f"{kind.label} {transaction_id} not found"}
        return self.sync(kind, record, auto_sync=False)

    # -- retry & observability ---------------------------------------------

    def retry_failed_syncs(self, max_attempts: Optional[int] = None) -> list[dict]:
        """
        Replay failed syncs that are still under the attempt cap.

        Candidates are processed one at a time, oldest first. A transaction
        deleted since it failed is skipped, and an error on one candidate
        never stops the sweep.
        """
        if max_attempts is None:
            max_attempts = self.settings.max_retry_attempts
        candidates = self.ledger.list_failed(max_attempts)
        logger.info(f"Retrying {len(candidates)} failed Tally sync(s) (max attempts {max_attempts})")

        results = []
        for entry in candidates:
            outcome = {
                "transaction_type": entry.transaction_type,
                "transaction_id": entry.transaction_id,
            }
            try:
                kind = get_kind(entry.transaction_type)
                record = kind.fetch(self.store, entry.transaction_id)
                if record is None:
                    logger.warning(
                        f"Skipping retry of {entry.transaction_type}:{entry.transaction_id}, "
                        f"transaction no longer exists"
                    )
                    outcome.update(success=False, skipped=True, error="Transaction not found")
                else:
                    result = self.sync(kind, record, auto_sync=False)
                    outcome["success"] = result["success"]
                    if not result["success"]:
                        outcome["error"] = result.get("error") or result.get("message")
            except Exception as e:
                logger.exception(
                    f"Error retrying sync for {entry.transaction_type}:{entry.transaction_id}"
                )
                outcome.update(success=False, error=str(e))
            results.append(outcome)

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"Retry sweep complete: {succeeded}/{len(results)} succeeded")
        return results

    def get_sync_logs(self, limit: int = 100, status: Optional[str] = None) -> list[SyncLogEntry]:
        return self.ledger.list_entries(limit, status)

    def test_connection(self) -> dict:
        """Probe the configured Tally endpoint. Does not touch the sync log."""
        try:
            resolved = self.resolve_config(self.load_config())
        except Exception as e:
            logger.exception("Could not resolve Tally config for connection test")
            return {"success": False, "message": "Tally connection failed", "error": str(e)}
        return self.client.test_connection(
            resolved.tally_url,
            company=resolved.company_name,
            headers=resolved.auth_headers(),
            timeout=self.settings.connection_test_timeout,
        )

    def close(self):
        """Close all connections."""
        self.client.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
