from __future__ import annotations
import datetime as dt
from decimal import Decimal
from typing import Any, Literal, Mapping, Optional, Protocol
from pydantic import BaseModel, ConfigDict, SecretStr

SYNC_STATUSES = ("pending", "success", "failed")
SYNC_MODES = ("manual", "auto")


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    ledger_name: str
    amount: Decimal
    is_deemed_positive: bool     # True = debit


class InventoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    stock_item_name: str
    rate: Decimal
    amount: Decimal
    quantity: Decimal
    unit: str
    gst_applicable: bool = False
    hsn_code: str | None = None


class VoucherDocument(BaseModel):
    """Vendor-neutral voucher, serialized to Tally XML by tally_sync.envelope."""
    model_config = ConfigDict(frozen=True)

    voucher_type: str            # Sales, Purchase, Cash, Payment, Receipt, Credit Note
    date: dt.date
    voucher_number: str
    party_name: str | None = None
    narration: str
    ledger_entries: tuple[LedgerEntry, ...]
    inventory_entries: tuple[InventoryEntry, ...] = ()

    @property
    def debit_total(self) -> Decimal:
        return sum((e.amount for e in self.ledger_entries if e.is_deemed_positive), Decimal("0"))

    @property
    def credit_total(self) -> Decimal:
        return sum((e.amount for e in self.ledger_entries if not e.is_deemed_positive), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.debit_total == self.credit_total


class SyncLogEntry(BaseModel):
    id: int | None = None
    transaction_type: str
    transaction_id: int
    transaction_ref: str | None = None
    sync_status: Literal["pending", "success", "failed"]
    sync_attempts: int = 0
    last_sync_at: dt.datetime | None = None
    last_error: str | None = None
    tally_response: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class SyncConfig(BaseModel):
    """One row of tally_config, as stored (credentials still encrypted)."""
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    tally_url: str = "http://localhost:9000"
    company_name: str | None = None
    enabled: bool = False
    sync_mode: Literal["manual", "auto"] = "manual"
    auto_sync_enabled: bool = False
    connection_type: str = "gateway"
    api_key_encrypted: str | None = None
    api_secret_encrypted: str | None = None
    updated_at: dt.datetime | None = None

    @property
    def should_auto_sync(self) -> bool:
        return self.enabled and self.auto_sync_enabled

    def safe_view(self) -> dict:
        """Config for display; never includes ciphertext or secrets."""
        view = self.model_dump(exclude={"api_key_encrypted", "api_secret_encrypted"})
        view["has_api_key"] = bool(self.api_key_encrypted)
        view["has_api_secret"] = bool(self.api_secret_encrypted)
        return view


class ConfigUpdate(BaseModel):
    """Partial update of tally_config; unset or None fields keep their stored value."""
    model_config = ConfigDict(extra="forbid")

    tally_url: str | None = None
    company_name: str | None = None
    enabled: bool | None = None
    sync_mode: Literal["manual", "auto"] | None = None
    auto_sync_enabled: bool | None = None
    connection_type: str | None = None
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None


class ResolvedConfig(BaseModel):
    """Per-call view of the config with credentials decrypted in memory."""
    model_config = ConfigDict(frozen=True)

    tally_url: str
    company_name: str | None = None
    connection_type: str = "gateway"
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    timeout: int = 30

    def auth_headers(self) -> dict[str, str]:
        if self.connection_type != "gateway":
            return {}
        headers = {}
        if self.api_key is not None:
            headers["X-Api-Key"] = self.api_key.get_secret_value()
        if self.api_secret is not None:
            headers["X-Api-Secret"] = self.api_secret.get_secret_value()
        return headers


class SyncStore(Protocol):
    def get_transaction(self, transaction_type: str, transaction_id: int) -> Mapping[str, Any] | None: ...
    def get_config(self) -> SyncConfig | None: ...
    def upsert_config(self, values: Mapping[str, Any]) -> SyncConfig: ...
    def upsert_sync_log_entry(
        self,
        transaction_type: str,
        transaction_id: int,
        transaction_ref: Optional[str],
        status: str,
        error: Optional[str] = None,
        response: Optional[str] = None,
    ) -> SyncLogEntry: ...
    def query_failed_sync_log_entries(self, max_attempts: int) -> list[SyncLogEntry]: ...
    def query_sync_log_entries(self, limit: int, status: Optional[str] = None) -> list[SyncLogEntry]: ...
