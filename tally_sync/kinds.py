"""
Transaction kinds known to the sync service.

Each kind bundles what differs between sales bills, purchase vouchers, cash
entries, payments/receipts and sales returns: the encoder, where the natural
reference lives on the record, and how to look the record up again for a
retry.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional
from .encoder import (
    encode_cash_entry,
    encode_payment_receipt,
    encode_purchase_voucher,
    encode_sales_invoice,
    encode_sales_return,
)
from .models import SyncStore, VoucherDocument


@dataclass(frozen=True)
class TransactionKind:
    name: str                   # ledger key, e.g. "sales_bill"
    label: str                  # shown in results, e.g. "Sales Bill"
    key_field: str              # result key carrying the natural reference
    ref_keys: tuple[str, ...]   # record fields holding that reference, in priority order
    encode: Callable[[Mapping[str, Any]], VoucherDocument]

    def natural_key(self, record: Mapping[str, Any]) -> Optional[str]:
        for key in self.ref_keys:
            value = record.get(key)
            if value is not None and value != "":
                return str(value)
        return None

    def fetch(self, store: SyncStore, transaction_id: int) -> Optional[Mapping[str, Any]]:
        return store.get_transaction(self.name, transaction_id)


SALES_BILL = TransactionKind(
    name="sales_bill",
    label="Sales Bill",
    key_field="bill_no",
    ref_keys=("bill_no", "billNo"),
    encode=encode_sales_invoice,
)
PURCHASE_VOUCHER = TransactionKind(
    name="purchase_voucher",
    label="Purchase Voucher",
    key_field="pv_no",
    ref_keys=("pv_no", "pvNo"),
    encode=encode_purchase_voucher,
)
CASH_ENTRY = TransactionKind(
    name="cash_entry",
    label="Cash Entry",
    key_field="reference",
    ref_keys=("reference", "bill_no", "billNo"),
    encode=encode_cash_entry,
)
PAYMENT_RECEIPT = TransactionKind(
    name="payment_receipt",
    label="Payment/Receipt",
    key_field="reference",
    ref_keys=("reference", "bill_no", "billNo"),
    encode=encode_payment_receipt,
)
SALES_RETURN = TransactionKind(
    name="sales_return",
    label="Sales Return",
    key_field="ssr_no",
    ref_keys=("ssr_no", "ssrNo"),
    encode=encode_sales_return,
)

KINDS: dict[str, TransactionKind] = {
    kind.name: kind
    for kind in (SALES_BILL, PURCHASE_VOUCHER, CASH_ENTRY, PAYMENT_RECEIPT, SALES_RETURN)
}


def get_kind(name: str) -> TransactionKind:
    if name not in KINDS:
        raise ValueError(f"Unknown transaction type: {name}. Valid: {list(KINDS)}")
    return KINDS[name]
