"""
Voucher encoders: business transactions -> VoucherDocument.

One function per transaction kind. Records are read-only mappings as stored
by the back office (psycopg dict rows or JSON payloads), so every field is
looked up under its snake_case and camelCase names. Missing optional fields
fall back to placeholders; amounts are passed through as stored, never
rounded.

These functions do no I/O. The clock is only consulted for a missing date or
voucher number and can be pinned with ``now=``.
"""
from __future__ import annotations
import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional
from .models import InventoryEntry, LedgerEntry, VoucherDocument

ZERO = Decimal("0")


class EncodingDefect(ValueError):
    """Raised when a stored transaction cannot be turned into a voucher."""
    pass


class UnbalancedVoucherError(EncodingDefect):
    """Raised when an encoded voucher's debits and credits differ."""
    pass


def _pick(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first value present under any of ``keys``; None and "" count as absent."""
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return default


def _amount(value: Any, field_name: str = "amount") -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise EncodingDefect(f"Invalid {field_name}: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        # str() keeps the shortest repr, e.g. 1000.5 -> "1000.5"
        amount = Decimal(str(value))
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise EncodingDefect(f"Invalid {field_name}: {value!r}") from e
    if not amount.is_finite():
        raise EncodingDefect(f"Invalid {field_name}: {value!r}")
    return amount


def _voucher_date(record: Mapping[str, Any], now: datetime) -> date:
    value = record.get("date")
    if value is None or value == "":
        return now.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise EncodingDefect(f"Invalid date: {value!r}") from e


def _items(record: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items = record.get("items")
    if items is None or items == "":
        return []
    if isinstance(items, str):
        try:
            items = json.loads(items)
        except json.JSONDecodeError as e:
            raise EncodingDefect(f"Items are not valid JSON: {e}") from e
    if not isinstance(items, list) or not all(isinstance(i, Mapping) for i in items):
        raise EncodingDefect("Items must be a list of objects")
    return items


def _fallback_number(prefix: str, record: Mapping[str, Any], now: datetime) -> str:
    """Stable across retries when the record has an id, timestamp-based otherwise."""
    record_id = record.get("id")
    if record_id is not None and record_id != "":
        return f"{prefix}-{record_id}"
    return f"{prefix}-{int(now.timestamp() * 1000)}"


def _ledger(name: str, amount: Decimal, debit: bool) -> LedgerEntry:
    return LedgerEntry(ledger_name=name, amount=amount, is_deemed_positive=debit)


def _inventory(
    item: Mapping[str, Any],
    default_name: str,
    quantity_keys: tuple[str, ...],
    unit: str,
) -> InventoryEntry:
    quantity = _amount(_pick(item, *quantity_keys, default=1), "quantity")
    rate = _amount(_pick(item, "rate", default=0), "rate")
    total = _pick(item, "total", "amount")
    amount = _amount(total, "item amount") if total is not None else rate * quantity
    hsn = _pick(item, "hsn", "hsn_code", "hsnCode")
    return InventoryEntry(
        stock_item_name=str(_pick(item, "itemName", "item_name", "shortName", "short_name", default=default_name)),
        rate=rate,
        amount=amount,
        quantity=quantity,
        unit=unit,
        gst_applicable=bool(item.get("gst")),
        hsn_code=str(hsn) if hsn is not None else None,
    )


def _tax_lines(record: Mapping[str, Any], debit: bool) -> list[LedgerEntry]:
    """GST/CGST/SGST output lines, only for taxes greater than zero."""
    lines = []
    for field_name, ledger_name in (("gst", "GST Output"), ("cgst", "CGST Output"), ("sgst", "SGST Output")):
        tax = _amount(record.get(field_name), field_name)
        if tax > ZERO:
            lines.append(_ledger(ledger_name, tax, debit))
    return lines


def _balanced(document: VoucherDocument) -> VoucherDocument:
    if not document.is_balanced:
        raise UnbalancedVoucherError(
            f"{document.voucher_type} {document.voucher_number} is unbalanced: "
            f"debit {document.debit_total} != credit {document.credit_total}"
        )
    return document


def encode_sales_invoice(bill: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """
    Sales bill -> Sales voucher.

    Sales is credited with the net total, each tax above zero gets its own
    output credit line, and the customer is debited with the sum of both.
    """
    now = now or datetime.now()
    number = str(_pick(bill, "bill_no", "billNo", default=None) or _fallback_number("INV", bill, now))
    customer = str(_pick(bill, "customer_name", "customerName", default="Cash Customer"))
    net_total = _amount(_pick(bill, "net_total", "netTotal", "total"), "net total")
    taxes = _tax_lines(bill, debit=False)

    entries = [
        _ledger("Sales", net_total, debit=False),
        _ledger(customer, net_total + sum((t.amount for t in taxes), ZERO), debit=True),
        *taxes,
    ]
    return _balanced(VoucherDocument(
        voucher_type="Sales",
        date=_voucher_date(bill, now),
        voucher_number=number,
        party_name=customer,
        narration=f"Sales Invoice - {number}",
        ledger_entries=tuple(entries),
        inventory_entries=tuple(
            _inventory(item, "Jewelry Item", ("pcs", "quantity"), "PCS") for item in _items(bill)
        ),
    ))


def encode_purchase_voucher(pv: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """Metal purchase voucher -> Purchase voucher (Purchase debited, supplier credited)."""
    now = now or datetime.now()
    number = str(_pick(pv, "pv_no", "pvNo", default=None) or _fallback_number("PV", pv, now))
    supplier = str(_pick(pv, "supplier_name", "supplierName", default="Metal Supplier"))
    total = _amount(_pick(pv, "total", "net_total", "netTotal"), "total")

    inventory = []
    for item in _items(pv):
        unit = str(_pick(item, "unit", default="GMS"))
        inventory.append(_inventory(item, "Metal Purchase", ("pcs", "quantity", "weight"), unit))

    return _balanced(VoucherDocument(
        voucher_type="Purchase",
        date=_voucher_date(pv, now),
        voucher_number=number,
        party_name=supplier,
        narration=f"Metal Purchase - {number}",
        ledger_entries=(
            _ledger("Purchase", total, debit=True),
            _ledger(supplier, total, debit=False),
        ),
        inventory_entries=tuple(inventory),
    ))


def _cash_ledger(cash_type: str) -> str:
    return cash_type if cash_type in ("Cash-1", "Cash-2") else "Cash"


def encode_cash_entry(txn: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """
    Cash book entry -> Cash voucher.

    Transfers always move between the two fixed cash drawers: a Cash-1
    origin debits Cash-2 and credits Cash-1, anything else the reverse.
    """
    now = now or datetime.now()
    number = str(_pick(txn, "reference", "bill_no", "billNo", default=None) or _fallback_number("CASH", txn, now))
    amount = _amount(txn.get("amount"))
    transaction_type = str(_pick(txn, "transaction_type", "transactionType", default="Cash"))
    cash_type = str(_pick(txn, "cash_type", "cashType", default="Cash-1"))
    customer = _pick(txn, "customer_name", "customerName")
    narration = str(_pick(txn, "description", default=None) or transaction_type or "Cash Transaction")

    cash_ledger = _cash_ledger(cash_type)
    if transaction_type in ("Cash Received", "Payment Received"):
        debit, credit = cash_ledger, customer or "Cash"
    elif transaction_type in ("Cash Paid", "Payment Made"):
        debit, credit = customer or "Cash", cash_ledger
    elif transaction_type == "Cash Transfer":
        if cash_type == "Cash-1":
            debit, credit = "Cash-2", "Cash-1"
        else:
            debit, credit = "Cash-1", "Cash-2"
    else:
        debit, credit = cash_ledger, customer or "Miscellaneous"

    return _balanced(VoucherDocument(
        voucher_type="Cash",
        date=_voucher_date(txn, now),
        voucher_number=number,
        narration=narration,
        ledger_entries=(
            _ledger(str(debit), amount, debit=True),
            _ledger(str(credit), amount, debit=False),
        ),
    ))


def encode_payment_receipt(txn: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """Accounts billing payment/receipt -> Payment or Receipt voucher."""
    now = now or datetime.now()
    number = str(_pick(txn, "reference", "bill_no", "billNo", default=None) or _fallback_number("PAY", txn, now))
    amount = _amount(txn.get("amount"))
    transaction_type = str(_pick(txn, "transaction_type", "transactionType", default="Payment"))
    customer = str(_pick(txn, "customer_name", "customerName", default="Customer"))
    method = str(_pick(txn, "payment_method", "paymentMethod", default="Cash"))
    narration = str(_pick(txn, "description", default=None) or transaction_type)

    cash_or_bank = "Cash" if method.strip().lower() == "cash" else "Bank"
    if transaction_type in ("Payment Received", "Receipt"):
        voucher_type, debit, credit = "Receipt", cash_or_bank, customer
    else:
        voucher_type, debit, credit = "Payment", customer, cash_or_bank

    return _balanced(VoucherDocument(
        voucher_type=voucher_type,
        date=_voucher_date(txn, now),
        voucher_number=number,
        party_name=customer,
        narration=narration,
        ledger_entries=(
            _ledger(debit, amount, debit=True),
            _ledger(credit, amount, debit=False),
        ),
    ))


def encode_sales_return(sales_return: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """
    Sales return -> Credit Note.

    Polarity is the reverse of the sales invoice: Sales and the taxes are
    debited, the customer is credited.
    """
    now = now or datetime.now()
    number = str(_pick(sales_return, "ssr_no", "ssrNo", default=None) or _fallback_number("SSR", sales_return, now))
    customer = str(_pick(sales_return, "customer_name", "customerName", default="Customer"))
    net_total = _amount(_pick(sales_return, "net_total", "netTotal", "total"), "net total")
    original_bill = _pick(sales_return, "bill_no", "billNo")
    reason = str(_pick(sales_return, "reason", default="Product Return"))
    taxes = _tax_lines(sales_return, debit=True)

    narration = f"Sales Return {number} - {reason}"
    if original_bill:
        narration += f" (Original Bill: {original_bill})"

    entries = [
        _ledger("Sales", net_total, debit=True),
        _ledger(customer, net_total + sum((t.amount for t in taxes), ZERO), debit=False),
        *taxes,
    ]
    return _balanced(VoucherDocument(
        voucher_type="Credit Note",
        date=_voucher_date(sales_return, now),
        voucher_number=number,
        party_name=customer,
        narration=narration,
        ledger_entries=tuple(entries),
        inventory_entries=tuple(
            _inventory(item, "Jewelry Item", ("pcs", "quantity"), "PCS") for item in _items(sales_return)
        ),
    ))


ENCODERS: dict[str, Callable[..., VoucherDocument]] = {
    "sales_bill": encode_sales_invoice,
    "purchase_voucher": encode_purchase_voucher,
    "cash_entry": encode_cash_entry,
    "payment_receipt": encode_payment_receipt,
    "sales_return": encode_sales_return,
}


def encode(transaction_type: str, record: Mapping[str, Any], now: Optional[datetime] = None) -> VoucherDocument:
    """Encode a stored transaction of the given type."""
    if transaction_type not in ENCODERS:
        raise ValueError(f"Unknown transaction type: {transaction_type}. Valid: {list(ENCODERS)}")
    return ENCODERS[transaction_type](record, now=now)
