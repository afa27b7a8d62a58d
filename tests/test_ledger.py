"""Tests for the sync ledger."""
import pytest
from tally_sync.ledger import SyncLedger


@pytest.fixture
def ledger(store):
    return SyncLedger(store)


def test_first_attempt_inserts_one_row(ledger, store):
    entry = ledger.record_attempt("sales_bill", 1, "INV-1", "failed", error="boom")
    assert entry.sync_attempts == 1
    assert entry.last_error == "boom"
    assert len(store.log) == 1


def test_repeat_attempts_increment_single_row(ledger, store):
    ledger.record_attempt("sales_bill", 1, "INV-1", "failed", error="boom")
    entry = ledger.record_attempt("sales_bill", 1, "INV-1", "success", response={"status_code": 200})
    assert len(store.log) == 1
    assert entry.sync_attempts == 2
    assert entry.sync_status == "success"
    assert entry.last_error is None
    assert entry.tally_response == '{"status_code": 200}'


def test_same_id_different_type_are_separate(ledger, store):
    ledger.record_attempt("cash_entry", 5, "R-5", "failed")
    ledger.record_attempt("payment_receipt", 5, "R-5", "failed")
    assert len(store.log) == 2


def test_unknown_status_rejected(ledger):
    with pytest.raises(ValueError, match="Unknown sync status"):
        ledger.record_attempt("sales_bill", 1, "INV-1", "done")


def test_list_failed_respects_cap(ledger):
    for _ in range(3):
        ledger.record_attempt("sales_bill", 1, "INV-1", "failed")
    ledger.record_attempt("sales_bill", 2, "INV-2", "failed")
    ledger.record_attempt("sales_bill", 3, "INV-3", "success")

    assert [e.transaction_id for e in ledger.list_failed(3)] == [2]
    assert [e.transaction_id for e in ledger.list_failed(4)] == [1, 2]
    assert ledger.list_failed(1) == []
    assert ledger.list_failed(0) == []


def test_list_entries_newest_first(ledger):
    ledger.record_attempt("sales_bill", 1, "INV-1", "failed")
    ledger.record_attempt("sales_bill", 2, "INV-2", "success")
    ledger.record_attempt("sales_bill", 1, "INV-1", "failed")

    assert [e.transaction_id for e in ledger.list_entries()] == [1, 2]
    assert [e.transaction_id for e in ledger.list_entries(status="success")] == [2]
    assert len(ledger.list_entries(limit=1)) == 1
    with pytest.raises(ValueError):
        ledger.list_entries(status="bogus")
