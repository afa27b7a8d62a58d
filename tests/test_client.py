"""Tests for the Tally HTTP client (session.post mocked)."""
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock, patch
import pytest
import requests
from tally_sync.client import TallyClient, TallyDeliveryError
from tally_sync.models import LedgerEntry, VoucherDocument

FIX = Path(__file__).parent / "fixtures"
URL = "http://tally.test:9000"


def response(status_code=200, text=""):
    r = Mock()
    r.status_code = status_code
    r.text = text
    return r


@pytest.fixture
def document():
    return VoucherDocument(
        voucher_type="Cash",
        date=date(2024, 4, 1),
        voucher_number="CT-1",
        narration="Cash Transfer",
        ledger_entries=(
            LedgerEntry(ledger_name="Cash-2", amount=Decimal("1000"), is_deemed_positive=True),
            LedgerEntry(ledger_name="Cash-1", amount=Decimal("1000"), is_deemed_positive=False),
        ),
    )


def test_deliver_success(document):
    client = TallyClient()
    body = (FIX / "import_success.xml").read_text(encoding="utf-8")
    with patch.object(client.session, "post", return_value=response(200, body)) as post:
        result = client.deliver(document, URL, timeout=15, company="Test Jewels", headers={"X-Api-Key": "k"})

    assert result.status_code == 200
    assert result.summary["created"] == 1
    args, kwargs = post.call_args
    assert args == (URL,)
    assert kwargs["timeout"] == 15
    assert kwargs["headers"] == {"X-Api-Key": "k"}
    sent = kwargs["data"].decode("utf-8")
    assert "<VOUCHERNUMBER>CT-1</VOUCHERNUMBER>" in sent
    assert "<SVCURRENTCOMPANY>Test Jewels</SVCURRENTCOMPANY>" in sent


def test_default_headers_set_on_session():
    client = TallyClient()
    assert client.session.headers["Content-Type"] == "application/xml"


def test_import_errors_in_body_still_succeed(document):
    client = TallyClient()
    body = (FIX / "import_error.xml").read_text(encoding="utf-8")
    with patch.object(client.session, "post", return_value=response(200, body)):
        result = client.deliver(document, URL)
    assert result.summary["errors"] == 1


def test_unparseable_body_still_succeeds(document):
    client = TallyClient()
    with patch.object(client.session, "post", return_value=response(200, "OK")):
        result = client.deliver(document, URL)
    assert result.response["raw"] == "OK"
    assert result.summary is None


def test_non_2xx_raises(document):
    client = TallyClient()
    with patch.object(client.session, "post", return_value=response(500, "Internal error")):
        with pytest.raises(TallyDeliveryError) as exc:
            client.deliver(document, URL)
    assert exc.value.status_code == 500
    assert "500" in str(exc.value)


def test_connection_refused_raises(document):
    client = TallyClient()
    with patch.object(client.session, "post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(TallyDeliveryError, match="Failed to connect"):
            client.deliver(document, URL)


def test_timeout_raises(document):
    client = TallyClient()
    with patch.object(client.session, "post", side_effect=requests.Timeout()):
        with pytest.raises(TallyDeliveryError, match="timeout after 30s"):
            client.deliver(document, URL)


def test_test_connection_reports_failure():
    client = TallyClient()
    with patch.object(client.session, "post", side_effect=requests.ConnectionError("refused")):
        result = client.test_connection(URL, company="Test Jewels")
    assert result["success"] is False
    assert result["message"] == "Tally connection failed"
    assert "refused" in result["error"]


def test_test_connection_success_uses_probe_timeout():
    client = TallyClient()
    with patch.object(client.session, "post", return_value=response(200, "<ENVELOPE/>")) as post:
        result = client.test_connection(URL)
    assert result["success"] is True
    assert post.call_args.kwargs["timeout"] == 10
    assert "Company Info" in post.call_args.kwargs["data"].decode("utf-8")
