"""
Tally HTTP client for voucher delivery.

One POST per call. Success is strictly a 2xx status; everything else raises
TallyDeliveryError. The client never retries: retries belong to the sync
ledger and the retry sweep, so every attempt is counted there.
"""
from __future__ import annotations
import requests
from loguru import logger
from typing import Iterable, Optional, Union
from pydantic import BaseModel
from .envelope import render_company_info, render_import_vouchers
from .models import VoucherDocument
from .parsers import parse_tally_response, summarize_import

DEFAULT_TIMEOUT = 30
CONNECTION_TEST_TIMEOUT = 10

DEFAULT_HEADERS = {
    "Content-Type": "application/xml",
    "Accept": "application/xml, text/xml",
    "User-Agent": "tally-sync/1.0",
}


class TallyDeliveryError(Exception):
    """Raised when a request to Tally fails at the transport level or returns non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryResult(BaseModel):
    status_code: int
    data: str
    response: dict
    summary: Optional[dict] = None


class TallyClient:
    """
    HTTP client for the Tally XML interface.

    Features:
    - Connection pooling via requests.Session
    - Per-call endpoint, timeout and headers (config is re-read per sync)
    - Response parsing that degrades to the raw body
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)

    def post_xml(
        self,
        xml: str,
        url: str,
        timeout: int = DEFAULT_TIMEOUT,
        headers: Optional[dict] = None,
    ) -> DeliveryResult:
        """
        Post XML to Tally and return the parsed response.

        Args:
            xml: XML request string
            url: Tally endpoint, e.g. http://localhost:9000
            timeout: Request timeout in seconds
            headers: Extra request headers (credentials for gateway connections)

        Raises:
            TallyDeliveryError: On connection failure, timeout or non-2xx status
        """
        try:
            r = self.session.post(
                url, data=xml.encode("utf-8"), timeout=timeout, headers=headers or {}
            )
        except requests.Timeout as e:
            logger.error(f"Tally request to {url} timed out after {timeout}s")
            raise TallyDeliveryError(f"Tally connection timeout after {timeout}s") from e
        except requests.ConnectionError as e:
            logger.error(f"Failed to connect to Tally at {url}: {e}")
            raise TallyDeliveryError(f"Failed to connect to Tally: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Tally request failed: {e}")
            raise TallyDeliveryError(f"Tally request failed: {e}") from e

        text = r.text
        if not 200 <= r.status_code < 300:
            raise TallyDeliveryError(
                f"Tally returned status {r.status_code}: {text[:500]}", status_code=r.status_code
            )

        response = parse_tally_response(text)
        return DeliveryResult(
            status_code=r.status_code,
            data=text,
            response=response,
            summary=summarize_import(response),
        )

    def deliver(
        self,
        documents: Union[VoucherDocument, Iterable[VoucherDocument]],
        url: str,
        timeout: int = DEFAULT_TIMEOUT,
        company: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> DeliveryResult:
        """Serialize one or more vouchers into an import envelope and send it."""
        if isinstance(documents, VoucherDocument):
            documents = [documents]
        documents = list(documents)
        xml = render_import_vouchers(documents, company=company)

        result = self.post_xml(xml, url, timeout=timeout, headers=headers)
        numbers = ", ".join(d.voucher_number for d in documents)
        if result.summary and result.summary.get("errors"):
            # Delivered, but Tally rejected something; stays a transport success
            logger.warning(
                f"Tally reported {result.summary['errors']} import error(s) for {numbers}: "
                f"{result.summary.get('line_error', 'no detail')}"
            )
        else:
            logger.debug(f"Delivered {numbers} to Tally ({result.status_code})")
        return result

    def test_connection(
        self,
        url: str,
        company: Optional[str] = None,
        headers: Optional[dict] = None,
        timeout: int = CONNECTION_TEST_TIMEOUT,
    ) -> dict:
        """
        Probe Tally with a Company Info export.

        Returns:
            Dict with success flag, message and either the response or an error
        """
        try:
            result = self.post_xml(render_company_info(company), url, timeout=timeout, headers=headers)
        except TallyDeliveryError as e:
            return {
                "success": False,
                "message": "Tally connection failed",
                "error": str(e),
            }
        return {
            "success": True,
            "message": "Tally connection successful",
            "response": result.model_dump(),
        }

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
