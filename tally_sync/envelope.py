"""
Render Tally XML envelopes from VoucherDocuments.

The envelope layout (ENVELOPE/HEADER, ENVELOPE/BODY/DATA/TALLYMESSAGE/VOUCHER)
and tag names are fixed by Tally's import interface; see the templates in
``tally_sync/requests``.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Any, Iterable, Optional
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from .models import VoucherDocument
from .requests import TEMPLATE_DIR, TEMPLATES

_XML_ESCAPES = (
    ("&", "&amp;"),     # must run first
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(value: Any) -> str:
    """Escape the five XML metacharacters in free text."""
    if value is None:
        return ""
    text = str(value)
    for raw, entity in _XML_ESCAPES:
        text = text.replace(raw, entity)
    return text


def format_number(value: Any) -> str:
    """Plain decimal text, no exponent, no rounding."""
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)
_env.filters["xml"] = escape_xml
_env.filters["number"] = format_number
_env.filters["yesno"] = _yes_no


def render_import_vouchers(
    vouchers: Iterable[VoucherDocument], company: Optional[str] = None
) -> str:
    """Render an Import/Vouchers envelope with one TALLYMESSAGE per voucher."""
    template = _env.get_template(TEMPLATES["import_vouchers"])
    return template.render(vouchers=list(vouchers), company=company)


def render_company_info(company: Optional[str] = None) -> str:
    """Render the Company Info export request used as a connection probe."""
    template = _env.get_template(TEMPLATES["company_info"])
    return template.render(company=company)
