"""
Parsing of Tally HTTP responses.

Tally answers an import with a small XML document (RESPONSE or
ENVELOPE/BODY/DATA/IMPORTRESULT depending on the release). By the time we
parse, delivery has already succeeded, so a body that will not parse is
annotated rather than treated as an error.
"""
from __future__ import annotations
import re
from typing import Any, Optional
from lxml import etree
from loguru import logger

SUMMARY_FIELDS = ("CREATED", "ALTERED", "DELETED", "IGNORED", "ERRORS", "CANCELLED", "LASTVCHID")


def sanitize_xml(xml_string: str) -> str:
    """
    Sanitize XML string by removing invalid characters and character references.
    Tally often includes invalid control characters in XML output.
    """
    if not xml_string:
        return xml_string
    xml_string = re.sub(r'&#x([0-8bcefBCEF]|1[0-9a-fA-F]);', '', xml_string)
    xml_string = re.sub(r'&#([0-8]|1[124-9]|2[0-9]|3[01]);', '', xml_string)
    invalid_chars = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F]')
    return invalid_chars.sub('', xml_string)


def _element_to_value(elem: etree._Element) -> Any:
    """Convert an element to plain data: text for leaves, dicts for parents, lists for repeats."""
    children = [c for c in elem if isinstance(c.tag, str)]
    attrs = {f"@{k}": v for k, v in elem.attrib.items()}
    text = (elem.text or "").strip()

    if not children:
        if attrs:
            if text:
                attrs["#text"] = text
            return attrs
        return text

    result: dict[str, Any] = dict(attrs)
    for child in children:
        value = _element_to_value(child)
        if child.tag in result:
            if not isinstance(result[child.tag], list):
                result[child.tag] = [result[child.tag]]
            result[child.tag].append(value)
        else:
            result[child.tag] = value
    if text:
        result["#text"] = text
    return result


def parse_tally_response(xml_text: str) -> dict:
    """
    Parse a Tally response body into nested dicts.

    Returns ``{"raw": xml_text, "error": message}`` if the body is not XML.
    """
    try:
        root = etree.fromstring(sanitize_xml(xml_text or "").encode("utf-8"))
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.warning(f"Could not parse Tally response ({len(xml_text or '')} bytes): {e}")
        return {"raw": xml_text, "error": str(e)}
    return {root.tag: _element_to_value(root)}


def _find(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        if key in obj:
            return obj[key]
        for value in obj.values():
            found = _find(value, key)
            if found is not None:
                return found
    elif isinstance(obj, list):
        for value in obj:
            found = _find(value, key)
            if found is not None:
                return found
    return None


def summarize_import(response: dict) -> Optional[dict]:
    """
    Pull import counters (CREATED, ERRORS, ...) and LINEERROR out of a parsed response.

    Returns None when the response carries no import counters at all.
    """
    if "error" in response and "raw" in response:
        return None
    summary: dict[str, Any] = {}
    for name in SUMMARY_FIELDS:
        value = _find(response, name)
        if isinstance(value, str) and value.lstrip("-").isdigit():
            summary[name.lower()] = int(value)
    line_error = _find(response, "LINEERROR")
    if line_error is not None:
        summary["line_error"] = line_error if isinstance(line_error, str) else str(line_error)
    return summary or None
