"""Payload parsing for completed calls.

Turns a call's raw payload into a plain Python document:

- XML payloads become dicts via element_to_document() (attributes as ``@name``,
  mixed text as ``#text``, repeated children as lists).
- JSON payloads are decoded with the standard json module.

Anything that is not a well-formed document of the expected shape, or that
carries a service-level failure marker, raises PayloadError. These failures
sit outside the transport/HTTP error taxonomy: the HTTP exchange itself
succeeded.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Collection

from rest_proxy.errors import PayloadError

if TYPE_CHECKING:
    from rest_proxy.call import RestProxyCall


# ---------------------------------------------------------------------------
# XML → document
# ---------------------------------------------------------------------------

# Service responses are small envelopes such as
#   <rsp stat="ok"><photo id="7" secret="x"/><tag>a</tag><tag>b</tag></rsp>
# An element becomes a document dict: attributes as "@name", children by
# local tag name (a list once a tag repeats), trimmed text as "#text".
# Below the root, elements with nothing but text collapse to that string
# and fully empty ones to None.


def _local_name(tag: str) -> str:
    """``{namespace-uri}name`` → ``name``."""
    return tag.rpartition("}")[2]


def element_to_document(
    element: ET.Element,
    force_list: Collection[str] = (),
) -> dict[str, Any]:
    """Convert an element into a document dict.

    Args:
        element: The element to convert.
        force_list: Child tags that are always lists, even when they occur
            once. Use this for repeating items (``photo``, ``tag``) so a
            single-result page has the same shape as a longer one.
    """
    document: dict[str, Any] = {
        f"@{name}": value
        for name, value in element.attrib.items()
        if not name.startswith("{")
    }

    repeated: set[str] = set()
    for child in element:
        tag = _local_name(child.tag)
        value = _child_value(child, force_list)
        if tag in force_list or tag in repeated:
            document.setdefault(tag, []).append(value)
        elif tag in document:
            document[tag] = [document[tag], value]
            repeated.add(tag)
        else:
            document[tag] = value

    text = (element.text or "").strip()
    if text:
        document["#text"] = text
    return document


def _child_value(element: ET.Element, force_list: Collection[str]) -> Any:
    document = element_to_document(element, force_list)
    if document.keys() <= {"#text"}:
        return document.get("#text")
    return document


def xml_to_dict(
    xml_bytes: bytes,
    force_list: Collection[str] = (),
) -> dict[str, Any]:
    """Convert XML bytes into ``{root_tag: value}``.

    The root is converted like any child element, so a text-only root
    yields a string and an empty one None.

    Raises:
        ET.ParseError: If *xml_bytes* is not well-formed XML.
    """
    root = ET.fromstring(xml_bytes)
    return {_local_name(root.tag): _child_value(root, force_list)}


# ---------------------------------------------------------------------------
# Call payload → document
# ---------------------------------------------------------------------------


def _require_payload(call: RestProxyCall) -> bytes:
    if not call.payload:
        raise PayloadError(f"Call has no payload (status {call.status_code})")
    return call.payload


def parse_xml_payload(
    call: RestProxyCall,
    expected_root: str | None = None,
    force_list: Collection[str] = (),
) -> dict[str, Any]:
    """Parse a call's XML payload.

    Args:
        call: A completed call.
        expected_root: Root tag the document must have, if given.
        force_list: See element_to_document().

    Returns:
        The root element as a document dict (not wrapped in the root tag).
        An empty root yields an empty dict, a text-only root ``{"#text": ...}``.

    Raises:
        PayloadError: Missing payload, malformed XML, or wrong root tag.
    """
    payload = _require_payload(call)
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        raise PayloadError(f"Malformed XML payload: {e}") from e

    root_tag = _local_name(root.tag)
    if expected_root is not None and root_tag != expected_root:
        raise PayloadError(f"Unexpected root element <{root_tag}>, expected <{expected_root}>")

    return element_to_document(root, force_list)


def parse_json_payload(call: RestProxyCall) -> Any:
    """Parse a call's JSON payload.

    Raises:
        PayloadError: Missing payload or invalid JSON.
    """
    payload = _require_payload(call)
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadError(f"Malformed JSON payload: {e}") from e


def check_service_status(
    document: dict[str, Any],
    key: str = "@stat",
    ok_value: str = "ok",
) -> dict[str, Any]:
    """Fail when a service reports an error inside a successful response.

    Many XML services answer HTTP 200 with ``<rsp stat="fail">``. The
    default key and value match that convention.

    Returns:
        The document, for chaining.

    Raises:
        PayloadError: The status key is missing or not ok_value.
    """
    status = document.get(key)
    if status != ok_value:
        detail = document.get("err")
        message = f"Service reported {key}={status!r}"
        if isinstance(detail, dict) and "@msg" in detail:
            message = f"{message}: {detail['@msg']}"
        raise PayloadError(message)
    return document
