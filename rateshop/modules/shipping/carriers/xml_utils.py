"""
XML helpers for carriers whose APIs speak XML.

Documents travel as plain dicts through xmltodict: "@name" keys are
attributes, repeated elements are lists, and empty elements parse to None.
"""
from typing import Any, Dict, Iterable, Optional, Tuple
from xml.parsers.expat import ExpatError

import xmltodict


class MalformedXMLError(ValueError):
    """Body could not be parsed as an XML document."""


def to_xml(tag: str, body: Dict[str, Any], declaration: bool = True) -> str:
    """Serialize one root element. Values must already be strings."""
    return xmltodict.unparse({tag: body}, full_document=declaration)


def parse_xml(
    body: str,
    force_list: Iterable[str] = (),
    namespaces: Optional[Dict[str, Optional[str]]] = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Parse a document into (root tag, root element).

    force_list names elements that are always returned as lists, so one
    RatedShipment and many RatedShipments look the same to the caller.
    namespaces maps namespace URIs to prefixes; None strips the prefix.
    """
    try:
        document = xmltodict.parse(
            body,
            force_list=tuple(force_list),
            process_namespaces=namespaces is not None,
            namespaces=namespaces,
        )
    except ExpatError as e:
        raise MalformedXMLError(str(e)) from e

    tag, root = next(iter(document.items()))
    return tag, root if isinstance(root, dict) else {}


def xml_text(node: Any, path: str, default: Optional[str] = None) -> Optional[str]:
    """Text of the element at a slash-separated path, or default."""
    for key in path.split("/"):
        if isinstance(node, list):
            node = node[0] if node else None
        if not isinstance(node, dict):
            return default
        node = node.get(key)

    if isinstance(node, list):
        node = node[0] if node else None
    if isinstance(node, dict):
        node = node.get("#text")
    return node if isinstance(node, str) else default


def xml_list(node: Any, key: str) -> list:
    """Child elements under key as a list of dicts; empty elements are dropped."""
    if not isinstance(node, dict):
        return []
    value = node.get(key)
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [item for item in items if isinstance(item, dict)]
