"""Typed node tree for parsed XML documents.

An XML document is turned into three node shapes:

* ``XmlText`` - a leaf element, holding its stripped text.
* ``XmlElement`` - an element with child elements, keyed by local tag name.
* ``XmlList`` - several sibling elements sharing one tag name.

Namespaces are dropped and attributes are ignored. The accessors below
return ``None`` whenever the tree does not have the expected shape, so
callers can walk optional paths without type checks of their own.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class XmlText:
    value: str = ""


@dataclass(frozen=True)
class XmlElement:
    children: dict[str, XmlNode] = field(default_factory=dict)

    def get(self, key: str) -> XmlNode | None:
        return self.children.get(key)


@dataclass(frozen=True)
class XmlList:
    items: tuple[XmlNode, ...] = ()


XmlNode = Union[XmlText, XmlElement, XmlList]


class XmlSyntaxError(ValueError):
    """Raised when a document is not well-formed XML."""


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[1]
    return tag


def _convert(element: ET.Element) -> XmlNode:
    if len(element) == 0:
        return XmlText((element.text or "").strip())

    grouped: dict[str, list[XmlNode]] = {}
    for child in element:
        grouped.setdefault(_local_name(child.tag), []).append(_convert(child))

    children: dict[str, XmlNode] = {}
    for key, nodes in grouped.items():
        children[key] = nodes[0] if len(nodes) == 1 else XmlList(tuple(nodes))
    return XmlElement(children)


def parse_document(data: bytes | str) -> XmlElement:
    """Parse an XML document into a tree rooted at a synthetic element.

    The returned element has one child, keyed by the document root's tag.

    Raises:
        XmlSyntaxError: If the input is not well-formed XML.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise XmlSyntaxError(str(exc)) from exc
    return XmlElement({_local_name(root.tag): _convert(root)})


def element(node: XmlNode | None, key: str) -> XmlElement | None:
    """Return child ``key`` of ``node`` if both exist and the child has children."""
    if not isinstance(node, XmlElement):
        return None
    child = node.get(key)
    return child if isinstance(child, XmlElement) else None


def path(node: XmlNode | None, *keys: str) -> XmlElement | None:
    """Walk a chain of element children, stopping at the first absent one."""
    current = node
    for key in keys:
        current = element(current, key)
        if current is None:
            return None
    return current if isinstance(current, XmlElement) else None


def text(node: XmlNode | None, key: str) -> str | None:
    """Return the text of leaf child ``key``, or None if absent or not a leaf."""
    if not isinstance(node, XmlElement):
        return None
    child = node.get(key)
    return child.value if isinstance(child, XmlText) else None


def elements(node: XmlNode | None, key: str) -> list[XmlElement]:
    """Return child ``key`` as a list of elements.

    A single child and a repeated child both come back as a list; list
    members that are not elements (e.g. empty tags) are dropped.
    """
    if not isinstance(node, XmlElement):
        return []
    child = node.get(key)
    if isinstance(child, XmlElement):
        return [child]
    if isinstance(child, XmlList):
        return [item for item in child.items if isinstance(item, XmlElement)]
    return []
