"""
Element Handles
===============
What HTML and XML hooks receive: one matched node plus the request and
response it came from.

- ``HTMLElement`` wraps a BeautifulSoup ``Tag`` and answers CSS selectors
  (soupsieve, via ``Tag.select``).
- ``XMLElement`` wraps an lxml node (an element, or the string result
  of an attribute/text XPath step) and answers XPath queries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from bs4 import Tag
from lxml import etree

if TYPE_CHECKING:
    from .request import Request
    from .response import Response

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

class HTMLElement:
    """
    One element matched by a CSS selector.

    Attributes:
        name: Tag name
        text: Concatenated text of the element and its descendants
        attributes: Attribute mapping (values are plain strings)
        request / response: Where the element came from
        dom: The underlying BeautifulSoup ``Tag``, for anything not wrapped here
        index: Position among the elements matched by the same selector
    """

    def __init__(self, response: "Response", tag: Tag, index: int = 0):
        self.name = tag.name
        self.text = tag.get_text()
        self.attributes: Dict[str, str] = dict(tag.attrs)
        self.request: "Request" = response.request
        self.response = response
        self.dom = tag
        self.index = index

    def attr(self, key: str) -> str:
        """Attribute value, ``""`` when missing."""
        value = self.dom.get(key)
        return value if value is not None else ""

    def child_text(self, selector: str) -> str:
        """Stripped concatenated text of every element matching ``selector``."""
        return "".join(el.get_text() for el in self.dom.select(selector)).strip()

    def child_texts(self, selector: str) -> List[str]:
        return [el.get_text().strip() for el in self.dom.select(selector)]

    def child_attr(self, selector: str, attr_name: str) -> str:
        """Stripped ``attr_name`` of the first element matching ``selector``."""
        first = self.dom.select_one(selector)
        if first is None:
            return ""
        value = first.get(attr_name)
        return value.strip() if value is not None else ""

    def child_attrs(self, selector: str, attr_name: str) -> List[str]:
        values = []
        for el in self.dom.select(selector):
            value = el.get(attr_name)
            if value is not None:
                values.append(value.strip())
        return values

    def for_each(self, selector: str, fn: Callable[[int, "HTMLElement"], Any]) -> None:
        """Call ``fn(index, element)`` for every descendant matching ``selector``."""
        for i, el in enumerate(self.dom.select(selector)):
            fn(i, HTMLElement(self.response, el, i))

    def for_each_with_break(self, selector: str, fn: Callable[[int, "HTMLElement"], bool]) -> None:
        """Like ``for_each`` but stops as soon as ``fn`` returns a falsy value."""
        for i, el in enumerate(self.dom.select(selector)):
            if not fn(i, HTMLElement(self.response, el, i)):
                break

    def __repr__(self) -> str:
        return f"<HTMLElement {self.name} index={self.index}>"


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def _is_element(node: Any) -> bool:
    return isinstance(node, etree._Element) and isinstance(node.tag, str)


def _inner_text(node: Any) -> str:
    if isinstance(node, str):
        return str(node)
    if _is_element(node):
        return "".join(node.itertext())
    return ""


def _node_name(node: Any) -> str:
    if isinstance(node, str):
        return getattr(node, "attrname", None) or ""
    if _is_element(node):
        return etree.QName(node).localname
    return ""


def _find(node: Any, query: str) -> list:
    if not _is_element(node):
        return []
    result = node.xpath(query)
    return result if isinstance(result, list) else []


class XMLElement:
    """
    One node matched by an XPath query.

    Attributes:
        name: Local tag name, or the attribute name for ``@attr`` results
        text: Inner text of the node
        attributes: Attribute mapping (empty for non-element results)
        request / response: Where the node came from
        dom: The underlying lxml node or string result
        is_html: True when the document was parsed as HTML
    """

    def __init__(self, response: "Response", node: Any, is_html: bool):
        self.name = _node_name(node)
        self.text = _inner_text(node)
        self.attributes: Dict[str, str] = dict(node.attrib) if _is_element(node) else {}
        self.request: "Request" = response.request
        self.response = response
        self.dom = node
        self.is_html = is_html

    def attr(self, key: str) -> str:
        return self.attributes.get(key, "")

    def child_text(self, query: str) -> str:
        """Stripped inner text of the first node matching ``query``."""
        matches = _find(self.dom, query)
        return _inner_text(matches[0]).strip() if matches else ""

    def child_texts(self, query: str) -> List[str]:
        return [_inner_text(m).strip() for m in _find(self.dom, query)]

    def child_attr(self, query: str, attr_name: str) -> str:
        matches = _find(self.dom, query)
        if not matches or not _is_element(matches[0]):
            return ""
        value: Optional[str] = matches[0].get(attr_name)
        return value.strip() if value is not None else ""

    def child_attrs(self, query: str, attr_name: str) -> List[str]:
        values = []
        for m in _find(self.dom, query):
            if _is_element(m) and m.get(attr_name) is not None:
                values.append(m.get(attr_name).strip())
        return values

    def __repr__(self) -> str:
        return f"<XMLElement {self.name}>"
