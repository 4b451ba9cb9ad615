"""Typed access to GROBID TEI trees.

Field lookups are declared as ordered tuples of :class:`FieldPath` and resolved
with :func:`resolve`, which reports the value together with every path it
tried. A miss is explicit: :class:`MissingField` tells an absent field apart
from a value that was present but could not be parsed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from xml.etree import ElementTree

from .errors import MalformedDocumentError

logger = logging.getLogger(__name__)

TEI_NS = "http://www.tei-c.org/ns/1.0"
NAMESPACES = {"tei": TEI_NS}
XML_ID = "{http://www.w3.org/XML/1998/namespace}id"


def tei_tag(name: str) -> str:
    return f"{{{TEI_NS}}}{name}"


def parse_tei(xml: str | bytes) -> ElementTree.Element:
    """Parse TEI XML, raising :class:`MalformedDocumentError` on invalid input."""

    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    if not xml.strip():
        raise MalformedDocumentError("TEI payload is empty")
    try:
        return ElementTree.fromstring(xml)
    except ElementTree.ParseError as exc:
        raise MalformedDocumentError(f"Invalid TEI XML: {exc}") from exc


def node_text(node: ElementTree.Element, skip: Iterable[str] = ()) -> str:
    """Return the whitespace-normalized text below ``node``.

    Children whose local tag name is in ``skip`` are left out, which keeps
    affiliations and e-mail addresses out of author names.
    """

    skipped = {tei_tag(name) for name in skip}
    parts: List[str] = []

    def visit(element: ElementTree.Element) -> None:
        if element.text:
            parts.append(element.text)
        for child in element:
            if child.tag not in skipped:
                visit(child)
            if child.tail:
                parts.append(child.tail)

    visit(node)
    return " ".join("".join(parts).split())


class MissingField(str, Enum):
    ABSENT = "absent"
    PARSE_ERROR = "parse-error"


@dataclass(frozen=True)
class FieldPath:
    """One ElementTree path (optionally reading an attribute) for a field."""

    path: str
    attribute: Optional[str] = None

    def select(self, node: ElementTree.Element) -> List[ElementTree.Element]:
        return node.findall(self.path, NAMESPACES)

    def values(self, node: ElementTree.Element) -> List[str]:
        found: List[str] = []
        for match in self.select(node):
            raw = match.get(self.attribute) if self.attribute else node_text(match)
            if raw and raw.strip():
                found.append(raw.strip())
        return found

    def __str__(self) -> str:
        return f"{self.path}/@{self.attribute}" if self.attribute else self.path


@dataclass
class FieldLookup:
    """Outcome of resolving one field against its fallback paths."""

    value: Optional[str]
    tried: Tuple[str, ...]
    missing: Optional[MissingField] = None
    matched_path: Optional[str] = None
    raw: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.value is not None

    def value_or(self, default: str) -> str:
        return self.value if self.value is not None else default


@dataclass
class NodeLookup:
    nodes: List[ElementTree.Element] = field(default_factory=list)
    tried: Tuple[str, ...] = ()
    matched_path: Optional[str] = None


Parser = Callable[[str], str]


def resolve(
    node: ElementTree.Element,
    paths: Sequence[FieldPath],
    parser: Optional[Parser] = None,
) -> FieldLookup:
    """Return the first non-empty (and parsable) value along ``paths``.

    ``parser`` may raise ``ValueError``; a value that only ever fails to parse
    is reported as :attr:`MissingField.PARSE_ERROR` with the raw text kept.
    """

    tried: List[str] = []
    first_raw: Optional[str] = None
    for path in paths:
        tried.append(str(path))
        for raw in path.values(node):
            if parser is None:
                return FieldLookup(value=raw, tried=tuple(tried), matched_path=str(path), raw=raw)
            try:
                parsed = parser(raw)
            except ValueError:
                logger.debug("Could not parse %r found at %s", raw, path)
                if first_raw is None:
                    first_raw = raw
                continue
            return FieldLookup(value=parsed, tried=tuple(tried), matched_path=str(path), raw=raw)
    if first_raw is not None:
        return FieldLookup(
            value=None, tried=tuple(tried), missing=MissingField.PARSE_ERROR, raw=first_raw
        )
    return FieldLookup(value=None, tried=tuple(tried), missing=MissingField.ABSENT)


def resolve_nodes(node: ElementTree.Element, paths: Sequence[FieldPath]) -> NodeLookup:
    """Return every node matched by the first path that matches anything."""

    tried: List[str] = []
    for path in paths:
        tried.append(str(path))
        nodes = path.select(node)
        if nodes:
            return NodeLookup(nodes=nodes, tried=tuple(tried), matched_path=str(path))
    return NodeLookup(tried=tuple(tried))


BODY_PARAGRAPHS = FieldPath(".//tei:text/tei:body//tei:p")
BODY = FieldPath(".//tei:text/tei:body")

PARAGRAPH_SEPARATOR = "\n\n"


@dataclass
class RefSpan:
    element: ElementTree.Element
    start: int
    end: int


def flatten_paragraph(paragraph: ElementTree.Element) -> Tuple[str, List[RefSpan]]:
    """Return a paragraph's raw text and the character spans of its ``<ref>`` children."""

    parts: List[str] = []
    spans: List[RefSpan] = []
    length = 0
    ref_tag = tei_tag("ref")

    def visit(element: ElementTree.Element) -> None:
        nonlocal length
        start = length
        if element.text:
            parts.append(element.text)
            length += len(element.text)
        for child in element:
            visit(child)
            if child.tail:
                parts.append(child.tail)
                length += len(child.tail)
        if element.tag == ref_tag and element is not paragraph:
            spans.append(RefSpan(element=element, start=start, end=length))

    visit(paragraph)
    spans.sort(key=lambda span: span.start)
    return "".join(parts), spans


def body_paragraphs(root: ElementTree.Element) -> List[Tuple[str, List[RefSpan]]]:
    """Flatten every non-empty body paragraph in document order."""

    flattened = []
    for paragraph in BODY_PARAGRAPHS.select(root):
        text, spans = flatten_paragraph(paragraph)
        if text.strip():
            flattened.append((text, spans))
    return flattened


def parse_coords(value: Optional[str]) -> Optional[int]:
    """Return the page of the first box in a GROBID ``coords`` attribute."""

    if not value:
        return None
    first_box = value.split(";")[0]
    page = first_box.split(",")[0].strip()
    return int(page) if page.isdigit() else None


__all__ = [
    "BODY",
    "BODY_PARAGRAPHS",
    "FieldLookup",
    "FieldPath",
    "MissingField",
    "NAMESPACES",
    "NodeLookup",
    "PARAGRAPH_SEPARATOR",
    "RefSpan",
    "TEI_NS",
    "XML_ID",
    "body_paragraphs",
    "flatten_paragraph",
    "node_text",
    "parse_coords",
    "parse_tei",
    "resolve",
    "resolve_nodes",
    "tei_tag",
]
