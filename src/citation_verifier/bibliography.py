"""Parsers for TEI bibliography entries."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from xml.etree import ElementTree

from .metadata_extractor import parse_author, parse_year
from .models import Author, Reference
from .normalization import normalize_doi
from .tei import XML_ID, FieldPath, resolve

logger = logging.getLogger(__name__)


class BibliographyParser:
    """Parses ``listBibl/biblStruct`` entries into :class:`Reference` objects."""

    ENTRIES = FieldPath(".//tei:listBibl/tei:biblStruct")
    TITLE_PATHS = (
        FieldPath(".//tei:title[@level='a']"),
        FieldPath(".//tei:title[@level='m']"),
    )
    JOURNAL_PATHS = (FieldPath(".//tei:monogr/tei:title[@level='j']"),)
    YEAR_PATHS = (
        FieldPath(".//tei:date[@type='published']", attribute="when"),
        FieldPath(".//tei:date", attribute="when"),
        FieldPath(".//tei:date"),
    )
    VOLUME_PATHS = (FieldPath(".//tei:biblScope[@unit='volume']"),)
    ISSUE_PATHS = (FieldPath(".//tei:biblScope[@unit='issue']"),)
    PAGE_FROM = (FieldPath(".//tei:biblScope[@unit='page']", attribute="from"),)
    PAGE_TO = (FieldPath(".//tei:biblScope[@unit='page']", attribute="to"),)
    PAGE_TEXT = (FieldPath(".//tei:biblScope[@unit='page']"),)
    DOI_PATHS = (FieldPath(".//tei:idno[@type='DOI']"),)
    RAW_PATHS = (FieldPath(".//tei:note[@type='raw_reference']"),)
    AUTHOR_PATHS = FieldPath(".//tei:author")

    LABEL_PATTERN = re.compile(r"^\[?(\d+)[\].]?\s+")

    def parse(self, root: ElementTree.Element) -> List[Reference]:
        references: List[Reference] = []
        for position, node in enumerate(self.ENTRIES.select(root)):
            references.append(self.parse_entry(node, position))
        logger.info("Parsed %d bibliography entries", len(references))
        return references

    def parse_entry(self, node: ElementTree.Element, position: int) -> Reference:
        raw_text = resolve(node, self.RAW_PATHS).value
        doi = resolve(node, self.DOI_PATHS).value
        return Reference(
            id=node.get(XML_ID) or f"b{position}",
            title=resolve(node, self.TITLE_PATHS).value_or(""),
            authors=self._authors(node),
            journal=resolve(node, self.JOURNAL_PATHS).value,
            year=resolve(node, self.YEAR_PATHS, parser=parse_year).value,
            doi=normalize_doi(doi) or None,
            volume=resolve(node, self.VOLUME_PATHS).value,
            issue=resolve(node, self.ISSUE_PATHS).value,
            pages=self._pages(node),
            raw_text=raw_text,
            label=self._label(raw_text) or str(position + 1),
        )

    def _authors(self, node: ElementTree.Element) -> List[Author]:
        authors = []
        for author_node in self.AUTHOR_PATHS.select(node):
            author = parse_author(author_node)
            if author is not None:
                authors.append(author)
        return authors

    def _pages(self, node: ElementTree.Element) -> Optional[str]:
        start = resolve(node, self.PAGE_FROM).value
        end = resolve(node, self.PAGE_TO).value
        if start and end:
            return f"{start}-{end}"
        return start or resolve(node, self.PAGE_TEXT).value

    def _label(self, raw_text: Optional[str]) -> Optional[str]:
        if not raw_text:
            return None
        match = self.LABEL_PATTERN.match(raw_text.strip())
        return match.group(1) if match else None


__all__ = ["BibliographyParser"]
