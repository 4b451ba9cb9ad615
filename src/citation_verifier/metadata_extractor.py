"""Header and full-text metadata extraction from GROBID TEI."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from xml.etree import ElementTree

from .models import Author, DocumentMetadata
from .tei import (
    BODY,
    PARAGRAPH_SEPARATOR,
    FieldLookup,
    FieldPath,
    MissingField,
    body_paragraphs,
    node_text,
    resolve,
    resolve_nodes,
)

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Document"

YEAR_PATTERN = re.compile(r"\d{4}")

TITLE_PATHS = (
    FieldPath(".//tei:teiHeader//tei:titleStmt/tei:title"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:title"),
)
AUTHOR_PATHS = (
    FieldPath(".//tei:teiHeader//tei:titleStmt//tei:author"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:author"),
)
YEAR_PATHS = (
    FieldPath(".//tei:teiHeader//tei:publicationStmt/tei:date", attribute="when"),
    FieldPath(".//tei:teiHeader//tei:publicationStmt/tei:date"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:date"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:date"),
)
JOURNAL_PATHS = (
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:monogr//tei:title[@level='j']"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:monogr//tei:title"),
)
DOI_PATHS = (
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:idno[@type='DOI']"),
    FieldPath(".//tei:teiHeader//tei:sourceDesc//tei:biblStruct//tei:idno"),
)

PERS_FIRST = FieldPath(".//tei:forename[@type='first']")
PERS_MIDDLE = FieldPath(".//tei:forename[@type='middle']")
PERS_SURNAME = FieldPath(".//tei:surname")
PERS_NAME = FieldPath(".//tei:persName")

NAME_NOISE = ("affiliation", "email", "idno", "note")


def parse_year(value: str) -> str:
    match = YEAR_PATTERN.search(value)
    if not match:
        raise ValueError(f"no four-digit year in {value!r}")
    return match.group(0)


def parse_author(node: ElementTree.Element) -> Optional[Author]:
    """Build an :class:`Author` from an ``author`` or ``persName`` element.

    Structured ``persName`` parts win; otherwise the element text (without
    affiliations) becomes the raw name. Returns ``None`` when nothing usable
    is left.
    """

    pers = PERS_NAME.select(node)
    scope = pers[0] if pers else node
    author = Author(
        first_name=resolve(scope, (PERS_FIRST,)).value,
        middle_name=resolve(scope, (PERS_MIDDLE,)).value,
        last_name=resolve(scope, (PERS_SURNAME,)).value,
    )
    if not (author.first_name or author.last_name):
        raw = node_text(scope, skip=NAME_NOISE)
        author.raw_name = raw or None
    return author if author.has_name() else None


class MetadataExtractor:
    """Pulls document-level metadata from a parsed TEI tree.

    Every ``extract_*`` method is best effort and never raises; lookups that
    come back empty are logged at debug level with the paths that were tried.
    """

    def lookup(self, root: ElementTree.Element, field_name: str) -> FieldLookup:
        paths = {
            "title": TITLE_PATHS,
            "journal": JOURNAL_PATHS,
            "doi": DOI_PATHS,
        }.get(field_name)
        if field_name == "year":
            result = resolve(root, YEAR_PATHS, parser=parse_year)
        elif paths is None:
            raise KeyError(field_name)
        else:
            result = resolve(root, paths)
        if not result.found:
            logger.debug("No %s found (%s); tried %s", field_name, result.missing.value, result.tried)
        return result

    def extract_title(self, root: ElementTree.Element) -> str:
        return self.lookup(root, "title").value_or(UNTITLED)

    def extract_authors(self, root: ElementTree.Element) -> List[Author]:
        found = resolve_nodes(root, AUTHOR_PATHS)
        authors: List[Author] = []
        for node in found.nodes:
            author = parse_author(node)
            if author is not None:
                authors.append(author)
        if not authors:
            logger.debug("No authors found; tried %s", found.tried)
        return authors

    def extract_year(self, root: ElementTree.Element) -> str:
        result = self.lookup(root, "year")
        if result.missing is MissingField.PARSE_ERROR:
            return result.raw or ""
        return result.value_or("")

    def extract_journal(self, root: ElementTree.Element) -> str:
        return self.lookup(root, "journal").value_or("")

    def extract_doi(self, root: ElementTree.Element) -> str:
        return self.lookup(root, "doi").value_or("")

    def extract_full_text(self, root: ElementTree.Element) -> str:
        paragraphs = [text for text, _ in body_paragraphs(root)]
        if paragraphs:
            return PARAGRAPH_SEPARATOR.join(paragraphs)
        bodies = BODY.select(root)
        if not bodies:
            logger.debug("Document has no body")
            return ""
        return node_text(bodies[0])

    def extract(self, root: ElementTree.Element) -> DocumentMetadata:
        metadata = DocumentMetadata(
            title=self.extract_title(root),
            authors=self.extract_authors(root),
            doi=self.extract_doi(root),
            year=self.extract_year(root),
            journal=self.extract_journal(root),
            full_text=self.extract_full_text(root),
        )
        logger.info(
            "Extracted metadata for %r: %d authors, %d characters of text",
            metadata.title,
            len(metadata.authors),
            len(metadata.full_text),
        )
        return metadata


__all__ = ["MetadataExtractor", "UNTITLED", "parse_author", "parse_year"]
