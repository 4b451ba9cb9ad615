"""Resolve inline citation markers in body text to bibliography entries."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from xml.etree import ElementTree

from .markers import MARKERS_BY_KIND, TEXT_MARKERS, MarkerMatch, ReferenceIndex, TeiRefMarker
from .models import CitationContext, CitationPosition, Reference, ValidationIssue
from .tei import PARAGRAPH_SEPARATOR, RefSpan, body_paragraphs, parse_coords

logger = logging.getLogger(__name__)

SENTENCE_END = re.compile(
    r"(?<!\bal)(?<!\be\.g)(?<!\bi\.e)(?<!\bFig)(?<!\bcf)(?<!\bvs)(?<!\bNo)"
    r"[.!?][\"')\]]*\s+"
)


@dataclass
class LinkResult:
    contexts: List[CitationContext] = field(default_factory=list)
    issues: List[ValidationIssue] = field(default_factory=list)


def surrounding_text(text: str, start: int, end: int, window: int = 200) -> str:
    """Return the sentence around ``text[start:end]``.

    Sentence ends inside the marker itself are ignored. When the enclosing
    sentence cannot be isolated (no boundary within ``3 * window`` characters)
    a symmetric ``window`` around the marker is returned instead.
    """

    sentence_start = 0
    sentence_end = len(text)
    for boundary in SENTENCE_END.finditer(text):
        if boundary.end() <= start:
            sentence_start = boundary.end()
        elif boundary.start() >= end:
            sentence_end = boundary.start() + 1
            break
    sentence = text[sentence_start:sentence_end].strip()
    if window > 0 and len(sentence) > 3 * window:
        return text[max(0, start - window): end + window].strip()
    return sentence


def _mask(text: str, spans: Sequence[RefSpan]) -> str:
    if not spans:
        return text
    chars = list(text)
    for span in spans:
        for position in range(span.start, span.end):
            chars[position] = " "
    return "".join(chars)


class CitationLinker:
    """Links citation markers to bibliography ids and records their positions.

    GROBID ``<ref type="bibr">`` elements are read first; the text outside
    those elements is then scanned with the plain-text grammars in
    :mod:`citation_verifier.markers`.
    """

    def __init__(self, context_window: int = 200):
        self.context_window = context_window
        self.tei_marker = TeiRefMarker()

    def link_document(
        self, root: ElementTree.Element, references: Sequence[Reference]
    ) -> LinkResult:
        return self._link(body_paragraphs(root), references)

    def link_blocks(self, blocks: Sequence[str], references: Sequence[Reference]) -> LinkResult:
        """Link plain text blocks, joined the same way as TEI paragraphs."""
        return self._link([(block, []) for block in blocks if block.strip()], references)

    def _link(
        self,
        paragraphs: Sequence[Tuple[str, List[RefSpan]]],
        references: Sequence[Reference],
    ) -> LinkResult:
        index = ReferenceIndex(references)
        result = LinkResult()
        base = 0
        page = 1
        for text, spans in paragraphs:
            for match in self._matches(text, spans):
                if match.element is not None:
                    page = parse_coords(match.element.get("coords")) or page
                context = self._context(match, text, base, page, index)
                if context is None:
                    result.issues.append(self._unresolved(match, text))
                else:
                    result.contexts.append(context)
            base += len(text) + len(PARAGRAPH_SEPARATOR)
        result.contexts.sort(key=lambda context: context.position.offset)
        logger.info(
            "Linked %d citation contexts (%d unresolved markers)",
            len(result.contexts),
            len(result.issues),
        )
        return result

    def _matches(self, text: str, spans: Sequence[RefSpan]) -> List[MarkerMatch]:
        matches: List[MarkerMatch] = []
        for span in spans:
            if span.element.get("type") == "bibr":
                matches.append(
                    self.tei_marker.from_element(
                        span.element, text[span.start: span.end], span.start, span.end
                    )
                )
        masked = _mask(text, spans)
        for marker in TEXT_MARKERS:
            matches.extend(marker.find(masked))
        matches.sort(key=lambda match: match.start)
        return matches

    def _context(
        self,
        match: MarkerMatch,
        text: str,
        base: int,
        page: int,
        index: ReferenceIndex,
    ) -> Optional[CitationContext]:
        reference_ids = MARKERS_BY_KIND[match.kind].resolve(match, index)
        if not reference_ids:
            return None
        return CitationContext(
            text=match.text.strip(),
            reference_ids=reference_ids,
            position=CitationPosition(page=page, offset=base + match.start),
            surrounding_text=surrounding_text(text, match.start, match.end, self.context_window),
            marker_kind=match.kind,
        )

    def _unresolved(self, match: MarkerMatch, text: str) -> ValidationIssue:
        logger.info("Dropping citation marker %r: no matching bibliography entry", match.text)
        return ValidationIssue(
            code="unresolved-citation",
            message=f"Citation marker {match.text.strip()!r} does not match any bibliography entry",
            context=surrounding_text(text, match.start, match.end, self.context_window),
        )


__all__ = ["CitationLinker", "LinkResult", "surrounding_text"]
