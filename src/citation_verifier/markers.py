"""Inline citation marker grammar.

Each marker style is a small class with a ``kind``, a way to find candidate
markers and a ``resolve`` step that maps the marker's keys onto bibliography
ids. Adding a style means adding a class to :data:`TEXT_MARKERS`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from xml.etree import ElementTree

from .models import Reference


@dataclass
class MarkerMatch:
    kind: str
    text: str
    start: int
    end: int
    keys: List[str] = field(default_factory=list)
    element: ElementTree.Element | None = None


class ReferenceIndex:
    """Lookup tables from marker keys to bibliography ids."""

    def __init__(self, references: Iterable[Reference]):
        self.ids: Dict[str, Reference] = {}
        self.by_label: Dict[str, str] = {}
        self.by_author_year: Dict[str, List[str]] = {}
        for reference in references:
            self.ids.setdefault(reference.id, reference)
            if reference.label:
                self.by_label.setdefault(reference.label, reference.id)
            key = reference.author_year_key()
            if key:
                self.by_author_year.setdefault(key, []).append(reference.id)


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class TeiRefMarker:
    """``<ref type="bibr" target="#b3 #b4">`` elements placed by GROBID."""

    kind = "tei-ref"

    def from_element(self, element: ElementTree.Element, text: str, start: int, end: int) -> MarkerMatch:
        targets = (element.get("target") or "").split()
        keys = [target[1:] if target.startswith("#") else target for target in targets]
        return MarkerMatch(
            kind=self.kind, text=text, start=start, end=end, keys=keys, element=element
        )

    def resolve(self, match: MarkerMatch, index: ReferenceIndex) -> List[str]:
        return _unique(key for key in match.keys if key in index.ids)


class NumericMarker:
    """Bracketed numeric labels such as ``[3]``, ``[3, 4]`` or ``[2-5]``."""

    kind = "numeric"
    PATTERN = re.compile(r"\[(?P<labels>\d[\d,\s\-–]*)\]")
    MAX_RANGE = 200

    def find(self, text: str) -> List[MarkerMatch]:
        return [
            MarkerMatch(
                kind=self.kind,
                text=match.group(0),
                start=match.start(),
                end=match.end(),
                keys=self.expand_labels(match.group("labels")),
            )
            for match in self.PATTERN.finditer(text)
        ]

    @classmethod
    def expand_labels(cls, label_text: str) -> List[str]:
        labels: List[str] = []
        for part in [seg.strip() for seg in label_text.split(",") if seg.strip()]:
            part = part.replace("–", "-")
            if "-" in part:
                start, end = (seg.strip() for seg in part.split("-", 1))
                if (
                    start.isdigit()
                    and end.isdigit()
                    and 0 <= int(end) - int(start) <= cls.MAX_RANGE
                ):
                    labels.extend(str(i) for i in range(int(start), int(end) + 1))
                else:
                    labels.append(part)
            else:
                labels.append(part)
        return labels

    def resolve(self, match: MarkerMatch, index: ReferenceIndex) -> List[str]:
        return _unique(index.by_label[key] for key in match.keys if key in index.by_label)


class AuthorYearMarker:
    """Parenthetical author-year citations, e.g. ``(Smith et al. 2020; Doe, 2019)``."""

    kind = "author-year"
    GROUP_PATTERN = re.compile(r"\((?P<body>[^()]*\d{4}[^()]*)\)")
    PART_PATTERN = re.compile(
        r"^(?:see\s+|e\.g\.,?\s+|cf\.\s+)?"
        r"(?P<author>[^\W\d_][\w'\-]*)"
        r"(?:\s+et\s+al\.?|\s+(?:and|&)\s+[^\W\d_][\w'\-]*)?"
        r",?\s+(?P<year>\d{4})[a-z]?$"
    )

    def find(self, text: str) -> List[MarkerMatch]:
        found: List[MarkerMatch] = []
        for group in self.GROUP_PATTERN.finditer(text):
            keys = []
            for part in group.group("body").split(";"):
                match = self.PART_PATTERN.match(part.strip())
                if match:
                    keys.append(f"{match.group('author').lower()}{match.group('year')}")
            if keys:
                found.append(
                    MarkerMatch(
                        kind=self.kind,
                        text=group.group(0),
                        start=group.start(),
                        end=group.end(),
                        keys=keys,
                    )
                )
        return found

    def resolve(self, match: MarkerMatch, index: ReferenceIndex) -> List[str]:
        ids: List[str] = []
        for key in match.keys:
            ids.extend(index.by_author_year.get(key, []))
        return _unique(ids)


TEXT_MARKERS: Sequence = (NumericMarker(), AuthorYearMarker())

MARKERS_BY_KIND = {marker.kind: marker for marker in (TeiRefMarker(), *TEXT_MARKERS)}


__all__ = [
    "AuthorYearMarker",
    "MARKERS_BY_KIND",
    "MarkerMatch",
    "NumericMarker",
    "ReferenceIndex",
    "TEXT_MARKERS",
    "TeiRefMarker",
]
