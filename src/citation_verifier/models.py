"""Data models for citation extraction and verification workflows."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .schemas import ProcessedReference, VerificationReport


@dataclass
class Author:
    """A person name as extracted from the TEI header or a bibliography entry."""

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    raw_name: Optional[str] = None

    def has_name(self) -> bool:
        return any((self.first_name, self.middle_name, self.last_name, self.raw_name))

    def display_name(self) -> str:
        if self.last_name:
            given = " ".join(part for part in (self.first_name, self.middle_name) if part)
            return f"{self.last_name}, {given}" if given else self.last_name
        if self.raw_name:
            return self.raw_name
        return " ".join(part for part in (self.first_name, self.middle_name) if part)

    def full_name(self) -> str:
        parts = [part for part in (self.first_name, self.middle_name, self.last_name) if part]
        return " ".join(parts) if parts else (self.raw_name or "")


@dataclass
class Reference:
    """Represents one bibliography entry of the document being checked."""

    id: str
    title: str = ""
    authors: List[Author] = field(default_factory=list)
    journal: Optional[str] = None
    year: Optional[str] = None
    doi: Optional[str] = None
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    raw_text: Optional[str] = None
    label: Optional[str] = None

    def author_year_key(self) -> Optional[str]:
        """Return the ``lastname+year`` key used by author-year markers."""
        if not self.authors or not self.year:
            return None
        lead = self.authors[0]
        surname = lead.last_name
        if not surname and lead.raw_name and lead.raw_name.strip():
            raw = lead.raw_name.strip()
            surname = raw.split(",")[0] if "," in raw else raw.split()[-1]
        if not surname:
            return None
        return f"{surname.strip().lower()}{self.year}"

    @property
    def link(self) -> str:
        return f"https://doi.org/{self.doi}" if self.doi else "#"


@dataclass
class CitationPosition:
    page: int = 1
    offset: int = 0


@dataclass
class CitationContext:
    """An inline citation marker resolved to one or more bibliography ids."""

    text: str
    reference_ids: List[str]
    position: CitationPosition
    surrounding_text: str
    marker_kind: str = "tei-ref"


@dataclass
class ReferenceUsage:
    """All places in a document where one bibliography entry is cited."""

    reference: Reference
    usage_contexts: List[CitationContext] = field(default_factory=list)
    merged_ids: List[str] = field(default_factory=list)

    @property
    def citation_count(self) -> int:
        return len(self.usage_contexts)


@dataclass
class ValidationIssue:
    """Represents a validation finding."""

    code: str
    message: str
    context: Optional[str] = None
    severity: str = "warning"


@dataclass
class DocumentMetadata:
    title: str
    authors: List[Author] = field(default_factory=list)
    doi: str = ""
    year: str = ""
    journal: str = ""
    full_text: str = ""


@dataclass
class DocumentRecord:
    """A stored document unit; owned by the document store."""

    id: str
    title: str
    authors: List[str] = field(default_factory=list)
    full_text: str = ""
    source_path: str = ""
    file_path: str = ""
    doi: Optional[str] = None
    year: Optional[str] = None
    journal: Optional[str] = None

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": list(self.authors),
            "content": self.full_text,
            "filePath": self.file_path,
            "sourcePdf": self.source_path,
            "doi": self.doi,
            "year": self.year,
            "journal": self.journal,
        }

    @classmethod
    def from_json_dict(cls, data: Dict[str, Any]) -> "DocumentRecord":
        if not isinstance(data, dict):
            raise ValueError("document unit must be a JSON object")
        if not data.get("id") or "title" not in data:
            raise ValueError("document unit is missing 'id' or 'title'")
        for key in ("id", "title", "doi", "journal", "content", "sourcePdf", "filePath"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string, got {type(value).__name__}")
        year = data.get("year")
        if year is not None and (isinstance(year, bool) or not isinstance(year, (str, int))):
            raise ValueError(f"'year' must be a string or integer, got {type(year).__name__}")
        authors = data.get("authors") or []
        if not isinstance(authors, list) or not all(isinstance(author, str) for author in authors):
            raise ValueError("'authors' must be a list of strings")
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            authors=list(authors),
            full_text=data.get("content") or "",
            source_path=data.get("sourcePdf") or "",
            file_path=data.get("filePath") or "",
            doi=data.get("doi") or None,
            year=str(year) if year else None,
            journal=data.get("journal") or None,
        )


@dataclass
class DocumentExtraction:
    """Container for parsed document components."""

    metadata: DocumentMetadata
    references: List[Reference]
    citations: List[CitationContext]
    usages: List[ReferenceUsage]
    issues: List[ValidationIssue] = field(default_factory=list)


class SessionStatus(str, Enum):
    CREATED = "created"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


@dataclass
class VerificationSession:
    """Mutable state of one upload; only the session manager touches it."""

    session_id: str
    status: SessionStatus = SessionStatus.CREATED
    document_title: str = ""
    processed_references: List[ProcessedReference] = field(default_factory=list)
    current_index: int = 0
    total_references: int = 0
    current_reference: str = ""
    error: Optional[str] = None
    report: Optional[VerificationReport] = None
    created_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()
