"""Normalization helpers for titles, DOIs and document ids."""
from __future__ import annotations

import re
from typing import List


def normalize_doi(doi: str | None) -> str:
    if not doi:
        return ""
    doi = doi.strip().lower()
    doi = re.sub(r"^https?://(dx\.)?doi\.org/", "", doi)
    doi = doi.replace("doi:", "").strip()
    return doi


def normalize_title(title: str | None) -> str:
    """Lower-case a title and keep only word characters and single spaces."""
    if not title:
        return ""
    text = re.sub(r"[^\w\s]", "", title.lower())
    return re.sub(r"\s+", " ", text).strip()


def title_words(title: str | None) -> List[str]:
    """Distinct words longer than three characters, in first-seen order."""
    seen: List[str] = []
    for word in normalize_title(title).split():
        if len(word) > 3 and word not in seen:
            seen.append(word)
    return seen


def title_similarity(left: str | None, right: str | None) -> float:
    """Jaccard overlap of the significant words of two titles."""
    a, b = set(title_words(left)), set(title_words(right))
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def sanitize_id(title: str | None, max_length: int = 50) -> str:
    """Turn a document title into a filesystem-safe id.

    Punctuation is dropped, whitespace runs become ``_`` and the result is
    capped at ``max_length`` characters.
    """
    text = re.sub(r"[^\w\s]", "", (title or "").lower())
    text = re.sub(r"\s+", "_", text.strip())
    text = text[:max_length].strip("_")
    return text or "untitled_document"


__all__ = [
    "normalize_doi",
    "normalize_title",
    "sanitize_id",
    "title_similarity",
    "title_words",
]
