"""File-backed document store with a rebuildable secondary index.

Layout::

    <root>/documents/<id>.json   one unit per document
    <root>/index.json            byDoi / byTitleWords / byYear plus id -> path

The index only ever contains what can be derived from the units on disk, so
``rebuild_index`` can always recreate it. Paths in the index are relative to
the store root and use forward slashes.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import CheckerConfig
from .errors import MalformedDocumentError
from .metadata_extractor import UNTITLED
from .models import DocumentRecord, Reference
from .normalization import (
    normalize_doi,
    normalize_title,
    sanitize_id,
    title_similarity,
    title_words,
)

logger = logging.getLogger(__name__)

INDEX_SECTIONS = ("byDoi", "byTitleWords", "byYear")
ID_PATTERN = re.compile(r"^\w+$")


def _empty_index() -> Dict[str, Any]:
    return {section: {} for section in INDEX_SECTIONS}


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", delete=False
    )
    try:
        with handle:
            handle.write(text)
        os.replace(handle.name, path)
    except BaseException:
        Path(handle.name).unlink(missing_ok=True)
        raise


def load_unit(path: Path) -> DocumentRecord:
    """Read one stored unit, raising :class:`MalformedDocumentError` if unusable."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return DocumentRecord.from_json_dict(data)
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise MalformedDocumentError(f"Malformed document unit {path}: {exc}", path=Path(path)) from exc


class DocumentStore:
    """Persists :class:`DocumentRecord` units and answers id/DOI/title lookups.

    All writes to the index happen under one lock and go through a temporary
    file that is renamed into place, so readers see either the old or the new
    index, never a partial one.
    """

    def __init__(
        self,
        root: Path | str,
        id_max_length: int = 50,
        title_match_threshold: float = 0.6,
    ):
        self.root = Path(root)
        self.documents_dir = self.root / "documents"
        self.index_path = self.root / "index.json"
        self.id_max_length = id_max_length
        self.title_match_threshold = title_match_threshold
        self.last_skipped = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CheckerConfig) -> "DocumentStore":
        return cls(
            config.document_db_path,
            id_max_length=config.id_max_length,
            title_match_threshold=config.title_match_threshold,
        )

    # -- paths -----------------------------------------------------------

    def unit_path(self, doc_id: str) -> Path:
        return self.documents_dir / f"{doc_id}.json"

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def resolve_path(self, relative: str) -> Path:
        return self.root / relative

    # -- writing ---------------------------------------------------------

    def base_id(self, record: DocumentRecord) -> str:
        title = (record.title or "").strip()
        if title and title != UNTITLED and sanitize_id(title, self.id_max_length) != "untitled_document":
            return sanitize_id(title, self.id_max_length)
        stem = Path(record.source_path).stem if record.source_path else ""
        if stem and sanitize_id(stem, self.id_max_length) != "untitled_document":
            return sanitize_id(stem, self.id_max_length)
        return "document"

    def generate_id(self, record: DocumentRecord) -> str:
        """Return an unused id; collisions get ``_1``, ``_2`` ... within the length cap."""
        base = self.base_id(record)
        candidate = base
        counter = 1
        while self.unit_path(candidate).exists():
            suffix = f"_{counter}"
            candidate = base[: self.id_max_length - len(suffix)].rstrip("_") + suffix
            counter += 1
        return candidate

    def save(self, record: DocumentRecord, replace: bool = False) -> Path:
        """Write ``record`` and index it; returns the unit path.

        With ``replace=True`` an existing unit with the same id is overwritten
        (re-extraction); otherwise a fresh id is always generated.
        """

        with self._lock:
            if not (replace and record.id and self.unit_path(record.id).exists()):
                record.id = self.generate_id(record)
            path = self.unit_path(record.id)
            record.file_path = str(path)
            _atomic_write(path, json.dumps(record.to_json_dict(), indent=2, ensure_ascii=False) + "\n")

            if replace:
                # Keys can be shared with other units, so derive the index from disk.
                index, _, _ = self._build_index()
            else:
                index = self._read_index()
                self._add_to_index(index, record, self.relative_path(path))
            self._write_index(index)
        logger.info("Saved document %s (%s)", record.id, record.title)
        return path

    # -- index -----------------------------------------------------------

    def _read_index(self) -> Dict[str, Any]:
        if not self.index_path.exists():
            return _empty_index()
        try:
            index = json.loads(self.index_path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("Index at %s is unreadable; starting from an empty index", self.index_path)
            return _empty_index()
        if not isinstance(index, dict):
            return _empty_index()
        for section in INDEX_SECTIONS:
            if not isinstance(index.get(section), dict):
                index[section] = {}
        return index

    def _write_index(self, index: Dict[str, Any]) -> None:
        _atomic_write(self.index_path, json.dumps(index, indent=2, sort_keys=True, ensure_ascii=False) + "\n")

    @staticmethod
    def _add_path(bucket: Dict[str, List[str]], key: str, relative: str) -> None:
        paths = bucket.setdefault(key, [])
        if relative not in paths:
            paths.append(relative)
            paths.sort()

    def _add_to_index(self, index: Dict[str, Any], record: DocumentRecord, relative: str) -> None:
        index[record.id] = relative
        doi = normalize_doi(record.doi)
        if doi:
            current = index["byDoi"].get(doi)
            index["byDoi"][doi] = min(current, relative) if current else relative
        for word in title_words(record.title):
            self._add_path(index["byTitleWords"], word, relative)
        if record.year:
            self._add_path(index["byYear"], str(record.year), relative)

    def _build_index(self) -> Tuple[Dict[str, Any], int, int]:
        index = _empty_index()
        indexed = 0
        skipped = 0
        for path in self._unit_paths():
            try:
                record = load_unit(path)
            except MalformedDocumentError as exc:
                logger.warning("Skipping %s", exc)
                skipped += 1
                continue
            self._add_to_index(index, record, self.relative_path(path))
            indexed += 1
        return index, indexed, skipped

    def rebuild_index(self) -> int:
        """Regenerate the index from the units on disk; returns the number indexed."""

        with self._lock:
            index, indexed, skipped = self._build_index()
            self._write_index(index)
            self.last_skipped = skipped
        logger.info("Index rebuilt with %d documents (%d skipped)", indexed, skipped)
        return indexed

    def read_index(self) -> Dict[str, Any]:
        return self._read_index()

    # -- reading ---------------------------------------------------------

    def _unit_paths(self) -> List[Path]:
        if not self.documents_dir.exists():
            return []
        return sorted(self.documents_dir.glob("*.json"))

    def iter_documents(self) -> Iterator[DocumentRecord]:
        for path in self._unit_paths():
            try:
                yield load_unit(path)
            except MalformedDocumentError as exc:
                logger.warning("Skipping %s", exc)

    def list_documents(self) -> List[DocumentRecord]:
        return list(self.iter_documents())

    def _load_relative(self, relative: str) -> Optional[DocumentRecord]:
        if not isinstance(relative, str):
            return None
        path = self.resolve_path(relative)
        if not path.exists():
            return None
        try:
            return load_unit(path)
        except MalformedDocumentError as exc:
            logger.warning("Skipping %s", exc)
            return None

    def get_by_id(self, doc_id: str) -> Optional[DocumentRecord]:
        if not ID_PATTERN.match(doc_id or ""):
            return None
        return self._load_relative(self.relative_path(self.unit_path(doc_id)))

    def get_by_doi(self, doi: str, index: Optional[Dict[str, Any]] = None) -> Optional[DocumentRecord]:
        normalized = normalize_doi(doi)
        if not normalized:
            return None
        index = index if index is not None else self._read_index()
        relative = index["byDoi"].get(normalized)
        return self._load_relative(relative) if relative else None

    def find_by_title(self, title: str, index: Optional[Dict[str, Any]] = None) -> Optional[DocumentRecord]:
        """Exact normalized title among word candidates, else the best overlap match."""

        wanted = normalize_title(title)
        if not wanted:
            return None
        index = index if index is not None else self._read_index()
        candidates: List[str] = sorted(
            {path for word in title_words(title) for path in index["byTitleWords"].get(word, [])}
        )
        best: Tuple[float, Optional[DocumentRecord]] = (0.0, None)
        for relative in candidates:
            record = self._load_relative(relative)
            if record is None:
                continue
            if normalize_title(record.title) == wanted:
                return record
            score = title_similarity(title, record.title)
            if score > best[0]:
                best = (score, record)
        if best[1] is not None and best[0] >= self.title_match_threshold:
            return best[1]
        return None

    def get(self, key: str) -> Optional[DocumentRecord]:
        """Look a document up by id, DOI or title, in that order."""

        if not key or not key.strip():
            return None
        key = key.strip()
        record = self.get_by_id(key)
        if record is not None:
            return record
        index = self._read_index()
        relative = index.get(key)
        if isinstance(relative, str):
            record = self._load_relative(relative)
            if record is not None:
                return record
        return self.get_by_doi(key, index) or self.find_by_title(key, index)

    def find_for_reference(self, reference: Reference) -> Optional[DocumentRecord]:
        index = self._read_index()
        if reference.doi:
            record = self.get_by_doi(reference.doi, index)
            if record is not None:
                return record
        if reference.title:
            return self.find_by_title(reference.title, index)
        return None

    def find_by_source(self, source_path: str | Path) -> Optional[DocumentRecord]:
        name = Path(source_path).name
        for record in self.iter_documents():
            if record.source_path and Path(record.source_path).name == name:
                return record
        return None

    def is_processed(self, source_path: str | Path) -> bool:
        return self.find_by_source(source_path) is not None


__all__ = ["DocumentStore", "load_unit"]
