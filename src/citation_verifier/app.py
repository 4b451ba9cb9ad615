"""High-level orchestrator for citation extraction and document ingestion."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from xml.etree import ElementTree

from .bibliography import BibliographyParser
from .config import CheckerConfig
from .errors import CitationVerifierError, ExtractionServiceError
from .grobid import GrobidClient
from .linker import CitationLinker
from .metadata_extractor import MetadataExtractor
from .models import DocumentExtraction, DocumentMetadata, DocumentRecord, ValidationIssue
from .schemas import BatchResult
from .store import DocumentStore
from .tei import parse_tei
from .usage import aggregate_usage, merge_duplicate_usages, uncited_issues

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def looks_like_pdf(payload: bytes, filename: str = "") -> bool:
    return payload[:4] == PDF_MAGIC or filename.lower().endswith(".pdf")


class CitationCheckerApp:
    """Coordinates TEI parsing, citation linking and the document store."""

    def __init__(
        self,
        config: CheckerConfig | None = None,
        store: DocumentStore | None = None,
        grobid: GrobidClient | None = None,
    ):
        self.config = config or CheckerConfig()
        self.metadata_extractor = MetadataExtractor()
        self.bibliography_parser = BibliographyParser()
        self.linker = CitationLinker(context_window=self.config.context_window)
        self.store = store or DocumentStore.from_config(self.config)
        self.grobid = grobid

    def process_root(self, root: ElementTree.Element) -> DocumentExtraction:
        metadata = self.metadata_extractor.extract(root)
        references = self.bibliography_parser.parse(root)
        linked = self.linker.link_document(root, references)
        usages = aggregate_usage(references, linked.contexts)
        if self.config.deduplicate_references:
            usages = merge_duplicate_usages(usages)
        issues: List[ValidationIssue] = list(linked.issues)
        issues.extend(uncited_issues(references, usages))
        return DocumentExtraction(
            metadata=metadata,
            references=references,
            citations=linked.contexts,
            usages=usages,
            issues=issues,
        )

    def process_tei(self, xml: str | bytes) -> DocumentExtraction:
        """Parse TEI XML and link its citations; raises ``MalformedDocumentError``."""
        return self.process_root(parse_tei(xml))

    def process_tei_file(self, path: str | Path) -> DocumentExtraction:
        return self.process_tei(Path(path).read_bytes())

    async def to_tei(self, payload: bytes, filename: str = "document.pdf") -> bytes:
        """Return TEI for ``payload``, sending PDFs through GROBID first."""
        if not looks_like_pdf(payload, filename):
            return payload
        if self.grobid is None:
            raise ExtractionServiceError("No GROBID client configured for PDF input")
        tei = await self.grobid.process_fulltext(payload, filename)
        return tei.encode("utf-8")

    @staticmethod
    def build_record(metadata: DocumentMetadata, source_path: str | Path = "") -> DocumentRecord:
        return DocumentRecord(
            id="",
            title=metadata.title,
            authors=[author.full_name() for author in metadata.authors if author.full_name()],
            full_text=metadata.full_text,
            source_path=str(source_path),
            doi=metadata.doi or None,
            year=metadata.year or None,
            journal=metadata.journal or None,
        )

    def ingest_metadata(
        self, metadata: DocumentMetadata, source_path: str | Path = "", replace: bool = False
    ) -> DocumentRecord:
        record = self.build_record(metadata, source_path)
        if replace:
            existing = self.store.find_by_source(source_path) if source_path else None
            if existing is not None:
                record.id = existing.id
        self.store.save(record, replace=replace)
        return record

    def ingest_tei(
        self, xml: str | bytes, source_path: str | Path = "", replace: bool = False
    ) -> DocumentRecord:
        metadata = self.metadata_extractor.extract(parse_tei(xml))
        return self.ingest_metadata(metadata, source_path, replace=replace)

    async def ingest_pdf(self, path: str | Path, replace: bool = False) -> DocumentRecord:
        path = Path(path)
        tei = await self.to_tei(path.read_bytes(), path.name)
        return self.ingest_tei(tei, source_path=path, replace=replace)

    def _pending(self, paths: List[Path], skip_existing: bool) -> tuple[List[Path], int]:
        if not skip_existing:
            return paths, 0
        processed = {
            Path(record.source_path).name
            for record in self.store.iter_documents()
            if record.source_path
        }
        pending = [path for path in paths if path.name not in processed]
        return pending, len(paths) - len(pending)

    async def ingest_directory(
        self, directory: str | Path, skip_existing: bool = True, replace: bool = False
    ) -> BatchResult:
        """Send every PDF in ``directory`` through GROBID and store the result."""

        paths = sorted(p for p in Path(directory).iterdir() if p.suffix.lower() == ".pdf")
        pending, skipped = self._pending(paths, skip_existing)
        result = BatchResult(skipped_count=skipped)
        for position, path in enumerate(pending, start=1):
            logger.info("Processing PDF file (%d/%d): %s", position, len(pending), path.name)
            try:
                await self.ingest_pdf(path, replace=replace)
            except (CitationVerifierError, OSError) as exc:
                logger.error("Failed to process %s: %s", path.name, exc)
                result.error_count += 1
            else:
                result.processed_count += 1
        result.message = self._summary(result, len(paths))
        logger.info(result.message)
        return result

    def ingest_tei_directory(
        self, directory: str | Path, skip_existing: bool = True, replace: bool = False
    ) -> BatchResult:
        """Store every ``*.xml`` / ``*.tei`` file already converted to TEI."""

        paths = sorted(
            p for p in Path(directory).iterdir() if p.suffix.lower() in {".xml", ".tei"}
        )
        pending, skipped = self._pending(paths, skip_existing)
        result = BatchResult(skipped_count=skipped)
        for path in pending:
            try:
                self.ingest_tei(path.read_bytes(), source_path=path, replace=replace)
            except (CitationVerifierError, OSError) as exc:
                logger.error("Failed to process %s: %s", path.name, exc)
                result.error_count += 1
            else:
                result.processed_count += 1
        result.message = self._summary(result, len(paths))
        logger.info(result.message)
        return result

    @staticmethod
    def _summary(result: BatchResult, total: int) -> str:
        if total == 0:
            return "No files to process."
        return (
            f"Processed {result.processed_count} of {total} files "
            f"({result.error_count} errors, {result.skipped_count} already in the database)."
        )

    def lookup(self, key: str) -> Optional[DocumentRecord]:
        return self.store.get(key)


__all__ = ["CitationCheckerApp", "looks_like_pdf"]
