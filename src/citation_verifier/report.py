"""Plain-text reporting for extractions and verification runs."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .models import DocumentExtraction, ValidationIssue
from .schemas import VerificationReport


def extraction_payload(extraction: DocumentExtraction) -> Dict[str, Any]:
    """JSON-ready citation map used by the CLI and the web API."""

    metadata = extraction.metadata
    return {
        "title": metadata.title,
        "authors": [author.display_name() for author in metadata.authors],
        "doi": metadata.doi,
        "year": metadata.year,
        "journal": metadata.journal,
        "referenceCount": len(extraction.references),
        "usages": [
            {
                "id": usage.reference.id,
                "title": usage.reference.title,
                "doi": usage.reference.doi,
                "mergedIds": list(usage.merged_ids),
                "contexts": [
                    {
                        "text": context.text,
                        "referenceIds": context.reference_ids,
                        "page": context.position.page,
                        "offset": context.position.offset,
                        "surroundingText": context.surrounding_text,
                        "markerKind": context.marker_kind,
                    }
                    for context in usage.usage_contexts
                ],
            }
            for usage in extraction.usages
        ],
        "issues": [
            {
                "code": issue.code,
                "message": issue.message,
                "context": issue.context,
                "severity": issue.severity,
            }
            for issue in extraction.issues
        ],
    }


def render_extraction(extraction: DocumentExtraction) -> str:
    """Return a citation map: every cited reference with its citing sentences."""

    metadata = extraction.metadata
    lines = [f"Citation Map: {metadata.title}"]
    if metadata.authors:
        lines.append("Authors: " + "; ".join(author.display_name() for author in metadata.authors))
    lines.append(f"Citations detected: {len(extraction.citations)}")
    lines.append(f"Reference entries: {len(extraction.references)}")
    lines.append(f"Cited references: {len(extraction.usages)}")
    for usage in extraction.usages:
        reference = usage.reference
        label = reference.title or reference.raw_text or reference.id
        lines.append("")
        lines.append(f"[{reference.id}] {label} ({usage.citation_count} citations)")
        if usage.merged_ids:
            lines.append("  merged duplicates: " + ", ".join(usage.merged_ids))
        for context in usage.usage_contexts:
            lines.append(f"  p.{context.position.page} @{context.position.offset}: {context.surrounding_text}")
    return "\n".join(lines)


def render_report(
    issues: List[ValidationIssue],
    extraction: Optional[DocumentExtraction] = None,
    verification: Optional[VerificationReport] = None,
) -> str:
    """Return a human-readable report summarizing findings."""

    header_lines = ["Citation Verification Report"]
    if extraction:
        header_lines.append(f"Document: {extraction.metadata.title}")
        header_lines.append(f"Citations detected: {len(extraction.citations)}")
        header_lines.append(f"Reference entries: {len(extraction.references)}")
    if verification:
        header_lines.append(f"References checked: {verification.total_citations_checked}")
        header_lines.append(f"Verified: {verification.verified_citations}")
        header_lines.append(f"Unverified: {verification.unverified_citations}")
        header_lines.append(f"Inconclusive: {verification.inconclusive_citations}")
        header_lines.append(f"Missing sources: {verification.missing_references}")
        header_lines.append(f"Failed: {verification.failed_references}")
        for result in verification.results:
            line = f"  [{result.status.value.upper()}] {result.title}"
            if result.result is not None:
                line += f" ({result.result.confidence_score:.0%}): {result.result.explanation}"
            elif result.error:
                line += f": {result.error}"
            header_lines.append(line)

    if not issues:
        header_lines.append("No citation issues detected.")
        return "\n".join(header_lines)

    lines = header_lines + ["Issues:"]
    for issue in issues:
        line = f"[{issue.severity.upper()}] {issue.code}: {issue.message}"
        if issue.context:
            line += f" -> {issue.context}"
        lines.append(line)
    return "\n".join(lines)


__all__ = ["extraction_payload", "render_extraction", "render_report"]
