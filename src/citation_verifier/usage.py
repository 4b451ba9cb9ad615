"""Group citation contexts into per-reference usages."""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from .models import CitationContext, Reference, ReferenceUsage, ValidationIssue
from .normalization import normalize_title

logger = logging.getLogger(__name__)

MIN_DUPLICATE_TITLE_LENGTH = 10


def _by_offset(contexts: List[CitationContext]) -> List[CitationContext]:
    return sorted(contexts, key=lambda context: context.position.offset)


def aggregate_usage(
    references: Sequence[Reference], contexts: Sequence[CitationContext]
) -> List[ReferenceUsage]:
    """Return one usage per cited reference, in bibliography order.

    A context citing several references appears under each of them.
    """

    grouped: Dict[str, List[CitationContext]] = {}
    for context in contexts:
        for reference_id in context.reference_ids:
            grouped.setdefault(reference_id, []).append(context)

    usages: List[ReferenceUsage] = []
    seen = set()
    for reference in references:
        if reference.id in seen or reference.id not in grouped:
            continue
        seen.add(reference.id)
        usages.append(ReferenceUsage(reference=reference, usage_contexts=_by_offset(grouped[reference.id])))
    return usages


def uncited_issues(
    references: Sequence[Reference], usages: Sequence[ReferenceUsage]
) -> List[ValidationIssue]:
    cited = {usage.reference.id for usage in usages}
    cited.update(
        context_id for usage in usages for context in usage.usage_contexts for context_id in context.reference_ids
    )
    return [
        ValidationIssue(
            code="uncited-reference",
            message="Reference not cited in text",
            context=reference.title or reference.raw_text or reference.id,
            severity="info",
        )
        for reference in references
        if reference.id not in cited
    ]


def merge_duplicate_usages(usages: Sequence[ReferenceUsage]) -> List[ReferenceUsage]:
    """Merge usages whose references share a normalized title.

    Titles of ten characters or fewer are never merged. The first usage wins;
    it takes over the duplicate's contexts and, if it has none, its DOI, and
    records the duplicate's id in ``merged_ids``.
    """

    merged: List[ReferenceUsage] = []
    by_title: Dict[str, ReferenceUsage] = {}
    for usage in usages:
        key = normalize_title(usage.reference.title)
        if len(key) <= MIN_DUPLICATE_TITLE_LENGTH:
            merged.append(usage)
            continue
        first = by_title.get(key)
        if first is None:
            by_title[key] = usage
            merged.append(usage)
            continue
        logger.debug("Merging duplicate reference %s into %s", usage.reference.id, first.reference.id)
        known = {id(context) for context in first.usage_contexts}
        contexts = first.usage_contexts + [
            context for context in usage.usage_contexts if id(context) not in known
        ]
        first.usage_contexts = _by_offset(contexts)
        first.merged_ids.append(usage.reference.id)
        if not first.reference.doi and usage.reference.doi:
            first.reference.doi = usage.reference.doi
    return merged


__all__ = ["aggregate_usage", "merge_duplicate_usages", "uncited_issues"]
