from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Dict, List

import pandas as pd
import streamlit as st

ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from citation_verifier.app import CitationCheckerApp  # noqa: E402
from citation_verifier.config import CheckerConfig  # noqa: E402
from citation_verifier.errors import CitationVerifierError  # noqa: E402
from citation_verifier.grobid import GrobidClient  # noqa: E402
from citation_verifier.models import DocumentExtraction  # noqa: E402
from citation_verifier.store import DocumentStore  # noqa: E402


def _doi_link(doi: str | None) -> str:
    return f"https://doi.org/{doi}" if doi else ""


def _citation_rows(extraction: DocumentExtraction) -> List[Dict[str, object]]:
    rows = []
    for usage in extraction.usages:
        reference = usage.reference
        for context in usage.usage_contexts:
            rows.append(
                {
                    "Reference": reference.id,
                    "Title": reference.title or reference.raw_text or "",
                    "Year": reference.year or "",
                    "Marker": context.text,
                    "Page": context.position.page,
                    "Citing sentence": context.surrounding_text,
                    "DOI": _doi_link(reference.doi),
                }
            )
    return rows


def _document_rows(store: DocumentStore) -> List[Dict[str, object]]:
    return [
        {
            "Id": record.id,
            "Title": record.title,
            "Authors": ", ".join(record.authors[:3]) + (" et al." if len(record.authors) > 3 else ""),
            "Year": record.year or "",
            "Journal": record.journal or "",
            "DOI": _doi_link(record.doi),
            "Characters": len(record.full_text),
            "Source": Path(record.source_path).name if record.source_path else "",
        }
        for record in store.iter_documents()
    ]


def _extract_upload(checker: CitationCheckerApp, payload: bytes, filename: str) -> DocumentExtraction:
    async def run() -> DocumentExtraction:
        try:
            tei = await checker.to_tei(payload, filename)
        finally:
            if checker.grobid is not None:
                await checker.grobid.aclose()
        return checker.process_tei(tei)

    return asyncio.run(run())


def main() -> None:
    st.set_page_config(page_title="Citation Verifier", layout="wide")
    st.title("Citation Verifier")
    st.caption("Map where a paper cites each reference and browse the local document database.")

    config = CheckerConfig.from_env()
    db_path = st.text_input("Document database", value=str(config.document_db_path))
    store = DocumentStore(
        db_path,
        id_max_length=config.id_max_length,
        title_match_threshold=config.title_match_threshold,
    )

    st.subheader("Citation map")
    upload = st.file_uploader("Paper (PDF or GROBID TEI XML)", type=["pdf", "xml", "tei"])
    if upload is not None and st.button("Extract citations"):
        checker = CitationCheckerApp(
            config=config, store=store, grobid=GrobidClient.from_config(config)
        )
        try:
            extraction = _extract_upload(checker, upload.getvalue(), upload.name)
        except CitationVerifierError as exc:
            st.error(f"Extraction failed: {exc}")
            return

        st.markdown(f"**{extraction.metadata.title}**")
        cols = st.columns(3)
        cols[0].metric("Citation markers", len(extraction.citations))
        cols[1].metric("Bibliography entries", len(extraction.references))
        cols[2].metric("Cited references", len(extraction.usages))

        rows = _citation_rows(extraction)
        if rows:
            st.dataframe(
                pd.DataFrame(rows),
                use_container_width=True,
                column_config={"DOI": st.column_config.LinkColumn("DOI")},
                hide_index=True,
            )
        else:
            st.info("No citation markers could be linked to the bibliography.")
        if extraction.issues:
            with st.expander(f"Issues ({len(extraction.issues)})"):
                st.dataframe(
                    pd.DataFrame(
                        [
                            {"Code": issue.code, "Message": issue.message, "Context": issue.context or ""}
                            for issue in extraction.issues
                        ]
                    ),
                    use_container_width=True,
                    hide_index=True,
                )

    st.divider()
    st.subheader("Document database")
    query = st.text_input("Look up by id, DOI or title")
    if query:
        record = store.get(query)
        if record is None:
            st.info("No matching document.")
        else:
            st.json({**record.to_json_dict(), "content": record.full_text[:500]})

    if st.button("Rebuild index"):
        count = store.rebuild_index()
        st.success(f"Index rebuilt with {count} documents ({store.last_skipped} skipped).")

    rows = _document_rows(store)
    if not rows:
        st.info("The document database is empty. Ingest PDFs with `scripts/process_pdfs.py`.")
        return
    df = pd.DataFrame(rows)
    st.dataframe(
        df,
        use_container_width=True,
        column_config={"DOI": st.column_config.LinkColumn("DOI")},
        hide_index=True,
    )
    st.download_button(
        "Download document list (CSV)",
        data=df.to_csv(index=False).encode("utf-8"),
        file_name="document_database.csv",
        mime="text/csv",
    )


if __name__ == "__main__":
    main()
