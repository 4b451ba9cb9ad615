import dataclasses

import pytest

from citation_verifier.app import CitationCheckerApp, looks_like_pdf
from citation_verifier.config import CheckerConfig
from citation_verifier.errors import ConfigError, ExtractionServiceError
from citation_verifier.report import extraction_payload, render_extraction, render_report

from conftest import bibl_entry, build_tei


def test_process_tei_links_and_reports_uncited(checker):
    xml = build_tei(
        ['We build on <ref type="bibr" target="#b0">[1]</ref> and (Roe, 2018).'],
        [
            bibl_entry("b0", "Cited Work"),
            bibl_entry("b1", "Author Year Work", surname="Roe", year="2018"),
            bibl_entry("b2", "Never Mentioned"),
        ],
    )

    extraction = checker.process_tei(xml)

    assert [usage.reference.id for usage in extraction.usages] == ["b0", "b1"]
    issues = {(issue.code, issue.context) for issue in extraction.issues}
    assert issues == {("uncited-reference", "Never Mentioned")}
    report = render_report(extraction.issues, extraction=extraction)
    assert "Citations detected: 2" in report
    assert "[INFO] uncited-reference" in report


def _duplicate_tei():
    return build_tei(
        ['First <ref type="bibr" target="#b0">[1]</ref>. Again <ref type="bibr" target="#b1">[2]</ref>.'],
        [
            bibl_entry("b0", "Attention Is All You Need"),
            bibl_entry("b1", "Attention is all you need", doi="10.5555/attention"),
        ],
    )


def test_duplicate_bibliography_entries_stay_separate_by_default(checker):
    extraction = checker.process_tei(_duplicate_tei())

    assert [usage.reference.id for usage in extraction.usages] == ["b0", "b1"]
    assert all(usage.merged_ids == [] for usage in extraction.usages)


def test_duplicate_bibliography_entries_are_merged_when_enabled(config, store):
    checker = CitationCheckerApp(config=dataclasses.replace(config, deduplicate_references=True), store=store)

    extraction = checker.process_tei(_duplicate_tei())

    assert len(extraction.usages) == 1
    usage = extraction.usages[0]
    assert usage.citation_count == 2
    assert usage.reference.doi == "10.5555/attention"
    assert usage.merged_ids == ["b1"]
    assert extraction_payload(extraction)["usages"][0]["mergedIds"] == ["b1"]
    rendered = render_extraction(extraction)
    assert "(2 citations)" in rendered
    assert "merged duplicates: b1" in rendered


def test_ingest_tei_stores_header_metadata(checker, sample_tei):
    record = checker.ingest_tei(sample_tei, source_path="papers/dl4nlp.pdf")

    assert record.id == "deep_learning_for_nlp"
    assert record.authors == ["Jane Q Smith"]
    assert record.year == "2021"
    assert checker.lookup("10.1000/dl4nlp").id == record.id
    assert checker.store.is_processed("dl4nlp.pdf")


def test_reingest_with_replace_keeps_single_unit(checker, sample_tei):
    first = checker.ingest_tei(sample_tei, source_path="dl4nlp.pdf")
    second = checker.ingest_tei(sample_tei, source_path="dl4nlp.pdf", replace=True)

    assert first.id == second.id
    assert len(checker.store.list_documents()) == 1


@pytest.mark.asyncio
async def test_pdf_without_grobid_client_is_an_extraction_error(checker):
    with pytest.raises(ExtractionServiceError):
        await checker.to_tei(b"%PDF-1.5 data", "paper.pdf")
    assert await checker.to_tei(b"<TEI/>", "paper.xml") == b"<TEI/>"


@pytest.mark.asyncio
async def test_ingest_directory_skips_known_files(config, store, sample_tei, tmp_path):
    class StubGrobid:
        def __init__(self):
            self.files = []

        async def process_fulltext(self, payload, filename="document.pdf"):
            self.files.append(filename)
            if filename == "broken.pdf":
                raise ExtractionServiceError("GROBID could not process broken.pdf: HTTP 500", 500)
            return sample_tei

    folder = tmp_path / "pdfs"
    folder.mkdir()
    for name in ("a.pdf", "broken.pdf", "notes.txt"):
        (folder / name).write_bytes(b"%PDF-1.4")
    grobid = StubGrobid()
    checker = CitationCheckerApp(config=config, store=store, grobid=grobid)

    first = await checker.ingest_directory(folder)
    second = await checker.ingest_directory(folder)

    assert (first.processed_count, first.error_count, first.skipped_count) == (1, 1, 0)
    assert (second.processed_count, second.error_count, second.skipped_count) == (0, 1, 1)
    assert grobid.files == ["a.pdf", "broken.pdf", "broken.pdf"]
    assert second.message == "Processed 0 of 2 files (1 errors, 1 already in the database)."


def test_looks_like_pdf():
    assert looks_like_pdf(b"%PDF-1.7")
    assert looks_like_pdf(b"", "Paper.PDF")
    assert not looks_like_pdf(b"<?xml", "paper.xml")


def test_config_from_env_reads_overrides(tmp_path):
    config = CheckerConfig.from_env(
        {
            "GROBID_URL": "http://grobid:8070/",
            "DOCUMENT_DB_PATH": str(tmp_path),
            "MISSING_REF_HANDLING": "SKIP",
            "CONFIDENCE_THRESHOLD": "0.5",
            "GOOGLE_API_KEY": "abc",
            "PERSIST_UPLOADS": "no",
        }
    )

    assert config.grobid_url == "http://grobid:8070"
    assert config.index_path == tmp_path / "index.json"
    assert config.missing_reference_handling == "skip"
    assert config.confidence_threshold == 0.5
    assert config.oracle_enabled
    assert config.persist_uploads is False


def test_config_rejects_bad_values():
    with pytest.raises(ConfigError):
        CheckerConfig.from_env({"CONFIDENCE_THRESHOLD": "high"})
    with pytest.raises(ConfigError):
        CheckerConfig(confidence_threshold=1.5)
