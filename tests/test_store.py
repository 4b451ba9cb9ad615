import json
import threading

import pytest

from citation_verifier.errors import MalformedDocumentError
from citation_verifier.models import DocumentRecord, Reference
from citation_verifier.normalization import sanitize_id, title_similarity, title_words
from citation_verifier.store import DocumentStore, load_unit


def _record(title, doi=None, year="2020", source=""):
    return DocumentRecord(
        id="",
        title=title,
        authors=["Jane Doe"],
        full_text=f"Full text of {title}",
        source_path=source,
        doi=doi,
        year=year,
    )


def test_save_writes_unit_and_index(store: DocumentStore):
    path = store.save(_record("Attention Is All You Need", doi="10.5555/ATTENTION"))

    assert path == store.documents_dir / "attention_is_all_you_need.json"
    data = json.loads(path.read_text())
    assert data["id"] == "attention_is_all_you_need"
    assert data["content"] == "Full text of Attention Is All You Need"
    assert data["filePath"] == str(path)

    index = store.read_index()
    assert index["attention_is_all_you_need"] == "documents/attention_is_all_you_need.json"
    assert index["byDoi"] == {"10.5555/attention": "documents/attention_is_all_you_need.json"}
    assert index["byTitleWords"]["attention"] == ["documents/attention_is_all_you_need.json"]
    assert "all" not in index["byTitleWords"]
    assert index["byYear"]["2020"] == ["documents/attention_is_all_you_need.json"]


def test_colliding_titles_get_suffixes(store: DocumentStore):
    first = _record("Same Title")
    second = _record("Same Title")
    store.save(first)
    store.save(second)

    assert first.id == "same_title"
    assert second.id == "same_title_1"


def test_long_titles_are_capped(tmp_path):
    store = DocumentStore(tmp_path, id_max_length=12)
    record = _record("An extremely long title about many things")
    store.save(record)
    again = _record("An extremely long title about many things")
    store.save(again)

    assert record.id == "an_extremely"
    assert len(again.id) <= 12
    assert again.id.endswith("_1")


def test_untitled_documents_fall_back_to_source_name(store: DocumentStore):
    record = _record("Untitled Document", source="/papers/My Paper.pdf")
    store.save(record)

    assert record.id == "my_paper"


def test_rebuild_index_matches_incremental_index(store: DocumentStore):
    store.save(_record("Attention Is All You Need", doi="10.5555/attention", year="2017"))
    store.save(_record("Deep Residual Learning", doi="10.1109/cvpr.2016.90", year="2016"))
    store.save(_record("Deep Residual Learning", year="2016"))
    incremental = store.index_path.read_text()

    assert store.rebuild_index() == 3
    assert store.index_path.read_text() == incremental
    assert store.rebuild_index() == 3
    assert store.index_path.read_text() == incremental


def test_rebuild_skips_malformed_units(store: DocumentStore):
    store.save(_record("Good Document"))
    (store.documents_dir / "broken.json").write_text("{not json")
    (store.documents_dir / "incomplete.json").write_text(json.dumps({"title": "No id"}))
    (store.documents_dir / "numeric_doi.json").write_text(
        json.dumps({"id": "numeric_doi", "title": "Numeric DOI", "doi": 123})
    )
    (store.documents_dir / "listed_title.json").write_text(
        json.dumps({"id": "listed_title", "title": ["Not", "A", "String"]})
    )
    (store.documents_dir / "folder.json").mkdir()

    assert store.rebuild_index() == 1
    assert store.last_skipped == 5
    assert [record.id for record in store.list_documents()] == ["good_document"]
    assert store.find_by_source("anything.pdf") is None


def test_load_unit_raises_for_malformed_file(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[]")

    with pytest.raises(MalformedDocumentError):
        load_unit(path)


def test_load_unit_raises_for_unreadable_path(tmp_path):
    path = tmp_path / "unit.json"
    path.mkdir()

    with pytest.raises(MalformedDocumentError):
        load_unit(path)


@pytest.mark.parametrize(
    "field, value",
    [("doi", 123), ("journal", {"name": "Nature"}), ("title", 42), ("year", 1.5), ("authors", [1, 2])],
)
def test_from_json_dict_rejects_wrong_types(field, value):
    data = {"id": "unit", "title": "A Title", field: value}

    with pytest.raises(ValueError):
        DocumentRecord.from_json_dict(data)


def test_from_json_dict_accepts_integer_year():
    record = DocumentRecord.from_json_dict({"id": "unit", "title": "A Title", "year": 2017})

    assert record.year == "2017"


def test_lookup_by_id_doi_and_title(store: DocumentStore):
    store.save(_record("Attention Is All You Need", doi="10.5555/attention"))
    store.save(_record("Graph Neural Networks Survey"))

    assert store.get("attention_is_all_you_need").title == "Attention Is All You Need"
    assert store.get("https://doi.org/10.5555/ATTENTION").id == "attention_is_all_you_need"
    assert store.get("attention is all you need!").id == "attention_is_all_you_need"
    assert store.get("A Survey of Graph Neural Networks").id == "graph_neural_networks_survey"
    assert store.get("../etc/passwd") is None
    assert store.get("Quantum Chromodynamics") is None
    assert store.get("   ") is None


def test_find_for_reference_prefers_doi(store: DocumentStore):
    store.save(_record("Completely Different Title", doi="10.1/abc"))
    store.save(_record("Attention Is All You Need"))

    by_doi = store.find_for_reference(Reference(id="b0", title="Attention Is All You Need", doi="10.1/ABC"))
    by_title = store.find_for_reference(Reference(id="b1", title="Attention is all you need"))

    assert by_doi.id == "completely_different_title"
    assert by_title.id == "attention_is_all_you_need"
    assert store.find_for_reference(Reference(id="b2")) is None


def test_replace_keeps_id_and_refreshes_index(store: DocumentStore):
    record = _record("Old Title Words", year="2001", source="paper.pdf")
    store.save(record)
    updated = _record("Fresh Heading Here", year="2002", source="paper.pdf")
    updated.id = record.id
    store.save(updated, replace=True)

    index = store.read_index()
    assert updated.id == "old_title_words"
    assert "2001" not in index["byYear"]
    assert "words" not in index["byTitleWords"]
    assert index["byTitleWords"]["fresh"] == ["documents/old_title_words.json"]
    assert store.is_processed("/elsewhere/paper.pdf")


def test_replace_keeps_doi_shared_with_another_unit(store: DocumentStore):
    first = _record("Alpha Paper", doi="10.1000/shared")
    store.save(first)
    store.save(_record("Beta Paper", doi="10.1000/shared"))
    changed = _record("Alpha Paper", doi="10.1000/changed")
    changed.id = first.id
    store.save(changed, replace=True)
    incremental = store.index_path.read_text()

    index = store.read_index()
    assert index["byDoi"]["10.1000/shared"] == "documents/beta_paper.json"
    assert index["byDoi"]["10.1000/changed"] == "documents/alpha_paper.json"
    assert store.get_by_doi("10.1000/shared").id == "beta_paper"
    assert store.rebuild_index() == 2
    assert store.index_path.read_text() == incremental


def test_index_with_wrong_section_types_is_reset(store: DocumentStore):
    store.save(_record("Good Document", doi="10.1000/good"))
    store.index_path.write_text(json.dumps({"byDoi": [], "byTitleWords": "oops", "byYear": {}}))

    assert store.get_by_doi("10.1000/good") is None
    assert store.find_for_reference(Reference(id="b0", title="Good Document")) is None


def test_concurrent_saves_keep_index_consistent(store: DocumentStore):
    errors = []

    def worker(number):
        try:
            store.save(_record(f"Parallel Document Number {number}", doi=f"10.1/{number}"))
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    index = store.read_index()
    assert len(index["byDoi"]) == 8
    assert len(index["byTitleWords"]["parallel"]) == 8
    snapshot = store.index_path.read_text()
    store.rebuild_index()
    assert store.index_path.read_text() == snapshot


def test_normalization_helpers():
    assert sanitize_id("Hello, World: A Study!") == "hello_world_a_study"
    assert sanitize_id("???") == "untitled_document"
    assert title_words("The Role of the Data in the Data Age") == ["role", "data"]
    assert title_similarity("Graph Neural Networks Survey", "A Survey of Graph Neural Networks") == 1.0
    assert title_similarity("", "anything here") == 0.0
