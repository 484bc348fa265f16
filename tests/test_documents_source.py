import time

import pytest

from multisource_agent.datasources import documents as documents_mod
from multisource_agent.datasources.documents import (
    NO_RELEVANT_INFO, DocumentDataSource, extract_search_terms, make_preview, score_section,
)
from multisource_agent.errors import InitializationFailure


def test_initialize_loads_only_txt(documents):
    assert documents.list_documents() == ["adam_smith", "keynes"]
    assert len(documents.sections["adam_smith"]) == 2
    assert "adam_smith" in documents.describe()


@pytest.mark.parametrize("make_dir", [False, True])
def test_initialize_failure(tmp_path, make_dir):
    target = tmp_path / "docs"
    if make_dir:
        target.mkdir()
    source = DocumentDataSource(target)
    with pytest.raises(InitializationFailure):
        source.initialize()
    assert source.run("Adam Smith").status == "unavailable"


def test_extract_search_terms():
    terms = extract_search_terms("Tell me about Adam Smith")
    assert terms[0] == "adam smith"
    assert "adam" in terms and "smith" in terms
    assert "tell" not in terms and "about" not in terms


def test_heading_bonus_needs_a_match():
    assert score_section("# Heading\nnothing relevant", ["keynes"]) == (0, [])
    assert score_section("# Keynes\nKeynes again", ["keynes"]) == (4, ["keynes"])
    assert score_section("Keynes in body text", ["keynes"]) == (1, ["keynes"])


def test_make_preview_strips_markup_and_truncates():
    assert make_preview("## Title\nSome **bold** text") == "Title\nSome bold text"
    long = "word " * 200
    out = make_preview(long, max_length=50)
    assert out.endswith("...")
    assert len(out) <= 53


def test_search_finds_adam_smith(documents):
    results = documents.search("Tell me about Adam Smith")
    assert results
    top = results[0]
    assert top.source_document == "adam_smith"
    assert "adam smith" in top.matched_terms
    assert "Scottish economist" in top.snippet
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_run_formats_attributed_snippets(documents):
    result = documents.run("What did Keynes say about government intervention?")
    assert result.status == "ok"
    assert result.content.startswith("Found relevant information in")
    assert "[1] keynes (score" in result.content
    assert "Matched terms:" in result.content
    assert result.artifact[0].source_document == "keynes"


def test_no_match_is_distinct_from_failure(documents):
    result = documents.run("quantum chromodynamics lattice")
    assert result.status == "empty"
    assert result.content == NO_RELEVANT_INFO
    assert result.artifact == []


def test_search_exception_is_reported(documents, monkeypatch):
    def boom(question):
        raise RuntimeError("index corrupted")

    monkeypatch.setattr(documents, "search", boom)
    result = documents.run("Adam Smith")
    assert result.status == "error"
    assert result.content.startswith("Document search failed:")
    assert "index corrupted" in result.content


def test_search_timeout(documents, monkeypatch):
    documents.timeout = 0.05
    monkeypatch.setattr(documents, "search", lambda question: time.sleep(0.5) or [])
    result = documents.run("Adam Smith")
    assert result.status == "error"
    assert "timed out" in result.content


def test_at_most_three_sections_per_document(documents_dir):
    body = "\n\n".join(f"## Part {i}\n\nMarx wrote about capital." for i in range(6))
    (documents_dir / "marx.txt").write_text(f"# Karl Marx\n\n{body}\n", encoding="utf-8")
    source = DocumentDataSource(documents_dir)
    source.initialize()
    hits = [r for r in source.search("What did Marx think?") if r.source_document == "marx"]
    assert len(hits) == documents_mod.TOP_SECTIONS_PER_DOC
