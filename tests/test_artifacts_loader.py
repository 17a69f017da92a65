"""
Tests for artifact persistence, extracted-text lookup and the graph loader.

Covers:
- artifact_name sanitising and camelCase artifact JSON
- ArtifactStore write failures and unreadable files
- ExtractedTextSource exact and prefix lookups
- GraphLoader: upserts, document links, count recomputation, idempotent reloads
"""

import json

import pytest

from casefile.core.artifacts import ArtifactStore, artifact_name
from casefile.core.errors import ArtifactWriteError
from casefile.core.loader import GraphLoader
from casefile.core.models import (
    AnalysisResult,
    ConnectionMention,
    Document,
    EventMention,
    PersonMention,
    Tier,
)
from casefile.core.stores import ExtractedTextSource


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def result():
    return AnalysisResult(
        file_name="EFTA00001.pdf",
        data_set="9",
        document_type="correspondence",
        summary="Letter between associates.",
        persons=[
            PersonMention(name="Jeffrey Epstein", role="Accused", category="key figure", context="Signed the letter."),
            PersonMention(name="Ghislaine Maxwell", role="Associate", category="associate", context="Addressee."),
        ],
        connections=[
            ConnectionMention(person1="Jeffrey Epstein", person2="Ghislaine Maxwell",
                              relationship_type="social", description="Correspond regularly", strength=4),
            ConnectionMention(person1="Jeffrey Epstein", person2="Nobody Known", strength=2),
            ConnectionMention(person1="Jeffrey Epstein", person2="jeffrey epstein", strength=1),
        ],
        events=[
            EventMention(date="2004-06-01", title="Letter sent", category="financial",
                         significance=2, persons_involved=["Jeffrey Epstein", "Ghislaine Maxwell"]),
        ],
        key_facts=["A letter was sent."],
        tier=Tier.LLM,
        cost_cents=3.5,
        analyzed_at="2026-10-18T00:00:00+00:00",
    )


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStore(tmp_path / "ai-analyzed")


# ── Tests: artifacts ───────────────────────────────────────────────────


class TestArtifactStore:

    def test_artifact_name_is_path_safe(self):
        assert artifact_name("EFTA00001.pdf") == "EFTA00001.pdf.json"
        assert artifact_name("ds9/a:b.pdf") == "ds9_a_b.pdf.json"

    def test_saved_json_uses_camel_case(self, artifacts, result):
        path = artifacts.save("EFTA00001.pdf", result)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["fileName"] == "EFTA00001.pdf"
        assert data["keyFacts"] == ["A letter was sent."]
        assert data["costCents"] == 3.5
        assert data["persons"][0]["mentionCount"] == 1
        assert data["tier"] == 1

    def test_load_returns_saved_result(self, artifacts, result):
        artifacts.save("EFTA00001.pdf", result)
        assert artifacts.load("EFTA00001.pdf") == result

    def test_unreadable_artifact_is_skipped(self, artifacts, result):
        artifacts.save("EFTA00001.pdf", result)
        (artifacts.output_dir / "broken.json").write_text("{not json", encoding="utf-8")

        loaded = list(artifacts.iter_artifacts())

        assert [path.name for path, _ in loaded] == ["EFTA00001.pdf.json"]
        assert artifacts.load("broken") is None

    def test_write_failure_raises(self, artifacts, result):
        # A directory in the artifact's place makes the final rename fail
        artifacts.path_for("EFTA00001.pdf").mkdir()

        with pytest.raises(ArtifactWriteError):
            artifacts.save("EFTA00001.pdf", result)

    def test_output_dir_cannot_be_created(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")

        with pytest.raises(ArtifactWriteError):
            ArtifactStore(blocker / "ai-analyzed")


# ── Tests: extracted text ──────────────────────────────────────────────


class TestExtractedTextSource:

    def _write(self, path, text):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"text": text}), encoding="utf-8")

    def test_exact_match(self, tmp_path):
        self._write(tmp_path / "ds9" / "EFTA00001.pdf.json", "a" * 250)
        source = ExtractedTextSource(tmp_path)

        document = Document(id=1, data_set="9", file_name="EFTA00001.pdf")
        assert source.get_extracted_text(document) == "a" * 250

    def test_prefix_match_without_pdf_suffix(self, tmp_path):
        self._write(tmp_path / "ds9" / "EFTA00002.json", "b" * 250)
        source = ExtractedTextSource(tmp_path)

        document = Document(id=2, data_set="9", file_name="EFTA00002.pdf")
        assert source.get_extracted_text(document) == "b" * 250

    def test_short_text_ignored(self, tmp_path):
        self._write(tmp_path / "ds9" / "EFTA00003.pdf.json", "too short")
        source = ExtractedTextSource(tmp_path)

        assert source.get_extracted_text(Document(id=3, data_set="9", file_name="EFTA00003.pdf")) is None

    def test_missing_data_set_directory(self, tmp_path):
        source = ExtractedTextSource(tmp_path)
        assert source.get_extracted_text(Document(id=4, data_set="12", file_name="x.pdf")) is None


# ── Tests: graph loader ────────────────────────────────────────────────


class TestGraphLoader:

    def test_loads_persons_connections_events_and_links(self, store, add_document, artifacts, result):
        add_document(1, data_set="9")
        artifacts.save(result.file_name, result)

        stats = GraphLoader(store, store).load_directory(artifacts.output_dir)

        assert stats.as_dict() == {"files": 1, "persons": 2, "connections": 1, "events": 1, "doc_links": 2}
        epstein = store.find_person_by_name("jeffrey epstein")
        assert epstein.category == "key figure"
        assert epstein.description == "Signed the letter."
        assert epstein.document_count == 1
        assert epstein.connection_count == 1

        event = store.find_timeline_event("2004-06-01", "Letter sent")
        assert len(event.person_ids) == 2

    def test_reload_adds_nothing(self, store, add_document, artifacts, result):
        add_document(1, data_set="9")
        artifacts.save(result.file_name, result)
        loader = GraphLoader(store, store)

        loader.load_directory(artifacts.output_dir)
        second = loader.load_directory(artifacts.output_dir)

        assert second.as_dict() == {"files": 1, "persons": 0, "connections": 0, "events": 0, "doc_links": 0}
        assert len(store.persons) == 2
        assert len(store.connections) == 1

    def test_unknown_document_skips_links(self, store, artifacts, result):
        artifacts.save(result.file_name, result)

        stats = GraphLoader(store, store).load_directory(artifacts.output_dir)

        assert stats.persons == 2
        assert stats.doc_links == 0

    def test_exact_file_name_beats_substring_match(self, store, add_document, artifacts, result):
        add_document(1, file_name="EFTA00010.pdf")
        add_document(2, file_name="EFTA0001.pdf")
        result.file_name = "EFTA0001.pdf"
        artifacts.save(result.file_name, result)

        GraphLoader(store, store).load_directory(artifacts.output_dir)

        assert {link.document_id for link in store.person_documents.values()} == {2}

    def test_long_descriptions_truncated(self, store, artifacts, result):
        result.persons[0].context = "x" * 900
        artifacts.save(result.file_name, result)

        GraphLoader(store, store).load_directory(artifacts.output_dir)

        assert len(store.find_person_by_name("Jeffrey Epstein").description) == 500

    def test_missing_directory(self, store, tmp_path):
        stats = GraphLoader(store, store).load_directory(tmp_path / "nowhere")
        assert stats.files == 0
