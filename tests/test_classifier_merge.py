"""
Tests for the rule-based classifier and chunk result merging.

Covers:
- classify_document: known persons, type patterns, dates, locations, empty text
- Determinism of the rule-based pass
- merge_results: order independence, summed counts, document type choice
"""

import pytest

from casefile.core.classifier import DEFAULT_DOCUMENT_TYPE, classify_document
from casefile.core.merge import merge_results
from casefile.core.models import AnalysisResult, ConnectionMention, EventMention, PersonMention, Tier


# ── Tests: classifier ──────────────────────────────────────────────────


class TestClassifyDocument:

    def test_finds_known_persons_with_counts(self):
        text = "Jeffrey Epstein met Ghislaine Maxwell. Later JEFFREY EPSTEIN left."
        result = classify_document(text, "doc.pdf", "9")

        by_name = {p.name: p for p in result.persons}
        assert by_name["Jeffrey Epstein"].mention_count == 2
        assert by_name["Jeffrey Epstein"].category == "key figure"
        assert by_name["Ghislaine Maxwell"].mention_count == 1
        assert "met Ghislaine" in by_name["Jeffrey Epstein"].context

    def test_document_type_first_match_wins(self):
        text = "Transcript of the grand jury. The defendant appeared."
        assert classify_document(text).document_type == "grand jury transcript"

    def test_correspondence_header(self):
        text = "From: Sarah\nTo: Lesley\nSent: Monday\n\nSee you then."
        assert classify_document(text).document_type == "correspondence"

    def test_default_document_type(self):
        assert classify_document("Nothing of note here.").document_type == DEFAULT_DOCUMENT_TYPE

    def test_first_date_and_locations(self):
        text = "On March 5, 2005 officers went to Palm Beach, then to London on 2005-04-01."
        result = classify_document(text)

        assert result.date_original == "March 5, 2005"
        assert result.locations == ["Palm Beach, Florida", "London, United Kingdom"]

    def test_never_infers_connections_or_events(self):
        result = classify_document("Jeffrey Epstein and Ghislaine Maxwell flew together.")
        assert result.connections == []
        assert result.events == []
        assert result.tier == Tier.RULE_BASED
        assert result.cost_cents == 0.0

    def test_empty_text(self):
        result = classify_document("", "scan.pdf", "10")
        assert result.persons == []
        assert result.document_type == DEFAULT_DOCUMENT_TYPE
        assert result.summary.startswith("No extracted text")

    def test_deterministic(self):
        text = "Flight manifest: Jeffrey Epstein, Bill Clinton. 01/02/2003 New York."
        first = classify_document(text, "log.pdf", "1", analyzed_at="t")
        second = classify_document(text, "log.pdf", "1", analyzed_at="t")
        assert first == second


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def chunk_a():
    return AnalysisResult(
        file_name="doc.pdf",
        data_set="1",
        document_type="other",
        summary="First part.",
        persons=[PersonMention(name="Jeffrey Epstein", context="short", mention_count=2)],
        connections=[ConnectionMention(person1="Jeffrey Epstein", person2="Ghislaine Maxwell",
                                       relationship_type="social", strength=2)],
        events=[EventMention(date="2005-03-01", title="Arrest", significance=2, persons_involved=["A"])],
        locations=["Palm Beach"],
        tier=Tier.LLM,
        cost_cents=1.25,
        input_tokens=1000,
        output_tokens=200,
    )


@pytest.fixture
def chunk_b():
    return AnalysisResult(
        file_name="doc.pdf",
        data_set="1",
        document_type="deposition",
        summary="Second part.",
        persons=[
            PersonMention(name="jeffrey epstein", context="a much longer context", mention_count=3),
            PersonMention(name="Ghislaine Maxwell", context="named", mention_count=1),
        ],
        connections=[ConnectionMention(person1="Ghislaine Maxwell", person2="Jeffrey Epstein",
                                       relationship_type="Social", strength=4)],
        events=[EventMention(date="2005-03-01", title="arrest", significance=3, persons_involved=["B"])],
        locations=["palm beach", "New York"],
        tier=Tier.LLM,
        cost_cents=0.75,
        input_tokens=800,
        output_tokens=100,
    )


# ── Tests: merge ───────────────────────────────────────────────────────


class TestMergeResults:

    def test_order_independent_sets(self, chunk_a, chunk_b):
        forward = merge_results([chunk_a, chunk_b])
        backward = merge_results([chunk_b, chunk_a])

        assert forward.persons == backward.persons
        assert forward.connections == backward.connections
        assert forward.events == backward.events

    def test_person_counts_summed_longest_context_kept(self, chunk_a, chunk_b):
        merged = merge_results([chunk_a, chunk_b])
        epstein = next(p for p in merged.persons if p.name.lower() == "jeffrey epstein")

        assert epstein.mention_count == 5
        assert epstein.context == "a much longer context"
        assert len(merged.persons) == 2

    def test_connections_keyed_on_unordered_pair(self, chunk_a, chunk_b):
        merged = merge_results([chunk_a, chunk_b])
        assert len(merged.connections) == 1
        assert merged.connections[0].strength == 4

    def test_events_union_persons_involved(self, chunk_a, chunk_b):
        merged = merge_results([chunk_a, chunk_b])
        assert len(merged.events) == 1
        assert merged.events[0].significance == 3
        assert merged.events[0].persons_involved == ["A", "B"]

    def test_tokens_and_cost_summed(self, chunk_a, chunk_b):
        merged = merge_results([chunk_a, chunk_b])
        assert merged.input_tokens == 1800
        assert merged.output_tokens == 300
        assert merged.cost_cents == 2.0

    def test_document_type_skips_other(self, chunk_a, chunk_b):
        assert merge_results([chunk_a, chunk_b]).document_type == "deposition"

    def test_locations_deduped_case_insensitively(self, chunk_a, chunk_b):
        assert merge_results([chunk_a, chunk_b]).locations == ["Palm Beach", "New York"]

    def test_single_result_is_copied(self, chunk_a):
        merged = merge_results([chunk_a])
        assert merged == chunk_a
        assert merged is not chunk_a

    def test_duplicates_within_one_result_are_folded(self, chunk_b):
        chunk_b.persons.append(PersonMention(name="Jeffrey Epstein", context="x", mention_count=1))
        empty = AnalysisResult(file_name="doc.pdf", data_set="1")

        alone = merge_results([chunk_b])

        assert len(alone.persons) == 2
        assert alone.persons == merge_results([chunk_b, empty]).persons

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            merge_results([])
