"""
Tests for the Tier 1 analyzer with a mocked LLM client.

Covers:
- chunk_text page-aligned splitting and hard splits
- parse_llm_json tolerance for fences and prose
- is_transient_error classification
- AIAnalyzer: retry on transient errors, dropped chunks, placeholder result,
  token and cost accounting, short-name filtering, multi-chunk merge
"""

import json
from unittest.mock import MagicMock

import pytest

from casefile.core.analyzer import (
    AIAnalyzer,
    LLMResponse,
    UNABLE_TO_ANALYZE,
    chunk_text,
    is_transient_error,
    parse_llm_json,
)
from casefile.core.cost import calculate_cost_cents
from casefile.core.errors import MalformedResponseError, TransientProviderError
from casefile.core.models import Tier


# ── Fixtures ───────────────────────────────────────────────────────────


PAYLOAD = {
    "documentType": "deposition",
    "dateOriginal": "2016-04-22",
    "summary": "Deposition of a witness.",
    "persons": [
        {"name": "Jeffrey Epstein", "role": "Accused", "category": "key figure",
         "context": "Named throughout.", "mentionCount": 4},
        {"name": "JE", "role": "", "category": "other", "context": "", "mentionCount": 1},
    ],
    "connections": [
        {"person1": "Jeffrey Epstein", "person2": "Ghislaine Maxwell",
         "relationshipType": "social", "description": "Travelled together", "strength": 9},
    ],
    "events": [
        {"date": "2005-03-01", "title": "Police report filed", "description": "Palm Beach",
         "category": "investigation", "significance": 4, "personsInvolved": ["Jeffrey Epstein"]},
    ],
    "locations": ["Palm Beach"],
    "keyFacts": ["A report was filed."],
}


def _response(content=None, input_tokens=1000, output_tokens=500):
    return LLMResponse(
        content=json.dumps(PAYLOAD) if content is None else content,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.complete.return_value = _response()
    return mock


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def analyzer(client, sleep):
    return AIAnalyzer(
        client,
        chunk_delay_seconds=0.5,
        rate_limit_backoff_seconds=10.0,
        max_chunk_attempts=3,
        sleep=sleep,
        clock=lambda: "2026-10-18T00:00:00+00:00",
    )


# ── Tests: chunking ────────────────────────────────────────────────────


class TestChunkText:

    def test_short_text_single_chunk(self):
        assert chunk_text("short", max_chars=100) == ["short"]

    def test_splits_on_page_boundaries(self):
        text = "Page 1 " + "a" * 50 + "Page 2 " + "b" * 50
        chunks = chunk_text(text, max_chars=70)

        assert len(chunks) == 2
        assert chunks[0].startswith("Page 1")
        assert chunks[1].startswith("Page 2")
        assert "".join(chunks) == text

    def test_oversized_page_is_hard_split(self):
        text = "x" * 250
        chunks = chunk_text(text, max_chars=100)

        assert [len(c) for c in chunks] == [100, 100, 50]
        assert "".join(chunks) == text


# ── Tests: response parsing ────────────────────────────────────────────


class TestParseLLMJson:

    def test_plain_json(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_llm_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose(self):
        assert parse_llm_json('Here you go: {"a": 1} hope this helps') == {"a": 1}

    def test_unparseable(self):
        assert parse_llm_json("no json here") is None
        assert parse_llm_json("") is None
        assert parse_llm_json(None) is None

    def test_non_object_rejected(self):
        assert parse_llm_json("[1, 2]") is None


class TestIsTransientError:

    def test_classification(self):
        assert is_transient_error(TransientProviderError("slow down"))
        assert is_transient_error(Exception("HTTP 429 Too Many Requests"))
        assert is_transient_error(Exception("Rate limit reached"))
        assert not is_transient_error(ValueError("bad request"))


# ── Tests: analyzer ────────────────────────────────────────────────────


class TestAIAnalyzer:

    def test_single_chunk_result(self, analyzer, client):
        result = analyzer.analyze("Some deposition text", "EFTA00001.pdf", "9")

        assert client.complete.call_count == 1
        assert result.tier == Tier.LLM
        assert result.document_type == "deposition"
        assert result.file_name == "EFTA00001.pdf"
        assert result.data_set == "9"
        assert result.analyzed_at == "2026-10-18T00:00:00+00:00"
        assert result.key_facts == ["A report was filed."]

    def test_drops_names_shorter_than_three_chars(self, analyzer):
        result = analyzer.analyze("text", "doc.pdf", "1")
        assert [p.name for p in result.persons] == ["Jeffrey Epstein"]

    def test_scales_are_clamped(self, analyzer):
        result = analyzer.analyze("text", "doc.pdf", "1")
        assert result.connections[0].strength == 5

    def test_tokens_and_cost(self, analyzer):
        result = analyzer.analyze("text", "doc.pdf", "1")
        assert result.input_tokens == 1000
        assert result.output_tokens == 500
        assert result.cost_cents == calculate_cost_cents(1000, 500)

    def test_code_fenced_reply(self, analyzer, client):
        client.complete.return_value = _response(content="```json\n" + json.dumps(PAYLOAD) + "\n```")
        result = analyzer.analyze("text", "doc.pdf", "1")
        assert result.summary == "Deposition of a witness."

    def test_unparseable_reply_gives_placeholder_but_bills_tokens(self, analyzer, client):
        client.complete.return_value = _response(content="I cannot help with that.")
        result = analyzer.analyze("text", "doc.pdf", "1")

        assert result.summary == UNABLE_TO_ANALYZE
        assert result.persons == []
        assert result.input_tokens == 1000
        assert result.cost_cents > 0

    def test_retries_transient_error(self, analyzer, client, sleep):
        """A rate-limited chunk is retried after the fixed backoff."""
        client.complete.side_effect = [TransientProviderError("429"), _response()]
        result = analyzer.analyze("text", "doc.pdf", "1")

        assert client.complete.call_count == 2
        sleep.assert_any_call(10.0)
        assert [p.name for p in result.persons] == ["Jeffrey Epstein"]

    def test_gives_up_after_max_attempts(self, analyzer, client):
        client.complete.side_effect = TransientProviderError("429")
        result = analyzer.analyze("text", "doc.pdf", "1")

        assert client.complete.call_count == 3
        assert result.summary == UNABLE_TO_ANALYZE
        assert result.cost_cents == 0.0

    def test_non_transient_error_not_retried(self, analyzer, client):
        client.complete.side_effect = ValueError("bad request")
        result = analyzer.analyze("text", "doc.pdf", "1")

        assert client.complete.call_count == 1
        assert result.summary == UNABLE_TO_ANALYZE

    def test_multi_chunk_merge(self, client, sleep):
        analyzer = AIAnalyzer(client, max_chunk_chars=70, chunk_delay_seconds=0.5, sleep=sleep,
                              clock=lambda: "t")
        text = "Page 1 " + "a" * 50 + "Page 2 " + "b" * 50
        result = analyzer.analyze(text, "doc.pdf", "1")

        assert client.complete.call_count == 2
        sleep.assert_called_once_with(0.5)
        assert result.input_tokens == 2000
        assert result.output_tokens == 1000
        assert result.persons[0].mention_count == 8
        assert result.cost_cents == calculate_cost_cents(2000, 1000)

    def test_one_failed_chunk_is_dropped(self, client, sleep):
        analyzer = AIAnalyzer(client, max_chunk_chars=70, sleep=sleep, clock=lambda: "t")
        client.complete.side_effect = [ValueError("boom"), _response()]
        text = "Page 1 " + "a" * 50 + "Page 2 " + "b" * 50
        result = analyzer.analyze(text, "doc.pdf", "1")

        assert result.persons[0].mention_count == 4
        assert result.input_tokens == 1000

    def test_malformed_chunk_is_dropped_but_billed(self, client, sleep):
        analyzer = AIAnalyzer(client, max_chunk_chars=70, sleep=sleep, clock=lambda: "t")
        client.complete.side_effect = [_response(content="no json here"), _response()]
        text = "Page 1 " + "a" * 50 + "Page 2 " + "b" * 50
        result = analyzer.analyze(text, "doc.pdf", "1")

        assert result.persons[0].mention_count == 4
        assert result.input_tokens == 2000

    def test_parse_chunk_raises_on_malformed_reply(self, analyzer):
        with pytest.raises(MalformedResponseError):
            analyzer._parse_chunk("```json\n[1, 2]\n```", "doc.pdf", "1", "t")
