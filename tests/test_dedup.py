"""
Tests for name matching and person deduplication.

Covers:
- normalize_name, collapse_ocr_spaces, edit_distance
- match_strategy for each strategy and for clear non-matches
- UnionFind tie-breaking, canonical selection, alias capping
- PersonDeduplicator: graph repair, idempotency, dry run, rollback
- Single-word pass: dominant merge, ambiguity skip, minimum score
"""

import pytest

from casefile.core.dedup import (
    MAX_ALIASES,
    PersonDeduplicator,
    UnionFind,
    candidate_pairs,
    merged_aliases,
    select_canonical,
)
from casefile.core.models import Person
from casefile.core.names import (
    ALIAS,
    EDIT_DISTANCE,
    EXACT,
    NICKNAME,
    SORTED_TOKENS,
    SPACELESS,
    collapse_ocr_spaces,
    edit_distance,
    is_same_person,
    match_strategy,
    normalize_name,
)
from casefile.core.stores import InMemoryStore


# ── Tests: names ───────────────────────────────────────────────────────


class TestNormalizeName:

    def test_last_first_and_honorifics(self):
        assert normalize_name("Epstein, Jeffrey") == "jeffrey epstein"
        assert normalize_name("Dr. Jeffrey E. Epstein Jr.") == "jeffrey e epstein"
        assert normalize_name("  Ghislaine   MAXWELL ") == "ghislaine maxwell"

    def test_collapse_ocr_spaces(self):
        assert collapse_ocr_spaces("j effrey epstein") == "jeffrey epstein"

    def test_edit_distance(self):
        assert edit_distance("kitten", "sitting") == 3
        assert edit_distance("", "abc") == 3
        assert edit_distance("same", "same") == 0


class TestMatchStrategy:

    @pytest.mark.parametrize("name_a, name_b, expected", [
        ("Jeffrey Epstein", "Epstein, Jeffrey", EXACT),
        ("Jeff Paliuca", "Jeff Pa liuca", SPACELESS),
        ("Maxwell Ghislaine", "Ghislaine Maxwell", SORTED_TOKENS),
        ("Ghislaine Maxwell", "Ghisaine Maxwell", EDIT_DISTANCE),
        ("J. Epstein", "Jeffrey Epstein", EDIT_DISTANCE),
        ("Bill Clinton", "William Clinton", NICKNAME),
    ])
    def test_strategies(self, name_a, name_b, expected):
        assert match_strategy(name_a, name_b) == expected

    def test_alias(self):
        assert match_strategy("Virginia Giuffre", "Virginia Roberts",
                              aliases_b=["Virginia Giuffre"]) == ALIAS

    def test_different_people(self):
        assert not is_same_person("Bill Clinton", "Hillary Clinton")
        assert not is_same_person("Jeffrey Epstein", "Mark Epstein")

    def test_single_token_never_matches(self):
        assert match_strategy("Epstein", "Jeffrey Epstein") is None


# ── Tests: union-find and helpers ──────────────────────────────────────


class TestUnionFind:

    def test_smaller_root_wins_on_tie(self):
        uf = UnionFind([5, 3])
        assert uf.union(5, 3) == 3
        assert uf.find(5) == 3

    def test_groups(self):
        uf = UnionFind([1, 2, 3, 4])
        uf.union(4, 2)
        uf.union(2, 1)
        assert uf.groups() == [[1, 2, 4], [3]]


class TestHelpers:

    def test_select_canonical_highest_score_then_lowest_id(self):
        persons = [
            Person(id=3, name="J. Epstein", document_count=4),
            Person(id=1, name="Epstein, Jeffrey", document_count=2, connection_count=2),
            Person(id=2, name="Jeffrey Epstein", document_count=1),
        ]
        assert select_canonical(persons).id == 1

    def test_candidate_pairs_share_blocking_keys(self):
        persons = [
            Person(id=1, name="Bill Clinton"),
            Person(id=2, name="William Clinton"),
            Person(id=3, name="Ghislaine Maxwell"),
        ]
        assert (1, 2) in candidate_pairs(persons)

    def test_merged_aliases_capped(self):
        canonical = Person(id=1, name="Jeffrey Epstein", aliases=[f"alias {i}" for i in range(19)])
        aliases = merged_aliases(canonical, ["Jeffrey Epstein", "Jeff Epstein", "J. Epstein"])

        assert len(aliases) == MAX_ALIASES
        assert aliases[-1] == "Jeff Epstein"
        assert "Jeffrey Epstein" not in aliases


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def graph():
    """Two duplicate clusters plus an unrelated person, with links to repair."""
    store = InMemoryStore()
    store.insert_person("Jeffrey Epstein", id=1, document_count=5, connection_count=2)
    store.insert_person("Epstein, Jeffrey", id=2, document_count=1)
    store.insert_person("J. Epstein", id=3, document_count=1)
    store.insert_person("Ghislaine Maxwell", id=4, document_count=3)
    store.insert_person("Ghisaine Maxwell", id=5)
    store.insert_person("Bill Richardson", id=6, document_count=2)

    store.insert_connection(1, 4, connection_type="social")
    store.insert_connection(2, 4)
    store.insert_connection(3, 1)
    store.insert_connection(5, 6)
    store.insert_connection(2, 5, strength=3)

    store.link_person_document(1, 100)
    store.link_person_document(2, 100)
    store.link_person_document(2, 200)
    store.link_person_document(4, 100)

    store.insert_timeline_event("2005-03-01", "Police report", person_ids=[2, 3, 4])
    return store


# ── Tests: deduplicator ────────────────────────────────────────────────


class TestPersonDeduplicator:

    def test_merges_variant_clusters(self, graph):
        report = PersonDeduplicator(graph).run()

        assert [(g.canonical_id, sorted(g.merged_ids)) for g in report.groups] == [(1, [2, 3]), (4, [5])]
        assert report.deleted_count == 3
        assert sorted(graph.persons) == [1, 4, 6]

    def test_aliases_recorded_on_canonical(self, graph):
        PersonDeduplicator(graph).run()
        assert graph.get_person(1).aliases == ["Epstein, Jeffrey", "J. Epstein"]
        assert graph.get_person(4).aliases == ["Ghisaine Maxwell"]

    def test_no_self_loops_or_duplicate_pairs(self, graph):
        PersonDeduplicator(graph).run()
        connections = graph.list_connections()

        assert all(c.person_id1 != c.person_id2 for c in connections)
        pairs = [c.pair for c in connections]
        assert len(pairs) == len(set(pairs))
        assert sorted(pairs) == [(1, 4), (4, 6)]

    def test_strongest_duplicate_connection_kept(self, graph):
        PersonDeduplicator(graph).run()
        kept = next(c for c in graph.list_connections() if c.pair == (1, 4))
        assert kept.strength == 3

    def test_document_links_repointed_and_deduped(self, graph):
        PersonDeduplicator(graph).run()

        assert graph.count_person_documents(1) == 2
        assert graph.get_person(1).document_count == 2
        assert {l.person_id for l in graph.person_documents.values()} == {1, 4}

    def test_timeline_events_repointed(self, graph):
        PersonDeduplicator(graph).run()
        event = graph.find_timeline_event("2005-03-01", "Police report")
        assert event.person_ids == [1, 4]

    def test_counts_recomputed(self, graph):
        PersonDeduplicator(graph).run()
        maxwell = graph.get_person(4)
        assert maxwell.document_count == 1
        assert maxwell.connection_count == 2

    def test_idempotent(self, graph):
        PersonDeduplicator(graph).run()
        second = PersonDeduplicator(graph).run()

        assert second.groups == []
        assert second.merged_count == 0

    def test_dry_run_changes_nothing(self, graph):
        persons_before = graph.list_persons()
        connections_before = graph.list_connections()

        report = PersonDeduplicator(graph).run(dry_run=True)

        assert report.merged_count == 2
        assert graph.list_persons() == persons_before
        assert graph.list_connections() == connections_before

    def test_strategy_hits_counted(self, graph):
        report = PersonDeduplicator(graph).run(dry_run=True)
        assert sum(report.strategy_hits.values()) == 3
        assert report.strategy_hits[EDIT_DISTANCE] >= 1

    def test_failed_group_rolls_back(self, graph):
        class FailingStore(InMemoryStore):
            def delete_persons(self, person_ids):
                raise RuntimeError("connection lost")

        failing = FailingStore()
        failing.__dict__.update(graph.__dict__)
        links_before = {k: (l.person_id, l.document_id) for k, l in failing.person_documents.items()}

        with pytest.raises(RuntimeError):
            PersonDeduplicator(failing).run()

        assert sorted(failing.persons) == [1, 2, 3, 4, 5, 6]
        assert {k: (l.person_id, l.document_id) for k, l in failing.person_documents.items()} == links_before


# ── Tests: single-word pass ────────────────────────────────────────────


class TestCanonicalSelection:

    def test_spelling_variants_fold_into_best_connected_record(self):
        store = InMemoryStore()
        store.insert_person("Jeffrey Epstein", id=1, document_count=1)
        store.insert_person("JEFFREY  EPSTEIN", id=2)
        store.insert_person("Epstein, Jeffrey", id=3, document_count=5, connection_count=2)

        report = PersonDeduplicator(store).run()

        assert [(g.canonical_id, sorted(g.merged_ids)) for g in report.groups] == [(3, [1, 2])]
        assert sorted(store.persons) == [3]
        assert store.get_person(3).name == "Epstein, Jeffrey"
        assert sorted(store.get_person(3).aliases) == ["JEFFREY  EPSTEIN", "Jeffrey Epstein"]


class TestSingleWordPass:

    def test_dominant_full_name_absorbs_single_word(self):
        store = InMemoryStore()
        store.insert_person("Jeffrey Epstein", id=1, document_count=12)
        store.insert_person("Epstein", id=2, document_count=1)
        store.insert_person("Mark Epstein", id=3, document_count=1)

        report = PersonDeduplicator(store).run(single_word=True)

        assert [(m.canonical_id, m.merged_ids) for m in report.single_word_merges] == [(1, [2])]
        assert sorted(store.persons) == [1, 3]
        assert "Epstein" in store.get_person(1).aliases

    def test_ambiguous_single_word_skipped(self):
        store = InMemoryStore()
        store.insert_person("Ghislaine Maxwell", id=1, document_count=12)
        store.insert_person("Kevin Maxwell", id=2, document_count=5)
        store.insert_person("Maxwell", id=3, document_count=1)

        report = PersonDeduplicator(store).run(single_word=True)

        assert report.single_word_merges == []
        assert report.single_word_skipped == 1
        assert 3 in store.persons

    def test_below_minimum_score_left_alone(self):
        store = InMemoryStore()
        store.insert_person("Bill Richardson", id=1, document_count=4)
        store.insert_person("Richardson", id=2, document_count=1)

        report = PersonDeduplicator(store).run(single_word=True)

        assert report.single_word_merges == []
        assert report.single_word_skipped == 0
        assert sorted(store.persons) == [1, 2]

    def test_single_word_off_by_default(self):
        store = InMemoryStore()
        store.insert_person("Jeffrey Epstein", id=1, document_count=12)
        store.insert_person("Epstein", id=2, document_count=1)

        report = PersonDeduplicator(store).run()

        assert report.single_word_merges == []
        assert sorted(store.persons) == [1, 2]
