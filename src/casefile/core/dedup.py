"""Person deduplication: cluster name variants and merge them into one record."""

from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog

from .logging_config import get_audit_logger, log_person_merge
from .models import Person
from .names import blocking_keys, edit_distance, match_strategy, normalize_name, tokens
from .stores import PersonStore

logger = structlog.get_logger(__name__)
audit_logger = get_audit_logger("person_dedup")

MAX_ALIASES = 20
DOMINANT_MIN_SCORE = 10
DOMINANT_RATIO = 3


class UnionFind:
    """Disjoint sets over person ids with path compression and union by rank."""

    def __init__(self, ids: Iterable[int] = ()):
        self.parent: Dict[int, int] = {}
        self.rank: Dict[int, int] = {}
        for i in ids:
            self.add(i)

    def add(self, x: int) -> None:
        if x not in self.parent:
            self.parent[x] = x
            self.rank[x] = 0

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> int:
        """Join the sets of a and b; on equal rank the smaller root id wins."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return ra
        if self.rank[ra] < self.rank[rb] or (self.rank[ra] == self.rank[rb] and rb < ra):
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1
        return ra

    def groups(self) -> List[List[int]]:
        """All sets, members sorted, ordered by smallest member."""
        by_root: Dict[int, List[int]] = {}
        for x in self.parent:
            by_root.setdefault(self.find(x), []).append(x)
        return sorted((sorted(members) for members in by_root.values()), key=lambda m: m[0])


@dataclass
class MergeGroup:
    canonical_id: int
    canonical_name: str
    merged_ids: List[int]
    merged_names: List[str]


@dataclass
class DedupReport:
    """Outcome of one deduplication run."""
    dry_run: bool = False
    persons_scanned: int = 0
    candidate_pairs: int = 0
    groups: List[MergeGroup] = field(default_factory=list)
    single_word_merges: List[MergeGroup] = field(default_factory=list)
    single_word_skipped: int = 0
    strategy_hits: Dict[str, int] = field(default_factory=dict)

    @property
    def merged_count(self) -> int:
        return len(self.groups) + len(self.single_word_merges)

    @property
    def deleted_count(self) -> int:
        return sum(len(g.merged_ids) for g in self.groups + self.single_word_merges)


def select_canonical(group: List[Person]) -> Person:
    """Highest document_count + connection_count; lowest id on ties."""
    return min(group, key=lambda p: (-p.score, p.id))


def candidate_pairs(persons: List[Person]) -> Set[Tuple[int, int]]:
    """Id pairs sharing at least one blocking key."""
    buckets: Dict[str, List[int]] = {}
    for person in persons:
        for key in blocking_keys(person.name, person.aliases):
            buckets.setdefault(key, []).append(person.id)

    pairs: Set[Tuple[int, int]] = set()
    for ids in buckets.values():
        for a, b in combinations(sorted(set(ids)), 2):
            pairs.add((a, b))
    return pairs


def merged_aliases(canonical: Person, names: List[str], cap: int = MAX_ALIASES) -> List[str]:
    aliases = list(canonical.aliases or [])
    for name in names:
        if name != canonical.name and name not in aliases:
            aliases.append(name)
    return aliases[:cap]


def _is_single_word(name: str) -> bool:
    parts = tokens(normalize_name(name))
    if not parts:
        return False
    return len(parts) == 1 or len([p for p in parts if len(p) >= 2]) <= 1


def _key_word(name: str) -> Optional[str]:
    parts = tokens(normalize_name(name))
    meaningful = [p for p in parts if len(p) >= 2]
    if meaningful:
        return max(meaningful, key=len)
    return parts[0] if parts else None


def _shares_word(person: Person, word: str) -> bool:
    parts = tokens(normalize_name(person.name))
    if not parts:
        return False
    first, last = parts[0], parts[-1]
    if word in (first, last):
        return True
    return len(word) >= 6 and len(last) >= 6 and edit_distance(last, word) <= 1


class PersonDeduplicator:
    """
    Collapses duplicate person records in a PersonStore.

    Each merge group is applied inside one store transaction so an
    interrupted run leaves whole groups either merged or untouched; a rerun
    picks up what is left. Running twice merges nothing the second time.
    """

    def __init__(self, store: PersonStore, max_aliases: int = MAX_ALIASES):
        self.store = store
        self.max_aliases = max_aliases

    def run(self, dry_run: bool = False, single_word: bool = False) -> DedupReport:
        """
        Find and merge duplicate persons.

        Args:
            dry_run: Report the groups without changing anything
            single_word: Also fold single-word names into a dominant full name

        Returns:
            DedupReport listing every merge
        """
        report = DedupReport(dry_run=dry_run)
        persons = self.store.list_persons()
        by_id = {p.id: p for p in persons}
        report.persons_scanned = len(persons)

        uf = UnionFind(by_id)
        pairs = candidate_pairs(persons)
        report.candidate_pairs = len(pairs)

        for a, b in sorted(pairs):
            if uf.find(a) == uf.find(b):
                continue
            pa, pb = by_id[a], by_id[b]
            strategy = match_strategy(pa.name, pb.name, pa.aliases, pb.aliases)
            if strategy:
                uf.union(a, b)
                report.strategy_hits[strategy] = report.strategy_hits.get(strategy, 0) + 1

        removed: Set[int] = set()
        for member_ids in uf.groups():
            if len(member_ids) <= 1:
                continue
            group = [by_id[i] for i in member_ids]
            canonical = select_canonical(group)
            duplicates = [p for p in group if p.id != canonical.id]

            merge = MergeGroup(
                canonical_id=canonical.id,
                canonical_name=canonical.name,
                merged_ids=[p.id for p in duplicates],
                merged_names=[p.name for p in duplicates],
            )
            report.groups.append(merge)
            removed.update(merge.merged_ids)

            if not dry_run:
                self.merge_group(canonical, duplicates)
            log_person_merge(audit_logger, canonical.id, canonical.name, merge.merged_ids, merge.merged_names)

        if not dry_run:
            self.store.delete_self_loop_connections()

        logger.info(
            f"Pass 1 (name matching): merged {len(report.groups)} groups, "
            f"deleted {sum(len(g.merged_ids) for g in report.groups)} duplicate persons"
        )

        if single_word:
            remaining = self.store.list_persons() if not dry_run else [p for p in persons if p.id not in removed]
            self.merge_single_word_names(remaining, report)

        return report

    def merge_group(self, canonical: Person, duplicates: List[Person]) -> None:
        """Fold duplicates into canonical and repair every reference to them."""
        if not duplicates:
            return
        dup_ids = [p.id for p in duplicates]
        names = [canonical.name] + [p.name for p in duplicates]

        with self.store.transaction():
            self.store.repoint_person_documents(dup_ids, canonical.id)
            self.store.dedupe_person_documents(canonical.id)

            self.store.repoint_connections(dup_ids, canonical.id)
            self.store.delete_self_loop_connections()
            self.store.collapse_duplicate_connections(canonical.id)
            self.store.delete_connections_referencing(dup_ids)

            self.store.repoint_timeline_events(dup_ids, canonical.id)

            self.store.delete_person_documents(dup_ids)
            self.store.delete_persons(dup_ids)

            self.store.update_person(
                canonical.id,
                document_count=self.store.count_person_documents(canonical.id),
                connection_count=self.store.count_connections(canonical.id),
                aliases=merged_aliases(canonical, names, self.max_aliases),
            )

    def merge_single_word_names(self, persons: List[Person], report: DedupReport) -> None:
        """
        Fold single-word names ("Epstein") into the one full-name person they
        clearly belong to: the dominant candidate must score at least 10 and
        at least three times the runner-up.
        """
        multi_word = [p for p in persons if len(p.name.strip().split()) >= 2]
        merged: Set[int] = set()

        for single in sorted((p for p in persons if _is_single_word(p.name)), key=lambda p: p.id):
            word = _key_word(single.name)
            if not word or len(word) < 3:
                continue

            candidates = [
                p for p in multi_word
                if p.id != single.id and p.id not in merged and _shares_word(p, word)
            ]
            if not candidates:
                continue

            candidates.sort(key=lambda p: (-p.score, p.id))
            dominant = candidates[0]
            if dominant.score < DOMINANT_MIN_SCORE:
                continue
            if len(candidates) > 1 and dominant.score < DOMINANT_RATIO * candidates[1].score:
                logger.info(f"Skipping \"{single.name}\": ambiguous between \"{dominant.name}\" and \"{candidates[1].name}\"")
                report.single_word_skipped += 1
                continue

            if not report.dry_run:
                current = self.store.get_person(dominant.id) or dominant
                self.merge_group(current, [single])
                self.store.delete_self_loop_connections()

            merged.add(single.id)
            report.single_word_merges.append(MergeGroup(dominant.id, dominant.name, [single.id], [single.name]))
            log_person_merge(audit_logger, dominant.id, dominant.name, [single.id], [single.name])

        logger.info(f"Pass 2 (single-word): merged {len(report.single_word_merges)} single-word persons")
