"""Merge chunk-level analysis results into one document result.

Persons, connections and events are keyed and reduced with associative,
commutative rules and emitted sorted by key, so the merged sets do not
depend on chunk order.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from .models import AnalysisResult, ConnectionMention, EventMention, PersonMention, Tier


def person_key(person: PersonMention) -> str:
    return person.name.strip().lower()


def connection_key(connection: ConnectionMention) -> Tuple[str, str, str]:
    first, second = sorted([connection.person1.strip().lower(), connection.person2.strip().lower()])
    return (first, second, connection.relationship_type.strip().lower())


def event_key(event: EventMention) -> Tuple[str, str]:
    return (event.date.strip(), event.title.strip().lower())


def _merge_person(a: PersonMention, b: PersonMention) -> PersonMention:
    # Longer context wins; the full tuple breaks ties deterministically
    rank = lambda p: (len(p.context), p.context, p.name, p.role, p.category)
    winner = max(a, b, key=rank)
    return winner.model_copy(update={"mention_count": a.mention_count + b.mention_count})


def _merge_connection(a: ConnectionMention, b: ConnectionMention) -> ConnectionMention:
    rank = lambda c: (c.strength, len(c.description), c.description, c.person1, c.person2)
    return max(a, b, key=rank).model_copy()


def _merge_event(a: EventMention, b: EventMention) -> EventMention:
    rank = lambda e: (e.significance, len(e.description), e.description, e.title, e.category)
    winner = max(a, b, key=rank)
    involved = _dedupe_casefold(sorted(set(a.persons_involved) | set(b.persons_involved)))
    return winner.model_copy(update={"persons_involved": involved})


def _dedupe_casefold(values: Iterable[str]) -> List[str]:
    """Case-insensitive dedupe that keeps the first-seen spelling and order."""
    seen = set()
    out = []
    for value in values:
        key = value.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(value)
    return out


def _reduce_keyed(items, key_fn, merge_fn) -> List:
    reduced: Dict = {}
    for item in items:
        key = key_fn(item)
        reduced[key] = merge_fn(reduced[key], item) if key in reduced else item.model_copy()
    return [reduced[key] for key in sorted(reduced)]


def _first_meaningful(values: Iterable[Optional[str]], ignore: Tuple[str, ...] = ()) -> Optional[str]:
    for value in values:
        if value and value.strip() and value.strip().lower() not in ignore:
            return value
    return None


def merge_results(results: List[AnalysisResult]) -> AnalysisResult:
    """
    Combine chunk results into one.

    Args:
        results: Chunk-level results for a single document, in chunk order

    Returns:
        Merged AnalysisResult with summed token counts and cost
    """
    if not results:
        raise ValueError("merge_results needs at least one result")

    first = results[0]
    return AnalysisResult(
        file_name=first.file_name,
        data_set=first.data_set,
        document_type=_first_meaningful((r.document_type for r in results), ignore=("other",)) or "other",
        date_original=_first_meaningful(r.date_original for r in results),
        summary=" ".join(r.summary.strip() for r in results if r.summary and r.summary.strip()),
        persons=_reduce_keyed((p for r in results for p in r.persons), person_key, _merge_person),
        connections=_reduce_keyed((c for r in results for c in r.connections), connection_key, _merge_connection),
        events=_reduce_keyed((e for r in results for e in r.events), event_key, _merge_event),
        locations=_dedupe_casefold(l for r in results for l in r.locations),
        key_facts=_dedupe_casefold(f for r in results for f in r.key_facts),
        tier=max((r.tier for r in results), default=Tier.RULE_BASED),
        cost_cents=round(sum(r.cost_cents for r in results), 2),
        input_tokens=sum(r.input_tokens for r in results),
        output_tokens=sum(r.output_tokens for r in results),
        analyzed_at=max((r.analyzed_at for r in results), default=""),
    )
