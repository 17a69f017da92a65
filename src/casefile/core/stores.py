"""Storage interfaces for the job queue, budget ledger, documents and person graph.

The scheduler and the deduplicator only talk to these protocols.
``InMemoryStore`` implements all of them for tests and dry runs;
``casefile.core.pg_store.PostgresStore`` implements them over psycopg.
"""

import copy
import json
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

from .models import (
    ACTIVE_JOB_STATUSES,
    AnalysisJob,
    BudgetRecord,
    Connection,
    Document,
    JobStatus,
    MonthlySpend,
    Person,
    PersonDocument,
    TimelineEvent,
)


class JobStore(Protocol):
    def insert_job(self, job: AnalysisJob) -> Optional[AnalysisJob]: ...
    def active_document_ids(self, job_type: str) -> Set[int]: ...
    def pending_jobs(self, job_type: str, limit: int) -> List[AnalysisJob]: ...
    def get_job(self, job_id: int) -> Optional[AnalysisJob]: ...
    def update_job(self, job_id: int, **fields) -> None: ...
    def job_status_counts(self, job_type: str) -> Dict[str, int]: ...
    def pending_by_priority(self, job_type: str, limit: int) -> List[Tuple[int, int]]: ...


class BudgetStore(Protocol):
    def append_budget_record(self, record: BudgetRecord) -> None: ...
    def budget_between(self, start: date, end: date) -> MonthlySpend: ...


class DocumentStore(Protocol):
    def get_pending_documents(self, data_sets: Optional[Sequence[str]] = None) -> List[Document]: ...
    def get_document(self, document_id: int) -> Optional[Document]: ...
    def find_document_by_name(self, name: str) -> Optional[Document]: ...
    def update_document(self, document_id: int, **fields) -> None: ...
    def add_document_cost(self, document_id: int, cost_cents: float) -> None: ...
    def analysis_status_counts(self) -> Dict[str, int]: ...


class TextSource(Protocol):
    def get_extracted_text(self, document: Document) -> Optional[str]: ...


class PersonStore(Protocol):
    def transaction(self): ...
    def list_persons(self) -> List[Person]: ...
    def get_person(self, person_id: int) -> Optional[Person]: ...
    def find_person_by_name(self, name: str) -> Optional[Person]: ...
    def insert_person(self, name: str, **fields) -> Person: ...
    def update_person(self, person_id: int, **fields) -> None: ...
    def delete_persons(self, person_ids: Sequence[int]) -> None: ...
    def list_connections(self) -> List[Connection]: ...
    def insert_connection(self, person_id1: int, person_id2: int, **fields) -> Optional[Connection]: ...
    def repoint_connections(self, from_ids: Sequence[int], to_id: int) -> None: ...
    def delete_self_loop_connections(self) -> int: ...
    def collapse_duplicate_connections(self, person_id: int) -> int: ...
    def delete_connections_referencing(self, person_ids: Sequence[int]) -> None: ...
    def count_connections(self, person_id: int) -> int: ...
    def link_person_document(self, person_id: int, document_id: int, context: str = "") -> bool: ...
    def repoint_person_documents(self, from_ids: Sequence[int], to_id: int) -> None: ...
    def dedupe_person_documents(self, person_id: int) -> int: ...
    def delete_person_documents(self, person_ids: Sequence[int]) -> None: ...
    def count_person_documents(self, person_id: int) -> int: ...
    def find_timeline_event(self, event_date: str, title: str) -> Optional[TimelineEvent]: ...
    def insert_timeline_event(self, event_date: str, title: str, **fields) -> Optional[TimelineEvent]: ...
    def repoint_timeline_events(self, from_ids: Sequence[int], to_id: int) -> None: ...


class ExtractedTextSource:
    """Reads extracted text from ``<extracted_dir>/ds<N>/<file>.json`` files."""

    def __init__(self, extracted_dir: Path, min_text_length: int = 200):
        self.extracted_dir = Path(extracted_dir)
        self.min_text_length = min_text_length

    def _read_text(self, path: Path) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        text = data.get("text") if isinstance(data, dict) else None
        return text if text and len(text) >= self.min_text_length else None

    def get_extracted_text(self, document: Document) -> Optional[str]:
        """Exact file match first, then any file starting with the base name."""
        data_set_dir = self.extracted_dir / f"ds{document.data_set}"
        if not data_set_dir.is_dir():
            return None

        name = document.stable_name
        exact = data_set_dir / f"{name}.json"
        if exact.exists():
            return self._read_text(exact)

        base = name[:-4] if name.lower().endswith(".pdf") else name
        for candidate in sorted(data_set_dir.glob("*.json")):
            if candidate.name.startswith(base):
                return self._read_text(candidate)
        return None


def document_name_variants(name: str) -> List[str]:
    """Lower-cased spellings of a document name with and without the .pdf suffix."""
    name = name.lower()
    base = name[:-4] if name.endswith(".pdf") else name
    return [base, f"{base}.pdf"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Process-local implementation of every store protocol."""

    def __init__(self):
        self.documents: Dict[int, Document] = {}
        self.texts: Dict[int, str] = {}
        self.jobs: Dict[int, AnalysisJob] = {}
        self.budget_records: List[BudgetRecord] = []
        self.persons: Dict[int, Person] = {}
        self.connections: Dict[int, Connection] = {}
        self.person_documents: Dict[int, PersonDocument] = {}
        self.timeline_events: Dict[int, TimelineEvent] = {}
        self._ids: Dict[str, int] = {}

    def close(self) -> None:
        pass

    def _next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Snapshot-and-restore keeps a failed group from leaving partial writes
        snapshot = copy.deepcopy((self.persons, self.connections, self.person_documents, self.timeline_events))
        try:
            yield
        except Exception:
            self.persons, self.connections, self.person_documents, self.timeline_events = snapshot
            raise

    # ── Documents ──────────────────────────────────────────────────────

    def add_document(self, document: Document, text: Optional[str] = None) -> Document:
        self.documents[document.id] = document
        self._ids["documents"] = max(self._ids.get("documents", 0), document.id)
        if text is not None:
            self.texts[document.id] = text
            if document.extracted_text_length is None:
                document.extracted_text_length = len(text)
        return document

    def get_pending_documents(self, data_sets: Optional[Sequence[str]] = None) -> List[Document]:
        return [
            d for d in sorted(self.documents.values(), key=lambda d: d.id)
            if d.ai_analysis_status == "pending" and (not data_sets or d.data_set in data_sets)
        ]

    def get_document(self, document_id: int) -> Optional[Document]:
        return self.documents.get(document_id)

    def find_document_by_name(self, name: str) -> Optional[Document]:
        """Exact file name, then exact title, then the first substring hit."""
        ordered = sorted(self.documents.values(), key=lambda d: d.id)
        variants = document_name_variants(name)
        for document in ordered:
            if (document.file_name or "").lower() in variants:
                return document
        for document in ordered:
            if document.title.lower() in variants:
                return document

        needle = name.lower()
        for document in ordered:
            if needle in (document.file_name or "").lower() or needle in document.title.lower():
                return document
        return None

    def update_document(self, document_id: int, **fields) -> None:
        document = self.documents.get(document_id)
        if document is None:
            return
        for key, value in fields.items():
            setattr(document, key, value)

    def add_document_cost(self, document_id: int, cost_cents: float) -> None:
        document = self.documents.get(document_id)
        if document is not None:
            document.ai_cost_cents = (document.ai_cost_cents or 0) + cost_cents

    def analysis_status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for document in self.documents.values():
            counts[document.ai_analysis_status] = counts.get(document.ai_analysis_status, 0) + 1
        return counts

    def get_extracted_text(self, document: Document) -> Optional[str]:
        return self.texts.get(document.id)

    # ── Jobs ───────────────────────────────────────────────────────────

    def insert_job(self, job: AnalysisJob) -> Optional[AnalysisJob]:
        if job.document_id in self.active_document_ids(job.job_type):
            return None
        stored = copy.deepcopy(job)
        stored.id = stored.id or self._next_id("jobs")
        stored.created_at = stored.created_at or _utcnow()
        self.jobs[stored.id] = stored
        return copy.deepcopy(stored)

    def active_document_ids(self, job_type: str) -> Set[int]:
        return {
            j.document_id for j in self.jobs.values()
            if j.job_type == job_type and j.status in ACTIVE_JOB_STATUSES
        }

    def pending_jobs(self, job_type: str, limit: int) -> List[AnalysisJob]:
        pending = [
            j for j in self.jobs.values()
            if j.job_type == job_type and j.status == JobStatus.PENDING and j.document_id is not None
        ]
        pending.sort(key=lambda j: (-j.priority, j.id))
        return [copy.deepcopy(j) for j in pending[:limit]]

    def get_job(self, job_id: int) -> Optional[AnalysisJob]:
        job = self.jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    def update_job(self, job_id: int, **fields) -> None:
        job = self.jobs[job_id]
        for key, value in fields.items():
            setattr(job, key, value)

    def job_status_counts(self, job_type: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for job in self.jobs.values():
            if job.job_type == job_type:
                counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return counts

    def pending_by_priority(self, job_type: str, limit: int) -> List[Tuple[int, int]]:
        counts: Dict[int, int] = {}
        for job in self.jobs.values():
            if job.job_type == job_type and job.status == JobStatus.PENDING:
                counts[job.priority] = counts.get(job.priority, 0) + 1
        return sorted(counts.items(), key=lambda item: -item[0])[:limit]

    # ── Budget ─────────────────────────────────────────────────────────

    def append_budget_record(self, record: BudgetRecord) -> None:
        self.budget_records.append(record)

    def budget_between(self, start: date, end: date) -> MonthlySpend:
        in_range = [r for r in self.budget_records if start <= r.date < end]
        return MonthlySpend(
            total_cents=round(sum(r.cost_cents for r in in_range), 2),
            record_count=len(in_range),
        )

    # ── Persons ────────────────────────────────────────────────────────

    def list_persons(self) -> List[Person]:
        return [copy.deepcopy(p) for p in sorted(self.persons.values(), key=lambda p: p.id)]

    def get_person(self, person_id: int) -> Optional[Person]:
        person = self.persons.get(person_id)
        return copy.deepcopy(person) if person else None

    def find_person_by_name(self, name: str) -> Optional[Person]:
        needle = name.strip().lower()
        for person in sorted(self.persons.values(), key=lambda p: p.id):
            if person.name.strip().lower() == needle:
                return copy.deepcopy(person)
        return None

    def insert_person(self, name: str, **fields) -> Person:
        person = Person(id=fields.pop("id", None) or self._next_id("persons"), name=name, **fields)
        self._ids["persons"] = max(self._ids.get("persons", 0), person.id)
        self.persons[person.id] = person
        return copy.deepcopy(person)

    def update_person(self, person_id: int, **fields) -> None:
        person = self.persons[person_id]
        for key, value in fields.items():
            setattr(person, key, value)

    def delete_persons(self, person_ids: Sequence[int]) -> None:
        for person_id in person_ids:
            self.persons.pop(person_id, None)

    # ── Connections ────────────────────────────────────────────────────

    def list_connections(self) -> List[Connection]:
        return [copy.deepcopy(c) for c in sorted(self.connections.values(), key=lambda c: c.id)]

    def insert_connection(self, person_id1: int, person_id2: int, **fields) -> Optional[Connection]:
        pair = (min(person_id1, person_id2), max(person_id1, person_id2))
        if any(c.pair == pair for c in self.connections.values()):
            return None
        connection = Connection(id=self._next_id("connections"), person_id1=person_id1, person_id2=person_id2, **fields)
        self.connections[connection.id] = connection
        return copy.deepcopy(connection)

    def repoint_connections(self, from_ids: Sequence[int], to_id: int) -> None:
        moved = set(from_ids)
        for connection in self.connections.values():
            if connection.person_id1 in moved:
                connection.person_id1 = to_id
            if connection.person_id2 in moved:
                connection.person_id2 = to_id

    def delete_self_loop_connections(self) -> int:
        loops = [cid for cid, c in self.connections.items() if c.person_id1 == c.person_id2]
        for cid in loops:
            del self.connections[cid]
        return len(loops)

    def collapse_duplicate_connections(self, person_id: int) -> int:
        """Keep the strongest (then oldest) row per unordered pair touching person_id."""
        by_pair: Dict[Tuple[int, int], List[Connection]] = {}
        for connection in self.connections.values():
            if person_id in (connection.person_id1, connection.person_id2):
                by_pair.setdefault(connection.pair, []).append(connection)

        removed = 0
        for rows in by_pair.values():
            rows.sort(key=lambda c: (-c.strength, c.id))
            for duplicate in rows[1:]:
                del self.connections[duplicate.id]
                removed += 1
        return removed

    def delete_connections_referencing(self, person_ids: Sequence[int]) -> None:
        ids = set(person_ids)
        for cid in [cid for cid, c in self.connections.items() if c.person_id1 in ids or c.person_id2 in ids]:
            del self.connections[cid]

    def count_connections(self, person_id: int) -> int:
        return sum(1 for c in self.connections.values() if person_id in (c.person_id1, c.person_id2))

    # ── Person documents ───────────────────────────────────────────────

    def link_person_document(self, person_id: int, document_id: int, context: str = "") -> bool:
        if any(l.person_id == person_id and l.document_id == document_id for l in self.person_documents.values()):
            return False
        link = PersonDocument(id=self._next_id("person_documents"), person_id=person_id,
                              document_id=document_id, context=context)
        self.person_documents[link.id] = link
        return True

    def repoint_person_documents(self, from_ids: Sequence[int], to_id: int) -> None:
        moved = set(from_ids)
        for link in self.person_documents.values():
            if link.person_id in moved:
                link.person_id = to_id

    def dedupe_person_documents(self, person_id: int) -> int:
        seen: Set[int] = set()
        removed = 0
        for link in sorted(self.person_documents.values(), key=lambda l: l.id):
            if link.person_id != person_id:
                continue
            if link.document_id in seen:
                del self.person_documents[link.id]
                removed += 1
            else:
                seen.add(link.document_id)
        return removed

    def delete_person_documents(self, person_ids: Sequence[int]) -> None:
        ids = set(person_ids)
        for lid in [lid for lid, l in self.person_documents.items() if l.person_id in ids]:
            del self.person_documents[lid]

    def count_person_documents(self, person_id: int) -> int:
        return sum(1 for l in self.person_documents.values() if l.person_id == person_id)

    # ── Timeline events ────────────────────────────────────────────────

    def find_timeline_event(self, event_date: str, title: str) -> Optional[TimelineEvent]:
        for event in self.timeline_events.values():
            if event.date == event_date and event.title.lower() == title.lower():
                return copy.deepcopy(event)
        return None

    def insert_timeline_event(self, event_date: str, title: str, **fields) -> Optional[TimelineEvent]:
        if self.find_timeline_event(event_date, title):
            return None
        event = TimelineEvent(id=self._next_id("timeline_events"), date=event_date, title=title, **fields)
        self.timeline_events[event.id] = event
        return copy.deepcopy(event)

    def repoint_timeline_events(self, from_ids: Sequence[int], to_id: int) -> None:
        moved = set(from_ids)
        for event in self.timeline_events.values():
            if moved.intersection(event.person_ids):
                replaced = [to_id if pid in moved else pid for pid in event.person_ids]
                event.person_ids = list(dict.fromkeys(replaced))
