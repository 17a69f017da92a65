"""PostgreSQL implementation of the store protocols (psycopg 3, raw SQL)."""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import psycopg
import structlog
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .models import (
    AnalysisJob,
    BudgetRecord,
    Connection,
    Document,
    JobStatus,
    MonthlySpend,
    Person,
    TimelineEvent,
)
from .stores import document_name_variants

logger = structlog.get_logger(__name__)

_ACTIVE = [JobStatus.PENDING.value, JobStatus.PROCESSING.value]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _job_from_row(row: Dict[str, Any]) -> AnalysisJob:
    return AnalysisJob(
        id=row["id"],
        document_id=row["document_id"],
        job_type=row["job_type"],
        status=JobStatus(row["status"]),
        priority=row["priority"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        error_message=row["error_message"],
        metadata=row["metadata"] or {},
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def _document_from_row(row: Dict[str, Any]) -> Document:
    return Document(
        id=row["id"],
        title=row["title"] or "",
        data_set=row["data_set"],
        file_name=row["file_name"],
        ai_analysis_status=row["ai_analysis_status"] or "pending",
        ai_cost_cents=row["ai_cost_cents"] or 0,
        extracted_text_length=row["extracted_text_length"],
    )


def _person_from_row(row: Dict[str, Any]) -> Person:
    return Person(
        id=row["id"],
        name=row["name"],
        aliases=list(row["aliases"] or []),
        category=row["category"] or "associate",
        role=row["role"] or "",
        description=row["description"] or "",
        document_count=row["document_count"] or 0,
        connection_count=row["connection_count"] or 0,
    )


def _connection_from_row(row: Dict[str, Any]) -> Connection:
    return Connection(
        id=row["id"],
        person_id1=row["person_id_1"],
        person_id2=row["person_id_2"],
        connection_type=row["connection_type"] or "associated",
        description=row["description"] or "",
        strength=row["strength"] or 1,
    )


def _event_from_row(row: Dict[str, Any]) -> TimelineEvent:
    return TimelineEvent(
        id=row["id"],
        date=row["date"] or "",
        title=row["title"],
        description=row["description"] or "",
        category=row["category"] or "other",
        significance=row["significance"] or 1,
        person_ids=list(row["person_ids"] or []),
    )


class PostgresStore:
    """
    Job, budget, document and person stores over one psycopg connection.

    The connection runs in autocommit mode; ``transaction()`` groups
    statements, and unique-key conflicts on inserts are treated as
    idempotent no-ops.
    """

    def __init__(self, db_url: str, conn: Optional[psycopg.Connection] = None):
        self.db_url = db_url
        self.conn = conn or psycopg.connect(db_url, autocommit=True, row_factory=dict_row)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "PostgresStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def transaction(self):
        return self.conn.transaction()

    def _fetchall(self, query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _fetchone(self, query, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    def _execute(self, query, params: Sequence[Any] = ()) -> int:
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def _insert_returning(self, query, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        """Run an INSERT ... RETURNING inside a savepoint; None on a unique-key conflict."""
        try:
            with self.conn.transaction():
                return self._fetchone(query, params)
        except UniqueViolation as e:
            logger.debug("duplicate_key_ignored", error=str(e))
            return None

    def _update(self, table: str, row_id: int, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        assignments = []
        values = []
        for key, value in fields.items():
            if isinstance(value, JobStatus):
                value = value.value
            elif isinstance(value, dict):
                value = Jsonb(value)
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
            values.append(value)

        query = sql.SQL("UPDATE {} SET {} WHERE id = %s").format(
            sql.Identifier(table), sql.SQL(", ").join(assignments)
        )
        self._execute(query, values + [row_id])

    # ── Jobs ───────────────────────────────────────────────────────────

    def insert_job(self, job: AnalysisJob) -> Optional[AnalysisJob]:
        # Partial unique index on (document_id, job_type) for active statuses
        row = self._insert_returning(
            """
            INSERT INTO pipeline_jobs (document_id, job_type, status, priority, attempts, max_attempts, metadata)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (job.document_id, job.job_type, job.status.value, job.priority, job.attempts,
             job.max_attempts, Jsonb(job.metadata)),
        )
        return _job_from_row(row) if row else None

    def active_document_ids(self, job_type: str) -> Set[int]:
        rows = self._fetchall(
            "SELECT document_id FROM pipeline_jobs WHERE job_type = %s AND status = ANY(%s)",
            (job_type, _ACTIVE),
        )
        return {row["document_id"] for row in rows}

    def pending_jobs(self, job_type: str, limit: int) -> List[AnalysisJob]:
        rows = self._fetchall(
            """
            SELECT * FROM pipeline_jobs
            WHERE job_type = %s AND status = 'pending' AND document_id IS NOT NULL
            ORDER BY priority DESC, id ASC
            LIMIT %s
            """,
            (job_type, limit),
        )
        return [_job_from_row(row) for row in rows]

    def get_job(self, job_id: int) -> Optional[AnalysisJob]:
        row = self._fetchone("SELECT * FROM pipeline_jobs WHERE id = %s", (job_id,))
        return _job_from_row(row) if row else None

    def update_job(self, job_id: int, **fields) -> None:
        self._update("pipeline_jobs", job_id, fields)

    def job_status_counts(self, job_type: str) -> Dict[str, int]:
        rows = self._fetchall(
            "SELECT status, COUNT(*)::int AS count FROM pipeline_jobs WHERE job_type = %s GROUP BY status",
            (job_type,),
        )
        return {row["status"]: row["count"] for row in rows}

    def pending_by_priority(self, job_type: str, limit: int) -> List[Tuple[int, int]]:
        rows = self._fetchall(
            """
            SELECT priority, COUNT(*)::int AS count FROM pipeline_jobs
            WHERE job_type = %s AND status = 'pending'
            GROUP BY priority ORDER BY priority DESC LIMIT %s
            """,
            (job_type, limit),
        )
        return [(row["priority"], row["count"]) for row in rows]

    # ── Budget ─────────────────────────────────────────────────────────

    def append_budget_record(self, record: BudgetRecord) -> None:
        self._execute(
            """
            INSERT INTO budget_tracking (date, model, input_tokens, output_tokens, cost_cents, document_id, job_type)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (record.date, record.model, record.input_tokens, record.output_tokens, record.cost_cents,
             record.document_id, record.job_type),
        )

    def budget_between(self, start: date, end: date) -> MonthlySpend:
        row = self._fetchone(
            """
            SELECT COALESCE(SUM(cost_cents), 0) AS total, COUNT(*)::int AS count
            FROM budget_tracking WHERE date >= %s AND date < %s
            """,
            (start, end),
        )
        return MonthlySpend(total_cents=round(float(row["total"]), 2), record_count=row["count"])

    # ── Documents ──────────────────────────────────────────────────────

    def get_pending_documents(self, data_sets: Optional[Sequence[str]] = None) -> List[Document]:
        if data_sets:
            rows = self._fetchall(
                "SELECT * FROM documents WHERE ai_analysis_status = 'pending' AND data_set = ANY(%s) ORDER BY id",
                (list(data_sets),),
            )
        else:
            rows = self._fetchall("SELECT * FROM documents WHERE ai_analysis_status = 'pending' ORDER BY id")
        return [_document_from_row(row) for row in rows]

    def get_document(self, document_id: int) -> Optional[Document]:
        row = self._fetchone("SELECT * FROM documents WHERE id = %s", (document_id,))
        return _document_from_row(row) if row else None

    def find_document_by_name(self, name: str) -> Optional[Document]:
        """Exact file name, then exact title, then the first substring hit."""
        variants = document_name_variants(name)
        row = self._fetchone(
            """
            SELECT * FROM documents
            WHERE lower(file_name) = ANY(%s) OR lower(title) = ANY(%s)
            ORDER BY (lower(file_name) = ANY(%s)) DESC NULLS LAST, id
            LIMIT 1
            """,
            (variants, variants, variants),
        )
        if row:
            return _document_from_row(row)

        pattern = f"%{_escape_like(name)}%"
        row = self._fetchone(
            "SELECT * FROM documents WHERE file_name ILIKE %s OR title ILIKE %s ORDER BY id LIMIT 1",
            (pattern, pattern),
        )
        return _document_from_row(row) if row else None

    def update_document(self, document_id: int, **fields) -> None:
        self._update("documents", document_id, fields)

    def add_document_cost(self, document_id: int, cost_cents: float) -> None:
        self._execute(
            "UPDATE documents SET ai_cost_cents = COALESCE(ai_cost_cents, 0) + %s WHERE id = %s",
            (cost_cents, document_id),
        )

    def analysis_status_counts(self) -> Dict[str, int]:
        rows = self._fetchall(
            "SELECT ai_analysis_status AS status, COUNT(*)::int AS count FROM documents GROUP BY ai_analysis_status"
        )
        return {row["status"]: row["count"] for row in rows}

    # ── Persons ────────────────────────────────────────────────────────

    def list_persons(self) -> List[Person]:
        return [_person_from_row(row) for row in self._fetchall("SELECT * FROM persons ORDER BY id")]

    def get_person(self, person_id: int) -> Optional[Person]:
        row = self._fetchone("SELECT * FROM persons WHERE id = %s", (person_id,))
        return _person_from_row(row) if row else None

    def find_person_by_name(self, name: str) -> Optional[Person]:
        row = self._fetchone(
            "SELECT * FROM persons WHERE LOWER(name) = LOWER(%s) ORDER BY id LIMIT 1", (name.strip(),)
        )
        return _person_from_row(row) if row else None

    def insert_person(self, name: str, **fields) -> Person:
        row = self._insert_returning(
            """
            INSERT INTO persons (name, aliases, category, role, description, document_count, connection_count)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                name,
                fields.get("aliases") or [],
                fields.get("category", "associate"),
                fields.get("role", ""),
                fields.get("description", ""),
                fields.get("document_count", 0),
                fields.get("connection_count", 0),
            ),
        )
        return _person_from_row(row) if row else self.find_person_by_name(name)

    def update_person(self, person_id: int, **fields) -> None:
        self._update("persons", person_id, fields)

    def delete_persons(self, person_ids: Sequence[int]) -> None:
        self._execute("DELETE FROM persons WHERE id = ANY(%s)", (list(person_ids),))

    # ── Connections ────────────────────────────────────────────────────

    def list_connections(self) -> List[Connection]:
        return [_connection_from_row(row) for row in self._fetchall("SELECT * FROM connections ORDER BY id")]

    def insert_connection(self, person_id1: int, person_id2: int, **fields) -> Optional[Connection]:
        existing = self._fetchone(
            """
            SELECT id FROM connections
            WHERE LEAST(person_id_1, person_id_2) = LEAST(%s, %s)
              AND GREATEST(person_id_1, person_id_2) = GREATEST(%s, %s)
            LIMIT 1
            """,
            (person_id1, person_id2, person_id1, person_id2),
        )
        if existing:
            return None
        row = self._insert_returning(
            """
            INSERT INTO connections (person_id_1, person_id_2, connection_type, description, strength)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
            """,
            (person_id1, person_id2, fields.get("connection_type", "associated"),
             fields.get("description", ""), fields.get("strength", 1)),
        )
        return _connection_from_row(row) if row else None

    def repoint_connections(self, from_ids: Sequence[int], to_id: int) -> None:
        ids = list(from_ids)
        self._execute("UPDATE connections SET person_id_1 = %s WHERE person_id_1 = ANY(%s)", (to_id, ids))
        self._execute("UPDATE connections SET person_id_2 = %s WHERE person_id_2 = ANY(%s)", (to_id, ids))

    def delete_self_loop_connections(self) -> int:
        return self._execute("DELETE FROM connections WHERE person_id_1 = person_id_2")

    def collapse_duplicate_connections(self, person_id: int) -> int:
        """Keep the strongest (then oldest) row per unordered pair touching person_id."""
        return self._execute(
            """
            DELETE FROM connections c USING connections k
            WHERE (c.person_id_1 = %s OR c.person_id_2 = %s)
              AND c.id <> k.id
              AND LEAST(c.person_id_1, c.person_id_2) = LEAST(k.person_id_1, k.person_id_2)
              AND GREATEST(c.person_id_1, c.person_id_2) = GREATEST(k.person_id_1, k.person_id_2)
              AND (k.strength > c.strength OR (k.strength = c.strength AND k.id < c.id))
            """,
            (person_id, person_id),
        )

    def delete_connections_referencing(self, person_ids: Sequence[int]) -> None:
        ids = list(person_ids)
        self._execute(
            "DELETE FROM connections WHERE person_id_1 = ANY(%s) OR person_id_2 = ANY(%s)", (ids, ids)
        )

    def count_connections(self, person_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*)::int AS count FROM connections WHERE person_id_1 = %s OR person_id_2 = %s",
            (person_id, person_id),
        )
        return row["count"]

    # ── Person documents ───────────────────────────────────────────────

    def link_person_document(self, person_id: int, document_id: int, context: str = "") -> bool:
        return self._execute(
            """
            INSERT INTO person_documents (person_id, document_id, context)
            SELECT %s, %s, %s
            WHERE NOT EXISTS (
                SELECT 1 FROM person_documents WHERE person_id = %s AND document_id = %s
            )
            """,
            (person_id, document_id, context, person_id, document_id),
        ) > 0

    def repoint_person_documents(self, from_ids: Sequence[int], to_id: int) -> None:
        self._execute(
            "UPDATE person_documents SET person_id = %s WHERE person_id = ANY(%s)", (to_id, list(from_ids))
        )

    def dedupe_person_documents(self, person_id: int) -> int:
        return self._execute(
            """
            DELETE FROM person_documents a USING person_documents b
            WHERE a.id > b.id
              AND a.person_id = b.person_id
              AND a.document_id = b.document_id
              AND a.person_id = %s
            """,
            (person_id,),
        )

    def delete_person_documents(self, person_ids: Sequence[int]) -> None:
        self._execute("DELETE FROM person_documents WHERE person_id = ANY(%s)", (list(person_ids),))

    def count_person_documents(self, person_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*)::int AS count FROM person_documents WHERE person_id = %s", (person_id,)
        )
        return row["count"]

    # ── Timeline events ────────────────────────────────────────────────

    def find_timeline_event(self, event_date: str, title: str) -> Optional[TimelineEvent]:
        row = self._fetchone(
            "SELECT * FROM timeline_events WHERE date = %s AND LOWER(title) = LOWER(%s) LIMIT 1",
            (event_date, title),
        )
        return _event_from_row(row) if row else None

    def insert_timeline_event(self, event_date: str, title: str, **fields) -> Optional[TimelineEvent]:
        row = self._insert_returning(
            """
            INSERT INTO timeline_events (date, title, description, category, significance, person_ids)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (event_date, title, fields.get("description", ""), fields.get("category", "other"),
             fields.get("significance", 1), list(fields.get("person_ids") or [])),
        )
        return _event_from_row(row) if row else None

    def repoint_timeline_events(self, from_ids: Sequence[int], to_id: int) -> None:
        for dup_id in from_ids:
            self._execute(
                "UPDATE timeline_events SET person_ids = array_replace(person_ids, %s, %s) WHERE %s = ANY(person_ids)",
                (dup_id, to_id, dup_id),
            )
        self._execute(
            """
            UPDATE timeline_events
            SET person_ids = (SELECT array_agg(DISTINCT x) FROM unnest(person_ids) x)
            WHERE %s = ANY(person_ids)
            """,
            (to_id,),
        )
