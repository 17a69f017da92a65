"""Data contracts shared by the analysis pipeline and the deduplicator.

Analysis output is modelled with pydantic so that raw LLM JSON can be
validated and written back out as the per-document artifact. Store rows are
plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Lifecycle of an analysis job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class Tier(IntEnum):
    """Analysis tier: free rule-based pass or paid LLM pass."""
    RULE_BASED = 0
    LLM = 1


class _CamelModel(BaseModel):
    """Accepts snake_case or camelCase keys; dumps camelCase for artifacts."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _clamp_scale(value: Any) -> int:
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return 1
    return max(1, min(5, number))


class PersonMention(_CamelModel):
    """A named individual found in one document."""
    name: str
    role: str = ""
    category: str = "other"
    context: str = ""
    mention_count: int = Field(default=1, alias="mentionCount")

    @field_validator("role", "category", "context", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("mention_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 1


class ConnectionMention(_CamelModel):
    """A relationship between two people as evidenced in one document."""
    person1: str
    person2: str
    relationship_type: str = Field(default="associated", alias="relationshipType")
    description: str = ""
    strength: int = 1

    @field_validator("description", "relationship_type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("strength", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return _clamp_scale(value)


class EventMention(_CamelModel):
    """A dated incident referenced by a document."""
    date: str = ""
    title: str
    description: str = ""
    category: str = "other"
    significance: int = 1
    persons_involved: List[str] = Field(default_factory=list, alias="personsInvolved")

    @field_validator("date", "description", "category", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("significance", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return _clamp_scale(value)

    @field_validator("persons_involved", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class AnalysisResult(_CamelModel):
    """Merged output of one document's analysis, persisted as its artifact."""
    file_name: str = Field(default="", alias="fileName")
    data_set: str = Field(default="unknown", alias="dataSet")
    document_type: str = Field(default="other", alias="documentType")
    date_original: Optional[str] = Field(default=None, alias="dateOriginal")
    summary: str = ""
    persons: List[PersonMention] = Field(default_factory=list)
    connections: List[ConnectionMention] = Field(default_factory=list)
    events: List[EventMention] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    key_facts: List[str] = Field(default_factory=list, alias="keyFacts")
    tier: Tier = Tier.RULE_BASED
    cost_cents: float = Field(default=0.0, alias="costCents")
    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    analyzed_at: str = Field(default="", alias="analyzedAt")

    @field_validator("summary", "document_type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("locations", "key_facts", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]

    def to_artifact(self) -> Dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(by_alias=True, mode="json")


@dataclass
class AnalysisJob:
    """One per document needing analysis; never deleted."""
    document_id: int
    id: Optional[int] = None
    job_type: str = "ai_analysis"
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


@dataclass(frozen=True)
class BudgetRecord:
    """Immutable spend row for one Tier 1 invocation."""
    date: date
    model: str
    input_tokens: int
    output_tokens: int
    cost_cents: float
    document_id: Optional[int] = None
    job_type: str = "ai_analysis"


@dataclass
class MonthlySpend:
    """Aggregate of the current calendar month's budget records."""
    total_cents: float = 0.0
    record_count: int = 0


@dataclass
class Document:
    """The slice of a document row the pipeline reads and writes."""
    id: int
    title: str = ""
    data_set: Optional[str] = None
    file_name: Optional[str] = None
    ai_analysis_status: str = "pending"
    ai_cost_cents: float = 0
    extracted_text_length: Optional[int] = None

    @property
    def stable_name(self) -> str:
        """Identifier used to name the artifact and find extracted text."""
        return self.file_name or self.title or f"document-{self.id}"


@dataclass
class Person:
    """Canonical (or not yet reconciled) individual."""
    id: int
    name: str
    aliases: List[str] = field(default_factory=list)
    category: str = "associate"
    role: str = ""
    description: str = ""
    document_count: int = 0
    connection_count: int = 0

    @property
    def score(self) -> int:
        return self.document_count + self.connection_count


@dataclass
class Connection:
    """Undirected relationship between two person ids."""
    id: int
    person_id1: int
    person_id2: int
    connection_type: str = "associated"
    description: str = ""
    strength: int = 1

    @property
    def pair(self) -> tuple:
        return (min(self.person_id1, self.person_id2), max(self.person_id1, self.person_id2))


@dataclass
class PersonDocument:
    """Link between a person and a document that mentions them."""
    id: int
    person_id: int
    document_id: int
    context: str = ""


@dataclass
class TimelineEvent:
    """Dated event referencing person ids."""
    id: int
    date: str
    title: str
    description: str = ""
    category: str = "other"
    significance: int = 1
    person_ids: List[int] = field(default_factory=list)
