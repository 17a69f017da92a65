"""Persistent, priority-ordered analysis job queue."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import structlog

from .logging_config import get_audit_logger, log_job_transition
from .models import AnalysisJob, JobStatus
from .stores import DocumentStore, JobStore, TextSource
from .tiers import MIN_TEXT_LENGTH

logger = structlog.get_logger(__name__)
audit_logger = get_audit_logger("job_queue")

JOB_TYPE = "ai_analysis"
DEFAULT_PRIORITY = 10

# Data set id -> priority; higher is processed sooner
DATASET_PRIORITY: Dict[str, int] = {
    "9": 100,  # private correspondence
    "1": 80,   # investigative files, flight logs, contact books
    "5": 60,   # grand jury transcripts
    "2": 40,   # interview reports
    "3": 35,   # victim and witness statements
    "4": 30,   # interview summaries
    "6": 25,   # search warrant applications
    "7": 20,   # financial records
    "8": 15,   # surveillance and facility records
    "11": 10,  # ledgers, additional manifests
    "12": 5,   # supplemental productions
    "10": 1,   # media files, little text
}


def get_data_set_priority(data_set: Optional[str]) -> int:
    return DATASET_PRIORITY.get(str(data_set), DEFAULT_PRIORITY) if data_set is not None else DEFAULT_PRIORITY


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    Owns every job status transition.

    Jobs move pending -> processing -> completed, or back to pending on a
    failure until ``max_attempts`` is used up, at which point they are failed
    for good. Jobs are never deleted.
    """

    def __init__(
        self,
        jobs: JobStore,
        documents: DocumentStore,
        texts: Optional[TextSource] = None,
        job_type: str = JOB_TYPE,
        max_attempts: int = 3
    ):
        self.jobs = jobs
        self.documents = documents
        self.texts = texts
        self.job_type = job_type
        self.max_attempts = max_attempts

    def ensure_jobs(self, data_sets: Optional[Sequence[str]] = None) -> int:
        """
        Create a pending job for every pending document that has none.

        Args:
            data_sets: Restrict to these data set ids; all when empty

        Returns:
            Number of jobs created
        """
        pending_docs = self.documents.get_pending_documents(data_sets)
        already_queued = self.jobs.active_document_ids(self.job_type)

        created = 0
        for document in pending_docs:
            if document.id in already_queued:
                continue

            text_length = document.extracted_text_length
            if text_length is None and self.texts is not None:
                text = self.texts.get_extracted_text(document)
                text_length = len(text) if text else 0
            text_length = text_length or 0

            job = AnalysisJob(
                document_id=document.id,
                job_type=self.job_type,
                priority=get_data_set_priority(document.data_set),
                max_attempts=self.max_attempts,
                metadata={
                    "data_set": document.data_set,
                    "file_name": document.stable_name,
                    "has_extracted_text": text_length >= MIN_TEXT_LENGTH,
                    "text_length": text_length,
                },
            )
            if self.jobs.insert_job(job) is not None:
                created += 1

        logger.info("jobs_ensured", created=created, pending_documents=len(pending_docs))
        return created

    def next_batch(self, n: int) -> List[AnalysisJob]:
        """Top ``n`` pending jobs, highest priority first, oldest id first on ties."""
        if n <= 0:
            return []
        return self.jobs.pending_jobs(self.job_type, n)

    def _require(self, job_id: int) -> AnalysisJob:
        job = self.jobs.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job id {job_id}")
        return job

    def mark_processing(self, job_id: int) -> None:
        job = self._require(job_id)
        self.jobs.update_job(job_id, status=JobStatus.PROCESSING, started_at=_utcnow())
        log_job_transition(audit_logger, job_id, job.document_id, job.status.value,
                           JobStatus.PROCESSING.value, job.attempts)

    def mark_completed(self, job_id: int) -> None:
        job = self._require(job_id)
        self.jobs.update_job(job_id, status=JobStatus.COMPLETED, completed_at=_utcnow())
        log_job_transition(audit_logger, job_id, job.document_id, job.status.value,
                           JobStatus.COMPLETED.value, job.attempts)

    def mark_failed(self, job_id: int, error: str) -> JobStatus:
        """
        Record a failed attempt.

        The job goes back to pending unless this attempt uses up the budget of
        attempts, in which case it becomes terminally failed.

        Returns:
            The job's new status
        """
        job = self._require(job_id)
        attempts = job.attempts + 1
        new_status = JobStatus.FAILED if attempts >= job.max_attempts else JobStatus.PENDING

        self.jobs.update_job(
            job_id,
            status=new_status,
            attempts=attempts,
            error_message=error,
            completed_at=_utcnow() if new_status == JobStatus.FAILED else None,
        )
        log_job_transition(audit_logger, job_id, job.document_id, job.status.value,
                           new_status.value, attempts, error=error)
        return new_status

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        counts.update(self.jobs.job_status_counts(self.job_type))
        return counts

    def pending_by_priority(self, limit: int = 5) -> List[Dict[str, object]]:
        """Pending job counts grouped by priority, labelled with the data set they come from."""
        labels: Dict[int, str] = {}
        for ds, priority in DATASET_PRIORITY.items():
            labels.setdefault(priority, f"DS{ds}")
        return [
            {"priority": priority, "count": count, "data_set": labels.get(priority, "other")}
            for priority, count in self.jobs.pending_by_priority(self.job_type, limit)
        ]
