"""Batch scheduler: drains the job queue through the tiered analyzers.

One run admits work until the per-run document limit is reached, the queue
is empty, or the monthly budget is gone. It never waits for budget.
"""

import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from .analyzer import AIAnalyzer, is_transient_error
from .artifacts import ArtifactStore
from .budget import BudgetLedger, RunContext
from .classifier import classify_document
from .cost import DEFAULT_PRICING, ModelPricing, format_cents
from .errors import ArtifactWriteError, BudgetExhaustedError, DocumentNotFoundError
from .jobs import JobQueue
from .logging_config import get_audit_logger, log_batch_summary, log_budget_spend, log_tier_decision
from .models import AnalysisJob, Document, JobStatus, MonthlySpend, Tier
from .stores import DocumentStore, TextSource
from .tiers import choose_tier, estimate_tier1_cost

logger = structlog.get_logger(__name__)
audit_logger = get_audit_logger("scheduler")


@dataclass
class BatchConfig:
    """Options for one scheduler run."""
    batch_size: int = 10
    monthly_cap_cents: int = 500
    forced_tier: Optional[Tier] = None
    dry_run: bool = False
    data_sets: Optional[List[str]] = None
    limit: Optional[int] = None
    skip_existing: bool = False


@dataclass
class PlannedJob:
    """What a dry run would do with one job."""
    job_id: int
    document_id: int
    file_name: str
    data_set: Optional[str]
    priority: int
    text_length: int
    tier: Optional[Tier]
    note: str = ""


@dataclass
class BatchProgress:
    """Counters for one run."""
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    tier0_count: int = 0
    tier1_count: int = 0
    total_cost_cents: float = 0.0
    start_time: float = 0.0
    stopped_reason: str = ""
    planned: List[PlannedJob] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.completed + self.failed + self.skipped

    def summary(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("planned")
        data.pop("start_time")
        data["total_cost_cents"] = round(self.total_cost_cents, 2)
        return data


@dataclass
class StatusSnapshot:
    """Queue, document and budget state shown by ``casefile status``."""
    job_counts: Dict[str, int]
    document_counts: Dict[str, int]
    monthly_spend: MonthlySpend
    monthly_cap_cents: float
    pending_by_priority: List[Dict[str, Any]]

    @property
    def remaining_cents(self) -> float:
        return self.monthly_cap_cents - self.monthly_spend.total_cents


def format_eta(progress: BatchProgress, now: Optional[float] = None) -> str:
    """Estimate time left from the average time per completed document."""
    if progress.completed == 0:
        return "calculating..."

    now = time.monotonic() if now is None else now
    avg_per_doc = max(0.0, now - progress.start_time) / progress.completed
    remaining = max(0, progress.total - progress.processed)
    eta_seconds = remaining * avg_per_doc

    if eta_seconds < 60:
        return f"{math.ceil(eta_seconds)}s"
    if eta_seconds < 3600:
        return f"{math.ceil(eta_seconds / 60)}m"
    return f"{eta_seconds / 3600:.1f}h"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Scheduler:
    """Pulls jobs in priority order and routes each document to a tier."""

    def __init__(
        self,
        queue: JobQueue,
        ledger: BudgetLedger,
        documents: DocumentStore,
        texts: TextSource,
        artifacts: ArtifactStore,
        analyzer: Optional[AIAnalyzer] = None,
        pricing: ModelPricing = DEFAULT_PRICING,
        document_delay_seconds: float = 1.5,
        rate_limit_backoff_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.queue = queue
        self.ledger = ledger
        self.documents = documents
        self.texts = texts
        self.artifacts = artifacts
        self.analyzer = analyzer
        self.pricing = pricing
        self.document_delay_seconds = document_delay_seconds
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self._sleep = sleep
        self._clock = clock

    def run(self, config: BatchConfig) -> BatchProgress:
        """
        Process pending jobs until the limit, the queue or the budget runs out.

        Args:
            config: Batch options

        Returns:
            BatchProgress with per-tier counts and total spend

        Raises:
            ArtifactWriteError: If an artifact cannot be written; aborts the run
        """
        progress = BatchProgress(start_time=self._clock())

        self.queue.ensure_jobs(config.data_sets)
        progress.total = self.queue.status_counts().get(JobStatus.PENDING.value, 0)
        if progress.total == 0:
            logger.info("No pending jobs to process")
            progress.stopped_reason = "queue_empty"
            return progress

        spend = self.ledger.monthly_spend()
        ctx = RunContext(budget_remaining_cents=config.monthly_cap_cents - spend.total_cents)
        logger.info(
            f"Monthly budget {format_cents(config.monthly_cap_cents)}: spent {format_cents(spend.total_cents)} "
            f"on {spend.record_count} docs, remaining {format_cents(ctx.budget_remaining_cents)}"
        )

        if config.dry_run:
            self._plan(config, ctx, progress)
        else:
            try:
                self._drain(config, ctx, progress)
            except BudgetExhaustedError as e:
                logger.info(f"{e}, stopping run")
                progress.stopped_reason = "budget_exhausted"

        log_batch_summary(audit_logger, progress.summary(), self._clock() - progress.start_time)
        return progress

    def _require_budget(self, config: BatchConfig, ctx: RunContext) -> None:
        if ctx.exhausted and config.forced_tier is None:
            raise BudgetExhaustedError(
                f"Monthly budget exhausted ({format_cents(ctx.budget_remaining_cents)} remaining)"
            )

    def _drain(self, config: BatchConfig, ctx: RunContext, progress: BatchProgress) -> None:
        limit = config.limit
        processed = 0

        while limit is None or processed < limit:
            self._require_budget(config, ctx)

            size = config.batch_size if limit is None else min(config.batch_size, limit - processed)
            batch = self.queue.next_batch(size)
            if not batch:
                progress.stopped_reason = "queue_empty"
                return

            for job in batch:
                if limit is not None and processed >= limit:
                    break
                self._require_budget(config, ctx)
                self.process_job(job, config, ctx, progress)
                processed += 1

        progress.stopped_reason = "limit_reached"

    def _plan(self, config: BatchConfig, ctx: RunContext, progress: BatchProgress) -> None:
        """Record the tier each pending job would get without touching any state."""
        size = config.limit if config.limit is not None else progress.total
        for job in self.queue.next_batch(size):
            document = self.documents.get_document(job.document_id)
            if document is None:
                progress.planned.append(PlannedJob(
                    job.id, job.document_id, "", None, job.priority, 0, None, note="document not found"
                ))
                progress.skipped += 1
                continue

            text = self.texts.get_extracted_text(document) or ""
            tier = self.select_tier(document, text, config, ctx)
            progress.planned.append(PlannedJob(
                job_id=job.id,
                document_id=document.id,
                file_name=document.stable_name,
                data_set=document.data_set,
                priority=job.priority,
                text_length=len(text),
                tier=tier,
                note="" if text else "no text",
            ))
            progress.skipped += 1
        progress.stopped_reason = "dry_run"

    def select_tier(self, document: Document, text: str, config: BatchConfig, ctx: RunContext) -> Tier:
        estimate = estimate_tier1_cost(len(text), self.pricing) if text else 0.0
        tier = choose_tier(bool(text), len(text), ctx.budget_remaining_cents, config.forced_tier, estimate)

        if tier == Tier.LLM and self.analyzer is None:
            logger.warning(f"No LLM client configured, {document.stable_name} falls back to Tier 0")
            tier = Tier.RULE_BASED

        log_tier_decision(
            audit_logger, document.id, int(tier), bool(text), len(text),
            ctx.budget_remaining_cents, forced=config.forced_tier is not None
        )
        return tier

    def process_job(self, job: AnalysisJob, config: BatchConfig, ctx: RunContext, progress: BatchProgress) -> None:
        """Analyze one job's document and advance the job; errors fail the job, not the run."""
        document = self.documents.get_document(job.document_id)
        if document is None:
            error = DocumentNotFoundError(f"Document {job.document_id} not found")
            logger.error(str(error), job_id=job.id)
            self.queue.mark_failed(job.id, str(error))
            progress.failed += 1
            return

        name = document.stable_name
        if config.skip_existing and self.artifacts.exists(name):
            self.queue.mark_processing(job.id)
            self.documents.update_document(document.id, ai_analysis_status="completed")
            self.queue.mark_completed(job.id)
            progress.skipped += 1
            logger.info(f"Artifact for {name} already exists, skipping")
            return

        text = self.texts.get_extracted_text(document) or ""
        tier = self.select_tier(document, text, config, ctx)
        data_set = document.data_set or "unknown"

        self.queue.mark_processing(job.id)
        try:
            if tier == Tier.LLM:
                result = self.analyzer.analyze(text, name, data_set)
                ctx.last_request_time = self._clock()
            else:
                result = classify_document(text, name, data_set, analyzed_at=_utc_now_iso())

            # Paid calls are recorded before anything else can fail
            if tier == Tier.LLM and result.cost_cents > 0:
                self.ledger.record_spend(document.id, result.cost_cents, result.input_tokens, result.output_tokens)
                ctx.spend(result.cost_cents)
                progress.total_cost_cents += result.cost_cents
                log_budget_spend(
                    audit_logger, document.id, self.ledger.model or self.pricing.model, result.cost_cents,
                    result.input_tokens, result.output_tokens, ctx.budget_remaining_cents
                )

            self.artifacts.save(name, result)
            self.documents.update_document(document.id, ai_analysis_status="completed")

            self.queue.mark_completed(job.id)
            progress.completed += 1
            if tier == Tier.LLM:
                progress.tier1_count += 1
            else:
                progress.tier0_count += 1

            logger.info(
                f"[{progress.completed}/{progress.total}] {name} (DS{data_set}) -> Tier {int(tier)}: "
                f"{len(result.persons)} persons, cost {format_cents(result.cost_cents)} | ETA: "
                f"{format_eta(progress, self._clock())}"
            )

            if tier == Tier.LLM:
                self._sleep(self.document_delay_seconds)

        except ArtifactWriteError as e:
            self.queue.mark_failed(job.id, str(e))
            progress.failed += 1
            raise
        except Exception as e:
            logger.error(f"Error processing {name}: {e}")
            self.queue.mark_failed(job.id, str(e))
            progress.failed += 1
            if is_transient_error(e):
                logger.warning(f"Rate limited, waiting {self.rate_limit_backoff_seconds:.0f}s")
                self._sleep(self.rate_limit_backoff_seconds)

    def status_snapshot(self, monthly_cap_cents: float, top: int = 5) -> StatusSnapshot:
        return StatusSnapshot(
            job_counts=self.queue.status_counts(),
            document_counts=self.documents.analysis_status_counts(),
            monthly_spend=self.ledger.monthly_spend(),
            monthly_cap_cents=monthly_cap_cents,
            pending_by_priority=self.queue.pending_by_priority(top),
        )
