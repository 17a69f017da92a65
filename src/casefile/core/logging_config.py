"""Structured logging configuration for Casefile."""

import logging
from typing import Dict, Any, List, Optional
import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging for Casefile with audit capabilities."""

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        # JSON output for unattended batch runs
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Human-readable for interactive runs
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_job_transition(
    logger: structlog.BoundLogger,
    job_id: int,
    document_id: int,
    from_status: str,
    to_status: str,
    attempts: int,
    error: Optional[str] = None
) -> None:
    """Log a job status transition for the queue audit trail."""
    logger.info(
        "job_status_changed",
        job_id=job_id,
        document_id=document_id,
        from_status=from_status,
        to_status=to_status,
        attempts=attempts,
        error=error,
        event_type="job_transition"
    )


def log_tier_decision(
    logger: structlog.BoundLogger,
    document_id: int,
    tier: int,
    has_text: bool,
    text_length: int,
    budget_remaining_cents: float,
    forced: bool = False
) -> None:
    """Log which analysis tier a document was routed to and why."""
    logger.info(
        "tier_selected",
        document_id=document_id,
        tier=tier,
        has_text=has_text,
        text_length=text_length,
        budget_remaining_cents=round(budget_remaining_cents, 2),
        forced=forced,
        event_type="tier_decision"
    )


def log_budget_spend(
    logger: structlog.BoundLogger,
    document_id: int,
    model: str,
    cost_cents: float,
    input_tokens: int,
    output_tokens: int,
    budget_remaining_cents: float
) -> None:
    """Log a paid LLM spend against the monthly budget."""
    logger.info(
        "budget_spend_recorded",
        document_id=document_id,
        model=model,
        cost_cents=cost_cents,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        budget_remaining_cents=round(budget_remaining_cents, 2),
        event_type="budget_spend"
    )


def log_person_merge(
    logger: structlog.BoundLogger,
    canonical_id: int,
    canonical_name: str,
    merged_ids: List[int],
    merged_names: List[str],
    strategy_hits: Dict[str, int] = None
) -> None:
    """Log a duplicate-person merge for provenance tracking."""
    logger.info(
        "persons_merged",
        canonical_id=canonical_id,
        canonical_name=canonical_name,
        merged_ids=merged_ids,
        merged_names=merged_names,
        strategy_hits=strategy_hits or {},
        event_type="person_merge"
    )


def log_batch_summary(
    logger: structlog.BoundLogger,
    summary: Dict[str, Any],
    elapsed_seconds: float
) -> None:
    """Log the outcome of one scheduler run."""
    logger.info(
        "batch_run_finished",
        elapsed_seconds=round(elapsed_seconds, 1),
        event_type="batch_summary",
        **summary
    )
