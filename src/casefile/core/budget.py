"""Monthly spend ledger for Tier 1 calls."""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Tuple

import structlog

from .models import BudgetRecord, MonthlySpend
from .stores import BudgetStore, DocumentStore

logger = structlog.get_logger(__name__)


def month_bounds(today: date) -> Tuple[date, date]:
    """First day of ``today``'s month and first day of the next month."""
    start = today.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class RunContext:
    """Budget state threaded through one scheduler run."""
    budget_remaining_cents: float
    last_request_time: Optional[float] = None

    def spend(self, cost_cents: float) -> None:
        self.budget_remaining_cents -= cost_cents

    @property
    def exhausted(self) -> bool:
        return self.budget_remaining_cents <= 0


class BudgetLedger:
    """
    Append-only record of paid spend.

    The ledger is a soft spend record used to admit or refuse Tier 1 work;
    it is not a billing system.
    """

    def __init__(
        self,
        store: BudgetStore,
        documents: Optional[DocumentStore] = None,
        model: str = "",
        job_type: str = "ai_analysis"
    ):
        self.store = store
        self.documents = documents
        self.model = model
        self.job_type = job_type

    def record_spend(
        self,
        document_id: Optional[int],
        cost_cents: float,
        input_tokens: int,
        output_tokens: int,
        model: Optional[str] = None,
        today: Optional[date] = None
    ) -> BudgetRecord:
        """
        Append one spend record and add its cost to the document.

        Args:
            document_id: Document the spend belongs to
            cost_cents: Cost of the call in cents
            input_tokens: Prompt tokens billed
            output_tokens: Completion tokens billed
            model: Model id; defaults to the ledger's model
            today: Record date; defaults to the current UTC date

        Returns:
            The stored BudgetRecord
        """
        if cost_cents < 0:
            raise ValueError("cost_cents must be non-negative")

        record = BudgetRecord(
            date=today or _utc_today(),
            model=model or self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=cost_cents,
            document_id=document_id,
            job_type=self.job_type,
        )
        self.store.append_budget_record(record)

        if self.documents is not None and document_id is not None:
            self.documents.add_document_cost(document_id, cost_cents)

        logger.debug("budget_record_appended", document_id=document_id, cost_cents=cost_cents)
        return record

    def monthly_spend(self, today: Optional[date] = None) -> MonthlySpend:
        start, end = month_bounds(today or _utc_today())
        return self.store.budget_between(start, end)

    def remaining(self, cap_cents: float, today: Optional[date] = None) -> float:
        return cap_cents - self.monthly_spend(today).total_cents
