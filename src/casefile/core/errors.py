"""Exception hierarchy for the analysis pipeline and deduplicator."""


class CasefileError(Exception):
    """Base class for all Casefile errors."""


class TransientProviderError(CasefileError):
    """LLM provider failure worth retrying (rate limit, timeout, dropped connection)."""


class MalformedResponseError(CasefileError):
    """LLM response could not be parsed into the expected JSON structure."""


class BudgetExhaustedError(CasefileError):
    """Monthly Tier 1 budget has been used up."""


class ArtifactWriteError(CasefileError):
    """Analysis artifact could not be written. Aborts the batch run."""


class DocumentNotFoundError(CasefileError):
    """A job references a document that no longer exists."""
