"""Tier 1: LLM structured extraction over page-aligned chunks."""

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import openai
from pydantic import ValidationError
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from .cost import DEFAULT_PRICING, ModelPricing, calculate_cost_cents
from .errors import MalformedResponseError, TransientProviderError
from .merge import merge_results
from .models import AnalysisResult, ConnectionMention, EventMention, PersonMention, Tier

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 24000
MAX_TOKENS = 4096
TEMPERATURE = 0.1
MIN_PERSON_NAME_LENGTH = 3

SYSTEM_PROMPT = """You are an expert analyst reviewing publicly released case documents. Your job is to extract structured information from document text.

For each document, identify:

1. PERSONS: Every named individual mentioned. For each person provide:
   - name: Full name as it appears (normalize to proper case)
   - role: Their role in context (e.g., "FBI Special Agent", "Defense Attorney", "Accused", "Witness")
   - category: One of: key figure, associate, victim, witness, legal, political, law enforcement, staff, other
   - context: 1-2 sentence summary of how they appear in this document
   - mentionCount: Approximate number of times mentioned

2. CONNECTIONS: Relationships between people mentioned in the document:
   - person1, person2: Names of the two people
   - relationshipType: Type like "employer-employee", "attorney-client", "co-conspirator", "social", "financial", "travel companion", "victim-perpetrator"
   - description: Brief description of the relationship as evidenced in this document
   - strength: 1-5 (1=mentioned together, 5=deeply connected)

3. EVENTS: Notable events, dates, or incidents referenced:
   - date: Date if mentioned (YYYY-MM-DD format, or YYYY-MM, or YYYY if only year known)
   - title: Short title for the event
   - description: What happened
   - category: One of: legal, travel, abuse, investigation, financial, political, death, arrest, testimony
   - significance: 1-5 (5=most significant)
   - personsInvolved: Names of people involved

4. DOCUMENT METADATA:
   - documentType: Best guess (grand jury transcript, deposition, FBI 302, court filing, search warrant, financial record, flight log, correspondence, police report, property record, other)
   - dateOriginal: Original date of the document if mentioned
   - summary: 2-3 sentence summary of the document's content and significance

5. LOCATIONS: Notable locations mentioned (addresses, properties, cities relevant to the case)

6. KEY FACTS: 3-5 most important factual claims or revelations from this document

IMPORTANT RULES:
- Only include REAL named individuals, not redacted names or "Jane Doe" type references
- Do NOT include organizational names as persons (FBI, DOJ, Grand Jury, etc.)
- Do NOT include locations, document references, or legal terms as persons
- If a name is clearly redacted (shown as blank or dots), note it in key facts but don't list as a person
- Focus on factual extraction, not interpretation
- If the text is too garbled or minimal to analyze, return empty arrays

Respond with valid JSON only, matching this structure:
{
  "documentType": "string",
  "dateOriginal": "string or null",
  "summary": "string",
  "persons": [...],
  "connections": [...],
  "events": [...],
  "locations": [...],
  "keyFacts": [...]
}"""

UNABLE_TO_ANALYZE = "Unable to analyze document"

_PAGE_BOUNDARY = re.compile(r"(?=Page \d+\s)")
_CODE_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.I)
_CODE_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class LLMResponse:
    """Text and token usage returned by one chat completion."""
    content: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient(Protocol):
    """Any OpenAI-compatible chat-completion endpoint."""

    def complete(
        self,
        system_prompt: str,
        user_content: str,
        max_tokens: int,
        temperature: float
    ) -> LLMResponse:
        ...


class OpenAIChatClient:
    """LLMClient backed by the openai SDK; works with any compatible base URL."""

    def __init__(
        self,
        model: str = DEFAULT_PRICING.model,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0
    ):
        api_key = api_key or os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("LLM API key not found")

        self.model = model
        # Retries are owned by the analyzer's chunk-level policy
        self._client = openai.OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def complete(self, system_prompt: str, user_content: str, max_tokens: int, temperature: float) -> LLMResponse:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content}
            ],
            max_tokens=max_tokens,
            temperature=temperature
        )

        content = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return LLMResponse(
            content=content or "",
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


def is_transient_error(error: BaseException) -> bool:
    """True for rate limits, timeouts and dropped connections."""
    if isinstance(error, (TransientProviderError, openai.RateLimitError,
                          openai.APITimeoutError, openai.APIConnectionError)):
        return True
    message = str(error).lower()
    return "429" in message or "rate limit" in message or "rate_limit" in message


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """
    Split text into chunks of at most max_chars, preferring page boundaries.

    Args:
        text: Full document text with "Page N" markers from extraction
        max_chars: Upper bound on chunk length

    Returns:
        List of chunks; a single chunk when the text fits
    """
    if len(text) <= max_chars:
        return [text]

    chunks = []
    current = ""
    for page in _PAGE_BOUNDARY.split(text):
        if not page:
            continue
        # A single oversized page is hard-split
        while len(page) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(page[:max_chars])
            page = page[max_chars:]
        if current and len(current) + len(page) > max_chars:
            chunks.append(current)
            current = page
        else:
            current += page
    if current:
        chunks.append(current)

    return chunks


def parse_llm_json(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a model reply, tolerating code fences and leading/trailing prose."""
    if not content:
        return None

    cleaned = _CODE_FENCE_CLOSE.sub("", _CODE_FENCE_OPEN.sub("", content.strip())).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None

    return parsed if isinstance(parsed, dict) else None


def _validated(items: Any, model) -> List:
    out = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        try:
            out.append(model.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Dropping invalid {model.__name__}: {e.errors()[0].get('msg')}")
    return out


def result_from_payload(payload: Dict[str, Any], file_name: str, data_set: str, analyzed_at: str) -> AnalysisResult:
    """Build a chunk result from parsed model JSON, dropping malformed entries."""
    persons = [
        p for p in _validated(payload.get("persons"), PersonMention)
        if len(p.name.strip()) >= MIN_PERSON_NAME_LENGTH
    ]
    return AnalysisResult(
        file_name=file_name,
        data_set=data_set,
        document_type=payload.get("documentType") or payload.get("document_type") or "other",
        date_original=payload.get("dateOriginal") or payload.get("date_original") or None,
        summary=payload.get("summary") or "",
        persons=persons,
        connections=_validated(payload.get("connections"), ConnectionMention),
        events=_validated(payload.get("events"), EventMention),
        locations=payload.get("locations") or [],
        key_facts=payload.get("keyFacts") or payload.get("key_facts") or [],
        tier=Tier.LLM,
        analyzed_at=analyzed_at,
    )


def placeholder_result(file_name: str, data_set: str, analyzed_at: str) -> AnalysisResult:
    return AnalysisResult(
        file_name=file_name,
        data_set=data_set,
        document_type="other",
        summary=UNABLE_TO_ANALYZE,
        tier=Tier.LLM,
        analyzed_at=analyzed_at,
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AIAnalyzer:
    """Runs Tier 1 extraction chunk by chunk and merges the results."""

    def __init__(
        self,
        client: LLMClient,
        pricing: ModelPricing = DEFAULT_PRICING,
        max_chunk_chars: int = MAX_CHUNK_CHARS,
        chunk_delay_seconds: float = 0.5,
        rate_limit_backoff_seconds: float = 10.0,
        max_chunk_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], str] = _utc_now_iso
    ):
        self.client = client
        self.pricing = pricing
        self.max_chunk_chars = max_chunk_chars
        self.chunk_delay_seconds = chunk_delay_seconds
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self.max_chunk_attempts = max_chunk_attempts
        self._sleep = sleep
        self._clock = clock

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Transient provider error (attempt {retry_state.attempt_number}/{self.max_chunk_attempts}): "
            f"{error}; waiting {self.rate_limit_backoff_seconds:.0f}s"
        )

    def _complete_with_retry(self, user_content: str) -> LLMResponse:
        retryer = Retrying(
            retry=retry_if_exception(is_transient_error),
            stop=stop_after_attempt(self.max_chunk_attempts),
            wait=wait_fixed(self.rate_limit_backoff_seconds),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        )
        return retryer(self.client.complete, SYSTEM_PROMPT, user_content, MAX_TOKENS, TEMPERATURE)

    def analyze(self, text: str, file_name: str, data_set: str) -> AnalysisResult:
        """
        Analyze a document with the LLM.

        Args:
            text: Extracted document text
            file_name: Stable document identifier, shown to the model
            data_set: Source collection id

        Returns:
            Merged AnalysisResult carrying summed tokens and cost; a placeholder
            result when no chunk could be analyzed
        """
        chunks = chunk_text(text, self.max_chunk_chars)
        analyzed_at = self._clock()
        logger.info(f"Analyzing {file_name} ({len(text)} chars, {len(chunks)} chunk(s))")

        chunk_results: List[AnalysisResult] = []
        input_tokens = 0
        output_tokens = 0

        for i, chunk in enumerate(chunks):
            label = f" (chunk {i + 1}/{len(chunks)})" if len(chunks) > 1 else ""
            user_content = (
                f"Analyze this case document text{label}. File: {file_name}, Data Set: {data_set}\n\n---\n{chunk}"
            )

            try:
                response = self._complete_with_retry(user_content)
            except Exception as e:
                logger.error(f"Error analyzing {file_name}{label}, chunk dropped: {e}")
                continue
            finally:
                if len(chunks) > 1 and i < len(chunks) - 1:
                    self._sleep(self.chunk_delay_seconds)

            input_tokens += response.input_tokens
            output_tokens += response.output_tokens

            try:
                chunk_results.append(self._parse_chunk(response.content, file_name, data_set, analyzed_at))
            except MalformedResponseError as e:
                logger.warning(f"{e}{label}, chunk dropped")

        if chunk_results:
            merged = merge_results(chunk_results)
        else:
            merged = placeholder_result(file_name, data_set, analyzed_at)

        return merged.model_copy(update={
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_cents": calculate_cost_cents(input_tokens, output_tokens, self.pricing),
        })

    def _parse_chunk(self, content: Optional[str], file_name: str, data_set: str, analyzed_at: str) -> AnalysisResult:
        payload = parse_llm_json(content)
        if payload is None:
            raise MalformedResponseError(f"Could not parse JSON from {file_name}")
        return result_from_payload(payload, file_name, data_set, analyzed_at)
