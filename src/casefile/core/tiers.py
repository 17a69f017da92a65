"""Tier selection: decide between the free pass and the paid LLM pass."""

import math
from typing import Optional

from .cost import DEFAULT_PRICING, ModelPricing, calculate_cost_cents
from .models import Tier

MIN_TEXT_LENGTH = 200
CHARS_PER_TOKEN = 4
# Output is bounded by the response size, not the input size
ESTIMATED_OUTPUT_TOKENS = 1500


def estimate_tier1_cost(text_length: int, pricing: ModelPricing = DEFAULT_PRICING) -> float:
    """Rough Tier 1 cost in cents for a document of ``text_length`` characters."""
    if text_length <= 0:
        return 0.0
    input_tokens = math.ceil(text_length / CHARS_PER_TOKEN)
    return calculate_cost_cents(input_tokens, ESTIMATED_OUTPUT_TOKENS, pricing)


def choose_tier(
    has_text: bool,
    text_length: int,
    budget_remaining_cents: float,
    forced_tier: Optional[Tier] = None,
    estimated_cost_cents: float = 0.0
) -> Tier:
    """
    Pick the analysis tier for one document.

    Args:
        has_text: Whether extracted text exists for the document
        text_length: Length of that text in characters
        budget_remaining_cents: Budget left in the current run
        forced_tier: Operator override; returned unchanged when set
        estimated_cost_cents: Expected Tier 1 cost; ignored when not positive

    Returns:
        Tier.LLM only when there is usable text and the budget covers it
    """
    if forced_tier is not None:
        return Tier(forced_tier)
    if not has_text or text_length < MIN_TEXT_LENGTH:
        return Tier.RULE_BASED
    if budget_remaining_cents <= 0:
        return Tier.RULE_BASED
    if estimated_cost_cents > 0 and estimated_cost_cents > budget_remaining_cents:
        return Tier.RULE_BASED
    return Tier.LLM
