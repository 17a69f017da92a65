"""Token-to-cents cost model for Tier 1 calls."""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPricing:
    """Provider pricing in cents per million tokens."""
    model: str = "deepseek/deepseek-chat-v3-0324"
    input_cents_per_mtok: float = 27.0
    output_cents_per_mtok: float = 110.0


DEFAULT_PRICING = ModelPricing()


def calculate_cost_cents(
    input_tokens: int,
    output_tokens: int,
    pricing: ModelPricing = DEFAULT_PRICING
) -> float:
    """
    Compute the cost of a call in cents, rounded up to the nearest 0.01 cent.

    Args:
        input_tokens: Prompt tokens billed
        output_tokens: Completion tokens billed
        pricing: Rates for the model used

    Returns:
        Cost in cents
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("token counts must be non-negative")

    raw = (
        input_tokens / 1_000_000 * pricing.input_cents_per_mtok
        + output_tokens / 1_000_000 * pricing.output_cents_per_mtok
    )
    # round() first so float noise like 0.30000000000000004 does not bump a cent
    return math.ceil(round(raw * 100, 6)) / 100


def format_cents(cents: float) -> str:
    """Render cents as dollars, e.g. 195 -> $1.95."""
    return f"${cents / 100:.2f}"
