"""Model pricing and cost estimation."""
from __future__ import annotations

from dataclasses import dataclass

from sessionvault.models import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float
    cacheRead: float
    cacheCreate: float


DEFAULT_MODEL = "claude-sonnet-4-20250514"

DEFAULT_PRICING: dict[str, ModelPricing] = {
    # Cache reads bill at 10% of input, cache writes at 25%.
    # Sonnet family
    "claude-sonnet-4-20250514": ModelPricing(3.0, 15.0, 0.3, 0.75),
    "claude-sonnet-4-5-20250929": ModelPricing(3.0, 15.0, 0.3, 0.75),
    "claude-3-7-sonnet-20250219": ModelPricing(3.0, 15.0, 0.3, 0.75),
    # Opus family
    "claude-opus-4-5-20251101": ModelPricing(15.0, 75.0, 1.5, 3.75),
    "claude-opus-4-6": ModelPricing(15.0, 75.0, 1.5, 3.75),
    "claude-opus-4-1-20250805": ModelPricing(15.0, 75.0, 1.5, 3.75),
    "claude-opus-4-20250514": ModelPricing(15.0, 75.0, 1.5, 3.75),
    # Haiku family
    "claude-haiku-4-5-20251001": ModelPricing(0.25, 1.25, 0.025, 0.0625),
    "claude-3-5-haiku-20241022": ModelPricing(0.8, 4.0, 0.08, 0.2),
}

_FAMILY_DEFAULTS = (
    ("opus", "claude-opus-4-5-20251101"),
    ("sonnet", "claude-sonnet-4-20250514"),
    ("haiku", "claude-haiku-4-5-20251001"),
)


def get_pricing(model: str | None) -> ModelPricing:
    """Exact match, then family match by substring, then the sonnet rate."""
    raw = (model or "").strip()
    if raw in DEFAULT_PRICING:
        return DEFAULT_PRICING[raw]

    lowered = raw.lower()
    for family, key in _FAMILY_DEFAULTS:
        if family in lowered:
            return DEFAULT_PRICING[key]

    return DEFAULT_PRICING[DEFAULT_MODEL]


def estimate_cost(model: str | None, usage: TokenUsage) -> float:
    pricing = get_pricing(model)
    return (
        usage.inputTokens / 1_000_000 * pricing.input
        + usage.outputTokens / 1_000_000 * pricing.output
        + usage.cacheReadTokens / 1_000_000 * pricing.cacheRead
        + usage.cacheCreateTokens / 1_000_000 * pricing.cacheCreate
    )


def model_family_name(model: str | None) -> str:
    """Return a human-friendly family label (Opus, Sonnet, Haiku)."""
    lowered = (model or "").lower()
    for family, _ in _FAMILY_DEFAULTS:
        if family in lowered:
            return family.capitalize()
    return "Unknown"
