import unittest

from sessionvault.models import TokenUsage
from sessionvault.pricing import DEFAULT_PRICING, ModelPricing, estimate_cost, get_pricing, model_family_name


class PricingTests(unittest.TestCase):
    def test_exact_model_match(self) -> None:
        self.assertEqual(get_pricing("claude-opus-4-1-20250805").input, 15.0)

    def test_family_fallback_and_default(self) -> None:
        self.assertEqual(get_pricing("claude-opus-9-preview"), DEFAULT_PRICING["claude-opus-4-5-20251101"])
        self.assertEqual(get_pricing("some-haiku-model"), DEFAULT_PRICING["claude-haiku-4-5-20251001"])
        self.assertEqual(get_pricing("gpt-unknown"), DEFAULT_PRICING["claude-sonnet-4-20250514"])
        self.assertEqual(get_pricing(None), DEFAULT_PRICING["claude-sonnet-4-20250514"])

    def test_estimate_cost_uses_per_million_rates(self) -> None:
        usage = TokenUsage(
            inputTokens=1_000_000,
            outputTokens=1_000_000,
            cacheReadTokens=1_000_000,
            cacheCreateTokens=1_000_000,
        )
        self.assertAlmostEqual(estimate_cost("claude-sonnet-4-20250514", usage), 3 + 15 + 0.3 + 0.75)
        self.assertEqual(estimate_cost("claude-sonnet-4-20250514", TokenUsage()), 0)

    def test_family_default_rates(self) -> None:
        self.assertEqual(DEFAULT_PRICING["claude-sonnet-4-20250514"], ModelPricing(3.0, 15.0, 0.3, 0.75))
        self.assertEqual(DEFAULT_PRICING["claude-opus-4-5-20251101"], ModelPricing(15.0, 75.0, 1.5, 3.75))
        self.assertEqual(DEFAULT_PRICING["claude-opus-4-6"], ModelPricing(15.0, 75.0, 1.5, 3.75))
        self.assertEqual(DEFAULT_PRICING["claude-haiku-4-5-20251001"], ModelPricing(0.25, 1.25, 0.025, 0.0625))

    def test_family_names(self) -> None:
        self.assertEqual(model_family_name("claude-opus-4-6"), "Opus")
        self.assertEqual(model_family_name("claude-3-5-haiku-20241022"), "Haiku")


if __name__ == "__main__":
    unittest.main()
