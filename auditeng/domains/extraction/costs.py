"""
Cost Estimation - Per-model token and image pricing.

Estimates are metrics only; nothing here may block an extraction.
"""

from __future__ import annotations

from pydantic import BaseModel

__all__ = [
    "ModelRates",
    "MODEL_RATES",
    "estimate_cost",
]


class ModelRates(BaseModel):
    """USD per token / per image."""

    input: float
    output: float
    image_low: float
    image_high: float

    model_config = {"frozen": True}

    def image_rate(self, detail: str) -> float:
        return self.image_high if detail == "high" else self.image_low


MODEL_RATES: dict[str, ModelRates] = {
    "gpt-4o": ModelRates(
        input=0.0025 / 1000, output=0.01 / 1000, image_low=0.00255, image_high=0.00765
    ),
    "gpt-4o-mini": ModelRates(
        input=0.00015 / 1000, output=0.0006 / 1000, image_low=0.001275, image_high=0.005525
    ),
    "gpt-4-turbo": ModelRates(
        input=0.01 / 1000, output=0.03 / 1000, image_low=0.00255, image_high=0.00765
    ),
    # Gemini bills images as 258 input tokens regardless of detail
    "gemini-2.0-flash": ModelRates(
        input=0.0001 / 1000, output=0.0004 / 1000, image_low=0.0000258, image_high=0.0000258
    ),
    "gemini-1.5-flash": ModelRates(
        input=0.000075 / 1000, output=0.0003 / 1000, image_low=0.00001935, image_high=0.00001935
    ),
    "gemini-1.5-pro": ModelRates(
        input=0.00125 / 1000, output=0.005 / 1000, image_low=0.0003225, image_high=0.0003225
    ),
}


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    image_count: int,
    model: str,
    detail: str = "high",
    default_model: str = "gpt-4o",
) -> float:
    """
    Estimate USD cost of one call.

    Unknown models are priced as ``default_model``.

    Example:
        >>> round(estimate_cost(1000, 100, 1, "gpt-4o"), 5)
        0.01115
    """
    rates = MODEL_RATES.get(model) or MODEL_RATES.get(default_model) or MODEL_RATES["gpt-4o"]
    return (
        input_tokens * rates.input
        + output_tokens * rates.output
        + image_count * rates.image_rate(detail)
    )
