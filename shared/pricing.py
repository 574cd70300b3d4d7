"""
Inference model catalogue and local cost computation.

Prices are USD per million tokens.
"""

from shared.models import TokenUsage

GPT_MODELS: dict[str, dict[str, float | str]] = {
    "gpt-4o": {"name": "GPT-4o", "input_price": 2.50, "output_price": 10.00},
    "gpt-4o-mini": {"name": "GPT-4o mini", "input_price": 0.15, "output_price": 0.60},
    "gpt-4.1": {"name": "GPT-4.1", "input_price": 2.00, "output_price": 8.00},
    "gpt-4.1-mini": {"name": "GPT-4.1 mini", "input_price": 0.40, "output_price": 1.60},
    "gpt-4.1-nano": {"name": "GPT-4.1 nano", "input_price": 0.10, "output_price": 0.40},
}

TOKENS_PER_PRICE_UNIT = 1_000_000


def is_supported_model(model_id: str) -> bool:
    return model_id in GPT_MODELS


def calculate_cost(usage: TokenUsage, model_id: str) -> float:
    """Cost of ``usage`` on ``model_id``; unknown models cost nothing."""
    model = GPT_MODELS.get(model_id)
    if model is None:
        return 0.0

    input_cost = usage.prompt_tokens / TOKENS_PER_PRICE_UNIT * float(model["input_price"])
    output_cost = usage.completion_tokens / TOKENS_PER_PRICE_UNIT * float(model["output_price"])
    return input_cost + output_cost
