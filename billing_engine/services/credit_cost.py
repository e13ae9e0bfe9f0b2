"""
Credit Cost Estimator
=====================

PURPOSE:
    Converts AI token usage into billable credits.

COST FORMULA:
    weighted = input_tokens × 1 + output_tokens × 4
    credits  = ceil(weighted / 3000 × 10) / 10

    i.e. 3000 weighted tokens per credit, always rounded UP to the nearest
    0.1 credit. Zero (or negative) weighted usage costs nothing.

AGGREGATION:
    When summarising many usage rows, each row is rounded to one decimal
    BEFORE summing. The sum is carried in integer tenths so that two rows of
    1 input token each sum to exactly 0.2 credits.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

__all__ = [
    "TOKENS_PER_CREDIT",
    "INPUT_TOKEN_WEIGHT",
    "OUTPUT_TOKEN_WEIGHT",
    "UsageMetricSummary",
    "calculate_usage_credit_cost",
    "estimate_usage_credit_cost_from_total_tokens",
    "summarize_usage_metric_rows",
    "to_non_negative_number",
]

TOKENS_PER_CREDIT: int = 3000
INPUT_TOKEN_WEIGHT: int = 1
OUTPUT_TOKEN_WEIGHT: int = 4


def to_non_negative_number(value: Any) -> float:
    """Coerce numbers, decimals and numeric strings to a finite float ≥ 0.

    Anything unparseable, non-finite or negative becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _weighted_to_credits(weighted: float) -> float:
    if weighted <= 0:
        return 0.0
    # Multiply before dividing so exact multiples of 300 don't overshoot.
    return math.ceil(weighted * 10 / TOKENS_PER_CREDIT) / 10


def calculate_usage_credit_cost(input_tokens: Any, output_tokens: Any) -> float:
    """Credits charged for one AI call."""
    weighted = (
        to_non_negative_number(input_tokens) * INPUT_TOKEN_WEIGHT
        + to_non_negative_number(output_tokens) * OUTPUT_TOKEN_WEIGHT
    )
    return _weighted_to_credits(weighted)


def estimate_usage_credit_cost_from_total_tokens(total_tokens: Any) -> float:
    """Best-effort cost when only the total token count is known."""
    return _weighted_to_credits(to_non_negative_number(total_tokens))


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UsageMetricSummary:
    total_tokens: int
    total_credits: float


def _row_value(row: Any, key: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def summarize_usage_metric_rows(rows: Iterable[Any]) -> UsageMetricSummary:
    """Sum token usage rows (mappings or objects with input_tokens/output_tokens/total_tokens)."""
    total_tokens = 0
    total_tenths = 0

    for row in rows:
        cost = calculate_usage_credit_cost(
            _row_value(row, "input_tokens"),
            _row_value(row, "output_tokens"),
        )
        total_tenths += int(round(cost * 10))
        total_tokens += int(to_non_negative_number(_row_value(row, "total_tokens")))

    return UsageMetricSummary(
        total_tokens=total_tokens,
        total_credits=total_tenths / 10,
    )
