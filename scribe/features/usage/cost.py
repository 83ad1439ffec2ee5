"""
scribe/features/usage/cost.py

Token-to-money conversion for metered operations.

The completion provider reports only total tokens per call, so cost is
estimated with a fixed 70/30 input/output split.
"""

from decimal import Decimal
import logging
from typing import Dict, Tuple, Union

from scribe.core.errors import ValidationError
from scribe.models.usage_record import UsageOperation


logger = logging.getLogger(__name__)

TEXT = "text"
VISION = "vision"

TOKENS_PER_UNIT = Decimal(1_000_000)
INPUT_SHARE = Decimal("0.7")
OUTPUT_SHARE = Decimal("0.3")

# USD per million tokens: (input, output)
COST_RATES: Dict[str, Tuple[Decimal, Decimal]] = {
    TEXT: (Decimal("0.15"), Decimal("0.60")),
    VISION: (Decimal("2.50"), Decimal("10.00")),
}


def operation_class_for(operation: Union[UsageOperation, str]) -> str:
    """ocr runs on the vision model; every other operation is text."""
    return VISION if UsageOperation(operation) == UsageOperation.OCR else TEXT


def estimate_cost(tokens: int, operation_class: str = TEXT) -> Decimal:
    """
    Estimate the USD cost of a call from its total token count.

    Raises:
        ValidationError: If tokens is negative
    """
    if tokens < 0:
        raise ValidationError(f"tokens must be >= 0, got {tokens}")

    rates = COST_RATES.get(operation_class)
    if rates is None:
        logger.warning("[usage] unknown cost class, using text rates", extra={"operation_class": operation_class})
        rates = COST_RATES[TEXT]

    input_rate, output_rate = rates
    total = Decimal(tokens)
    return (total * INPUT_SHARE * input_rate + total * OUTPUT_SHARE * output_rate) / TOKENS_PER_UNIT
