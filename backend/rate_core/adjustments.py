"""
rate_core/adjustments.py

Adjustment arithmetic shared by tiers, overrides, pricing rules and bulk edits.
"""
from decimal import Decimal
from typing import Optional, Union

from rate_core.models import AdjustmentType, PricingRule, to_money
from rate_core.errors import ValidationError

Number = Union[Decimal, int, float, str]

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _dec(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def apply_adjustment(amount: Number, adjustment_type: AdjustmentType, value: Number) -> Decimal:
    """
    Apply one tier/override adjustment to an amount.

    Direction of the *_INCREASE / *_DECREASE types comes from the type,
    never from the sign of the value.

    Raises:
        ValidationError: value is missing or the type is unknown.
    """
    if value is None:
        raise ValidationError(f"Adjustment value is required for {adjustment_type}")
    amount = _dec(amount)
    value = _dec(value)
    adjustment_type = AdjustmentType(adjustment_type)

    if adjustment_type == AdjustmentType.PERCENTAGE:
        result = amount * (1 + value / HUNDRED)
    elif adjustment_type == AdjustmentType.PERCENTAGE_INCREASE:
        result = amount * (1 + abs(value) / HUNDRED)
    elif adjustment_type == AdjustmentType.PERCENTAGE_DECREASE:
        result = amount * (1 - abs(value) / HUNDRED)
    elif adjustment_type == AdjustmentType.FIXED:
        result = amount + value
    elif adjustment_type == AdjustmentType.FIXED_INCREASE:
        result = amount + abs(value)
    elif adjustment_type == AdjustmentType.FIXED_DECREASE:
        result = amount - abs(value)
    elif adjustment_type == AdjustmentType.MULTIPLIER:
        result = amount * value
    elif adjustment_type == AdjustmentType.SET_RATE:
        result = value
    else:  # pragma: no cover - enum is closed
        raise ValidationError(f"Unsupported adjustment type: {adjustment_type}")
    return to_money(result)


def apply_pricing_rule(amount: Number, rule: PricingRule) -> Decimal:
    """
    Apply a pricing rule: percentage discount, then amount discount,
    then the signed price adjustment. discount_percentage is always subtractive.
    """
    result = _dec(amount)
    if rule.discount_percentage is not None:
        result = result * (1 - abs(_dec(rule.discount_percentage)) / HUNDRED)
    if rule.discount_amount is not None:
        result = result - abs(_dec(rule.discount_amount))
    if rule.price_adjustment is not None:
        result = result + _dec(rule.price_adjustment)
    return to_money(result)


def clamp_non_negative(amount: Number) -> Decimal:
    amount = to_money(amount)
    return amount if amount >= ZERO else to_money(ZERO)


def has_rule_adjustment(rule: PricingRule) -> bool:
    return any(v is not None for v in (
        rule.discount_percentage, rule.discount_amount, rule.price_adjustment
    ))


def describe_adjustment(adjustment_type: AdjustmentType, value: Optional[Number]) -> str:
    """Short human label, e.g. '+10%' or 'set 180.00'."""
    if value is None:
        return str(adjustment_type.value)
    value = _dec(value)
    if adjustment_type == AdjustmentType.PERCENTAGE:
        return f"{'+' if value >= 0 else ''}{value}%"
    if adjustment_type == AdjustmentType.PERCENTAGE_INCREASE:
        return f"+{abs(value)}%"
    if adjustment_type == AdjustmentType.PERCENTAGE_DECREASE:
        return f"-{abs(value)}%"
    if adjustment_type == AdjustmentType.FIXED:
        return f"{'+' if value >= 0 else ''}{to_money(value)}"
    if adjustment_type == AdjustmentType.FIXED_INCREASE:
        return f"+{to_money(abs(value))}"
    if adjustment_type == AdjustmentType.FIXED_DECREASE:
        return f"-{to_money(abs(value))}"
    if adjustment_type == AdjustmentType.MULTIPLIER:
        return f"x{value}"
    return f"set {to_money(value)}"
