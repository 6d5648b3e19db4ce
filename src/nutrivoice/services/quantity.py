"""Quantity parsing and proportional nutrient rescaling."""

import re
from dataclasses import replace
from fractions import Fraction

from nutrivoice.domain.meals import FoodItem

_MIXED = re.compile(r"^\s*(\d+)\s+(\d+)\s*/\s*(\d+)")
_FRACTION = re.compile(r"^\s*(\d+)\s*/\s*(\d+)")
_DECIMAL = re.compile(r"^\s*(\d+(?:[.,]\d+)?|[.,]\d+)")
# Digits glued to a letter are names (B12, D3), not amounts.
_NUMBER_TOKEN = re.compile(r"(?<![A-Za-z\d.,])\d+(?:[.,]\d+)?")


def parse_leading_amount(quantity: str) -> float | None:
    """Parse the leading amount of a quantity like "1 1/2 cups" or "0.5 l"."""
    mixed = _MIXED.match(quantity)
    if mixed:
        whole, numerator, denominator = (int(group) for group in mixed.groups())
        if denominator == 0:
            return None
        return float(whole + Fraction(numerator, denominator))
    fraction = _FRACTION.match(quantity)
    if fraction:
        numerator, denominator = (int(group) for group in fraction.groups())
        if denominator == 0:
            return None
        return float(Fraction(numerator, denominator))
    decimal = _DECIMAL.match(quantity)
    if decimal:
        return float(decimal.group(1).replace(",", "."))
    return None


def scale_factor(old_quantity: str, new_quantity: str) -> float | None:
    """Return new/old when both quantities carry a positive amount."""
    old_amount = parse_leading_amount(old_quantity)
    new_amount = parse_leading_amount(new_quantity)
    if old_amount is None or new_amount is None:
        return None
    if old_amount <= 0 or new_amount <= 0:
        return None
    return new_amount / old_amount


def scale_micronutrients(text: str | None, factor: float) -> str | None:
    """Scale every numeric token in a free-text micronutrient list."""
    if not text:
        return text

    def _scale(match: re.Match[str]) -> str:
        value = float(match.group(0).replace(",", ".")) * factor
        return _format_number(value)

    return _NUMBER_TOKEN.sub(_scale, text)


def rescale_item(item: FoodItem, new_quantity: str) -> FoodItem:
    """Apply a quantity change, rescaling nutrients when both amounts parse."""
    factor = scale_factor(item.quantity, new_quantity)
    if factor is None:
        return replace(item, quantity=new_quantity)
    return replace(
        item,
        quantity=new_quantity,
        calories=max(0, round(item.calories * factor)),
        protein=_scale_macro(item.protein, factor),
        carbs=_scale_macro(item.carbs, factor),
        fat=_scale_macro(item.fat, factor),
        fiber=_scale_macro(item.fiber, factor),
        micronutrients=scale_micronutrients(item.micronutrients, factor),
    )


def _scale_macro(value: float, factor: float) -> float:
    return max(0.0, round(value * factor, 1))


def _format_number(value: float) -> str:
    rounded = round(value, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.1f}"
