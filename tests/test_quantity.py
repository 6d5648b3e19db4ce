"""Tests for quantity parsing and nutrient rescaling."""

import pytest

from nutrivoice.services.quantity import (
    parse_leading_amount,
    rescale_item,
    scale_factor,
    scale_micronutrients,
)
from tests.conftest import make_item, make_meal


@pytest.mark.parametrize(
    ("quantity", "expected"),
    [
        ("2 slices", 2.0),
        ("0.5 l", 0.5),
        ("1,5 xícaras", 1.5),
        (".5 cup", 0.5),
        ("1/2 cup", 0.5),
        ("1 1/2 cups", 1.5),
        ("  3 eggs", 3.0),
        ("a handful", None),
        ("", None),
        ("1/0 cup", None),
    ],
)
def test_parse_leading_amount(quantity: str, expected: float | None) -> None:
    assert parse_leading_amount(quantity) == expected


def test_scale_factor_requires_positive_amounts() -> None:
    assert scale_factor("2 eggs", "3 eggs") == pytest.approx(1.5)
    assert scale_factor("0 eggs", "3 eggs") is None
    assert scale_factor("some eggs", "3 eggs") is None
    assert scale_factor("2 eggs", "a few eggs") is None


def test_scale_micronutrients_skips_nutrient_names() -> None:
    text = "Vitamin B12 1mcg, Vitamin D3 2IU, Iron 2.5mg"

    assert scale_micronutrients(text, 2) == "Vitamin B12 2mcg, Vitamin D3 4IU, Iron 5mg"
    assert scale_micronutrients("", 2) == ""
    assert scale_micronutrients(None, 2) is None


def test_rescale_item_rounds_and_floors() -> None:
    item = make_item(
        make_meal().id,
        quantity="3 slices",
        calories=250,
        protein=9.0,
        carbs=30.0,
        fat=10.0,
        fiber=1.5,
    )

    scaled = rescale_item(item, "1 slice")

    assert scaled.quantity == "1 slice"
    assert scaled.calories == 83
    assert scaled.protein == 3.0
    assert scaled.carbs == 10.0
    assert scaled.fat == 3.3
    assert scaled.fiber == 0.5
    assert scaled.id == item.id


def test_rescale_item_without_parseable_amount_keeps_nutrients() -> None:
    item = make_item(make_meal().id, quantity="1 bowl", calories=300)

    scaled = rescale_item(item, "a big bowl")

    assert scaled.quantity == "a big bowl"
    assert scaled.calories == 300
