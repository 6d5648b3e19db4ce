"""Domain models for meal groups and logged food items."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from nutrivoice.domain.extraction import FoodEntry

TRANSCRIPT_SNIPPET_LIMIT = 120


@dataclass(frozen=True)
class MealGroup:
    """A recording-scoped group of food items."""

    id: UUID
    label: str
    created_at: datetime
    transcript_snippet: str | None = None
    awaiting_extraction: bool = False


@dataclass(frozen=True)
class FoodItem:
    """Persisted form of a food entry."""

    id: UUID
    meal_id: UUID
    name: str
    quantity: str
    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: float
    timestamp: datetime
    micronutrients: str | None = None

    @classmethod
    def from_entry(
        cls, entry: FoodEntry, *, item_id: UUID, meal_id: UUID, timestamp: datetime
    ) -> "FoodItem":
        """Bind an extracted entry to a meal."""
        return cls(
            id=item_id,
            meal_id=meal_id,
            name=entry.name,
            quantity=entry.quantity,
            calories=round(entry.calories),
            protein=entry.protein,
            carbs=entry.carbs,
            fat=entry.fat,
            fiber=entry.fiber,
            micronutrients=entry.micronutrients or None,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class NutritionGoals:
    """Optional daily targets; unset targets are None."""

    calories: float | None = None
    protein: float | None = None
    carbs: float | None = None
    fat: float | None = None
    fiber: float | None = None

    @classmethod
    def normalized(cls, **values: object) -> "NutritionGoals":
        """Build goals, dropping non-positive or non-finite targets."""
        return cls(**{key: normalize_goal(value) for key, value in values.items()})

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.calories, self.protein, self.carbs, self.fat, self.fiber)
        )


@dataclass(frozen=True)
class NutritionSnapshot:
    """Items, meals and goals as loaded from or written to storage."""

    items: list[FoodItem] = field(default_factory=list)
    meals: list[MealGroup] = field(default_factory=list)
    goals: NutritionGoals = field(default_factory=NutritionGoals)

    def is_empty(self) -> bool:
        return not self.items and not self.meals


def normalize_goal(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return float(value)


def truncate_snippet(text: str | None) -> str | None:
    """Trim a transcript to the stored snippet length."""
    if text is None:
        return None
    cleaned = text.strip()
    if not cleaned:
        return None
    return cleaned[:TRANSCRIPT_SNIPPET_LIMIT]


def meal_label(created_at: datetime) -> str:
    """Display label derived from the meal's start time."""
    return created_at.strftime("%H:%M")
