"""Supabase repository for meals, food items and nutrition goals."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from supabase import Client

from nutrivoice.domain.errors import PersistenceError
from nutrivoice.domain.meals import (
    FoodItem,
    MealGroup,
    NutritionGoals,
    NutritionSnapshot,
    normalize_goal,
    truncate_snippet,
)
from nutrivoice.services.reconciler import NutritionRepository

_ITEM_COLUMNS = (
    "id, meal_id, name, quantity, calories, protein, carbs, fat, fiber, "
    "micronutrients, timestamp"
)
_MEAL_COLUMNS = "id, label, transcript_snippet, created_at"
_GOAL_COLUMNS = "calories, protein, carbs, fat, fiber"


@dataclass
class SupabaseNutritionRepository(NutritionRepository):
    """Supabase implementation for the nutrition log."""

    client: Client

    def load_initial_data(self, user_id: UUID) -> NutritionSnapshot:
        """Return items, meals and goals for a user."""
        items = _execute(
            self.client.table("food_items")
            .select(_ITEM_COLUMNS)
            .eq("user_id", str(user_id))
            .order("timestamp", desc=True),
            "Failed to load food items",
        )
        meals = _execute(
            self.client.table("meal_groups")
            .select(_MEAL_COLUMNS)
            .eq("user_id", str(user_id))
            .order("created_at", desc=True),
            "Failed to load meals",
        )
        goals = _execute(
            self.client.table("nutrition_goals")
            .select(_GOAL_COLUMNS)
            .eq("user_id", str(user_id))
            .limit(1),
            "Failed to load goals",
        )
        return NutritionSnapshot(
            items=[_parse_item(row) for row in items.data or []],
            meals=[_parse_meal(row) for row in meals.data or []],
            goals=_parse_goals(goals.data[0]) if goals.data else NutritionGoals(),
        )

    def has_any_data(self, user_id: UUID) -> bool:
        """Return true when the user has any meal or item stored."""
        for table, context in (
            ("food_items", "Failed to check food items"),
            ("meal_groups", "Failed to check meals"),
        ):
            response = _execute(
                self.client.table(table)
                .select("id")
                .eq("user_id", str(user_id))
                .limit(1),
                context,
            )
            if response.data:
                return True
        return False

    def insert_meal(self, user_id: UUID, meal: MealGroup) -> None:
        """Insert a meal group row."""
        _execute(
            self.client.table("meal_groups").insert(_meal_row(user_id, meal)),
            "Failed to insert meal",
        )

    def update_meal_transcript(
        self, user_id: UUID, meal_id: UUID, transcript_snippet: str | None
    ) -> None:
        """Update the transcript snippet of a meal group."""
        _execute(
            self.client.table("meal_groups")
            .update({"transcript_snippet": truncate_snippet(transcript_snippet)})
            .eq("id", str(meal_id))
            .eq("user_id", str(user_id)),
            "Failed to update meal transcript",
        )

    def delete_meal(self, user_id: UUID, meal_id: UUID) -> None:
        """Delete a meal group; item rows cascade in the database."""
        _execute(
            self.client.table("meal_groups")
            .delete()
            .eq("id", str(meal_id))
            .eq("user_id", str(user_id)),
            "Failed to delete meal",
        )

    def insert_food_item(self, user_id: UUID, item: FoodItem) -> None:
        """Insert a food item row."""
        _execute(
            self.client.table("food_items").insert(_item_row(user_id, item)),
            "Failed to insert food item",
        )

    def update_food_item(
        self, user_id: UUID, item_id: UUID, changes: dict[str, object]
    ) -> None:
        """Apply a partial update to a food item row."""
        payload = {
            key: _column_value(key, value)
            for key, value in changes.items()
            if key in _UPDATABLE_ITEM_COLUMNS
        }
        if not payload:
            return
        _execute(
            self.client.table("food_items")
            .update(payload)
            .eq("id", str(item_id))
            .eq("user_id", str(user_id)),
            "Failed to update food item",
        )

    def delete_food_item(self, user_id: UUID, item_id: UUID) -> None:
        """Delete a food item row."""
        _execute(
            self.client.table("food_items")
            .delete()
            .eq("id", str(item_id))
            .eq("user_id", str(user_id)),
            "Failed to delete food item",
        )

    def upsert_goals(self, user_id: UUID, goals: NutritionGoals) -> None:
        """Create or replace the goals row for a user."""
        _execute(
            self.client.table("nutrition_goals").upsert(
                _goals_row(user_id, goals), on_conflict="user_id"
            ),
            "Failed to save goals",
        )

    def import_snapshot(self, user_id: UUID, snapshot: NutritionSnapshot) -> None:
        """Upsert a full snapshot; meals go first so item references resolve."""
        if snapshot.meals:
            _execute(
                self.client.table("meal_groups").upsert(
                    [_meal_row(user_id, meal) for meal in snapshot.meals],
                    on_conflict="id",
                ),
                "Failed to import meals",
            )
        if snapshot.items:
            _execute(
                self.client.table("food_items").upsert(
                    [_item_row(user_id, item) for item in snapshot.items],
                    on_conflict="id",
                ),
                "Failed to import food items",
            )
        if not snapshot.goals.is_empty():
            self.upsert_goals(user_id, snapshot.goals)


_UPDATABLE_ITEM_COLUMNS = frozenset(
    {
        "meal_id",
        "name",
        "quantity",
        "calories",
        "protein",
        "carbs",
        "fat",
        "fiber",
        "micronutrients",
    }
)


def _execute(query: Any, context: str) -> Any:
    try:
        return query.execute()
    except Exception as exc:
        message = getattr(exc, "message", None) or str(exc)
        raise PersistenceError(f"{context}: {message}") from exc


def _column_value(key: str, value: object) -> object:
    if isinstance(value, UUID):
        return str(value)
    if key == "calories" and isinstance(value, int | float):
        return round(value)
    if key == "micronutrients" and value == "":
        return None
    return value


def _meal_row(user_id: UUID, meal: MealGroup) -> dict[str, object]:
    return {
        "id": str(meal.id),
        "user_id": str(user_id),
        "label": meal.label,
        "transcript_snippet": truncate_snippet(meal.transcript_snippet),
        "created_at": meal.created_at.isoformat(),
    }


def _item_row(user_id: UUID, item: FoodItem) -> dict[str, object]:
    return {
        "id": str(item.id),
        "user_id": str(user_id),
        "meal_id": str(item.meal_id),
        "name": item.name,
        "quantity": item.quantity,
        "calories": round(item.calories),
        "protein": item.protein,
        "carbs": item.carbs,
        "fat": item.fat,
        "fiber": item.fiber,
        "micronutrients": item.micronutrients or None,
        "timestamp": item.timestamp.isoformat(),
    }


def _goals_row(user_id: UUID, goals: NutritionGoals) -> dict[str, object]:
    return {
        "user_id": str(user_id),
        "calories": goals.calories,
        "protein": goals.protein,
        "carbs": goals.carbs,
        "fat": goals.fat,
        "fiber": goals.fiber,
    }


def _parse_item(row: dict[str, Any]) -> FoodItem:
    return FoodItem(
        id=UUID(row["id"]),
        meal_id=UUID(row["meal_id"]),
        name=row.get("name") or "",
        quantity=row.get("quantity") or "",
        calories=float(row.get("calories") or 0),
        protein=float(row.get("protein") or 0.0),
        carbs=float(row.get("carbs") or 0.0),
        fat=float(row.get("fat") or 0.0),
        fiber=float(row.get("fiber") or 0.0),
        micronutrients=row.get("micronutrients") or None,
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def _parse_meal(row: dict[str, Any]) -> MealGroup:
    created_at = datetime.fromisoformat(row["created_at"])
    return MealGroup(
        id=UUID(row["id"]),
        label=row.get("label") or created_at.strftime("%H:%M"),
        created_at=created_at,
        transcript_snippet=row.get("transcript_snippet"),
    )


def _parse_goals(row: dict[str, Any]) -> NutritionGoals:
    return NutritionGoals(
        calories=normalize_goal(row.get("calories")),
        protein=normalize_goal(row.get("protein")),
        carbs=normalize_goal(row.get("carbs")),
        fat=normalize_goal(row.get("fat")),
        fiber=normalize_goal(row.get("fiber")),
    )
