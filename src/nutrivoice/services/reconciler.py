"""Optimistic local meal/item state kept in sync with a persistence backend."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from nutrivoice.domain.errors import PersistenceError
from nutrivoice.domain.extraction import FoodEntry
from nutrivoice.domain.meals import (
    FoodItem,
    MealGroup,
    NutritionGoals,
    NutritionSnapshot,
    meal_label,
    truncate_snippet,
)
from nutrivoice.services.quantity import rescale_item

logger = logging.getLogger(__name__)


class NutritionRepository(Protocol):
    """Persistence interface for meals, food items and goals."""

    def load_initial_data(self, user_id: UUID) -> NutritionSnapshot:
        """Return every meal, item and the goals for a user."""

    def has_any_data(self, user_id: UUID) -> bool:
        """Return true when the user has at least one meal or item."""

    def insert_meal(self, user_id: UUID, meal: MealGroup) -> None:
        """Insert a meal group."""

    def update_meal_transcript(
        self, user_id: UUID, meal_id: UUID, transcript_snippet: str | None
    ) -> None:
        """Update the transcript snippet of a meal group."""

    def delete_meal(self, user_id: UUID, meal_id: UUID) -> None:
        """Delete a meal group and, through the backend, its items."""

    def insert_food_item(self, user_id: UUID, item: FoodItem) -> None:
        """Insert a food item."""

    def update_food_item(
        self, user_id: UUID, item_id: UUID, changes: dict[str, object]
    ) -> None:
        """Apply a partial update to a food item."""

    def delete_food_item(self, user_id: UUID, item_id: UUID) -> None:
        """Delete a food item."""

    def upsert_goals(self, user_id: UUID, goals: NutritionGoals) -> None:
        """Create or replace the goals record."""

    def import_snapshot(self, user_id: UUID, snapshot: NutritionSnapshot) -> None:
        """Bulk upsert a snapshot of meals, items and goals."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class SessionStateReconciler:
    """Owns local meals and items; applies changes locally before persisting.

    Every mutator changes local state before its first await. When the
    backend rejects the change, only that change is rolled back and a
    PersistenceError is raised; unrelated local state is left alone.
    """

    repository: NutritionRepository | None = None
    user_id: UUID | None = None
    clock: Callable[[], datetime] = _utcnow
    meals: list[MealGroup] = field(default_factory=list)
    items: list[FoodItem] = field(default_factory=list)
    goals: NutritionGoals = field(default_factory=NutritionGoals)
    active_meal_id: UUID | None = None

    def snapshot(self) -> NutritionSnapshot:
        """Return a copy of the current local state."""
        return NutritionSnapshot(
            items=list(self.items), meals=list(self.meals), goals=self.goals
        )

    def get_meal(self, meal_id: UUID) -> MealGroup | None:
        return next((meal for meal in self.meals if meal.id == meal_id), None)

    def get_item(self, item_id: UUID) -> FoodItem | None:
        return next((item for item in self.items if item.id == item_id), None)

    def items_for_meal(self, meal_id: UUID) -> list[FoodItem]:
        return [item for item in self.items if item.meal_id == meal_id]

    async def load_from_repository(self) -> NutritionSnapshot:
        """Replace local state with the backend's data."""
        if self.repository is None or self.user_id is None:
            return self.snapshot()
        try:
            snapshot = await asyncio.to_thread(
                self.repository.load_initial_data, self.user_id
            )
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to load data: {exc}") from exc
        await self.load(snapshot)
        return self.snapshot()

    async def load(self, snapshot: NutritionSnapshot) -> None:
        """Replace local state, repairing references and pruning empty meals.

        Items that reference an unknown meal get a placeholder meal built
        from the earliest of their timestamps.
        """
        meals = sorted(snapshot.meals, key=lambda meal: meal.created_at, reverse=True)
        known = {meal.id for meal in meals}
        placeholders: dict[UUID, MealGroup] = {}
        for item in snapshot.items:
            if item.meal_id in known:
                continue
            current = placeholders.get(item.meal_id)
            if current is None or item.timestamp < current.created_at:
                placeholders[item.meal_id] = MealGroup(
                    id=item.meal_id,
                    label=meal_label(item.timestamp),
                    created_at=item.timestamp,
                )
        if placeholders:
            logger.warning(
                "Synthesized placeholder meals for orphan items",
                extra={"meal_ids": [str(meal_id) for meal_id in placeholders]},
            )
            meals = sorted(
                [*meals, *placeholders.values()],
                key=lambda meal: meal.created_at,
                reverse=True,
            )
        self.meals = meals
        self.items = sorted(
            snapshot.items, key=lambda item: item.timestamp, reverse=True
        )
        self.goals = snapshot.goals
        self.active_meal_id = None
        await self.prune_orphan_meals()

    async def begin_recording(self) -> MealGroup:
        """Create and persist the meal that a new recording will fill."""
        created_at = self.clock()
        meal = MealGroup(
            id=uuid4(),
            label=meal_label(created_at),
            created_at=created_at,
            awaiting_extraction=True,
        )
        self.meals.insert(0, meal)
        self.active_meal_id = meal.id
        try:
            await self._persist("Failed to insert meal", "insert_meal", meal)
        except PersistenceError:
            self._remove_meal_locally(meal.id)
            if self.active_meal_id == meal.id:
                self.active_meal_id = None
            raise
        await self.prune_orphan_meals()
        return meal

    async def add_food(
        self, entry: FoodEntry, meal_id: UUID | None = None
    ) -> FoodItem | None:
        """Log an extracted entry on the recording meal.

        An entry addressed to a meal that is no longer the active recording
        is stale and dropped. Without an active meal one is created for the
        entry.
        """
        if meal_id is not None and meal_id != self.active_meal_id:
            logger.info("Dropping stale food entry", extra={"meal_id": str(meal_id)})
            return None
        now = self.clock()
        target_id = self.active_meal_id or uuid4()
        created_meal: MealGroup | None = None
        if self.get_meal(target_id) is None:
            created_meal = MealGroup(
                id=target_id, label=meal_label(now), created_at=now
            )
            self.meals.insert(0, created_meal)
        item = FoodItem.from_entry(
            entry, item_id=uuid4(), meal_id=target_id, timestamp=now
        )
        self.items.insert(0, item)

        meal_persisted = False
        try:
            if created_meal is not None:
                await self._persist(
                    "Failed to insert meal", "insert_meal", created_meal
                )
                meal_persisted = True
            await self._persist("Failed to insert food item", "insert_food_item", item)
        except PersistenceError:
            self._remove_item_locally(item.id)
            if created_meal is not None and not self.items_for_meal(created_meal.id):
                self._remove_meal_locally(created_meal.id)
                if meal_persisted:
                    await self._persist_best_effort("delete_meal", created_meal.id)
            raise
        return item

    async def update_transcript(self, text: str, meal_id: UUID | None = None) -> None:
        """Patch the active meal's transcript snippet; failures are only logged."""
        target_id = meal_id or self.active_meal_id
        if target_id is None or target_id != self.active_meal_id:
            return
        meal = self.get_meal(target_id)
        if meal is None:
            return
        snippet = truncate_snippet(text)
        self._replace_meal(replace(meal, transcript_snippet=snippet))
        await self._persist_best_effort("update_meal_transcript", target_id, snippet)

    async def end_recording(self, meal_id: UUID | None = None) -> bool:
        """Close the recording meal; returns False when it was discarded empty."""
        target_id = meal_id or self.active_meal_id
        if target_id is None or target_id != self.active_meal_id:
            return False
        self.active_meal_id = None
        meal = self.get_meal(target_id)
        if meal is None:
            return False
        if not self.items_for_meal(target_id):
            self._remove_meal_locally(target_id)
            await self._persist_best_effort("delete_meal", target_id)
            await self.prune_orphan_meals()
            return False
        self._replace_meal(replace(meal, awaiting_extraction=False))
        await self.prune_orphan_meals()
        return True

    async def prune_orphan_meals(self) -> list[UUID]:
        """Remove meals without items, except the active recording meal."""
        referenced = {item.meal_id for item in self.items}
        orphans = [
            meal.id
            for meal in self.meals
            if meal.id != self.active_meal_id and meal.id not in referenced
        ]
        if not orphans:
            return []
        orphan_ids = set(orphans)
        self.meals = [meal for meal in self.meals if meal.id not in orphan_ids]
        for meal_id in orphans:
            await self._persist_best_effort("delete_meal", meal_id)
        return orphans

    async def update_quantity(self, item_id: UUID, quantity: str) -> FoodItem | None:
        """Change an item's quantity, rescaling nutrients proportionally."""
        previous = self.get_item(item_id)
        if previous is None:
            return None
        updated = rescale_item(previous, quantity)
        self._replace_item(updated)
        try:
            await self._persist(
                "Failed to update food item",
                "update_food_item",
                item_id,
                {
                    "quantity": updated.quantity,
                    "calories": updated.calories,
                    "protein": updated.protein,
                    "carbs": updated.carbs,
                    "fat": updated.fat,
                    "fiber": updated.fiber,
                    "micronutrients": updated.micronutrients,
                },
            )
        except PersistenceError:
            self._restore_item(updated, previous)
            raise
        return updated

    async def move_item(self, item_id: UUID, meal_id: UUID) -> FoodItem | None:
        """Reassign an item to another existing meal."""
        previous = self.get_item(item_id)
        if previous is None or self.get_meal(meal_id) is None:
            return None
        if previous.meal_id == meal_id:
            return previous
        updated = replace(previous, meal_id=meal_id)
        self._replace_item(updated)
        try:
            await self._persist(
                "Failed to move food item",
                "update_food_item",
                item_id,
                {"meal_id": meal_id},
            )
        except PersistenceError:
            self._restore_item(updated, previous)
            raise
        await self.prune_orphan_meals()
        return updated

    async def delete_item(self, item_id: UUID) -> bool:
        """Delete an item, pruning its meal when it becomes empty."""
        index = next(
            (pos for pos, item in enumerate(self.items) if item.id == item_id), None
        )
        if index is None:
            return False
        removed = self.items.pop(index)
        try:
            await self._persist(
                "Failed to delete food item", "delete_food_item", item_id
            )
        except PersistenceError:
            if self.get_item(item_id) is None:
                self.items.insert(min(index, len(self.items)), removed)
            raise
        await self.prune_orphan_meals()
        return True

    async def delete_meal(self, meal_id: UUID) -> bool:
        """Delete a meal and its items."""
        meal = self.get_meal(meal_id)
        if meal is None:
            return False
        removed_items = self.items_for_meal(meal_id)
        was_active = self.active_meal_id == meal_id
        self._remove_meal_locally(meal_id)
        self.items = [item for item in self.items if item.meal_id != meal_id]
        if was_active:
            self.active_meal_id = None
        try:
            await self._persist("Failed to delete meal", "delete_meal", meal_id)
        except PersistenceError:
            self.meals.append(meal)
            self.meals.sort(key=lambda group: group.created_at, reverse=True)
            self.items.extend(removed_items)
            self.items.sort(key=lambda item: item.timestamp, reverse=True)
            if was_active and self.active_meal_id is None:
                self.active_meal_id = meal_id
            raise
        return True

    async def set_goals(self, goals: NutritionGoals) -> NutritionGoals:
        """Replace the nutrition goals."""
        previous = self.goals
        self.goals = goals
        try:
            await self._persist("Failed to save goals", "upsert_goals", goals)
        except PersistenceError:
            if self.goals is goals:
                self.goals = previous
            raise
        return goals

    async def _persist(self, context: str, operation: str, *args: object) -> None:
        if self.repository is None or self.user_id is None:
            return
        method = getattr(self.repository, operation)
        try:
            await asyncio.to_thread(method, self.user_id, *args)
        except PersistenceError:
            logger.warning("%s", context, exc_info=True)
            raise
        except Exception as exc:
            logger.warning("%s", context, exc_info=True)
            raise PersistenceError(f"{context}: {exc}") from exc

    async def _persist_best_effort(self, operation: str, *args: object) -> None:
        try:
            await self._persist(
                f"Failed to {operation.replace('_', ' ')}", operation, *args
            )
        except PersistenceError:
            logger.exception(
                "Best-effort persistence failed", extra={"operation": operation}
            )

    def _replace_meal(self, meal: MealGroup) -> None:
        self.meals = [meal if group.id == meal.id else group for group in self.meals]

    def _remove_meal_locally(self, meal_id: UUID) -> None:
        self.meals = [meal for meal in self.meals if meal.id != meal_id]

    def _replace_item(self, item: FoodItem) -> None:
        self.items = [
            item if current.id == item.id else current for current in self.items
        ]

    def _remove_item_locally(self, item_id: UUID) -> None:
        self.items = [item for item in self.items if item.id != item_id]

    def _restore_item(self, expected: FoodItem, previous: FoodItem) -> None:
        # Leave newer local edits of the same item alone.
        if self.get_item(expected.id) == expected:
            self._replace_item(previous)
