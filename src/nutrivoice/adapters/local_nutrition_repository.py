"""JSON file cache for the nutrition log."""

import logging
import os
import tempfile
import threading
from dataclasses import replace
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, ValidationError

from nutrivoice.domain.errors import PersistenceError
from nutrivoice.domain.meals import (
    FoodItem,
    MealGroup,
    NutritionGoals,
    NutritionSnapshot,
    truncate_snippet,
)
from nutrivoice.services.reconciler import NutritionRepository

logger = logging.getLogger(__name__)


class CacheDocument(BaseModel):
    """On-disk layout of the cache file."""

    items: list[FoodItem] = []
    meals: list[MealGroup] = []
    goals: NutritionGoals = NutritionGoals()
    imported: bool = False


class LocalNutritionRepository(NutritionRepository):
    """Single-user repository kept in one JSON document.

    The user id is accepted for interface parity and ignored. Every write
    replaces the file atomically.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_initial_data(self, user_id: UUID) -> NutritionSnapshot:
        document = self._read()
        return NutritionSnapshot(
            items=list(document.items),
            meals=list(document.meals),
            goals=document.goals,
        )

    def has_any_data(self, user_id: UUID) -> bool:
        document = self._read()
        return bool(document.items or document.meals)

    def insert_meal(self, user_id: UUID, meal: MealGroup) -> None:
        stored = replace(
            meal,
            awaiting_extraction=False,
            transcript_snippet=truncate_snippet(meal.transcript_snippet),
        )
        with self._lock:
            document = self._read()
            document.meals = [stored, *(m for m in document.meals if m.id != meal.id)]
            self._write(document)

    def update_meal_transcript(
        self, user_id: UUID, meal_id: UUID, transcript_snippet: str | None
    ) -> None:
        snippet = truncate_snippet(transcript_snippet)
        with self._lock:
            document = self._read()
            document.meals = [
                replace(meal, transcript_snippet=snippet)
                if meal.id == meal_id
                else meal
                for meal in document.meals
            ]
            self._write(document)

    def delete_meal(self, user_id: UUID, meal_id: UUID) -> None:
        with self._lock:
            document = self._read()
            document.meals = [meal for meal in document.meals if meal.id != meal_id]
            document.items = [
                item for item in document.items if item.meal_id != meal_id
            ]
            self._write(document)

    def insert_food_item(self, user_id: UUID, item: FoodItem) -> None:
        with self._lock:
            document = self._read()
            document.items = [item, *(i for i in document.items if i.id != item.id)]
            self._write(document)

    def update_food_item(
        self, user_id: UUID, item_id: UUID, changes: dict[str, object]
    ) -> None:
        allowed = {
            key: value
            for key, value in changes.items()
            if key not in {"id", "timestamp"} and key in FoodItem.__dataclass_fields__
        }
        with self._lock:
            document = self._read()
            document.items = [
                replace(item, **allowed) if item.id == item_id else item
                for item in document.items
            ]
            self._write(document)

    def delete_food_item(self, user_id: UUID, item_id: UUID) -> None:
        with self._lock:
            document = self._read()
            document.items = [item for item in document.items if item.id != item_id]
            self._write(document)

    def upsert_goals(self, user_id: UUID, goals: NutritionGoals) -> None:
        with self._lock:
            document = self._read()
            document.goals = goals
            self._write(document)

    def import_snapshot(self, user_id: UUID, snapshot: NutritionSnapshot) -> None:
        with self._lock:
            document = self._read()
            document.items = list(snapshot.items)
            document.meals = list(snapshot.meals)
            document.goals = snapshot.goals
            self._write(document)

    def is_imported(self) -> bool:
        """Return true once the cache has been copied to the hosted backend."""
        return self._read().imported

    def mark_imported(self) -> None:
        with self._lock:
            document = self._read()
            document.imported = True
            self._write(document)

    def _read(self) -> CacheDocument:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CacheDocument()
        except OSError as exc:
            raise PersistenceError(f"Failed to read cache: {exc}") from exc
        try:
            return CacheDocument.model_validate_json(raw)
        except ValidationError:
            backup = self._quarantine()
            logger.warning(
                "Moved unreadable cache file aside", extra={"backup": str(backup)}
            )
            return CacheDocument()

    def _quarantine(self) -> Path:
        """Move an unreadable cache to `<name>.corrupt`."""
        backup = self.path.with_name(f"{self.path.name}.corrupt")
        try:
            os.replace(self.path, backup)
        except FileNotFoundError:
            # Another reader already moved it.
            pass
        except OSError as exc:
            raise PersistenceError(f"Failed to move unreadable cache: {exc}") from exc
        return backup

    def _write(self, document: CacheDocument) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(document.model_dump_json(indent=2))
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write cache: {exc}") from exc
