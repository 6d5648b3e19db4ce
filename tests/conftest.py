"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import UUID, uuid4

import numpy as np
import pytest

from nutrivoice.adapters.extraction_client import ExtractionClient
from nutrivoice.config import Settings
from nutrivoice.domain.errors import PersistenceError
from nutrivoice.domain.extraction import ExtractionResult, FoodEntry
from nutrivoice.domain.meals import (
    FoodItem,
    MealGroup,
    NutritionGoals,
    NutritionSnapshot,
)
from nutrivoice.services.extraction import GenerativeModelClient, UpstreamResponse
from nutrivoice.services.reconciler import NutritionRepository, SessionStateReconciler
from nutrivoice.services.recording import (
    CaptureDevice,
    CaptureHandle,
    CaptureLock,
    FrameCallback,
    RecordingSession,
)

USER_ID = UUID("00000000-0000-0000-0000-000000000001")
FIXED_NOW = datetime(2026, 3, 14, 12, 30, tzinfo=UTC)


def make_entry(name: str = "Apple", **overrides: object) -> FoodEntry:
    values: dict[str, object] = {
        "name": name,
        "quantity": "1 medium",
        "calories": 95,
        "protein": 0.5,
        "carbs": 25,
        "fat": 0.3,
        "fiber": 4.4,
        "micronutrients": "Vitamin C 8mg",
    }
    values.update(overrides)
    return FoodEntry.model_validate(values)


def make_item(meal_id: UUID, name: str = "Apple", **overrides: object) -> FoodItem:
    values: dict[str, object] = {
        "id": uuid4(),
        "meal_id": meal_id,
        "name": name,
        "quantity": "1 medium",
        "calories": 95,
        "protein": 0.5,
        "carbs": 25.0,
        "fat": 0.3,
        "fiber": 4.4,
        "timestamp": FIXED_NOW,
        "micronutrients": None,
    }
    values.update(overrides)
    return FoodItem(**values)  # type: ignore[arg-type]


def make_meal(**overrides: object) -> MealGroup:
    values: dict[str, object] = {
        "id": uuid4(),
        "label": "12:30",
        "created_at": FIXED_NOW,
    }
    values.update(overrides)
    return MealGroup(**values)  # type: ignore[arg-type]


def tone(samples: int = 4096, amplitude: float = 0.5) -> np.ndarray:
    return np.full(samples, amplitude, dtype=np.float32)


@dataclass
class InMemoryNutritionRepository(NutritionRepository):
    """In-memory nutrition repository for tests."""

    meals: dict[UUID, MealGroup] = field(default_factory=dict)
    items: dict[UUID, FoodItem] = field(default_factory=dict)
    goals: NutritionGoals = field(default_factory=NutritionGoals)
    fail_on: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)
    imported: list[NutritionSnapshot] = field(default_factory=list)

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PersistenceError(f"{operation}: boom")

    def load_initial_data(self, user_id: UUID) -> NutritionSnapshot:
        self._record("load_initial_data")
        return NutritionSnapshot(
            items=list(self.items.values()),
            meals=list(self.meals.values()),
            goals=self.goals,
        )

    def has_any_data(self, user_id: UUID) -> bool:
        self._record("has_any_data")
        return bool(self.items or self.meals)

    def insert_meal(self, user_id: UUID, meal: MealGroup) -> None:
        self._record("insert_meal")
        self.meals[meal.id] = meal

    def update_meal_transcript(
        self, user_id: UUID, meal_id: UUID, transcript_snippet: str | None
    ) -> None:
        self._record("update_meal_transcript")
        meal = self.meals.get(meal_id)
        if meal is not None:
            self.meals[meal_id] = replace(meal, transcript_snippet=transcript_snippet)

    def delete_meal(self, user_id: UUID, meal_id: UUID) -> None:
        self._record("delete_meal")
        self.meals.pop(meal_id, None)
        for item_id in [i.id for i in self.items.values() if i.meal_id == meal_id]:
            self.items.pop(item_id)

    def insert_food_item(self, user_id: UUID, item: FoodItem) -> None:
        self._record("insert_food_item")
        self.items[item.id] = item

    def update_food_item(
        self, user_id: UUID, item_id: UUID, changes: dict[str, object]
    ) -> None:
        self._record("update_food_item")
        item = self.items.get(item_id)
        if item is not None:
            self.items[item_id] = replace(item, **changes)  # type: ignore[arg-type]

    def delete_food_item(self, user_id: UUID, item_id: UUID) -> None:
        self._record("delete_food_item")
        self.items.pop(item_id, None)

    def upsert_goals(self, user_id: UUID, goals: NutritionGoals) -> None:
        self._record("upsert_goals")
        self.goals = goals

    def import_snapshot(self, user_id: UUID, snapshot: NutritionSnapshot) -> None:
        self._record("import_snapshot")
        self.imported.append(snapshot)
        self.meals.update({meal.id: meal for meal in snapshot.meals})
        self.items.update({item.id: item for item in snapshot.items})
        if not snapshot.goals.is_empty():
            self.goals = snapshot.goals


@dataclass
class FakeCaptureHandle(CaptureHandle):
    closed: int = 0

    def close(self) -> None:
        self.closed += 1


@dataclass
class FakeCaptureDevice(CaptureDevice):
    """Capture device whose frames are pushed by the test."""

    error: Exception | None = None
    gate: asyncio.Event | None = None
    handles: list[FakeCaptureHandle] = field(default_factory=list)
    on_frame: FrameCallback | None = None
    opened: int = 0

    async def open(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_frame: FrameCallback,
    ) -> CaptureHandle:
        self.opened += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.on_frame = on_frame
        handle = FakeCaptureHandle()
        self.handles.append(handle)
        return handle

    def emit(self, samples: np.ndarray) -> None:
        assert self.on_frame is not None
        self.on_frame(samples)


@dataclass
class FakeExtractionClient(ExtractionClient):
    """Extraction client returning queued outcomes."""

    outcomes: list[ExtractionResult | Exception] = field(default_factory=list)
    calls: list[tuple[str, str | None]] = field(default_factory=list)
    gate: asyncio.Event | None = None

    async def submit(
        self, audio_base64: str, preferred_language: str | None = None
    ) -> ExtractionResult:
        self.calls.append((audio_base64, preferred_language))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else ExtractionResult()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class FakeGeminiClient(GenerativeModelClient):
    """Upstream model client returning queued responses."""

    responses: list[UpstreamResponse] = field(default_factory=list)
    calls: list[dict[str, object]] = field(default_factory=list)

    async def generate_content(
        self, *, model: str, payload: dict[str, object]
    ) -> UpstreamResponse:
        self.calls.append({"model": model, "payload": payload})
        return self.responses.pop(0)


def tool_call_response(
    *foods: dict[str, object], transcription: str | None = "I had an apple"
) -> UpstreamResponse:
    parts: list[dict[str, object]] = []
    if transcription is not None:
        parts.append({"text": transcription})
    for food in foods:
        parts.append({"functionCall": {"name": "log_food", "args": food}})
    return UpstreamResponse(
        status_code=200, body={"candidates": [{"content": {"parts": parts}}]}
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        gemini_api_key="gemini-key",
        extraction_retry_delay_seconds=0.0,
        supabase_url=None,
        supabase_key=None,
        nutrivoice_user_id=None,
        environment="test",
    )


@pytest.fixture
def repository() -> InMemoryNutritionRepository:
    return InMemoryNutritionRepository()


@pytest.fixture
def reconciler(repository: InMemoryNutritionRepository) -> SessionStateReconciler:
    return SessionStateReconciler(
        repository=repository, user_id=USER_ID, clock=lambda: FIXED_NOW
    )


@pytest.fixture
def capture_device() -> FakeCaptureDevice:
    return FakeCaptureDevice()


@pytest.fixture
def extraction_client() -> FakeExtractionClient:
    return FakeExtractionClient()


def make_session(
    device: FakeCaptureDevice,
    client: FakeExtractionClient,
    lock: CaptureLock | None = None,
    **options: object,
) -> RecordingSession:
    return RecordingSession(
        device,
        client,
        lock or CaptureLock(),
        **options,  # type: ignore[arg-type]
    )
