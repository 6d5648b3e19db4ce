"""Models for audio extraction requests and results."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

logger = logging.getLogger(__name__)

_MACRO_FIELDS = ("calories", "protein", "carbs", "fat", "fiber")


class FoodEntry(BaseModel):
    """Single food or drink extracted from an utterance."""

    name: str = Field(min_length=1)
    quantity: str
    calories: float = Field(ge=0.0)
    protein: float = Field(ge=0.0)
    carbs: float = Field(ge=0.0)
    fat: float = Field(ge=0.0)
    fiber: float = Field(default=0.0, ge=0.0)
    micronutrients: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, int | float) and not isinstance(value, bool):
            return f"{value:g}"
        return value

    @field_validator(*_MACRO_FIELDS, mode="before")
    @classmethod
    def _floor_macros(cls, value: object, info: ValidationInfo) -> object:
        if value is None and info.field_name == "fiber":
            return 0.0
        if isinstance(value, int | float) and not isinstance(value, bool) and value < 0:
            return 0.0
        return value

    @field_validator("micronutrients", mode="before")
    @classmethod
    def _micronutrients_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(part) for part in value)
        return value


class ExtractionResult(BaseModel):
    """Complete extraction output for one recording."""

    transcription: str | None = None
    foods: list[FoodEntry] = Field(default_factory=list)


class ProcessAudioRequest(BaseModel):
    """Inbound body of the extraction endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    audio_base64: str = Field(alias="audioBase64")
    preferred_language: str | None = Field(default=None, alias="preferredLanguage")

    @field_validator("preferred_language", mode="before")
    @classmethod
    def _drop_non_string_language(cls, value: object) -> object:
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class ExtractionDiagnostics:
    """Per-call metadata reported by the extraction client."""

    status: int
    ok: bool
    foods_count: int
    payload_bytes: int
    error_message: str | None = None
    timings_ms: dict[str, float] = field(default_factory=dict)


def parse_food_entries(raw_entries: Iterable[object]) -> list[FoodEntry]:
    """Validate raw food dicts, skipping entries that cannot be repaired."""
    foods: list[FoodEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            continue
        try:
            foods.append(FoodEntry.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed food entry",
                extra={"entry_name": raw.get("name"), "errors": exc.error_count()},
            )
    return foods
