"""Food extraction from recorded audio using a function-calling model."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from nutrivoice.config import parse_language
from nutrivoice.domain.errors import (
    ExtractionRequestError,
    PayloadTooShortError,
    UpstreamAuthFailureError,
    UpstreamOverloadedError,
    UpstreamProtocolError,
    UpstreamRateLimitedError,
)
from nutrivoice.domain.extraction import (
    ExtractionResult,
    ProcessAudioRequest,
    parse_food_entries,
)
from nutrivoice.services.audio import (
    bytes_to_transport_text,
    ensure_wav,
    transport_text_to_bytes,
)

logger = logging.getLogger(__name__)

LOG_FOOD_TOOL = "log_food"

LOG_FOOD_SCHEMA: dict[str, object] = {
    "name": LOG_FOOD_TOOL,
    "description": (
        "Log a food item. Call this when the user mentions eating something. "
        "You MUST estimate the nutritional values based on the food and "
        "quantity provided."
    ),
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING", "description": "Name of the food item"},
            "quantity": {
                "type": "STRING",
                "description": "Amount consumed (e.g. 1 cup, 2 slices)",
            },
            "calories": {"type": "NUMBER", "description": "Estimated calories (kCal)"},
            "protein": {"type": "NUMBER", "description": "Protein in grams"},
            "carbs": {"type": "NUMBER", "description": "Carbohydrates in grams"},
            "fat": {"type": "NUMBER", "description": "Fat in grams"},
            "fiber": {"type": "NUMBER", "description": "Fiber in grams"},
            "micronutrients": {
                "type": "STRING",
                "description": "Key micronutrients (comma separated)",
            },
        },
        "required": [
            "name",
            "quantity",
            "calories",
            "protein",
            "carbs",
            "fat",
            "fiber",
        ],
    },
}

LANGUAGE_INSTRUCTIONS: dict[str, str] = {
    "en-US": (
        "The speaker may be using English. Understand English naturally and "
        "extract each food/drink item correctly."
    ),
    "pt-BR": (
        "The speaker may be using Portuguese (Brazil). Understand Portuguese "
        "naturally and extract each food/drink item correctly. Keep the "
        "transcription in Portuguese when possible."
    ),
}

RETRYABLE_STATUSES = frozenset({429, 503})
DETAIL_LIMIT = 200


@dataclass(frozen=True)
class UpstreamResponse:
    """Raw upstream reply: status code, parsed JSON body and body text."""

    status_code: int
    body: dict[str, object] | None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class GenerativeModelClient(Protocol):
    """Interface for the upstream multimodal generation API."""

    async def generate_content(
        self, *, model: str, payload: dict[str, object]
    ) -> UpstreamResponse:
        """Send one generation request and return the raw response."""


@dataclass
class ExtractionService:
    """Validates audio payloads, calls the model and normalizes tool calls."""

    client: GenerativeModelClient
    model: str
    max_retries: int = 2
    retry_delay_seconds: float = 2.0
    min_audio_bytes: int = 1000
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def extract(self, request: ProcessAudioRequest) -> ExtractionResult:
        """Turn one recorded utterance into a transcription and food entries."""
        audio = self._decode_audio(request.audio_base64)
        wav_base64 = bytes_to_transport_text(ensure_wav(audio))
        payload = build_generation_payload(
            wav_base64, parse_language(request.preferred_language)
        )
        response = await self._call_with_retry(payload)
        if response.body is None:
            raise UpstreamProtocolError(
                "Upstream API error", details="Upstream returned a non-JSON body"
            )
        return normalize_response(response.body)

    def _decode_audio(self, audio_base64: str) -> bytes:
        try:
            audio = transport_text_to_bytes(audio_base64)
        except ValueError as exc:
            raise ExtractionRequestError("Invalid audioBase64 in body") from exc
        if len(audio) < self.min_audio_bytes:
            raise PayloadTooShortError("Audio too short. Hold the mic a bit longer.")
        return audio

    async def _call_with_retry(self, payload: dict[str, object]) -> UpstreamResponse:
        attempt = 0
        while True:
            response = await self.client.generate_content(
                model=self.model, payload=payload
            )
            if response.ok:
                return response
            retryable = response.status_code in RETRYABLE_STATUSES
            if not retryable or attempt >= self.max_retries:
                break
            attempt += 1
            logger.warning(
                "Upstream busy, retrying",
                extra={"status": response.status_code, "attempt": attempt},
            )
            await self.sleep(self.retry_delay_seconds)

        logger.error(
            "Upstream model error %s: %s",
            response.status_code,
            response.text[:DETAIL_LIMIT],
        )
        raise _upstream_error(response)


def build_generation_payload(wav_base64: str, language: str) -> dict[str, object]:
    """Build the generateContent body for one utterance."""
    instruction = (
        "Listen to this audio. The user is stating what they ate or drank. "
        f"{LANGUAGE_INSTRUCTIONS[language]} "
        f"For EACH separate food or drink mentioned, call the {LOG_FOOD_TOOL} tool "
        'once (e.g. "2 bananas and 3 eggs" = two calls: one for bananas, one for '
        "eggs). Use your best estimate for each item. Do not ask questions; just "
        "log everything mentioned. If nothing food-related is said, do not call "
        "the tool."
    )
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": instruction},
                    {"inlineData": {"mimeType": "audio/wav", "data": wav_base64}},
                ],
            }
        ],
        "generationConfig": {"temperature": 0.2, "maxOutputTokens": 1024},
        "tools": [{"functionDeclarations": [LOG_FOOD_SCHEMA]}],
    }


def normalize_response(body: dict[str, object]) -> ExtractionResult:
    """Collect the transcription and log_food calls from a model response."""
    transcription: str | None = None
    raw_foods: list[object] = []
    for part in _first_candidate_parts(body):
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            transcription = text.strip()
        call = part.get("functionCall") or part.get("function_call")
        if not isinstance(call, dict) or call.get("name") != LOG_FOOD_TOOL:
            continue
        args = call.get("args")
        if isinstance(args, dict):
            raw_foods.append(args)
    return ExtractionResult(
        transcription=transcription, foods=parse_food_entries(raw_foods)
    )


def _first_candidate_parts(body: dict[str, object]) -> list[dict[str, object]]:
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    if not isinstance(first, dict):
        return []
    content = first.get("content")
    if not isinstance(content, dict):
        return []
    parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _upstream_error(response: UpstreamResponse) -> Exception:
    if response.status_code == 429:
        return UpstreamRateLimitedError(
            "Quota exceeded",
            details=(
                "Gemini rate limit reached. Wait a minute or check your plan at "
                "ai.google.dev."
            ),
        )
    if response.status_code == 503:
        return UpstreamOverloadedError(
            "Model overloaded", details="Gemini is busy. Try again in a moment."
        )
    detail = response.text[:DETAIL_LIMIT]
    if response.status_code == 401:
        return UpstreamAuthFailureError("Invalid API key", details=detail)
    return UpstreamProtocolError("Upstream API error", details=detail)
