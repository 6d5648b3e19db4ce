"""HTTP client for the audio extraction endpoint."""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx

from nutrivoice.domain.errors import (
    ENDPOINT_ERRORS,
    ExtractionRequestError,
    NetworkError,
    NutriVoiceError,
    UpstreamAuthFailureError,
    UpstreamOverloadedError,
    UpstreamProtocolError,
    UpstreamRateLimitedError,
)
from nutrivoice.domain.extraction import (
    ExtractionDiagnostics,
    ExtractionResult,
    parse_food_entries,
)

logger = logging.getLogger(__name__)

DebugCallback = Callable[[ExtractionDiagnostics], None]


class ExtractionClient(Protocol):
    """Interface for submitting one finalized recording."""

    async def submit(
        self, audio_base64: str, preferred_language: str | None = None
    ) -> ExtractionResult:
        """Send audio to the extraction endpoint and return the result."""


@dataclass
class HttpxExtractionClient(ExtractionClient):
    """Extraction client using httpx; never retries."""

    endpoint_url: str
    http_client: httpx.AsyncClient
    on_debug: DebugCallback | None = None
    timeout: float = 90.0

    @classmethod
    def create(
        cls, endpoint_url: str, on_debug: DebugCallback | None = None
    ) -> "HttpxExtractionClient":
        """Create an extraction client with a managed httpx session."""
        return cls(
            endpoint_url=endpoint_url,
            http_client=httpx.AsyncClient(),
            on_debug=on_debug,
        )

    async def submit(
        self, audio_base64: str, preferred_language: str | None = None
    ) -> ExtractionResult:
        """POST the payload once and parse the structured result."""
        body: dict[str, object] = {"audioBase64": audio_base64}
        if preferred_language:
            body["preferredLanguage"] = preferred_language
        encoded = json.dumps(body).encode("utf-8")
        started = time.perf_counter()
        try:
            response = await self.http_client.post(
                self.endpoint_url,
                content=encoded,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            message = str(exc) or "Network error"
            elapsed = _elapsed_ms(started)
            self._report(
                status=0,
                ok=False,
                foods_count=0,
                payload_bytes=len(encoded),
                error_message=message,
                timings_ms={"request": elapsed, "total": elapsed},
            )
            raise NetworkError(message) from exc
        responded = time.perf_counter()
        data = _json_or_empty(response)

        if not response.is_success:
            error = _error_from_response(response.status_code, data)
            self._report(
                status=response.status_code,
                ok=False,
                foods_count=0,
                payload_bytes=len(encoded),
                error_message=error.message,
                timings_ms=_timings(started, responded),
            )
            raise error

        transcription = data.get("transcription")
        foods_raw = data.get("foods")
        if foods_raw is None and isinstance(data.get("food"), dict):
            foods_raw = [data["food"]]
        foods = parse_food_entries(foods_raw if isinstance(foods_raw, list) else [])
        result = ExtractionResult(
            transcription=transcription if isinstance(transcription, str) else None,
            foods=foods,
        )
        self._report(
            status=response.status_code,
            ok=True,
            foods_count=len(foods),
            payload_bytes=len(encoded),
            timings_ms=_timings(started, responded),
        )
        return result

    def _report(self, **fields: object) -> None:
        if self.on_debug is None:
            return
        try:
            self.on_debug(ExtractionDiagnostics(**fields))  # type: ignore[arg-type]
        except Exception:
            logger.exception("Extraction debug callback failed")

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _json_or_empty(response: httpx.Response) -> dict[str, object]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_from_response(status: int, data: dict[str, object]) -> NutriVoiceError:
    raw_message = data.get("error") or data.get("details")
    message = str(raw_message) if raw_message else f"Request failed ({status})"
    details = data.get("details")
    details_text = str(details) if details else None
    error_type = ENDPOINT_ERRORS.get(str(data.get("code")))
    if error_type is None:
        error_type = _error_type_for_status(status, message)
    return error_type(message, details=details_text)


def _error_type_for_status(status: int, message: str) -> type[NutriVoiceError]:
    if status == 429:
        return UpstreamRateLimitedError
    if status == 503:
        return UpstreamOverloadedError
    if status == 502 and message == "Invalid API key":
        return UpstreamAuthFailureError
    if 400 <= status < 500:
        return ExtractionRequestError
    return UpstreamProtocolError


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def _timings(started: float, responded: float) -> dict[str, float]:
    return {
        "request": round((responded - started) * 1000, 1),
        "parse": _elapsed_ms(responded),
        "total": _elapsed_ms(started),
    }
