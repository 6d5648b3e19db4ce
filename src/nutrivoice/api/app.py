"""FastAPI application factory."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from nutrivoice.app_logging import configure_logging
from nutrivoice.containers import AppContainer
from nutrivoice.domain.errors import (
    ConfigurationError,
    ExtractionRequestError,
    NutriVoiceError,
)
from nutrivoice.domain.extraction import ProcessAudioRequest

PROCESS_AUDIO_PATH = "/api/process-audio"


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post(PROCESS_AUDIO_PATH)
    async def process_audio(request: Request) -> JSONResponse:
        """Transcribe one recording and return the foods it mentions."""
        state_container: AppContainer = request.app.state.container
        try:
            service = state_container.extraction_service
            if service is None:
                raise ConfigurationError("Server missing GEMINI_API_KEY")
            body = _parse_body(await request.body())
            result = await service.extract(body)
        except NutriVoiceError as exc:
            return _error_response(exc)
        except Exception as exc:
            logger.exception("Audio processing failed")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": str(exc) or "Processing failed"},
            )
        logger.info("Processed audio", extra={"foods": len(result.foods)})
        return JSONResponse(content=result.model_dump(mode="json"))

    @app.api_route(
        PROCESS_AUDIO_PATH, methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    async def process_audio_method_not_allowed() -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            content={"error": "Method not allowed"},
            headers={"Allow": "POST"},
        )

    return app


def _parse_body(raw: bytes) -> ProcessAudioRequest:
    try:
        data = json.loads(raw) if raw else None
    except ValueError:
        data = None
    if not isinstance(data, dict) or not data.get("audioBase64"):
        raise ExtractionRequestError("Missing audioBase64 in body")
    try:
        return ProcessAudioRequest.model_validate(data)
    except ValidationError as exc:
        raise ExtractionRequestError(
            "Missing audioBase64 in body", details=str(exc.errors()[0]["msg"])
        ) from exc


def _error_response(exc: NutriVoiceError) -> JSONResponse:
    content: dict[str, object] = {"error": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(
        status_code=exc.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
    )
