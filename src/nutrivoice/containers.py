"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from supabase import create_client

from nutrivoice.adapters.extraction_client import (
    ExtractionClient,
    HttpxExtractionClient,
)
from nutrivoice.adapters.gemini_client import HttpxGeminiClient
from nutrivoice.adapters.local_nutrition_repository import LocalNutritionRepository
from nutrivoice.adapters.supabase_nutrition_repository import (
    SupabaseNutritionRepository,
)
from nutrivoice.config import Settings, parse_language
from nutrivoice.domain.extraction import ExtractionDiagnostics
from nutrivoice.services.extraction import ExtractionService
from nutrivoice.services.reconciler import NutritionRepository, SessionStateReconciler
from nutrivoice.services.recording import CaptureDevice, CaptureLock, RecordingSession
from nutrivoice.services.voice_log import ErrorCallback, VoiceLogCoordinator

logger = logging.getLogger(__name__)

# Identity used when the log only lives in the local cache.
LOCAL_USER_ID = UUID(int=0)


@dataclass
class AppContainer:
    """Holds dependencies of the extraction endpoint."""

    settings: Settings
    extraction_service: ExtractionService | None
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default endpoint container."""
    resolved_settings = settings or Settings()
    if not resolved_settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; extraction requests will fail")

        async def close_nothing() -> None:
            return None

        return AppContainer(
            settings=resolved_settings,
            extraction_service=None,
            close_resources=close_nothing,
        )

    gemini_client = HttpxGeminiClient.create(
        api_key=resolved_settings.gemini_api_key,
        base_url=resolved_settings.gemini_base_url,
    )
    extraction_service = ExtractionService(
        client=gemini_client,
        model=resolved_settings.gemini_model,
        max_retries=resolved_settings.extraction_max_retries,
        retry_delay_seconds=resolved_settings.extraction_retry_delay_seconds,
        min_audio_bytes=resolved_settings.min_audio_bytes,
    )

    async def close_resources() -> None:
        await gemini_client.close()

    return AppContainer(
        settings=resolved_settings,
        extraction_service=extraction_service,
        close_resources=close_resources,
    )


@dataclass
class ClientContainer:
    """Holds dependencies of the push-to-talk client."""

    settings: Settings
    user_id: UUID
    capture_device: CaptureDevice
    capture_lock: CaptureLock
    extraction_client: ExtractionClient
    repository: NutritionRepository
    local_repository: LocalNutritionRepository
    reconciler: SessionStateReconciler
    close_resources: Callable[[], Awaitable[None]]

    @property
    def debug(self) -> bool:
        return self.settings.environment == "local"

    def new_session(
        self, on_amplitude: Callable[[float], None] | None = None
    ) -> RecordingSession:
        """Create a single-use recording session sharing the capture lock."""
        return RecordingSession(
            self.capture_device,
            self.extraction_client,
            self.capture_lock,
            preferred_language=parse_language(self.settings.preferred_language),
            on_amplitude=on_amplitude or _ignore_amplitude,
            response_timeout=self.settings.response_timeout_seconds,
        )

    def coordinator(
        self,
        on_error: ErrorCallback | None = None,
        on_amplitude: Callable[[float], None] | None = None,
    ) -> VoiceLogCoordinator:
        """Create a coordinator bound to this container's reconciler."""
        return VoiceLogCoordinator(
            self.reconciler,
            lambda: self.new_session(on_amplitude),
            on_error=on_error,
            debug=self.debug,
        )


def build_client_container(
    settings: Settings | None = None,
    capture_device: CaptureDevice | None = None,
) -> ClientContainer:
    """Create the default client container."""
    resolved_settings = settings or Settings()
    if capture_device is None:
        # Imported lazily: loading sounddevice requires the PortAudio library.
        from nutrivoice.adapters.sounddevice_capture import SoundDeviceCapture

        capture_device = SoundDeviceCapture()

    local_repository = LocalNutritionRepository(resolved_settings.local_cache_path)
    repository: NutritionRepository = local_repository
    user_id = LOCAL_USER_ID
    if resolved_settings.remote_storage_enabled:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_key
        )
        repository = SupabaseNutritionRepository(supabase_client)
        user_id = UUID(resolved_settings.nutrivoice_user_id)

    on_debug = _log_diagnostics if resolved_settings.environment == "local" else None
    extraction_client = HttpxExtractionClient.create(
        resolved_settings.extraction_endpoint_url, on_debug=on_debug
    )
    reconciler = SessionStateReconciler(repository=repository, user_id=user_id)

    async def close_resources() -> None:
        await extraction_client.close()

    return ClientContainer(
        settings=resolved_settings,
        user_id=user_id,
        capture_device=capture_device,
        capture_lock=CaptureLock(),
        extraction_client=extraction_client,
        repository=repository,
        local_repository=local_repository,
        reconciler=reconciler,
        close_resources=close_resources,
    )


def _ignore_amplitude(_amplitude: float) -> None:
    return None


def _log_diagnostics(diagnostics: ExtractionDiagnostics) -> None:
    logger.debug(
        "Extraction call status=%s ok=%s foods=%s bytes=%s timings=%s error=%s",
        diagnostics.status,
        diagnostics.ok,
        diagnostics.foods_count,
        diagnostics.payload_bytes,
        diagnostics.timings_ms,
        diagnostics.error_message,
    )
