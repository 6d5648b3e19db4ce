"""Push-to-talk glue between recording sessions and the local meal state."""

import logging
from collections.abc import Callable
from uuid import UUID

from nutrivoice.domain.errors import NutriVoiceError, PersistenceError
from nutrivoice.domain.extraction import ExtractionResult
from nutrivoice.services.reconciler import SessionStateReconciler
from nutrivoice.services.recording import RecordingSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], RecordingSession]
ErrorCallback = Callable[[str], None]


def _log_error(message: str) -> None:
    logger.warning("Voice log error: %s", message)


def format_error(exc: NutriVoiceError, *, debug: bool = False) -> str:
    """Return the user-facing message, with diagnostics when debugging."""
    if not debug:
        return exc.message
    detail = f" ({exc.details})" if exc.details else ""
    return f"{exc.message}{detail} [{exc.code}]"


class VoiceLogCoordinator:
    """Runs one recording per press/release and logs what it extracted.

    Each recording gets its own meal. Results are applied against that
    meal's id, so anything arriving after the meal was closed is dropped
    by the reconciler.
    """

    def __init__(
        self,
        reconciler: SessionStateReconciler,
        session_factory: SessionFactory,
        *,
        on_error: ErrorCallback | None = None,
        debug: bool = False,
    ) -> None:
        self.reconciler = reconciler
        self.session_factory = session_factory
        self.on_error = on_error or _log_error
        self.debug = debug
        self._session: RecordingSession | None = None
        self._meal_id: UUID | None = None
        self._starting = False
        self._stopping = False
        self._release_pending = False

    @property
    def active(self) -> bool:
        return self._session is not None or self._starting

    async def press(self) -> bool:
        """Begin a recording; returns False when it did not start."""
        if self._starting or self._session is not None:
            return False
        self._starting = True
        self._release_pending = False
        try:
            try:
                meal = await self.reconciler.begin_recording()
            except PersistenceError as exc:
                self._report(exc)
                return False
            session = self.session_factory()
            self._session = session
            self._meal_id = meal.id
            try:
                session_id = await session.start()
            except NutriVoiceError as exc:
                self._clear()
                await self.reconciler.end_recording(meal.id)
                self._report(exc)
                return False
            if session_id is None:
                # Cancelled while the microphone was opening.
                if self._session is session:
                    self._clear()
                    await self.reconciler.end_recording(meal.id)
                return False
        finally:
            self._starting = False

        if self._release_pending:
            # Released before the microphone was ready: nothing worth sending.
            await self.cancel()
            return False
        return True

    async def release(self) -> ExtractionResult | None:
        """Stop capturing, submit the audio and apply the result."""
        if self._starting:
            self._release_pending = True
            return None
        session = self._session
        meal_id = self._meal_id
        if session is None or meal_id is None or self._stopping:
            return None
        self._stopping = True
        result: ExtractionResult | None = None
        try:
            try:
                result = await session.stop_input()
            except NutriVoiceError as exc:
                self._report(exc)
            if result is not None:
                await self._apply(result, meal_id)
        finally:
            # A cancel may have handed the coordinator to a newer recording.
            if self._session is session:
                self._clear()
                await self.reconciler.end_recording(meal_id)
        return result

    async def cancel(self) -> None:
        """Discard the current recording without submitting it."""
        session = self._session
        meal_id = self._meal_id
        if session is None:
            return
        session.cancel()
        self._clear()
        if meal_id is not None:
            await self.reconciler.end_recording(meal_id)

    async def _apply(self, result: ExtractionResult, meal_id: UUID) -> None:
        if result.transcription:
            await self.reconciler.update_transcript(result.transcription, meal_id)
        if not result.foods:
            logger.info("No foods extracted", extra={"meal_id": str(meal_id)})
        for entry in result.foods:
            try:
                await self.reconciler.add_food(entry, meal_id)
            except PersistenceError as exc:
                self._report(exc)

    def _clear(self) -> None:
        self._session = None
        self._meal_id = None
        self._stopping = False

    def _report(self, exc: NutriVoiceError) -> None:
        logger.info("Recording failed", extra={"code": exc.code})
        try:
            self.on_error(format_error(exc, debug=self.debug))
        except Exception:
            logger.exception("Error callback failed")
