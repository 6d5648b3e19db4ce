"""Recording session state machine for push-to-talk capture."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from functools import partial
from typing import Protocol
from uuid import UUID, uuid4

import numpy as np

from nutrivoice.adapters.extraction_client import ExtractionClient
from nutrivoice.domain.errors import DeviceUnavailableError, SessionBusyError
from nutrivoice.domain.extraction import ExtractionResult
from nutrivoice.services.audio import (
    CHANNELS,
    FRAME_SIZE,
    SAMPLE_RATE,
    bytes_to_transport_text,
    float_to_pcm16,
    frame_pcm_as_wav,
    rms_amplitude,
)

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], None]


class RecordingState(Enum):
    """Lifecycle of a recording session."""

    IDLE = "idle"
    STARTING = "starting"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"


class CaptureHandle(Protocol):
    """An open capture stream."""

    def close(self) -> None:
        """Stop the stream and release the device."""


class CaptureDevice(Protocol):
    """Interface for acquiring the microphone."""

    async def open(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_frame: FrameCallback,
    ) -> CaptureHandle:
        """Open the device; frames must be delivered on the event loop thread."""


class CaptureLock:
    """Exclusive ownership of the capture device for one client."""

    def __init__(self) -> None:
        self._owner: object | None = None

    @property
    def held(self) -> bool:
        return self._owner is not None

    def acquire(self, owner: object) -> bool:
        if self._owner is not None and self._owner is not owner:
            return False
        self._owner = owner
        return True

    def release(self, owner: object) -> None:
        if self._owner is owner:
            self._owner = None


def _noop_amplitude(_amplitude: float) -> None:
    return None


def _noop_close() -> None:
    return None


class RecordingSession:
    """Owns the microphone, buffers PCM and submits one payload per recording.

    ``start`` and ``stop_input`` perform every state check and transition
    before their first await, so rapid repeated calls on the same loop are
    rejected or ignored instead of racing.
    """

    def __init__(  # noqa: PLR0913
        self,
        device: CaptureDevice,
        client: ExtractionClient,
        lock: CaptureLock,
        *,
        preferred_language: str | None = None,
        on_amplitude: Callable[[float], None] = _noop_amplitude,
        on_close: Callable[[], None] = _noop_close,
        response_timeout: float | None = None,
        sample_rate: int = SAMPLE_RATE,
        frame_size: int = FRAME_SIZE,
    ) -> None:
        self.device = device
        self.client = client
        self.lock = lock
        self.preferred_language = preferred_language
        self.on_amplitude = on_amplitude
        self.on_close = on_close
        self.response_timeout = response_timeout
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self._state = RecordingState.IDLE
        self._session_id: UUID | None = None
        self._handle: CaptureHandle | None = None
        self._chunks: list[np.ndarray] = []

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def session_id(self) -> UUID | None:
        return self._session_id

    @property
    def frame_count(self) -> int:
        return len(self._chunks)

    async def start(self) -> UUID | None:
        """Acquire the microphone and begin buffering frames.

        Returns None when the session was cancelled before the device opened.
        """
        if self._state is not RecordingState.IDLE:
            raise SessionBusyError("A recording is already in progress.")
        if not self.lock.acquire(self):
            raise SessionBusyError("Another recording is already in progress.")
        session_id = uuid4()
        self._session_id = session_id
        self._state = RecordingState.STARTING
        self._chunks = []
        try:
            handle = await self.device.open(
                sample_rate=self.sample_rate,
                channels=CHANNELS,
                block_size=self.frame_size,
                on_frame=partial(self._on_frame, session_id),
            )
        except Exception as exc:
            if self._session_id == session_id:
                self._reset()
            if isinstance(exc, DeviceUnavailableError):
                raise
            raise DeviceUnavailableError("Failed to start microphone") from exc

        if self._session_id != session_id or self._state is not RecordingState.STARTING:
            handle.close()
            return None
        self._handle = handle
        self._state = RecordingState.CAPTURING
        logger.info("Recording started", extra={"session_id": str(session_id)})
        return session_id

    async def stop_input(self) -> ExtractionResult | None:
        """Soft stop: release the device, frame the audio and submit it once.

        Returns None when the call was a no-op, when the session was
        cancelled while the request was in flight, or when the response
        timeout elapsed first.
        """
        if self._state is not RecordingState.CAPTURING:
            return None
        session_id = self._session_id
        self._state = RecordingState.FINALIZING
        self._release_device()
        self.on_amplitude(0.0)
        chunks = self._chunks
        self._chunks = []
        payload = bytes_to_transport_text(
            frame_pcm_as_wav(chunks, sample_rate=self.sample_rate)
        )
        logger.info(
            "Recording finalized",
            extra={"session_id": str(session_id), "frames": len(chunks)},
        )
        submission = asyncio.ensure_future(
            self.client.submit(payload, self.preferred_language)
        )
        try:
            if self.response_timeout is None:
                result = await submission
            else:
                result = await asyncio.wait_for(
                    asyncio.shield(submission), self.response_timeout
                )
        except TimeoutError:
            logger.warning(
                "No extraction result before timeout, closing session",
                extra={"session_id": str(session_id)},
            )
            submission.add_done_callback(_discard_late_result)
            return None
        finally:
            self._close(session_id)
        if self._session_id != session_id:
            return None
        return result

    def cancel(self) -> None:
        """Hard stop: discard buffered audio without submitting."""
        if self._state is RecordingState.IDLE:
            return
        self._close(self._session_id)
        self._session_id = None

    def _on_frame(self, session_id: UUID, samples: np.ndarray) -> None:
        if self._session_id != session_id:
            return
        if self._state is not RecordingState.CAPTURING:
            return
        self.on_amplitude(rms_amplitude(samples))
        self._chunks.append(float_to_pcm16(samples))

    def _release_device(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        try:
            handle.close()
        except Exception:
            logger.exception("Failed to release capture device")

    def _reset(self) -> None:
        self._release_device()
        self._chunks = []
        self._state = RecordingState.IDLE
        self.lock.release(self)

    def _close(self, session_id: UUID | None) -> None:
        if self._session_id != session_id or self._state is RecordingState.IDLE:
            return
        self._reset()
        self.on_amplitude(0.0)
        self.on_close()


def _discard_late_result(future: "asyncio.Future[ExtractionResult]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.info("Late extraction request failed: %s", exc)
    else:
        logger.info("Dropping extraction result that arrived after timeout")
