"""Microphone capture backed by sounddevice."""

import asyncio
import logging
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from nutrivoice.domain.errors import DeviceUnavailableError
from nutrivoice.services.recording import CaptureDevice, CaptureHandle, FrameCallback

logger = logging.getLogger(__name__)


@dataclass
class SoundDeviceHandle(CaptureHandle):
    """Open sounddevice input stream."""

    stream: sd.InputStream

    def close(self) -> None:
        """Stop and close the stream."""
        self.stream.stop()
        self.stream.close()


@dataclass
class SoundDeviceCapture(CaptureDevice):
    """Capture device that forwards float32 frames onto the event loop."""

    device: int | str | None = None

    async def open(
        self,
        *,
        sample_rate: int,
        channels: int,
        block_size: int,
        on_frame: FrameCallback,
    ) -> CaptureHandle:
        """Open an input stream; PortAudio errors become DeviceUnavailableError."""
        loop = asyncio.get_running_loop()

        def callback(
            indata: np.ndarray, frames: int, time_info: object, status: sd.CallbackFlags
        ) -> None:
            if status:
                logger.warning("Input stream status: %s", status)
            samples = indata[:, 0].copy()
            try:
                loop.call_soon_threadsafe(on_frame, samples)
            except RuntimeError:
                # Loop already closed while the stream was stopping.
                return

        def _open() -> sd.InputStream:
            stream = sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                blocksize=block_size,
                dtype="float32",
                device=self.device,
                callback=callback,
            )
            stream.start()
            return stream

        try:
            stream = await asyncio.to_thread(_open)
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailableError(
                "Microphone unavailable. Check permissions and input devices.",
                details=str(exc),
            ) from exc
        return SoundDeviceHandle(stream=stream)
