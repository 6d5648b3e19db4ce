"""PCM conversion, WAV framing and transport encoding for captured audio."""

import base64
import binascii
import struct
from collections.abc import Sequence

import numpy as np

SAMPLE_RATE = 16000
CHANNELS = 1
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44
FRAME_SIZE = 4096


def float_to_pcm16(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to signed 16-bit PCM; NaN maps to 0."""
    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    data = np.nan_to_num(data, nan=0.0, posinf=1.0, neginf=-1.0)
    clamped = np.clip(data, -1.0, 1.0)
    scaled = np.where(clamped < 0, clamped * 32768.0, clamped * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def rms_amplitude(samples: Sequence[float] | np.ndarray) -> float:
    """Root-mean-square of a frame, used for the live amplitude signal."""
    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    if data.size == 0:
        return 0.0
    data = np.nan_to_num(data, nan=0.0, posinf=1.0, neginf=-1.0)
    return float(np.sqrt(np.mean(np.square(data))))


def concat_chunks(chunks: Sequence[np.ndarray]) -> bytes:
    """Concatenate PCM16 chunks into little-endian sample bytes."""
    if not chunks:
        return b""
    combined = np.concatenate([np.asarray(chunk).reshape(-1) for chunk in chunks])
    return combined.astype("<i2").tobytes()


def wav_header(
    data_size: int, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> bytes:
    """Build the canonical 44-byte RIFF/WAVE header for 16-bit PCM."""
    block_align = channels * (BITS_PER_SAMPLE // 8)
    byte_rate = sample_rate * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def wrap_pcm_bytes_as_wav(
    pcm: bytes, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> bytes:
    """Prefix already-serialized PCM16 bytes with a WAV header."""
    return wav_header(len(pcm), sample_rate, channels) + pcm


def is_wav(data: bytes) -> bool:
    """Return true when the buffer already carries a RIFF/WAVE header."""
    return (
        len(data) >= WAV_HEADER_SIZE and data[:4] == b"RIFF" and data[8:12] == b"WAVE"
    )


def ensure_wav(
    data: bytes, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS
) -> bytes:
    """Return a WAV buffer, framing raw PCM16 when no header is present."""
    if is_wav(data):
        return data
    return wrap_pcm_bytes_as_wav(data, sample_rate, channels)


def frame_pcm_as_wav(
    chunks: Sequence[np.ndarray],
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> bytes:
    """Frame ordered PCM16 chunks as a single WAV buffer."""
    return wrap_pcm_bytes_as_wav(concat_chunks(chunks), sample_rate, channels)


def bytes_to_transport_text(data: bytes) -> str:
    """Encode bytes as base64 text."""
    return base64.b64encode(data).decode("ascii")


def transport_text_to_bytes(text: str) -> bytes:
    """Decode base64 text; raises ValueError on malformed input."""
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as exc:
        raise ValueError("Invalid base64 payload") from exc
