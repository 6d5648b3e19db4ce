"""Tests for PCM conversion and WAV framing."""

import struct

import numpy as np
import pytest

from nutrivoice.services.audio import (
    WAV_HEADER_SIZE,
    bytes_to_transport_text,
    concat_chunks,
    ensure_wav,
    float_to_pcm16,
    frame_pcm_as_wav,
    is_wav,
    rms_amplitude,
    transport_text_to_bytes,
    wrap_pcm_bytes_as_wav,
)


def test_float_to_pcm16_scales_asymmetrically() -> None:
    pcm = float_to_pcm16([-1.0, 0.0, 1.0, 0.5, -0.5])

    assert pcm.dtype == np.int16
    assert pcm.tolist() == [-32768, 0, 32767, 16383, -16384]


def test_float_to_pcm16_clamps_and_replaces_non_finite() -> None:
    pcm = float_to_pcm16([2.0, -3.0, float("nan"), float("inf"), float("-inf")])

    assert pcm.tolist() == [32767, -32768, 0, 32767, -32768]


def test_float_to_pcm16_truncates_toward_zero() -> None:
    pcm = float_to_pcm16([0.00005, -0.00005])

    assert pcm.tolist() == [1, -1]


def test_rms_amplitude() -> None:
    assert rms_amplitude(np.array([], dtype=np.float32)) == 0.0
    assert rms_amplitude(np.full(8, 0.5, dtype=np.float32)) == pytest.approx(0.5)


def test_concat_chunks_is_little_endian() -> None:
    chunks = [np.array([1, -2], dtype=np.int16), np.array([256], dtype=np.int16)]

    assert concat_chunks(chunks) == struct.pack("<hhh", 1, -2, 256)
    assert concat_chunks([]) == b""


def test_frame_pcm_as_wav_header_fields() -> None:
    chunks = [np.arange(100, dtype=np.int16), np.arange(50, dtype=np.int16)]

    wav = frame_pcm_as_wav(chunks)

    assert len(wav) == WAV_HEADER_SIZE + 300
    fields = struct.unpack("<4sI4s4sIHHIIHH4sI", wav[:WAV_HEADER_SIZE])
    assert fields == (
        b"RIFF",
        336,
        b"WAVE",
        b"fmt ",
        16,
        1,
        1,
        16000,
        32000,
        2,
        16,
        b"data",
        300,
    )
    assert wav[WAV_HEADER_SIZE:] == concat_chunks(chunks)


def test_empty_recording_frames_header_only() -> None:
    wav = frame_pcm_as_wav([])

    assert len(wav) == WAV_HEADER_SIZE
    assert struct.unpack("<I", wav[40:44])[0] == 0


def test_ensure_wav_passes_wav_through_and_frames_raw_pcm() -> None:
    pcm = b"\x01\x00" * 600
    wav = wrap_pcm_bytes_as_wav(pcm)

    assert is_wav(wav)
    assert not is_wav(pcm)
    assert ensure_wav(wav) == wav
    assert ensure_wav(pcm) == wav


def test_transport_text_round_trip_and_invalid_input() -> None:
    data = bytes(range(256))

    assert transport_text_to_bytes(bytes_to_transport_text(data)) == data
    with pytest.raises(ValueError):
        transport_text_to_bytes("not base64!!")
