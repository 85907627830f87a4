from __future__ import annotations

import base64
import io
import struct
import wave

import pytest

from services.audio import audio_level, chunk_duration, decode_pcm16, pcm_to_wav


def _pcm(*samples: int) -> bytes:
    return struct.pack(f"<{len(samples)}h", *samples)


def test_decode_pcm16_is_little_endian_and_drops_odd_byte() -> None:
    samples = decode_pcm16(_pcm(1, -2, 300) + b"\x01")

    assert list(samples) == [1, -2, 300]


def test_audio_level() -> None:
    assert audio_level(b"") == 0.0
    assert audio_level(_pcm(0, 0)) == 0.0
    assert audio_level(_pcm(3277, -3277)) == pytest.approx(50.0, abs=0.01)
    assert audio_level(_pcm(32767, -32768)) == 100.0


def test_chunk_duration() -> None:
    assert chunk_duration(b"\x00" * 48000) == 1.0
    assert chunk_duration(b"\x00" * 480, sample_rate=16000) == 0.015


def test_pcm_to_wav_joins_chunks() -> None:
    chunks = [base64.b64encode(_pcm(1, 2)).decode(), base64.b64encode(_pcm(3)).decode()]

    wav_bytes = base64.b64decode(pcm_to_wav(chunks))

    with wave.open(io.BytesIO(wav_bytes), "rb") as wav:
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.getframerate() == 24000
        assert wav.readframes(wav.getnframes()) == _pcm(1, 2, 3)
