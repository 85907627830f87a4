"""PCM helpers for the realtime bridge."""

from __future__ import annotations

import array
import base64
import io
import sys
import wave
from typing import Iterable

SAMPLE_RATE = 24000
SAMPLE_WIDTH = 2
CHANNELS = 1


def decode_pcm16(data: bytes) -> array.array:
    """Little-endian signed 16-bit samples; a trailing odd byte is dropped."""
    samples = array.array("h")
    samples.frombytes(data[: len(data) - len(data) % SAMPLE_WIDTH])
    if sys.byteorder == "big":
        samples.byteswap()
    return samples


def audio_level(data: bytes) -> float:
    """Playback meter value in 0..100 for one chunk of PCM audio."""
    samples = decode_pcm16(data)
    if not samples:
        return 0.0
    mean = sum(abs(sample) for sample in samples) / len(samples) / 32768.0
    return min(mean * 100 * 5, 100.0)


def chunk_duration(data: bytes, sample_rate: int = SAMPLE_RATE) -> float:
    return len(data) / (SAMPLE_WIDTH * CHANNELS) / sample_rate


def pcm_to_wav(chunks: Iterable[str], sample_rate: int = SAMPLE_RATE) -> str:
    """Wrap base64 PCM chunks into one base64 WAV (mono, 16-bit)."""
    pcm = b"".join(base64.b64decode(chunk) for chunk in chunks)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return base64.b64encode(buffer.getvalue()).decode("ascii")
