"""
Backmask: PCM Codec Adapter
===========================
Decodes WAV bytes into per-channel float arrays and encodes them back.

This module provides:
1. The Signal container (sample rate + equal-length channel arrays)
2. decode_wav / encode_wav over in-memory byte buffers (via soundfile)
3. read_signal / write_signal convenience wrappers for files on disk

Usage:
    signal = decode_wav(Path("speech.wav").read_bytes())
    data = encode_wav(signal)
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import soundfile as sf

from errors import DecodeError, EncodeError


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class Signal:
    """Decoded audio: one float64 array per channel, all of equal length.

    Attributes:
        sample_rate: Sample rate in Hz.
        channels: Per-channel sample arrays.
    """
    sample_rate: int
    channels: tuple[np.ndarray, ...]

    def __post_init__(self):
        object.__setattr__(self, "channels", tuple(self.channels))
        if len({len(ch) for ch in self.channels}) > 1:
            raise ValueError("All channels of a signal must have equal length")

    @property
    def num_channels(self) -> int:
        return len(self.channels)

    @property
    def num_samples(self) -> int:
        return len(self.channels[0]) if self.channels else 0

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_samples / self.sample_rate

    @property
    def mono(self) -> np.ndarray:
        """The analysis channel (first channel)."""
        if not self.channels:
            return np.zeros(0, dtype=np.float64)
        return self.channels[0]


# =============================================================================
# DECODE / ENCODE
# =============================================================================

def decode_wav(data: bytes) -> Signal:
    """
    Decode an audio byte buffer into a Signal.

    Args:
        data: Raw file bytes (WAV; any format libsndfile reads is accepted).

    Returns:
        Signal with float64 channels in roughly [-1, 1].

    Raises:
        DecodeError: If the buffer is empty or cannot be decoded.
    """
    if not data:
        raise DecodeError("Audio buffer is empty")

    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float64", always_2d=True)
    except (RuntimeError, ValueError, TypeError) as e:
        raise DecodeError(f"Unable to decode audio: {e}") from e

    channels = tuple(np.ascontiguousarray(samples[:, c]) for c in range(samples.shape[1]))
    print(f"[Codec] Decoded audio: {sample_rate}Hz, {len(channels)} channels, "
          f"{samples.shape[0]} samples")

    return Signal(sample_rate=int(sample_rate), channels=channels)


def encode_wav(signal: Signal, subtype: str = "PCM_16") -> bytes:
    """
    Encode a Signal as WAV bytes.

    Args:
        signal: Signal to encode.
        subtype: libsndfile subtype (e.g. "PCM_16", "FLOAT").

    Returns:
        WAV file contents.

    Raises:
        EncodeError: If the signal has no channels, mismatched channel
                     lengths, or a non-positive sample rate.
    """
    return _encode(signal.sample_rate, signal.channels, subtype)


def _encode(sample_rate: int, channels, subtype: str) -> bytes:
    if not channels:
        raise EncodeError("Cannot encode a signal with no channels")
    if sample_rate <= 0:
        raise EncodeError(f"Invalid sample rate: {sample_rate}")

    lengths = {len(ch) for ch in channels}
    if len(lengths) != 1:
        raise EncodeError(f"Inconsistent channel lengths: {sorted(lengths)}")

    frames = np.stack([np.asarray(ch, dtype=np.float64) for ch in channels], axis=1)

    buffer = io.BytesIO()
    try:
        sf.write(buffer, frames, sample_rate, format="WAV", subtype=subtype)
    except (RuntimeError, ValueError, TypeError) as e:
        raise EncodeError(f"Unable to encode audio: {e}") from e

    return buffer.getvalue()


def encode_channels(sample_rate: int, channels, subtype: str = "PCM_16") -> bytes:
    """Encode raw channel arrays without building a Signal first.

    Unlike Signal, this accepts inconsistent lengths and reports them as
    EncodeError.
    """
    return _encode(sample_rate, list(channels), subtype)


# =============================================================================
# FILE HELPERS
# =============================================================================

def read_signal(path: str | Path) -> Signal:
    """Read and decode an audio file from disk."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")
    return decode_wav(path.read_bytes())


def write_signal(path: str | Path, signal: Signal, subtype: str = "PCM_16") -> Path:
    """Encode a Signal and write it to disk, returning the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_wav(signal, subtype=subtype))
    return path
