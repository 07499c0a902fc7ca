"""
Backmask: Segment-Local Reverser
================================
Time-reverses speech segments in place while leaving the rest untouched.

The output always has the same channel count and length as the input, so the
forward timeline (and any video it accompanies) stays aligned. Inputs are
never modified; every call works on fresh copies.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from audio_codec import Signal
from vad_engine import SampleSegment, VADConfig, segment_speech


def reverse_segments(
    channels: Sequence[np.ndarray],
    segments: Sequence[SampleSegment],
) -> list[np.ndarray]:
    """
    Reverse every segment of every channel.

    For each channel and each segment [start, end):
        output[start + k] = input[end - 1 - k]
    Samples outside all segments are copied unchanged.

    Args:
        channels: Per-channel sample arrays of equal length.
        segments: Non-overlapping sample segments.

    Returns:
        New list of channel arrays.

    Raises:
        InvalidSegmentBounds: If a segment extends past the channel length.
        ValueError: If channel lengths differ.
    """
    outputs = [np.array(ch, copy=True) for ch in channels]
    if not outputs:
        return outputs

    num_samples = len(outputs[0])
    if any(len(ch) != num_samples for ch in outputs):
        raise ValueError("All channels must have equal length")

    for segment in segments:
        segment.check_within(num_samples)

    for source, output in zip(channels, outputs):
        source = np.asarray(source)
        for segment in segments:
            output[segment.start:segment.end] = source[segment.start:segment.end][::-1]

    return outputs


def reverse_signal(signal: Signal, segments: Sequence[SampleSegment]) -> Signal:
    """Signal-level wrapper around reverse_segments."""
    return Signal(
        sample_rate=signal.sample_rate,
        channels=tuple(reverse_segments(signal.channels, segments)),
    )


def reverse_speech(
    signal: Signal,
    vad_config: Optional[VADConfig] = None,
) -> tuple[Signal, list[SampleSegment]]:
    """
    Detect speech on the first channel and reverse it across all channels.

    Returns:
        Tuple of (reversed_signal, segments).
    """
    segments = segment_speech(signal.mono, signal.sample_rate, vad_config)
    reversed_signal = reverse_signal(signal, segments)
    print(f"[Reverser] Reversed {len(segments)} segments across {signal.num_channels} channels")
    return reversed_signal, segments
