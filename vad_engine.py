"""
Backmask: Voice Activity Segmenter
==================================
Energy-only voice activity detection producing bounded speech segments.

Pipeline:
1. Block RMS over non-overlapping frames -> sample-resolution speech mask
   (a block above threshold marks all of its samples as speech)
2. Runs of speech samples -> raw segments (half-open sample ranges)
3. Merge segments separated by less than the merge gap
4. Drop segments shorter than the minimum speech duration
5. Split segments longer than the maximum chunk duration

Usage:
    segments = segment_speech(signal, 44100)
    segments = segment_speech(signal, 44100, VADConfig(max_chunk_duration=1.0))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from errors import InvalidSegmentBounds
from segment_detector import TimeSegment


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class SampleSegment:
    """Half-open sample range [start, end)."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.start >= self.end:
            raise InvalidSegmentBounds(f"Invalid sample segment [{self.start}, {self.end})")

    @property
    def length(self) -> int:
        return self.end - self.start

    def check_within(self, num_samples: int) -> None:
        """Raise InvalidSegmentBounds if the segment runs past num_samples."""
        if self.end > num_samples:
            raise InvalidSegmentBounds(
                f"Segment [{self.start}, {self.end}) exceeds signal length {num_samples}"
            )


@dataclass(frozen=True)
class VADConfig:
    """Voice activity parameters.

    Attributes:
        frame_size: Block length in samples for RMS measurement.
        rms_threshold: Block RMS above which the block counts as speech.
                       Assumes input normalized to roughly [-1, 1].
        min_duration: Minimum speech segment duration in seconds.
        merge_gap: Segments closer than this (seconds) are merged.
        max_chunk_duration: Longer segments are split into chunks of at most
                            this many seconds.
    """
    frame_size: int = 1024
    rms_threshold: float = 0.02
    min_duration: float = 0.25
    merge_gap: float = 0.2
    max_chunk_duration: float = 2.0

    def validate(self) -> None:
        if self.frame_size <= 0:
            raise ValueError(f"frame_size must be positive, got {self.frame_size}")
        if self.max_chunk_duration <= 0:
            raise ValueError(f"max_chunk_duration must be positive, got {self.max_chunk_duration}")
        if self.min_duration < 0:
            raise ValueError(f"min_duration must not be negative, got {self.min_duration}")
        if self.merge_gap < 0:
            raise ValueError(f"merge_gap must not be negative, got {self.merge_gap}")

    def min_speech_samples(self, sample_rate: int) -> int:
        return int(np.floor(self.min_duration * sample_rate))

    def merge_distance_samples(self, sample_rate: int) -> int:
        return int(np.floor(self.merge_gap * sample_rate))

    def max_segment_samples(self, sample_rate: int) -> int:
        # At least one sample so the split loop always advances
        return max(1, int(np.floor(self.max_chunk_duration * sample_rate)))


# =============================================================================
# PIPELINE STAGES
# =============================================================================

def compute_speech_mask(
    signal: np.ndarray,
    frame_size: int = 1024,
    threshold: float = 0.02,
) -> np.ndarray:
    """
    Mark every sample of each above-threshold block as speech.

    The final block may be shorter than frame_size; its RMS is taken over the
    samples it actually has.

    Returns:
        uint8 array, same length as signal (1 = speech, 0 = silence).
    """
    if frame_size <= 0:
        raise ValueError(f"frame_size must be positive, got {frame_size}")

    signal = np.asarray(signal, dtype=np.float64)
    n_samples = len(signal)
    if n_samples == 0:
        return np.zeros(0, dtype=np.uint8)

    n_blocks = -(-n_samples // frame_size)
    squared = np.zeros(n_blocks * frame_size)
    squared[:n_samples] = signal ** 2

    sums = squared.reshape(n_blocks, frame_size).sum(axis=1)
    counts = np.full(n_blocks, frame_size, dtype=np.float64)
    counts[-1] = n_samples - (n_blocks - 1) * frame_size

    rms = np.sqrt(sums / counts)
    block_mask = (rms > threshold).astype(np.uint8)

    return np.repeat(block_mask, frame_size)[:n_samples]


def find_raw_segments(mask: np.ndarray) -> list[SampleSegment]:
    """Turn runs of consecutive 1s in the mask into half-open segments."""
    mask = np.asarray(mask)
    if mask.size == 0:
        return []

    edges = np.diff(np.concatenate(([0], (mask != 0).astype(np.int8), [0])))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)

    return [SampleSegment(int(s), int(e)) for s, e in zip(starts, ends)]


def merge_sample_segments(
    segments: Sequence[SampleSegment],
    merge_distance: int,
) -> list[SampleSegment]:
    """Merge consecutive segments whose gap is smaller than merge_distance."""
    if not segments:
        return []

    merged = []
    current = segments[0]

    for segment in segments[1:]:
        if segment.start - current.end < merge_distance:
            current = SampleSegment(current.start, max(current.end, segment.end))
        else:
            merged.append(current)
            current = segment

    merged.append(current)
    return merged


def filter_short_segments(
    segments: Sequence[SampleSegment],
    min_samples: int,
) -> list[SampleSegment]:
    """Drop segments shorter than min_samples."""
    return [s for s in segments if s.length >= min_samples]


def split_long_segments(
    segments: Sequence[SampleSegment],
    max_samples: int,
    min_samples: int,
) -> list[SampleSegment]:
    """
    Cut segments longer than max_samples into consecutive chunks.

    Chunks are at most max_samples long; a chunk shorter than min_samples
    (only ever the trailing one) is dropped.
    """
    if max_samples <= 0:
        raise ValueError(f"max_samples must be positive, got {max_samples}")

    result = []
    for segment in segments:
        if segment.length <= max_samples:
            result.append(segment)
            continue

        chunk_start = segment.start
        while chunk_start < segment.end:
            chunk_end = min(chunk_start + max_samples, segment.end)
            if chunk_end - chunk_start >= min_samples:
                result.append(SampleSegment(chunk_start, chunk_end))
            chunk_start = chunk_end

    return result


# =============================================================================
# ENTRY POINTS
# =============================================================================

def segment_speech(
    signal: np.ndarray,
    sample_rate: int,
    vad_config: Optional[VADConfig] = None,
) -> list[SampleSegment]:
    """
    Detect bounded speech segments in a mono signal.

    Args:
        signal: Mono float signal, roughly in [-1, 1].
        sample_rate: Sample rate in Hz.
        vad_config: Parameters (defaults: 1024-sample blocks, 0.02 RMS,
                    0.25s minimum, 0.2s merge gap, 2.0s maximum).

    Returns:
        Time-ordered, non-overlapping sample segments.

    Raises:
        ValueError: On a non-positive sample rate or invalid config.
    """
    if vad_config is None:
        vad_config = VADConfig()
    vad_config.validate()
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")

    min_samples = vad_config.min_speech_samples(sample_rate)

    mask = compute_speech_mask(signal, vad_config.frame_size, vad_config.rms_threshold)
    raw = find_raw_segments(mask)
    merged = merge_sample_segments(raw, vad_config.merge_distance_samples(sample_rate))
    segments = filter_short_segments(merged, min_samples)
    final = split_long_segments(segments, vad_config.max_segment_samples(sample_rate), min_samples)

    print(f"[VAD] Detected {len(segments)} VAD segments, split into {len(final)} chunks "
          f"(max {vad_config.max_chunk_duration}s each).")
    return final


def to_time_segments(segments: Sequence[SampleSegment], sample_rate: int) -> list[TimeSegment]:
    """Convert sample segments to seconds."""
    return [TimeSegment(start=s.start / sample_rate, end=s.end / sample_rate) for s in segments]
