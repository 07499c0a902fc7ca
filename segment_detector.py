"""
Backmask: Segment Detector
==========================
Threshold-based segment detection over normalized per-frame series.

A frame qualifies when both its normalized energy and its normalized formant
shift exceed their thresholds. Each qualifying frame becomes a one-frame
TimeSegment; merge_segments then joins detections that sit close together.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from errors import InvalidSegmentBounds


@dataclass
class TimeSegment:
    """A time range in seconds with an optional user annotation."""
    start: float
    end: float
    annotation: str = ""

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidSegmentBounds(f"Segment end ({self.end}) precedes start ({self.start})")

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "annotation": self.annotation}

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSegment":
        return cls(
            start=float(data["start"]),
            end=float(data["end"]),
            annotation=data.get("annotation") or "",
        )


def frame_duration(hop_size: int, sample_rate: int) -> float:
    """Duration in seconds of one analysis step."""
    if hop_size <= 0 or sample_rate <= 0:
        raise ValueError(f"hop_size and sample_rate must be positive (got {hop_size}, {sample_rate})")
    return hop_size / sample_rate


def detect_segments(
    energy: Sequence[float],
    formant_shifts: Sequence[float],
    hop_size: int,
    sample_rate: int,
    energy_threshold: float = 0.1,
    formant_shift_threshold: float = 0.1,
) -> list[TimeSegment]:
    """
    Emit a one-frame segment for every frame above both thresholds.

    The formant-shift series is usually one element shorter than the energy
    series; frames without a formant-shift value never qualify.

    Args:
        energy: Normalized energy per frame.
        formant_shifts: Normalized formant shift per frame.
        hop_size: Hop size in samples used when the series were computed.
        sample_rate: Sample rate in Hz.
        energy_threshold: Energy must be strictly greater than this.
        formant_shift_threshold: Formant shift must be strictly greater than this.

    Returns:
        Time-ordered list of unmerged one-frame segments.
    """
    step = frame_duration(hop_size, sample_rate)
    segments = []

    for i, value in enumerate(energy):
        if value <= energy_threshold:
            continue
        if i >= len(formant_shifts) or formant_shifts[i] <= formant_shift_threshold:
            continue
        start = i * step
        segments.append(TimeSegment(start=start, end=start + step))

    return segments


def merge_segments(segments: Sequence[TimeSegment], min_gap: float) -> list[TimeSegment]:
    """
    Join segments separated by less than min_gap seconds.

    Segments are processed in time order. The output is non-overlapping with
    gaps of at least min_gap between consecutive segments. Input segments are
    not modified.
    """
    merged = []
    current = None

    for segment in sorted(segments, key=lambda s: s.start):
        if current is None:
            current = replace(segment)
        elif segment.start - current.end < min_gap:
            current.end = max(current.end, segment.end)
        else:
            merged.append(current)
            current = replace(segment)

    if current is not None:
        merged.append(current)

    return merged


def detect_and_merge(
    energy: Sequence[float],
    formant_shifts: Sequence[float],
    hop_size: int,
    sample_rate: int,
    energy_threshold: float = 0.1,
    formant_shift_threshold: float = 0.1,
) -> list[TimeSegment]:
    """detect_segments followed by a merge with a two-frame gap."""
    detected = detect_segments(
        energy, formant_shifts, hop_size, sample_rate,
        energy_threshold, formant_shift_threshold,
    )
    return merge_segments(detected, 2 * frame_duration(hop_size, sample_rate))
