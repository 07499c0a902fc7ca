"""
Backmask: Redetection Engine
============================
Re-runs segment detection with new thresholds against persisted series.

No audio is decoded here: detection works purely on the normalized energy
and formant-shift arrays stored with each analysis record.

Usage:
    segments = redetect(store.load_raw(analysis_id), 0.2, 0.15)
    segments = RedetectionEngine(store).run(analysis_id, 0.2, 0.15)
"""

from __future__ import annotations

from typing import Mapping

from analysis_store import AnalysisStore
from errors import MissingSeriesData
from segment_detector import TimeSegment, detect_and_merge


REQUIRED_FIELDS = ("normalizedEnergyValues", "normalizedFormantShifts", "hopSize", "sampleRate")


def redetect(
    record: Mapping,
    energy_threshold: float,
    formant_shift_threshold: float,
) -> list[TimeSegment]:
    """
    Detect and merge segments from a persisted key-value record.

    Args:
        record: Mapping with normalizedEnergyValues, normalizedFormantShifts,
                hopSize and sampleRate.
        energy_threshold: New energy threshold.
        formant_shift_threshold: New formant-shift threshold.

    Returns:
        Merged, time-ordered segments.

    Raises:
        MissingSeriesData: If either normalized series (or the hop size /
                           sample rate they were computed with) is absent.
    """
    missing = [name for name in REQUIRED_FIELDS if record.get(name) is None]
    if missing:
        raise MissingSeriesData(missing)

    segments = detect_and_merge(
        record["normalizedEnergyValues"],
        record["normalizedFormantShifts"],
        int(record["hopSize"]),
        int(record["sampleRate"]),
        energy_threshold,
        formant_shift_threshold,
    )

    print(f"[Redetection] Thresholds energy={energy_threshold}, "
          f"formant={formant_shift_threshold} -> {len(segments)} merged segments")
    return segments


class RedetectionEngine:
    """Loads a record, redetects, and stores the result back on success."""

    def __init__(self, store: AnalysisStore):
        self.store = store

    def run(
        self,
        analysis_id,
        energy_threshold: float,
        formant_shift_threshold: float,
    ) -> list[TimeSegment]:
        segments = redetect(self.store.load_raw(analysis_id), energy_threshold, formant_shift_threshold)
        self.store.update_segments(analysis_id, segments)
        return segments
