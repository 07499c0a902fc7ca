"""
Backmask: Error Types
=====================
Exceptions raised by the audio core and its collaborators.

File-level and redetection-level errors propagate to the caller as a single
failure. Frame-level errors (FeatureExtractionError) are absorbed by the
feature pass and the frame is skipped.
"""

from __future__ import annotations


class BackmaskError(Exception):
    """Base class for all Backmask errors."""


class DecodeError(BackmaskError, ValueError):
    """Input audio bytes are empty, malformed, or in an unsupported format."""


class EncodeError(BackmaskError, ValueError):
    """A signal could not be encoded (inconsistent channels, bad sample rate)."""


class FeatureExtractionError(BackmaskError):
    """Feature extraction failed for a single frame."""


class InvalidSegmentBounds(BackmaskError, ValueError):
    """A segment has start >= end or lies outside the signal."""


class TranscodeError(BackmaskError, RuntimeError):
    """The external transcoder (ffmpeg) is missing or failed."""


class MissingSeriesData(BackmaskError, KeyError):
    """A persisted analysis record lacks the normalized series needed for redetection."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing energy or formant data in analysis record ({', '.join(self.missing)}); "
            f"re-run the analysis"
        )

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]
