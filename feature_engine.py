"""
Backmask: Frame Feature Extractor
=================================
Per-frame spectral analysis of a mono signal.

This module provides:
1. Fixed-size / fixed-hop framing (trailing partial frames are discarded)
2. Per-frame features via Librosa: energy, MFCC, chroma, amplitude spectrum
3. Derived series: formant shift (chroma delta) and max-normalization

A frame that fails extraction is logged and skipped; the pass never aborts.

Usage:
    series = extract_features(signal, sr, buffer_size=512, hop_size=256)
    energy = normalize_series(series.energy)
    shifts = normalize_series(compute_formant_shifts(series.chroma))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

import librosa
import numpy as np

from errors import FeatureExtractionError


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class FeatureVector:
    """Features of a single frame.

    Attributes:
        energy: Sum of squared samples (>= 0).
        mfcc: Mel-frequency cepstral coefficients.
        chroma: 12-bin pitch-class profile, max-normalized.
        amplitude_spectrum: Display spectrum, truncated and clipped to [0, 1].
    """
    energy: float
    mfcc: np.ndarray
    chroma: np.ndarray
    amplitude_spectrum: np.ndarray


@dataclass
class FeatureSeries:
    """Frame-ordered feature sequences for a whole signal."""
    mfcc: list[list[float]] = field(default_factory=list)
    energy: list[float] = field(default_factory=list)
    chroma: list[list[float]] = field(default_factory=list)
    spectrogram: list[list[float]] = field(default_factory=list)
    skipped_frames: int = 0

    def __len__(self) -> int:
        return len(self.energy)

    def append(self, vector: FeatureVector) -> None:
        self.mfcc.append([float(v) for v in vector.mfcc])
        self.energy.append(float(vector.energy))
        self.chroma.append([float(v) for v in vector.chroma])
        self.spectrogram.append([float(v) for v in vector.amplitude_spectrum])

    @property
    def formant_preview(self) -> list[float]:
        """First five chroma bins of the first frame."""
        if not self.chroma:
            return []
        return self.chroma[0][:5]


class FeatureExtractor(Protocol):
    """Anything that turns one frame into a FeatureVector."""

    def extract(self, frame: np.ndarray, sample_rate: int) -> FeatureVector:
        """Raise FeatureExtractionError if the frame cannot be analyzed."""
        ...


# =============================================================================
# LIBROSA EXTRACTOR
# =============================================================================

class LibrosaFeatureExtractor:
    """
    FeatureExtractor backed by numpy FFT and Librosa filter banks.

    The frame is windowed once; the resulting power spectrum feeds the mel
    filter bank (-> MFCC) and the chroma filter bank, so every feature is
    computed from exactly one analysis column.
    """

    def __init__(
        self,
        n_mfcc: int = 13,
        n_mels: int = 26,
        spectrum_bins: int = 128,
        spectrum_scale: float = 10.0,
        window: str = "hann",
    ):
        """
        Args:
            n_mfcc: Number of MFCC coefficients per frame.
            n_mels: Number of mel bands feeding the MFCC.
            spectrum_bins: Length of the display amplitude spectrum.
            spectrum_scale: Divisor applied before clipping the display
                            spectrum to 1.0.
            window: Window function name (any scipy window).
        """
        self.n_mfcc = n_mfcc
        self.n_mels = n_mels
        self.spectrum_bins = spectrum_bins
        self.spectrum_scale = spectrum_scale
        self.window = window

    def extract(self, frame: np.ndarray, sample_rate: int) -> FeatureVector:
        frame = np.asarray(frame, dtype=np.float64)
        if frame.ndim != 1 or len(frame) < 2:
            raise FeatureExtractionError(f"Frame must be 1-D with at least 2 samples, got {frame.shape}")
        if not np.all(np.isfinite(frame)):
            raise FeatureExtractionError("Frame contains NaN or infinite samples")

        n_fft = len(frame)

        try:
            windowed = frame * librosa.filters.get_window(self.window, n_fft, fftbins=True)
            magnitude = np.abs(np.fft.rfft(windowed))
            power = (magnitude ** 2)[:, np.newaxis]

            mel = librosa.feature.melspectrogram(S=power, sr=sample_rate, n_fft=n_fft, n_mels=self.n_mels)
            mfcc = librosa.feature.mfcc(S=librosa.power_to_db(mel), n_mfcc=self.n_mfcc)[:, 0]

            chroma = librosa.feature.chroma_stft(S=power, sr=sample_rate, n_fft=n_fft, tuning=0.0)[:, 0]
        except Exception as e:
            raise FeatureExtractionError(str(e)) from e

        amplitude = magnitude[: n_fft // 2][: self.spectrum_bins]
        display = np.minimum(1.0, amplitude / self.spectrum_scale)

        return FeatureVector(
            energy=float(np.sum(frame ** 2)),
            mfcc=mfcc,
            chroma=chroma,
            amplitude_spectrum=display,
        )


# =============================================================================
# FRAMING + EXTRACTION PASS
# =============================================================================

def iter_frames(
    signal: np.ndarray,
    buffer_size: int,
    hop_size: int,
) -> Iterator[tuple[int, np.ndarray]]:
    """
    Yield (offset, frame) for every full-length frame.

    Frames start at 0, H, 2H, ... while offset + B <= len(signal). Frames may
    overlap (H < B) or skip samples (H > B).
    """
    if buffer_size <= 0 or hop_size <= 0:
        raise ValueError(f"buffer_size and hop_size must be positive (got {buffer_size}, {hop_size})")

    signal = np.asarray(signal)
    for offset in range(0, len(signal) - buffer_size + 1, hop_size):
        yield offset, signal[offset:offset + buffer_size]


def extract_frame(
    extractor: FeatureExtractor,
    frame: np.ndarray,
    sample_rate: int,
    index: int = -1,
) -> Optional[FeatureVector]:
    """Run one extraction, returning None instead of raising on failure."""
    try:
        return extractor.extract(frame, sample_rate)
    except Exception as e:
        print(f"[FeatureEngine] Error extracting features for frame {index}: {e}")
        return None


def extract_features(
    signal: np.ndarray,
    sample_rate: int,
    buffer_size: int = 512,
    hop_size: int = 256,
    extractor: Optional[FeatureExtractor] = None,
) -> FeatureSeries:
    """
    Extract features for every full frame of a mono signal.

    Args:
        signal: Mono float signal.
        sample_rate: Sample rate in Hz.
        buffer_size: Frame length B in samples.
        hop_size: Stride H between frame starts.
        extractor: FeatureExtractor to use (LibrosaFeatureExtractor by default).

    Returns:
        FeatureSeries; frames whose extraction failed are absent and counted
        in skipped_frames.
    """
    if extractor is None:
        extractor = LibrosaFeatureExtractor()

    series = FeatureSeries()
    for index, (_, frame) in enumerate(iter_frames(signal, buffer_size, hop_size)):
        vector = extract_frame(extractor, frame, sample_rate, index)
        if vector is None:
            series.skipped_frames += 1
            continue
        series.append(vector)

    print(f"[FeatureEngine] Extracted {len(series)} frames "
          f"(B={buffer_size}, H={hop_size}, skipped={series.skipped_frames})")
    return series


# =============================================================================
# DERIVED SERIES
# =============================================================================

def compute_formant_shifts(chroma: list) -> list[float]:
    """
    Frame-to-frame change of the first chroma bin.

    Returns |chroma[i][0] - chroma[i-1][0]| for i >= 1, so the result is one
    element shorter than the input.
    """
    shifts = []
    for i in range(1, len(chroma)):
        shifts.append(abs(float(chroma[i][0]) - float(chroma[i - 1][0])))
    return shifts


def normalize_series(values) -> list[float]:
    """
    Divide every value by the series maximum.

    A zero (or empty) maximum divides by 1 instead, so an all-zero series
    stays all-zero.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return []

    peak = float(np.max(arr))
    if not peak > 0:
        peak = 1.0

    return (arr / peak).tolist()
