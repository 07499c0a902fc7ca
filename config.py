"""
Backmask: Configuration Module
==============================
Centralizes all application configuration with `.env` file support.

This module provides:
- Environment variable loading from `.env` file
- Type-safe configuration access
- Sensible defaults for all settings

Core functions never read this module; the AudioEngine and the API read
values here and pass them down explicitly.

Usage:
    from config import config

    hop = config.FEATURE_HOP_SIZE          # e.g., 256
    vad = config.vad_config()              # VADConfig from VAD_* settings
"""

from __future__ import annotations

import os
from pathlib import Path


# =============================================================================
# .ENV FILE LOADING
# =============================================================================

def _load_dotenv():
    """Load environment variables from .env file if it exists."""
    env_path = Path(__file__).parent / ".env"

    if not env_path.exists():
        return

    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.split("#")[0].strip()  # Remove inline comments

                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                # Only set if not already in environment
                if key and key not in os.environ:
                    os.environ[key] = value


# Load .env file on module import
_load_dotenv()


def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# =============================================================================
# CONFIGURATION CLASS
# =============================================================================

class Config:
    """Application configuration with environment variable support.

    All configuration options can be overridden via environment variables
    or a `.env` file in the project root.
    """

    # =========================================================================
    # VOICE ACTIVITY DETECTION (segment-local reversal)
    # =========================================================================

    @property
    def VAD_FRAME_SIZE(self) -> int:
        """Block length in samples for RMS measurement (default: 1024)."""
        return _get_int("VAD_FRAME_SIZE", 1024)

    @property
    def VAD_RMS_THRESHOLD(self) -> float:
        """Block RMS above which audio counts as speech.

        Assumes input normalized to -1..1; 0.02 is a reasonable noise floor.
        """
        return _get_float("VAD_RMS_THRESHOLD", 0.02)

    @property
    def VAD_MIN_DURATION(self) -> float:
        """Minimum speech segment duration in seconds.

        Shorter bursts are usually clicks or pops. Default: 0.25.
        """
        return _get_float("VAD_MIN_DURATION", 0.25)

    @property
    def VAD_MERGE_GAP(self) -> float:
        """Speech segments closer than this (seconds) are merged. Default: 0.2."""
        return _get_float("VAD_MERGE_GAP", 0.2)

    @property
    def VAD_MAX_CHUNK_DURATION(self) -> float:
        """Maximum duration of a single reversed chunk in seconds.

        Longer speech segments are split so no reversed chunk drifts too far
        from its forward position. Must be positive. Default: 2.0.
        """
        return _get_float("VAD_MAX_CHUNK_DURATION", 2.0)

    # =========================================================================
    # FEATURE EXTRACTION
    # =========================================================================

    @property
    def FEATURE_BUFFER_SIZE(self) -> int:
        """Analysis frame length in samples (default: 512)."""
        return _get_int("FEATURE_BUFFER_SIZE", 512)

    @property
    def FEATURE_HOP_SIZE(self) -> int:
        """Stride between analysis frames in samples (default: 256)."""
        return _get_int("FEATURE_HOP_SIZE", 256)

    @property
    def SPECTRUM_BINS(self) -> int:
        """Number of amplitude-spectrum bins kept for the spectrogram preview."""
        return _get_int("SPECTRUM_BINS", 128)

    @property
    def SPECTRUM_SCALE(self) -> float:
        """Divisor applied to amplitude-spectrum values before clipping at 1."""
        return _get_float("SPECTRUM_SCALE", 10.0)

    @property
    def MFCC_COEFFICIENTS(self) -> int:
        """Number of MFCC coefficients per frame."""
        return _get_int("MFCC_COEFFICIENTS", 13)

    @property
    def MEL_BANDS(self) -> int:
        """Number of mel bands feeding the MFCC."""
        return _get_int("MEL_BANDS", 26)

    @property
    def ANALYSIS_SAMPLE_RATE(self) -> int:
        """Sample rate of the globally reversed analysis track (Hz)."""
        return _get_int("ANALYSIS_SAMPLE_RATE", 44100)

    # =========================================================================
    # SEGMENT DETECTION
    # =========================================================================

    @property
    def DEFAULT_ENERGY_THRESHOLD(self) -> float:
        """Default normalized-energy threshold for redetection."""
        return _get_float("DEFAULT_ENERGY_THRESHOLD", 0.1)

    @property
    def DEFAULT_FORMANT_SHIFT_THRESHOLD(self) -> float:
        """Default normalized formant-shift threshold for redetection."""
        return _get_float("DEFAULT_FORMANT_SHIFT_THRESHOLD", 0.1)

    # =========================================================================
    # OUTPUT / STORAGE
    # =========================================================================

    @property
    def OUTPUT_SUBTYPE(self) -> str:
        """WAV subtype used when encoding output audio (default: PCM_16)."""
        return os.getenv("OUTPUT_SUBTYPE", "PCM_16").upper()

    @property
    def FFMPEG_BINARY(self) -> str:
        """ffmpeg executable name or path."""
        return os.getenv("FFMPEG_BINARY", "ffmpeg")

    @property
    def OUTPUT_DIR(self) -> Path:
        """Root directory for reversed audio, snippets and analysis records."""
        return Path(os.getenv("OUTPUT_DIR", "outputs"))

    @property
    def UPLOAD_DIR(self) -> Path:
        """Directory where uploaded originals are kept."""
        return Path(os.getenv("UPLOAD_DIR", "uploads"))

    @property
    def SPECTROGRAM_PREVIEW_FRAMES(self) -> int:
        """Number of spectrogram frames returned in the analyze response."""
        return _get_int("SPECTROGRAM_PREVIEW_FRAMES", 300)

    @property
    def MFCC_PREVIEW_FRAMES(self) -> int:
        """Number of MFCC frames returned in the analyze response."""
        return _get_int("MFCC_PREVIEW_FRAMES", 5)

    # =========================================================================
    # SERVER CONFIGURATION
    # =========================================================================

    @property
    def API_HOST(self) -> str:
        """API server host."""
        return os.getenv("API_HOST", "0.0.0.0")

    @property
    def API_PORT(self) -> int:
        """API server port."""
        return _get_int("API_PORT", 3000)

    @property
    def MAX_FILE_SIZE_MB(self) -> int:
        """Maximum file upload size in MB."""
        return _get_int("MAX_FILE_SIZE_MB", 100)

    @property
    def MAX_FILE_SIZE(self) -> int:
        """Maximum file upload size in bytes."""
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Allowed CORS origins (comma-separated)."""
        raw = os.getenv("CORS_ORIGINS", "http://localhost:5173")
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def vad_config(self):
        """Build a VADConfig from the VAD_* settings."""
        from vad_engine import VADConfig

        return VADConfig(
            frame_size=self.VAD_FRAME_SIZE,
            rms_threshold=self.VAD_RMS_THRESHOLD,
            min_duration=self.VAD_MIN_DURATION,
            merge_gap=self.VAD_MERGE_GAP,
            max_chunk_duration=self.VAD_MAX_CHUNK_DURATION,
        )

    def __repr__(self) -> str:
        """Return a string representation showing current config."""
        return (
            f"Config(\n"
            f"  VAD_FRAME_SIZE={self.VAD_FRAME_SIZE},\n"
            f"  VAD_RMS_THRESHOLD={self.VAD_RMS_THRESHOLD},\n"
            f"  VAD_MAX_CHUNK_DURATION={self.VAD_MAX_CHUNK_DURATION},\n"
            f"  FEATURE_BUFFER_SIZE={self.FEATURE_BUFFER_SIZE},\n"
            f"  FEATURE_HOP_SIZE={self.FEATURE_HOP_SIZE},\n"
            f"  OUTPUT_DIR={str(self.OUTPUT_DIR)!r},\n"
            f"  API_HOST={self.API_HOST!r},\n"
            f"  API_PORT={self.API_PORT},\n"
            f"  MAX_FILE_SIZE_MB={self.MAX_FILE_SIZE_MB}\n"
            f")"
        )

    def print_config(self) -> None:
        """Print current configuration to console."""
        print("\n" + "=" * 50)
        print("  🔧 Backmask Configuration")
        print("=" * 50)
        print(f"  VAD:          frame={self.VAD_FRAME_SIZE}, rms>{self.VAD_RMS_THRESHOLD}, "
              f"min={self.VAD_MIN_DURATION}s, gap={self.VAD_MERGE_GAP}s, "
              f"max={self.VAD_MAX_CHUNK_DURATION}s")
        print(f"  Features:     B={self.FEATURE_BUFFER_SIZE}, H={self.FEATURE_HOP_SIZE}, "
              f"{self.ANALYSIS_SAMPLE_RATE}Hz")
        print(f"  ffmpeg:       {self.FFMPEG_BINARY}")
        print(f"  Outputs:      {self.OUTPUT_DIR}")
        print(f"  API:          {self.API_HOST}:{self.API_PORT}")
        print(f"  Max Upload:   {self.MAX_FILE_SIZE_MB} MB")
        print("=" * 50 + "\n")


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

config = Config()


# =============================================================================
# CLI TEST
# =============================================================================

if __name__ == "__main__":
    print("🔧 Backmask Configuration Module")
    config.print_config()
    print(repr(config))
