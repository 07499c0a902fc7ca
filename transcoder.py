"""
Backmask: Transcoder (ffmpeg wrapper)
=====================================
Synchronous wrapper around the ffmpeg command line.

The audio core never spawns processes itself; everything that needs
container/codec work (global reversal, format conversion, clip extraction)
goes through this class at the system boundary.

Usage:
    transcoder = Transcoder()
    transcoder.reverse_to_wav("upload.mp4", "outputs/reversed/reversed_1.wav")
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from errors import TranscodeError


class Transcoder:
    """
    Thin ffmpeg front-end.

    Every method blocks until ffmpeg exits and returns the output path.
    Failures are raised as TranscodeError carrying ffmpeg's stderr.
    """

    def __init__(self, binary: str = "ffmpeg"):
        """
        Args:
            binary: ffmpeg executable name or path.
        """
        self.binary = binary

    def _run(self, args: list[str], output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = [self.binary, "-y", "-hide_banner", "-loglevel", "error", *args, str(output_path)]

        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            print(f"[Transcoder] ffmpeg failed: {e.stderr}")
            raise TranscodeError(f"ffmpeg processing failed: {e.stderr}") from e
        except FileNotFoundError as e:
            raise TranscodeError(
                f"ffmpeg not found ({self.binary}). Install ffmpeg or set FFMPEG_BINARY."
            ) from e

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise TranscodeError(f"Output file is missing or empty: {output_path}")

        print(f"[Transcoder] Output file created: {output_path}, "
              f"size: {output_path.stat().st_size} bytes")
        return output_path

    def reverse_to_wav(
        self,
        input_path: str | Path,
        output_path: str | Path,
        sample_rate: int = 44100,
    ) -> Path:
        """
        Reverse the whole audio track into a mono 16-bit PCM WAV.

        Video inputs are accepted; only the audio stream is kept.
        """
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Audio file not found: {input_path}")

        return self._run(
            [
                "-i", str(input_path),
                "-vn",
                "-af", "areverse",
                "-ac", "1",
                "-ar", str(sample_rate),
                "-c:a", "pcm_s16le",
                "-f", "wav",
            ],
            Path(output_path),
        )

    def to_wav(self, input_path: str | Path, output_path: str | Path) -> Path:
        """Convert any audio/video input to WAV, keeping channels and sample rate."""
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Audio file not found: {input_path}")

        return self._run(
            ["-i", str(input_path), "-vn", "-c:a", "pcm_s16le", "-f", "wav"],
            Path(output_path),
        )

    def extract_clip(
        self,
        input_path: str | Path,
        output_path: str | Path,
        start: float,
        end: float,
    ) -> Path:
        """Cut [start, end) seconds out of input_path."""
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Audio file not found: {input_path}")

        return self._run(
            ["-ss", f"{start:.6f}", "-t", f"{end - start:.6f}", "-i", str(input_path)],
            Path(output_path),
        )
