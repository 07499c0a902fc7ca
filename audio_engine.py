"""
Backmask: Audio Engine
======================
Orchestrates the reversal and analysis pipelines.

This module provides:
1. Global reversal + per-frame feature analysis (persisted for redetection)
2. Segment-local reversal (speech bursts reversed, timeline preserved)
3. Snippet extraction from reversed and forward audio

Usage:
    engine = AudioEngine.from_config(config)
    record = engine.analyze("uploads/audio-1700000000000.mp3")
    result = engine.reverse_locally("uploads/interview.wav")
"""

from __future__ import annotations

import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from analysis_store import AnalysisRecord, AnalysisStore, Snippet
from audio_codec import Signal, decode_wav, encode_wav, read_signal, write_signal
from errors import DecodeError, InvalidSegmentBounds, TranscodeError
from feature_engine import (
    FeatureExtractor,
    LibrosaFeatureExtractor,
    compute_formant_shifts,
    extract_features,
    normalize_series,
)
from reverser import reverse_speech
from segment_detector import TimeSegment
from transcoder import Transcoder
from vad_engine import VADConfig, to_time_segments


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class LocalReversalResult:
    """Result of a segment-local reversal."""
    output_path: Path
    segments: list[TimeSegment]
    sample_rate: int
    num_channels: int
    duration: float

    def to_dict(self) -> dict:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "sampleRate": self.sample_rate,
            "channels": self.num_channels,
            "duration": round(self.duration, 3),
        }


# =============================================================================
# MAIN AUDIO ENGINE
# =============================================================================

class AudioEngine:
    """
    Main audio processing engine combining all components.

    All tuning values are constructor arguments; the engine holds no
    process-wide state besides its store and transcoder handles.
    """

    def __init__(
        self,
        store: AnalysisStore,
        transcoder: Optional[Transcoder] = None,
        vad_config: Optional[VADConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        buffer_size: int = 512,
        hop_size: int = 256,
        analysis_sample_rate: int = 44100,
        output_subtype: str = "PCM_16",
    ):
        """
        Initialize the audio engine.

        Args:
            store: Persistence for analysis records and output files.
            transcoder: ffmpeg wrapper (global reversal, conversion, clips).
            vad_config: Voice activity parameters for local reversal.
            extractor: Per-frame feature extractor.
            buffer_size: Feature frame length in samples.
            hop_size: Feature frame stride in samples.
            analysis_sample_rate: Sample rate of the reversed analysis track.
            output_subtype: WAV subtype for locally reversed output.
        """
        self.store = store
        self.transcoder = transcoder or Transcoder()
        self.vad_config = vad_config or VADConfig()
        self.extractor = extractor or LibrosaFeatureExtractor()
        self.buffer_size = buffer_size
        self.hop_size = hop_size
        self.analysis_sample_rate = analysis_sample_rate
        self.output_subtype = output_subtype

    @classmethod
    def from_config(cls, cfg) -> "AudioEngine":
        """Build an engine from a Config instance."""
        return cls(
            store=AnalysisStore(cfg.OUTPUT_DIR),
            transcoder=Transcoder(binary=cfg.FFMPEG_BINARY),
            vad_config=cfg.vad_config(),
            extractor=LibrosaFeatureExtractor(
                n_mfcc=cfg.MFCC_COEFFICIENTS,
                n_mels=cfg.MEL_BANDS,
                spectrum_bins=cfg.SPECTRUM_BINS,
                spectrum_scale=cfg.SPECTRUM_SCALE,
            ),
            buffer_size=cfg.FEATURE_BUFFER_SIZE,
            hop_size=cfg.FEATURE_HOP_SIZE,
            analysis_sample_rate=cfg.ANALYSIS_SAMPLE_RATE,
            output_subtype=cfg.OUTPUT_SUBTYPE,
        )

    # -------------------------------------------------------------------------
    # Global reversal + analysis
    # -------------------------------------------------------------------------

    def analyze(self, audio_path: str | Path) -> AnalysisRecord:
        """
        Reverse a whole file and analyze the reversed track.

        Pipeline:
        1. ffmpeg: reverse, downmix to mono, resample, write 16-bit WAV
        2. Decode the reversed WAV
        3. Extract per-frame features
        4. Derive and normalize energy / formant-shift series
        5. Persist the analysis record (no segments detected yet)

        Args:
            audio_path: Uploaded audio or video file.

        Returns:
            The saved AnalysisRecord.
        """
        audio_path = Path(audio_path)
        print(f"[AudioEngine] Analyzing: {audio_path}")

        analysis_id = self.store.new_analysis_id()
        output_name = f"reversed_{analysis_id}.wav"
        reversed_path = self.transcoder.reverse_to_wav(
            audio_path,
            self.store.reversed_dir / output_name,
            sample_rate=self.analysis_sample_rate,
        )

        try:
            signal = read_signal(reversed_path)
            series = extract_features(
                signal.mono,
                signal.sample_rate,
                buffer_size=self.buffer_size,
                hop_size=self.hop_size,
                extractor=self.extractor,
            )

            formant_shifts = compute_formant_shifts(series.chroma)

            record = AnalysisRecord(
                analysis_id=analysis_id,
                sample_rate=signal.sample_rate,
                hop_size=self.hop_size,
                duration=signal.duration,
                mfcc=series.mfcc,
                formants=series.formant_preview,
                spectrogram=series.spectrogram,
                normalized_energy_values=normalize_series(series.energy),
                normalized_formant_shifts=normalize_series(formant_shifts),
                original_audio_path=str(audio_path),
                reversed_audio_url=f"/outputs/reversed/{output_name}",
            )
            self.store.save(record)
        except Exception:
            print(f"[AudioEngine] Analysis {analysis_id} failed, removing {Path(reversed_path).name}")
            Path(reversed_path).unlink(missing_ok=True)
            self.store.record_path(analysis_id).unlink(missing_ok=True)
            raise

        print(f"[AudioEngine] Duration: {signal.duration:.2f}s")
        print(f"[AudioEngine] Frames analyzed: {len(series)}")
        return record

    # -------------------------------------------------------------------------
    # Segment-local reversal
    # -------------------------------------------------------------------------

    def reverse_signal_locally(self, signal: Signal) -> tuple[Signal, list[TimeSegment]]:
        """Reverse speech segments of a decoded signal; segments in seconds."""
        reversed_signal, segments = reverse_speech(signal, self.vad_config)
        return reversed_signal, to_time_segments(segments, signal.sample_rate)

    def reverse_bytes_locally(self, data: bytes) -> tuple[bytes, list[TimeSegment]]:
        """In-memory variant: WAV bytes in, WAV bytes out."""
        reversed_signal, segments = self.reverse_signal_locally(decode_wav(data))
        return encode_wav(reversed_signal, subtype=self.output_subtype), segments

    def reverse_locally(
        self,
        audio_path: str | Path,
        output_path: Optional[str | Path] = None,
    ) -> LocalReversalResult:
        """
        Reverse each detected speech burst in place.

        Files libsndfile cannot read directly (MP3, M4A, video containers)
        are converted to WAV through ffmpeg first.

        Args:
            audio_path: Input audio or video file.
            output_path: Destination WAV. Defaults to the reversed directory.

        Returns:
            LocalReversalResult with the output path and segment times.
        """
        audio_path = Path(audio_path)
        if output_path is None:
            output_path = self.store.reversed_dir / f"local_reversed_{int(time.time() * 1000)}.wav"
        output_path = Path(output_path)

        print(f"[AudioEngine] Local reversal: {audio_path}")
        signal = self._load_any(audio_path)

        reversed_signal, segments = self.reverse_signal_locally(signal)
        write_signal(output_path, reversed_signal, subtype=self.output_subtype)

        print(f"[AudioEngine] Wrote {output_path} ({len(segments)} reversed segments)")
        return LocalReversalResult(
            output_path=output_path,
            segments=segments,
            sample_rate=signal.sample_rate,
            num_channels=signal.num_channels,
            duration=signal.duration,
        )

    def _load_any(self, audio_path: Path) -> Signal:
        try:
            return read_signal(audio_path)
        except DecodeError:
            print(f"[AudioEngine] {audio_path.suffix or 'file'} not directly decodable, converting via ffmpeg")

        temp_dir = tempfile.mkdtemp(prefix="backmask_")
        try:
            wav_path = self.transcoder.to_wav(audio_path, Path(temp_dir) / f"{audio_path.stem}.wav")
            return read_signal(wav_path)
        except TranscodeError as e:
            raise DecodeError(f"Unable to decode {audio_path.name}: {e}") from e
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    # -------------------------------------------------------------------------
    # Snippets
    # -------------------------------------------------------------------------

    def extract_segment(
        self,
        analysis_id,
        audio_url: str,
        start: float,
        end: float,
        playback_speed: float = 1.0,
        annotation: str = "",
    ) -> Snippet:
        """
        Cut [start, end) from both the reversed and the forward audio.

        Raises:
            InvalidSegmentBounds: If start < 0 or start >= end.
            FileNotFoundError: If the analysis or either audio file is missing.
        """
        if start < 0 or start >= end:
            raise InvalidSegmentBounds(f"Invalid snippet range [{start}, {end})")

        record = self.store.load(analysis_id)
        reversed_path = self.store.reversed_dir / Path(audio_url).name
        original_path = Path(record.original_audio_path)

        for path in (reversed_path, original_path):
            if not path.is_file():
                raise FileNotFoundError(f"Audio file not found: {path}")

        stamp = int(time.time() * 1000)
        ext = reversed_path.suffix or ".wav"
        snippet_name = f"snippet_{stamp}{ext}"
        forward_name = f"forward_snippet_{stamp}{ext}"

        snippet = Snippet(
            file=snippet_name,
            forward_file=forward_name,
            start=float(start),
            end=float(end),
            annotation=annotation,
            playback_speed=playback_speed or 1.0,
        )
        snippet_paths = [self.store.snippets_dir / snippet_name, self.store.snippets_dir / forward_name]

        try:
            self.transcoder.extract_clip(reversed_path, snippet_paths[0], start, end)
            self.transcoder.extract_clip(original_path, snippet_paths[1], start, end)
            self.store.add_snippet(analysis_id, snippet)
        except Exception:
            # Either both clips are recorded or neither file is kept
            for path in snippet_paths:
                path.unlink(missing_ok=True)
            raise

        return snippet


# =============================================================================
# CLI TESTING
# =============================================================================

if __name__ == "__main__":
    import json
    import sys

    from config import config

    print("Backmask: Audio Engine Test")
    print("=" * 50)

    if len(sys.argv) < 2:
        print("Usage: python audio_engine.py <audio_file> [--local]")
        print("\nExample:")
        print("  python audio_engine.py speech.wav --local")
        sys.exit(1)

    engine = AudioEngine.from_config(config)

    try:
        if "--local" in sys.argv:
            result = engine.reverse_locally(sys.argv[1])
            print(f"Output: {result.output_path}")
            print(json.dumps(result.to_dict(), indent=2))
        else:
            record = engine.analyze(sys.argv[1])
            print(f"Analysis id: {record.analysis_id}")
            print(f"Frames: {len(record.normalized_energy_values or [])}")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
