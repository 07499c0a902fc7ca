"""
Backmask: Analysis Store
========================
JSON persistence for analysis records, snippets and reversed outputs.

Layout under the output directory:
    reversed/               reversed audio + analysis_<id>.json records
    snippets/               extracted reversed/forward clips

Records use camelCase keys so they stay readable by the web frontend.
"""

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from segment_detector import TimeSegment


AUDIO_EXTENSIONS = {".wav", ".mp3", ".ogg", ".aac", ".flac", ".m4a"}
RECORD_PATTERN = re.compile(r"^analysis_(\d+)\.json$")

# One lock per output directory, shared by every store that points at it
_record_locks: dict[Path, threading.Lock] = {}
_record_locks_guard = threading.Lock()


def _lock_for(directory: Path) -> threading.Lock:
    with _record_locks_guard:
        return _record_locks.setdefault(directory.resolve(), threading.Lock())


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class Snippet:
    """A trimmed clip cut from both the reversed and the forward audio."""
    file: str
    forward_file: str
    start: float
    end: float
    annotation: str = ""
    playback_speed: float = 1.0

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "forwardFile": self.forward_file,
            "start": self.start,
            "end": self.end,
            "annotation": self.annotation,
            "playbackSpeed": self.playback_speed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snippet":
        return cls(
            file=data["file"],
            forward_file=data["forwardFile"],
            start=float(data["start"]),
            end=float(data["end"]),
            annotation=data.get("annotation") or "",
            playback_speed=float(data.get("playbackSpeed") or 1.0),
        )


@dataclass
class AnalysisRecord:
    """Persisted result of one analysis run.

    The normalized series are Optional: records written before they were
    introduced (or damaged records) lack them, and redetection refuses to
    run on such records.
    """
    analysis_id: int
    sample_rate: int
    hop_size: int
    duration: float
    mfcc: list[list[float]] = field(default_factory=list)
    formants: list[float] = field(default_factory=list)
    spectrogram: list[list[float]] = field(default_factory=list)
    detected_segments: list[TimeSegment] = field(default_factory=list)
    snippets: list[Snippet] = field(default_factory=list)
    normalized_energy_values: Optional[list[float]] = None
    normalized_formant_shifts: Optional[list[float]] = None
    original_audio_path: str = ""
    reversed_audio_url: str = ""

    def to_dict(self) -> dict:
        data = {
            "analysisId": self.analysis_id,
            "mfcc": self.mfcc,
            "pitch": [],
            "formants": self.formants,
            "spectrogram": self.spectrogram,
            "detectedSegments": [s.to_dict() for s in self.detected_segments],
            "snippets": [s.to_dict() for s in self.snippets],
            "originalAudioPath": self.original_audio_path,
            "reversedAudioUrl": self.reversed_audio_url,
            "duration": self.duration,
            "hopSize": self.hop_size,
            "sampleRate": self.sample_rate,
        }
        if self.normalized_energy_values is not None:
            data["normalizedEnergyValues"] = self.normalized_energy_values
        if self.normalized_formant_shifts is not None:
            data["normalizedFormantShifts"] = self.normalized_formant_shifts
        return data

    @classmethod
    def from_dict(cls, data: dict, analysis_id: Optional[int] = None) -> "AnalysisRecord":
        return cls(
            analysis_id=int(data.get("analysisId", analysis_id or 0)),
            sample_rate=int(data.get("sampleRate", 0)),
            hop_size=int(data.get("hopSize", 0)),
            duration=float(data.get("duration", 0.0)),
            mfcc=data.get("mfcc") or [],
            formants=data.get("formants") or [],
            spectrogram=data.get("spectrogram") or [],
            detected_segments=[TimeSegment.from_dict(s) for s in data.get("detectedSegments") or []],
            snippets=[Snippet.from_dict(s) for s in data.get("snippets") or []],
            normalized_energy_values=data.get("normalizedEnergyValues"),
            normalized_formant_shifts=data.get("normalizedFormantShifts"),
            original_audio_path=data.get("originalAudioPath", ""),
            reversed_audio_url=data.get("reversedAudioUrl", ""),
        )


# =============================================================================
# STORE
# =============================================================================

class AnalysisStore:
    """
    File-backed store for analysis records.

    Read-modify-write updates hold a lock shared by all stores on the same
    output directory, so concurrent requests never drop each other's edits.

    Usage:
        store = AnalysisStore("outputs")
        store.save(record)
        record = store.load(record.analysis_id)
    """

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)
        self.reversed_dir = self.output_dir / "reversed"
        self.snippets_dir = self.output_dir / "snippets"
        self.ensure_dirs()
        self.lock = _lock_for(self.output_dir)

    def ensure_dirs(self) -> None:
        for directory in (self.output_dir, self.reversed_dir, self.snippets_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def new_analysis_id(self) -> int:
        """Millisecond timestamp not yet used by any record."""
        analysis_id = int(time.time() * 1000)
        while self.record_path(analysis_id).exists():
            analysis_id += 1
        return analysis_id

    def record_path(self, analysis_id) -> Path:
        analysis_id = str(analysis_id)
        if not analysis_id.isdigit():
            raise ValueError(f"Invalid analysis id: {analysis_id!r}")
        return self.reversed_dir / f"analysis_{analysis_id}.json"

    def load_raw(self, analysis_id) -> dict:
        """Load a record as a plain key-value mapping."""
        path = self.record_path(analysis_id)
        if not path.exists():
            raise FileNotFoundError(f"Analysis not found: {analysis_id}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def load(self, analysis_id) -> AnalysisRecord:
        return AnalysisRecord.from_dict(self.load_raw(analysis_id), analysis_id=int(analysis_id))

    def save(self, record: AnalysisRecord) -> Path:
        path = self.record_path(record.analysis_id)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)
        return path

    def update_segments(self, analysis_id, segments: list[TimeSegment]) -> AnalysisRecord:
        with self.lock:
            record = self.load(analysis_id)
            record.detected_segments = list(segments)
            self.save(record)
        return record

    def save_annotation(
        self,
        analysis_id,
        index: int,
        annotation: str,
        is_snippet: bool = False,
    ) -> AnalysisRecord:
        """Set the annotation of a detected segment (or snippet) by index."""
        with self.lock:
            record = self.load(analysis_id)
            items = record.snippets if is_snippet else record.detected_segments
            if not 0 <= index < len(items):
                kind = "snippet" if is_snippet else "segment"
                raise IndexError(f"No {kind} at index {index} in analysis {analysis_id}")

            items[index].annotation = annotation
            self.save(record)
        return record

    # -------------------------------------------------------------------------
    # Snippets
    # -------------------------------------------------------------------------

    def add_snippet(self, analysis_id, snippet: Snippet) -> AnalysisRecord:
        with self.lock:
            record = self.load(analysis_id)
            record.snippets.append(snippet)
            self.save(record)
        return record

    def list_snippets(self) -> list[dict]:
        """All snippets across all records whose clip files still exist."""
        snippets = []

        for path in sorted(self.reversed_dir.glob("analysis_*.json")):
            match = RECORD_PATTERN.match(path.name)
            if not match:
                continue
            try:
                record = self.load(match.group(1))
            except (OSError, ValueError, KeyError, TypeError) as e:
                print(f"[AnalysisStore] Failed to read or parse {path}: {e}")
                continue

            for snippet in record.snippets:
                if not (self.snippets_dir / snippet.file).exists() or \
                        not (self.snippets_dir / snippet.forward_file).exists():
                    print(f"[AnalysisStore] Snippet {snippet.file} or forward snippet "
                          f"{snippet.forward_file} not found")
                    continue

                entry = snippet.to_dict()
                entry["url"] = f"/outputs/snippets/{snippet.file}"
                entry["forwardUrl"] = f"/outputs/snippets/{snippet.forward_file}"
                entry["analysisId"] = match.group(1)
                snippets.append(entry)

        return snippets

    def delete_snippet(
        self,
        analysis_id,
        file: str,
        forward_file: str,
        start: float,
        end: float,
    ) -> Snippet:
        """Remove a snippet from its record and delete its clip files."""
        with self.lock:
            record = self.load(analysis_id)

            for index, snippet in enumerate(record.snippets):
                if (snippet.file == file and snippet.forward_file == forward_file
                        and snippet.start == float(start) and snippet.end == float(end)):
                    break
            else:
                raise LookupError("Snippet not found")

            removed = record.snippets.pop(index)
            self.save(record)

        for name in (removed.file, removed.forward_file):
            (self.snippets_dir / Path(name).name).unlink(missing_ok=True)

        return removed

    # -------------------------------------------------------------------------
    # Reversed outputs
    # -------------------------------------------------------------------------

    def list_reversed_outputs(self) -> list[dict]:
        return [
            {"file": path.name, "url": f"/outputs/reversed/{path.name}"}
            for path in sorted(self.reversed_dir.iterdir())
            if path.is_file() and path.suffix.lower() in AUDIO_EXTENSIONS
        ]

    def reversed_output_path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise ValueError(f"Invalid file name: {name!r}")
        return self.reversed_dir / name

    def delete_reversed_output(self, name: str) -> None:
        path = self.reversed_output_path(name)
        if not path.is_file():
            raise FileNotFoundError(f"File {name} does not exist in {self.reversed_dir}")
        path.unlink()
