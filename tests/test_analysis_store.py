"""
Backmask: Analysis Store Tests
==============================
Record round trips, annotations, snippets and reversed-output management.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis_store import AnalysisRecord, AnalysisStore, Snippet
from segment_detector import TimeSegment


@pytest.fixture
def store(tmp_path):
    return AnalysisStore(tmp_path / "outputs")


def saved_record(store, analysis_id=1000, **fields) -> AnalysisRecord:
    record = AnalysisRecord(analysis_id=analysis_id, sample_rate=44100, hop_size=256, duration=2.0, **fields)
    store.save(record)
    return record


def add_snippet_files(store, snippet: Snippet):
    for name in (snippet.file, snippet.forward_file):
        (store.snippets_dir / name).write_bytes(b"RIFF")


# =============================================================================
# TEST: RECORDS
# =============================================================================

def test_directories_created(store):
    assert store.reversed_dir.is_dir()
    assert store.snippets_dir.is_dir()


def test_record_round_trip(store):
    record = saved_record(
        store,
        mfcc=[[1.0, 2.0]],
        formants=[0.1, 0.2],
        detected_segments=[TimeSegment(0.1, 0.2, "note")],
        normalized_energy_values=[0.5, 1.0],
        normalized_formant_shifts=[1.0],
        original_audio_path="uploads/a.wav",
        reversed_audio_url="/outputs/reversed/reversed_1000.wav",
    )

    loaded = store.load(1000)

    assert loaded == record
    raw = store.load_raw("1000")
    assert raw["pitch"] == []
    assert raw["hopSize"] == 256
    assert raw["detectedSegments"] == [{"start": 0.1, "end": 0.2, "annotation": "note"}]


def test_missing_series_not_written(store):
    saved_record(store)

    raw = store.load_raw(1000)

    assert "normalizedEnergyValues" not in raw
    assert "normalizedFormantShifts" not in raw
    assert store.load(1000).normalized_energy_values is None


def test_new_analysis_ids_are_unique(store):
    first = store.new_analysis_id()
    saved_record(store, analysis_id=first)

    assert store.new_analysis_id() != first


@pytest.mark.parametrize("bad_id", ["../etc", "12a", ""])
def test_invalid_analysis_id_rejected(store, bad_id):
    with pytest.raises(ValueError):
        store.record_path(bad_id)


def test_load_unknown_record(store):
    with pytest.raises(FileNotFoundError):
        store.load(999)


# =============================================================================
# TEST: ANNOTATIONS
# =============================================================================

def test_save_segment_annotation(store):
    saved_record(store, detected_segments=[TimeSegment(0.0, 1.0), TimeSegment(1.5, 2.0)])

    store.save_annotation(1000, 1, "sounds like a word")

    segments = store.load(1000).detected_segments
    assert segments[0].annotation == ""
    assert segments[1].annotation == "sounds like a word"


def test_save_snippet_annotation(store):
    saved_record(store, snippets=[Snippet("s.wav", "f.wav", 0.0, 1.0)])

    store.save_annotation(1000, 0, "clip note", is_snippet=True)

    assert store.load(1000).snippets[0].annotation == "clip note"


def test_annotation_index_out_of_range(store):
    saved_record(store)

    with pytest.raises(IndexError):
        store.save_annotation(1000, 0, "nothing here")


# =============================================================================
# TEST: SNIPPETS
# =============================================================================

def test_list_snippets_skips_missing_files(store):
    present = Snippet("snippet_1.wav", "forward_snippet_1.wav", 0.0, 0.5, "hi", 0.5)
    missing = Snippet("snippet_2.wav", "forward_snippet_2.wav", 1.0, 1.5)
    saved_record(store, snippets=[present, missing])
    add_snippet_files(store, present)

    listed = store.list_snippets()

    assert len(listed) == 1
    assert listed[0]["file"] == "snippet_1.wav"
    assert listed[0]["url"] == "/outputs/snippets/snippet_1.wav"
    assert listed[0]["forwardUrl"] == "/outputs/snippets/forward_snippet_1.wav"
    assert listed[0]["analysisId"] == "1000"
    assert listed[0]["playbackSpeed"] == 0.5


def test_list_snippets_ignores_corrupt_record(store):
    (store.reversed_dir / "analysis_5.json").write_text("{not json", encoding="utf-8")

    assert store.list_snippets() == []


def test_delete_snippet_removes_entry_and_files(store):
    snippet = Snippet("snippet_1.wav", "forward_snippet_1.wav", 0.0, 0.5)
    saved_record(store, snippets=[snippet])
    add_snippet_files(store, snippet)

    store.delete_snippet(1000, "snippet_1.wav", "forward_snippet_1.wav", 0, 0.5)

    assert store.load(1000).snippets == []
    assert not (store.snippets_dir / "snippet_1.wav").exists()
    assert not (store.snippets_dir / "forward_snippet_1.wav").exists()


def test_concurrent_snippet_adds_are_all_kept(store):
    """Parallel updates through separate store instances never lose a snippet."""
    print("\n🧵 Testing concurrent record updates...")
    saved_record(store)
    other = AnalysisStore(store.output_dir)
    assert other.lock is store.lock

    def add(i):
        target = store if i % 2 else other
        target.add_snippet(1000, Snippet(f"s{i}.wav", f"f{i}.wav", float(i), float(i) + 0.5))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(add, range(40)))

    files = sorted(s.file for s in store.load(1000).snippets)
    assert files == sorted(f"s{i}.wav" for i in range(40))
    print("   ✓ 40 of 40 snippets persisted")


def test_delete_unknown_snippet(store):
    saved_record(store)

    with pytest.raises(LookupError):
        store.delete_snippet(1000, "nope.wav", "nope_fwd.wav", 0, 1)


# =============================================================================
# TEST: REVERSED OUTPUTS
# =============================================================================

def test_list_and_delete_reversed_outputs(store):
    (store.reversed_dir / "reversed_1.wav").write_bytes(b"RIFF")
    (store.reversed_dir / "notes.txt").write_text("x")
    saved_record(store)

    outputs = store.list_reversed_outputs()

    assert outputs == [{"file": "reversed_1.wav", "url": "/outputs/reversed/reversed_1.wav"}]

    store.delete_reversed_output("reversed_1.wav")
    assert store.list_reversed_outputs() == []


def test_delete_missing_reversed_output(store):
    with pytest.raises(FileNotFoundError):
        store.delete_reversed_output("ghost.wav")


@pytest.mark.parametrize("name", ["../secret.wav", "sub/dir.wav", ""])
def test_reversed_output_traversal_rejected(store, name):
    with pytest.raises(ValueError):
        store.reversed_output_path(name)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
