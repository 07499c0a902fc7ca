"""
Backmask: Segment-Local Reverser Tests
======================================
Checks that reversal is in place, length preserving, and pure.

Test Cases:
    Length preservation across channels
    Double reversal restores the input exactly
    Silence -> unchanged copy
    Speech burst reversed, silence untouched (1s @ 44.1kHz)
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from audio_codec import Signal
from errors import InvalidSegmentBounds
from reverser import reverse_segments, reverse_signal, reverse_speech
from signal_helpers import SAMPLE_RATE, speech_then_silence
from vad_engine import SampleSegment, VADConfig


# =============================================================================
# TEST: CORE PROPERTIES
# =============================================================================

def test_segment_reversed_in_place():
    print("\n🔁 Testing in-place reversal...")
    channel = np.arange(10, dtype=np.float64)

    [output] = reverse_segments([channel], [SampleSegment(2, 6)])

    assert output.tolist() == [0, 1, 5, 4, 3, 2, 6, 7, 8, 9]
    print("   ✓ output[start + k] == input[end - 1 - k], rest unchanged")


def test_length_preserved_for_all_channels():
    rng = np.random.default_rng(1)
    channels = [rng.normal(size=5000), rng.normal(size=5000)]
    segments = [SampleSegment(0, 1000), SampleSegment(2000, 4999)]

    outputs = reverse_segments(channels, segments)

    assert len(outputs) == 2
    assert all(len(out) == 5000 for out in outputs)


def test_channels_reversed_independently():
    left = np.arange(8, dtype=np.float64)
    right = -np.arange(8, dtype=np.float64)

    out_left, out_right = reverse_segments([left, right], [SampleSegment(0, 4)])

    assert out_left.tolist() == [3, 2, 1, 0, 4, 5, 6, 7]
    assert out_right.tolist() == [-3, -2, -1, -0, -4, -5, -6, -7]


def test_double_reverse_restores_input():
    print("\n♻️ Testing double reversal...")
    rng = np.random.default_rng(2)
    channels = [rng.uniform(-1, 1, 3000)]
    segments = [SampleSegment(10, 500), SampleSegment(700, 702), SampleSegment(1000, 3000)]

    once = reverse_segments(channels, segments)
    twice = reverse_segments(once, segments)

    assert np.array_equal(twice[0], channels[0])
    print("   ✓ Reverse(Reverse(S)) == S")


def test_input_not_mutated():
    channel = np.arange(100, dtype=np.float64)
    original = channel.copy()

    output = reverse_segments([channel], [SampleSegment(0, 100)])[0]

    assert np.array_equal(channel, original)
    assert output is not channel


def test_no_segments_returns_copy():
    channel = np.linspace(-1, 1, 50)

    [output] = reverse_segments([channel], [])

    assert np.array_equal(output, channel)
    assert output is not channel


def test_segment_past_end_rejected():
    with pytest.raises(InvalidSegmentBounds):
        reverse_segments([np.zeros(100)], [SampleSegment(50, 101)])


def test_mismatched_channel_lengths_rejected():
    with pytest.raises(ValueError):
        reverse_segments([np.zeros(100), np.zeros(99)], [SampleSegment(0, 10)])


# =============================================================================
# TEST: SCENARIOS
# =============================================================================

def test_silent_signal_unchanged():
    """All-zero 1s signal: no segments, identical zero output."""
    print("\n🔇 Testing silent signal...")
    signal = Signal(sample_rate=SAMPLE_RATE, channels=(np.zeros(SAMPLE_RATE),))

    reversed_signal, segments = reverse_speech(signal)

    assert segments == []
    assert reversed_signal.num_samples == SAMPLE_RATE
    assert not np.any(reversed_signal.mono)
    print("   ✓ No-op copy")


def test_speech_burst_reversed_and_silence_untouched():
    """Speech over [0, 22050), silence after: only the burst is reversed."""
    print("\n🗣️ Testing burst reversal...")
    mono = speech_then_silence()
    signal = Signal(sample_rate=SAMPLE_RATE, channels=(mono, mono * 0.5))

    reversed_signal, segments = reverse_speech(signal, VADConfig(frame_size=1050))

    assert segments == [SampleSegment(0, 22050)]
    assert reversed_signal.num_channels == 2
    for source, output in zip(signal.channels, reversed_signal.channels):
        assert len(output) == len(source)
        assert np.array_equal(output[:22050], source[:22050][::-1])
        assert np.array_equal(output[22050:], source[22050:])
    print("   ✓ Burst reversed on both channels, tail untouched")


def test_reverse_signal_keeps_sample_rate():
    signal = Signal(sample_rate=16000, channels=(np.arange(10, dtype=np.float64),))

    result = reverse_signal(signal, [SampleSegment(0, 10)])

    assert result.sample_rate == 16000
    assert result.mono.tolist() == list(range(9, -1, -1))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
