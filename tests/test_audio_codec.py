"""
Backmask: PCM Codec Tests
=========================
Decoding/encoding WAV buffers and the Signal container.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from audio_codec import Signal, decode_wav, encode_channels, encode_wav, read_signal, write_signal
from errors import DecodeError, EncodeError
from signal_helpers import SAMPLE_RATE, generate_sine_wave, write_wav


# =============================================================================
# TEST: DECODE
# =============================================================================

def test_decode_stereo_wav(tmp_path):
    print("\n🎧 Testing stereo decode...")
    left = generate_sine_wave(440, 0.25)
    right = generate_sine_wave(660, 0.25)
    path = write_wav(tmp_path / "stereo.wav", [left, right])

    signal = decode_wav(path.read_bytes())

    assert signal.sample_rate == SAMPLE_RATE
    assert signal.num_channels == 2
    assert signal.num_samples == len(left)
    assert signal.duration == pytest.approx(0.25)
    assert np.allclose(signal.channels[0], left, atol=1e-6)
    assert np.allclose(signal.channels[1], right, atol=1e-6)
    assert np.array_equal(signal.mono, signal.channels[0])
    print("   ✓ Two channels, float samples preserved")


def test_decode_empty_buffer():
    with pytest.raises(DecodeError):
        decode_wav(b"")


def test_decode_garbage():
    with pytest.raises(DecodeError):
        decode_wav(b"this is not a wav file at all" * 10)


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        decode_wav(b"\x00\x01\x02")


# =============================================================================
# TEST: ENCODE
# =============================================================================

def test_encode_then_decode_keeps_layout():
    channels = (generate_sine_wave(220, 0.1), generate_sine_wave(330, 0.1, amplitude=0.25))
    signal = Signal(sample_rate=22050, channels=channels)

    decoded = decode_wav(encode_wav(signal))

    assert decoded.sample_rate == 22050
    assert decoded.num_channels == 2
    assert decoded.num_samples == signal.num_samples
    # 16-bit quantization
    assert np.max(np.abs(decoded.channels[1] - channels[1])) < 1e-4


def test_float_subtype_is_lossless():
    channel = np.linspace(-0.9, 0.9, 1000)

    decoded = decode_wav(encode_wav(Signal(SAMPLE_RATE, (channel,)), subtype="FLOAT"))

    assert np.allclose(decoded.mono, channel, atol=1e-7)


def test_encode_inconsistent_channel_lengths():
    with pytest.raises(EncodeError):
        encode_channels(SAMPLE_RATE, [np.zeros(10), np.zeros(11)])


def test_encode_no_channels():
    with pytest.raises(EncodeError):
        encode_channels(SAMPLE_RATE, [])


def test_encode_bad_sample_rate():
    with pytest.raises(EncodeError):
        encode_channels(0, [np.zeros(10)])


def test_signal_rejects_unequal_channels():
    with pytest.raises(ValueError):
        Signal(sample_rate=SAMPLE_RATE, channels=(np.zeros(5), np.zeros(6)))


# =============================================================================
# TEST: FILE HELPERS
# =============================================================================

def test_write_and_read_signal(tmp_path):
    signal = Signal(SAMPLE_RATE, (generate_sine_wave(440, 0.1),))
    path = write_signal(tmp_path / "nested" / "out.wav", signal)

    assert path.exists()
    assert read_signal(path).num_samples == signal.num_samples


def test_read_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_signal(tmp_path / "missing.wav")


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
