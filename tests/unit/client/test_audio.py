"""
Unit Tests for Client Audio Encoding.

Covers the outbound path (decode, downmix, resample, quantize, base64)
and the inbound helpers used for playback and saving.
"""

import base64
import io

import numpy as np
import pytest
import soundfile as sf

from voicerelay.client.audio import (
    TARGET_SAMPLE_RATE,
    decode_audio,
    decode_pcm16_base64,
    downmix,
    encode_for_upstream,
    encode_pcm16_base64,
    float_to_pcm16,
    pcm16_duration_seconds,
    pcm16_to_float,
    pcm16_to_wav,
    resample,
    samples_to_base64,
)


def make_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="FLOAT")
    return buffer.getvalue()


class TestFloatToPcm16:
    """Tests for float_to_pcm16 quantization."""

    def test_full_scale_values(self):
        pcm = float_to_pcm16(np.array([1.0, -1.0, 0.0], dtype=np.float32))

        assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32768, 0]

    def test_clamps_out_of_range(self):
        pcm = float_to_pcm16(np.array([2.5, -3.0], dtype=np.float32))

        assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, -32768]

    def test_asymmetric_scaling_truncates(self):
        pcm = float_to_pcm16(np.array([0.5, -0.5], dtype=np.float32))

        assert np.frombuffer(pcm, dtype="<i2").tolist() == [16383, -16384]

    def test_little_endian_two_bytes_per_sample(self):
        pcm = float_to_pcm16(np.array([1.0], dtype=np.float32))

        assert pcm == b"\xff\x7f"

    def test_empty_input(self):
        assert float_to_pcm16(np.array([], dtype=np.float32)) == b""


class TestPcm16ToFloat:
    """Tests for pcm16_to_float."""

    def test_extremes_map_to_unit_range(self):
        samples = pcm16_to_float(np.array([32767, -32768, 0], dtype="<i2").tobytes())

        assert samples.tolist() == [1.0, -1.0, 0.0]
        assert samples.dtype == np.float32

    def test_rejects_odd_length(self):
        with pytest.raises(ValueError, match="multiple of 2"):
            pcm16_to_float(b"\x00\x00\x01")


class TestDownmix:
    """Tests for channel downmixing."""

    def test_mono_1d_is_unchanged(self):
        samples = np.array([0.1, 0.2], dtype=np.float32)
        assert downmix(samples) is samples

    def test_single_column_is_flattened(self):
        samples = np.array([[0.1], [0.2]], dtype=np.float32)
        np.testing.assert_allclose(downmix(samples), [0.1, 0.2], rtol=1e-6)

    def test_stereo_is_averaged(self):
        samples = np.array([[1.0, 0.0], [0.5, -0.5]], dtype=np.float32)
        np.testing.assert_allclose(downmix(samples), [0.5, 0.0])

    def test_all_channels_contribute(self):
        samples = np.array([[0.3, 0.3, 0.9]], dtype=np.float32)
        np.testing.assert_allclose(downmix(samples), [0.5], rtol=1e-6)


class TestResample:
    """Tests for resampling to 24 kHz."""

    def test_same_rate_is_unchanged(self):
        samples = np.ones(100, dtype=np.float32)
        assert resample(samples, TARGET_SAMPLE_RATE) is samples

    def test_downsamples_48k_to_24k(self):
        samples = np.zeros(4800, dtype=np.float32)

        result = resample(samples, 48000)

        assert len(result) == 2400
        assert result.dtype == np.float32

    def test_upsamples_16k_to_24k(self):
        assert len(resample(np.zeros(1600, dtype=np.float32), 16000)) == 2400

    def test_empty_input(self):
        assert len(resample(np.array([], dtype=np.float32), 44100)) == 0

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError, match="positive"):
            resample(np.zeros(10, dtype=np.float32), 0)


class TestBase64:
    """Tests for the base64 helpers."""

    def test_encode_matches_stdlib(self):
        assert encode_pcm16_base64(b"\x01\x02") == base64.b64encode(b"\x01\x02").decode()

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid base64"):
            decode_pcm16_base64("not base64!!")


class TestWavAndDuration:
    """Tests for WAV wrapping and duration."""

    def test_wav_preserves_samples(self):
        pcm = np.array([0, 1000, -1000, 32767], dtype="<i2").tobytes()

        data, rate = sf.read(io.BytesIO(pcm16_to_wav(pcm)), dtype="int16")

        assert rate == TARGET_SAMPLE_RATE
        assert data.tolist() == [0, 1000, -1000, 32767]

    def test_wav_rejects_odd_length(self):
        with pytest.raises(ValueError):
            pcm16_to_wav(b"\x00")

    def test_one_second_duration(self):
        assert pcm16_duration_seconds(48000) == 1.0


class TestEncodeForUpstream:
    """Tests for the full outbound pipeline."""

    def test_stereo_44k_becomes_mono_24k(self):
        stereo = np.zeros((44100, 2), dtype=np.float32)
        stereo[:, 0] = 0.5
        stereo[:, 1] = 0.5

        audio_b64 = encode_for_upstream(make_wav(stereo, 44100))

        pcm = base64.b64decode(audio_b64)
        assert len(pcm) == 2 * TARGET_SAMPLE_RATE

    def test_24k_mono_is_quantized_exactly(self):
        mono = np.array([0.0, 1.0, -1.0], dtype=np.float32)

        audio_b64 = encode_for_upstream(make_wav(mono, TARGET_SAMPLE_RATE))

        assert np.frombuffer(base64.b64decode(audio_b64), dtype="<i2").tolist() == [0, 32767, -32768]

    def test_undecodable_input_returns_none(self):
        assert encode_for_upstream(b"definitely not audio") is None

    def test_samples_to_base64_handles_captured_frames(self):
        frames = np.zeros((48000, 1), dtype=np.float32)

        audio_b64 = samples_to_base64(frames, 48000)

        assert len(base64.b64decode(audio_b64)) == 2 * TARGET_SAMPLE_RATE


class TestDecodeAudio:
    """Tests for decode_audio."""

    def test_returns_2d_samples_and_rate(self):
        samples, rate = decode_audio(make_wav(np.zeros(10, dtype=np.float32), 16000))

        assert rate == 16000
        assert samples.shape == (10, 1)
