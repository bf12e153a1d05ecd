"""
Audio encoding for the realtime API.

The upstream API takes and returns base64 PCM16, mono, 24 kHz, little
endian. Outbound: decode -> downmix -> resample -> quantize -> base64.
Inbound: base64 -> PCM16 -> float32 (for playback) or a WAV container.
"""

import base64
import binascii
import io

import numpy as np
import soundfile as sf
from numpy.typing import NDArray
from scipy import signal

from voicerelay.backend.core.logging import get_logger

logger = get_logger(__name__)

TARGET_SAMPLE_RATE = 24000
TARGET_CHANNELS = 1
SAMPLE_WIDTH_BYTES = 2


def decode_audio(data: bytes) -> tuple[NDArray[np.float32], int]:
    """
    Decode an encoded recording (WAV, FLAC, OGG) to float samples.

    Returns:
        Tuple of (samples shaped (frames, channels), sample rate)
    """
    samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    return samples, int(sample_rate)


def downmix(samples: NDArray[np.float32]) -> NDArray[np.float32]:
    """Average all channels to mono. 1-D input is already mono."""
    if samples.ndim == 1:
        return samples
    if samples.shape[1] == 1:
        return samples[:, 0]
    return samples.mean(axis=1, dtype=np.float32)


def resample(
    samples: NDArray[np.float32], source_rate: int, target_rate: int = TARGET_SAMPLE_RATE
) -> NDArray[np.float32]:
    """Resample mono float audio with scipy's Fourier method."""
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(
            f"Sample rates must be positive: source={source_rate}, target={target_rate}"
        )
    if source_rate == target_rate or len(samples) == 0:
        return samples

    num_samples = int(len(samples) * target_rate / source_rate)
    return signal.resample(samples, num_samples).astype(np.float32)


def float_to_pcm16(samples: NDArray[np.float32]) -> bytes:
    """
    Quantize float samples to 16-bit little-endian PCM.

    Samples are clamped to [-1, 1]. Negative values scale by 0x8000 and
    positive values by 0x7FFF so both ends of the int16 range are reachable.
    Fractions truncate toward zero.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype("<i2").tobytes()


def pcm16_to_float(pcm: bytes) -> NDArray[np.float32]:
    """Inverse of float_to_pcm16 for playback."""
    if len(pcm) % SAMPLE_WIDTH_BYTES != 0:
        raise ValueError(f"PCM16 data must be a multiple of 2 bytes, got {len(pcm)}")
    ints = np.frombuffer(pcm, dtype="<i2").astype(np.float32)
    return np.where(ints < 0, ints / 0x8000, ints / 0x7FFF).astype(np.float32)


def encode_pcm16_base64(pcm: bytes) -> str:
    return base64.b64encode(pcm).decode("ascii")


def decode_pcm16_base64(audio_b64: str) -> bytes:
    """
    Raises:
        ValueError: If the payload is not valid base64
    """
    try:
        return base64.b64decode(audio_b64, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 audio: {e}") from e


def pcm16_to_wav(pcm: bytes, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """Wrap raw PCM16 mono in a WAV container."""
    buffer = io.BytesIO()
    if len(pcm) % SAMPLE_WIDTH_BYTES != 0:
        raise ValueError(f"PCM16 data must be a multiple of 2 bytes, got {len(pcm)}")
    sf.write(buffer, np.frombuffer(pcm, dtype="<i2"), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def pcm16_duration_seconds(pcm_len: int, sample_rate: int = TARGET_SAMPLE_RATE) -> float:
    return pcm_len / (SAMPLE_WIDTH_BYTES * sample_rate)


def samples_to_base64(samples: NDArray[np.float32], sample_rate: int) -> str:
    """Downmix, resample and quantize captured samples to base64 PCM16 24 kHz."""
    mono = downmix(samples)
    mono = resample(mono, sample_rate, TARGET_SAMPLE_RATE)
    return encode_pcm16_base64(float_to_pcm16(mono))


def encode_for_upstream(data: bytes) -> str | None:
    """
    Convert an encoded recording to base64 PCM16 mono 24 kHz.

    Returns:
        The base64 string, or None if the audio could not be processed
    """
    try:
        samples, sample_rate = decode_audio(data)
        return samples_to_base64(samples, sample_rate)
    except (RuntimeError, ValueError) as e:
        logger.error("Error processing audio", extra={"error": str(e)})
        return None
