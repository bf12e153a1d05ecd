"""
Microphone capture and audio playback.

sounddevice is imported lazily: PortAudio may be missing on headless
machines, in which case recording is unavailable and playback falls back
to WAV files.
"""

import threading
from pathlib import Path
from typing import Any

import numpy as np
from numpy.typing import NDArray

from voicerelay.backend.core.logging import get_logger, log_with_source
from voicerelay.client.audio import TARGET_SAMPLE_RATE, decode_pcm16_base64, pcm16_to_wav

logger = get_logger(__name__)


class MicrophoneUnavailableError(RuntimeError):
    """Raised when no input device can be opened."""


def _import_sounddevice() -> Any:
    import sounddevice as sd

    return sd


class Recorder:
    """Captures float32 frames from an input device between start() and stop()."""

    def __init__(self, channels: int = 1, device: str | int | None = None) -> None:
        self.channels = channels
        self.device = device
        self.sample_rate = 0
        self._frames: list[NDArray[np.float32]] = []
        self._lock = threading.Lock()
        self._stream: Any = None

    @property
    def recording(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        """
        Raises:
            MicrophoneUnavailableError: If sounddevice or the device is unavailable
        """
        if self.recording:
            return
        try:
            sd = _import_sounddevice()
        except (ImportError, OSError) as e:
            raise MicrophoneUnavailableError(str(e)) from e

        try:
            info = sd.query_devices(self.device, "input")
            self.sample_rate = int(info["default_samplerate"])
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise MicrophoneUnavailableError(str(e)) from e

        with self._lock:
            self._frames = []
        self._stream = stream
        log_with_source(logger, "tui", "info", "Recording started", sample_rate=self.sample_rate)

    def _callback(self, indata: NDArray[np.float32], frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning("Input stream status", extra={"status": str(status)})
        with self._lock:
            self._frames.append(indata.copy())

    def stop(self) -> tuple[NDArray[np.float32], int]:
        """
        Stop capturing.

        Returns:
            Tuple of (samples shaped (frames, channels), sample rate)
        """
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

        with self._lock:
            frames, self._frames = self._frames, []

        if not frames:
            samples = np.zeros((0, self.channels), dtype=np.float32)
        else:
            samples = np.concatenate(frames, axis=0)
        log_with_source(logger, "tui", "info", "Recording stopped", frames=len(samples))
        return samples, self.sample_rate


class AudioPlayer:
    """
    Plays base64 PCM16 mono audio as it arrives.

    Chunks are appended to a pending buffer that a raw output stream drains,
    so streamed deltas play back to back. Without an output device each
    chunk is written to a WAV file instead.
    """

    def __init__(
        self,
        sample_rate: int = TARGET_SAMPLE_RATE,
        device: str | int | None = None,
        output_dir: Path | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.device = device
        self.output_dir = output_dir or Path.cwd()
        self.file_count = 0
        self._pending = bytearray()
        self._lock = threading.Lock()
        self._stream: Any = None

        self.sd = None
        try:
            self.sd = _import_sounddevice()
        except (ImportError, OSError) as e:
            logger.warning("sounddevice not available, audio will be saved to file", extra={"error": str(e)})

    def play_base64(self, audio_b64: str) -> None:
        try:
            pcm = decode_pcm16_base64(audio_b64)
        except ValueError as e:
            logger.warning("Skipping undecodable audio", extra={"error": str(e)})
            return
        self.play_pcm16(pcm)

    def play_pcm16(self, pcm: bytes) -> None:
        if not pcm:
            return
        if self.sd is None:
            self._save_to_file(pcm)
            return

        with self._lock:
            self._pending.extend(pcm)
        try:
            self._ensure_stream()
        except self.sd.PortAudioError as e:
            logger.error("Audio playback failed", extra={"error": str(e)})
            self.sd = None
            self._stream = None
            self.stop()
            self._save_to_file(pcm)

    def _ensure_stream(self) -> None:
        if self._stream is not None:
            return
        self._stream = self.sd.RawOutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        needed = len(outdata)
        with self._lock:
            chunk = bytes(self._pending[:needed])
            del self._pending[:needed]
        outdata[:len(chunk)] = chunk
        if len(chunk) < needed:
            outdata[len(chunk):] = b"\x00" * (needed - len(chunk))

    def stop(self) -> None:
        """Drop anything not yet played."""
        with self._lock:
            self._pending.clear()

    def close(self) -> None:
        self.stop()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

    def _save_to_file(self, pcm: bytes) -> Path:
        path = self.output_dir / f"audio_output_{self.file_count:04d}.wav"
        path.write_bytes(pcm16_to_wav(pcm, self.sample_rate))
        self.file_count += 1
        logger.debug("Saved audio to file", extra={"path": str(path)})
        return path
