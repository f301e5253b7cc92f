"""
Push-to-talk audio capture

Owns the audio input device for the duration of one session, buffers mono
float32 chunks, publishes a live input level, and flushes everything into a
single WAV artifact on stop.
"""

import io
import logging
import threading
import time
import wave
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np

from aura_voice.config import AudioConfig
from aura_voice.errors import CaptureError, CaptureFailure
from aura_voice.models import AudioArtifact

logger = logging.getLogger(__name__)

# Level meter floor; anything quieter reads as 0.0
LEVEL_FLOOR_DBFS = -60.0

_DENIED_MARKERS = ("permission", "denied", "not authorized", "not permitted")


class CaptureState(str, Enum):
    """Capture engine sub-states"""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    ERROR = "error"


StateCallback = Callable[[CaptureState, Optional[CaptureError]], None]
LevelCallback = Callable[[float], None]


def classify_device_error(error: Exception) -> CaptureFailure:
    """Map a device exception to a capture failure category"""
    message = str(error).lower()
    if isinstance(error, PermissionError) or any(m in message for m in _DENIED_MARKERS):
        return CaptureFailure.DEVICE_DENIED
    return CaptureFailure.DEVICE_ERROR


def normalized_level(chunk: np.ndarray) -> float:
    """RMS level of a float32 chunk mapped from [-60 dBFS, 0 dBFS] to [0, 1]"""
    if chunk.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(chunk, dtype=np.float64))))
    if rms <= 0.0:
        return 0.0
    dbfs = 20.0 * np.log10(rms)
    return float(np.clip((dbfs - LEVEL_FLOOR_DBFS) / -LEVEL_FLOOR_DBFS, 0.0, 1.0))


def encode_wav(audio: np.ndarray, sample_rate: int) -> bytes:
    """Encode mono float32 samples as 16-bit PCM WAV"""
    pcm = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()


def open_input_stream(audio_config: AudioConfig, callback: Callable, finished_callback: Callable) -> Any:
    """
    Open and start a sounddevice input stream

    Args:
        audio_config: Audio settings
        callback: Per-block audio callback
        finished_callback: Called when the stream ends

    Returns:
        The started sounddevice.InputStream

    Raises:
        CaptureError: DeviceDenied or DeviceError
    """
    try:
        import sounddevice as sd
    except OSError as e:
        raise CaptureError(CaptureFailure.DEVICE_ERROR, f"Audio backend unavailable: {e}") from e

    device = audio_config.mic_device
    if device is None:
        device = _auto_detect_microphone(sd)

    try:
        stream = sd.InputStream(
            device=device,
            channels=1,
            samplerate=audio_config.sample_rate,
            blocksize=audio_config.buffer_size,
            dtype="float32",
            callback=callback,
            finished_callback=finished_callback,
        )
        stream.start()
    except (sd.PortAudioError, OSError, ValueError) as e:
        raise CaptureError(classify_device_error(e), f"Failed to open audio input: {e}") from e

    logger.info(f"Audio stream started (device: {device})")
    return stream


def _auto_detect_microphone(sd: Any) -> Optional[int]:
    """Default input device, else the first device with input channels"""
    try:
        default_idx = sd.default.device[0]
        if default_idx is not None and default_idx >= 0:
            device_info = sd.query_devices(default_idx)
            if device_info["max_input_channels"] > 0:
                return default_idx
    except Exception as e:
        logger.warning(f"Could not auto-detect default mic: {e}")

    try:
        for idx, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                logger.info(f"Using first available mic: [{idx}] {device['name']}")
                return idx
    except Exception as e:
        logger.error(f"Could not detect any microphone: {e}")
    return None


class CaptureEngine:
    """
    Exclusive, single-session audio recorder

    The level stream is for live feedback only; state changes are reported
    through ``on_state`` and never inferred from levels.
    """

    def __init__(
        self,
        audio_config: AudioConfig,
        on_state: Optional[StateCallback] = None,
        on_level: Optional[LevelCallback] = None,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize capture engine

        Args:
            audio_config: Audio settings
            on_state: Called on every sub-state change
            on_level: Called with normalized input levels while recording
            stream_factory: Opens a started input stream; defaults to
                :func:`open_input_stream`
        """
        self.audio_config = audio_config
        self.on_state = on_state
        self.on_level = on_level
        self._stream_factory = stream_factory or open_input_stream

        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._stream: Any = None
        self._frames: List[np.ndarray] = []
        self._started_at = 0.0
        self._last_level_at = 0.0

    @property
    def state(self) -> CaptureState:
        with self._lock:
            return self._state

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._stream is not None

    def start(self) -> None:
        """
        Acquire the input device and start buffering

        Raises:
            CaptureError: If the device is already held or cannot be opened
        """
        with self._lock:
            if self._stream is not None or self._state in (CaptureState.RECORDING, CaptureState.PROCESSING):
                raise CaptureError(CaptureFailure.DEVICE_ERROR, "Audio input is already in use")
            self._frames = []
            self._last_level_at = 0.0

            try:
                self._stream = self._stream_factory(
                    self.audio_config, self._audio_callback, self._on_stream_finished
                )
            except CaptureError as e:
                self._set_state(CaptureState.ERROR, e)
                raise

            self._started_at = time.monotonic()
            self._set_state(CaptureState.RECORDING)

    def stop(self) -> AudioArtifact:
        """
        Release the device and flush buffered audio

        Returns:
            The recorded AudioArtifact

        Raises:
            CaptureError: EmptyAudio if nothing was recorded, DeviceError if
                not recording or the stream could not be closed
        """
        with self._lock:
            if self._state is not CaptureState.RECORDING:
                raise CaptureError(CaptureFailure.DEVICE_ERROR, "Cannot stop: not recording")
            stream = self._stream
            self._stream = None
            frames = self._frames
            self._frames = []
            duration = time.monotonic() - self._started_at
            self._set_state(CaptureState.PROCESSING)

        try:
            stream.stop()
            stream.close()
        except Exception as e:
            error = CaptureError(CaptureFailure.DEVICE_ERROR, f"Failed to close audio input: {e}")
            self._fail(error)
            raise error from e

        if not frames:
            error = CaptureError(CaptureFailure.EMPTY_AUDIO, "No audio data recorded")
            self._fail(error)
            raise error

        audio = np.concatenate(frames)
        if audio.size == 0:
            error = CaptureError(CaptureFailure.EMPTY_AUDIO, "Recorded audio is empty")
            self._fail(error)
            raise error

        artifact = AudioArtifact(
            data=encode_wav(audio, self.audio_config.sample_rate),
            sample_rate=self.audio_config.sample_rate,
            duration=round(audio.size / self.audio_config.sample_rate, 2),
        )
        logger.info(
            f"Recording flushed: {artifact.duration:.2f}s audio, "
            f"{len(artifact.data) // 1024} KB (wall {duration:.2f}s)"
        )
        with self._lock:
            self._set_state(CaptureState.IDLE)
        return artifact

    def release(self) -> None:
        """Drop the device and any buffered audio without flushing"""
        with self._lock:
            stream = self._stream
            self._stream = None
            self._frames = []
            self._state = CaptureState.IDLE
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except Exception as e:
                logger.warning(f"Error releasing audio input: {e}")
            logger.info("Audio input released")

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning(f"Audio status: {status}")

        chunk = indata[:, 0].copy()
        with self._lock:
            if self._state is not CaptureState.RECORDING:
                return
            self._frames.append(chunk)

        now = time.monotonic()
        if self.on_level and now - self._last_level_at >= self.audio_config.level_interval:
            self._last_level_at = now
            try:
                self.on_level(normalized_level(chunk))
            except Exception as e:
                logger.debug(f"Level callback failed: {e}")

    def _on_stream_finished(self) -> None:
        with self._lock:
            unexpected = self._state is CaptureState.RECORDING and self._stream is not None
            if unexpected:
                self._stream = None
                self._frames = []
        if unexpected:
            self._fail(CaptureError(CaptureFailure.DEVICE_ERROR, "Audio input stopped unexpectedly"))

    def _fail(self, error: CaptureError) -> None:
        logger.error(f"Capture failed: {error}")
        with self._lock:
            self._set_state(CaptureState.ERROR, error)

    def _set_state(self, state: CaptureState, error: Optional[CaptureError] = None) -> None:
        """Record and report a sub-state change (called with lock held)"""
        if self._state is state and error is None:
            return
        self._state = state
        logger.debug(f"Capture state: {state.value}")
        if self.on_state:
            try:
                self.on_state(state, error)
            except Exception as e:
                logger.warning(f"Capture state callback failed: {e}")
