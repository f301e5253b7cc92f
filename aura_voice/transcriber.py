"""
Speech-to-text backends

Two interchangeable backends share one call shape,
``transcribe(audio, language) -> STTResult``:

- OpenAI ``whisper-1`` over the network
- faster-whisper running locally (model loaded once at startup)

Both raise TranscriptionError with a failure category; the pipeline turns
that into a tagged result.
"""

import io
import logging
import math
import threading
import wave
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
import openai

from aura_voice.config import TranscriptionConfig
from aura_voice.errors import ServiceFailure, TranscriptionError
from aura_voice.models import AudioArtifact
from aura_voice.openai_client import classify_openai_error, make_client

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.95


@dataclass(frozen=True)
class STTResult:
    """Speech-to-text output"""
    text: str
    language: Optional[str]
    confidence: float


class Transcriber(Protocol):
    def transcribe(self, audio: AudioArtifact, language: Optional[str] = None) -> STTResult:
        ...

    def configure(self, api_key: Optional[str]) -> None:
        ...


def _language_hint(language: Optional[str]) -> Optional[str]:
    if not language or language == "auto":
        return None
    return language


class OpenAITranscriber:
    """Transcription via the OpenAI audio API"""

    def __init__(self, config: TranscriptionConfig, api_key: Optional[str] = None):
        self.config = config
        self._lock = threading.Lock()
        self._client = make_client(api_key, config.timeout)

    def configure(self, api_key: Optional[str]) -> None:
        """Swap credentials"""
        with self._lock:
            self._client = make_client(api_key, self.config.timeout)

    def transcribe(self, audio: AudioArtifact, language: Optional[str] = None) -> STTResult:
        """
        Transcribe an audio artifact

        Args:
            audio: WAV artifact from the capture engine
            language: ISO language hint, or None/"auto" to detect

        Returns:
            STTResult

        Raises:
            TranscriptionError: On missing credentials or API failure
        """
        with self._lock:
            client = self._client
        if client is None:
            raise TranscriptionError(ServiceFailure.AUTH_FAILURE, "OpenAI API key is not configured")

        hint = _language_hint(language)
        kwargs = {"language": hint} if hint else {}
        try:
            result = client.audio.transcriptions.create(
                file=("recording.wav", audio.data, audio.mime_type),
                model=self.config.model,
                response_format="verbose_json",
                **kwargs,
            )
        except openai.OpenAIError as e:
            kind = classify_openai_error(e)
            raise TranscriptionError(kind, f"Transcription failed: {e}") from e

        text = (getattr(result, "text", "") or "").strip()
        segments = getattr(result, "segments", None) or []
        logprobs = [s.avg_logprob for s in segments if getattr(s, "avg_logprob", None) is not None]
        confidence = math.exp(sum(logprobs) / len(logprobs)) if logprobs else DEFAULT_CONFIDENCE

        logger.info(f"Transcribed {len(text.split())} words via {self.config.model}")
        return STTResult(
            text=text,
            language=getattr(result, "language", None) or hint,
            confidence=round(confidence, 3),
        )


class WhisperTranscriber:
    """Local transcription using faster-whisper"""

    def __init__(self, config: TranscriptionConfig):
        from faster_whisper import WhisperModel

        self.config = config
        self._lock = threading.Lock()

        logger.info(f"Loading Whisper model: {config.model}")
        self._model = WhisperModel(
            config.model,
            device=config.device,
            compute_type=config.compute_type,
        )
        logger.info(f"Whisper model loaded: {config.model}")

    def configure(self, api_key: Optional[str]) -> None:
        """Local backend needs no credentials"""

    def transcribe(self, audio: AudioArtifact, language: Optional[str] = None) -> STTResult:
        """Transcribe a WAV artifact with the local Whisper model"""
        try:
            samples = decode_wav(audio.data)
        except (wave.Error, EOFError) as e:
            raise TranscriptionError(ServiceFailure.EMPTY_AUDIO, f"Unreadable audio: {e}") from e
        if samples.size == 0:
            raise TranscriptionError(ServiceFailure.EMPTY_AUDIO, "Recorded audio is empty")

        try:
            with self._lock:
                segments, info = self._model.transcribe(
                    samples,
                    language=_language_hint(language),
                    beam_size=self.config.beam_size,
                )
                text_parts = [segment.text.strip() for segment in segments]
        except Exception as e:
            raise TranscriptionError(ServiceFailure.SERVICE_ERROR, f"Transcription failed: {e}") from e

        full_text = " ".join(text_parts).strip()
        logger.info(f"Transcribed {len(full_text.split())} words locally")
        return STTResult(
            text=full_text,
            language=info.language,
            confidence=round(float(info.language_probability), 3),
        )


def decode_wav(data: bytes) -> np.ndarray:
    """Decode 16-bit mono WAV bytes to float32 samples in [-1, 1]"""
    with wave.open(io.BytesIO(data), "rb") as wav:
        frames = wav.readframes(wav.getnframes())
    return np.frombuffer(frames, dtype=np.int16).astype(np.float32) / 32768.0


def create_transcriber(config: TranscriptionConfig, api_key: Optional[str]) -> Transcriber:
    """Build the configured backend"""
    if config.backend == "openai":
        return OpenAITranscriber(config, api_key=api_key)
    if config.backend == "whisper":
        return WhisperTranscriber(config)
    raise ValueError(f"Unknown transcription backend: {config.backend}")
