"""
Two-step processing pipeline

Step A turns audio into text, step B runs the text through an agent. Each
step returns a tagged result (``Ok`` or ``Err``) validated here, once, so
the session core only ever branches on the tag.
"""

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from aura_voice.agents import AgentConfig
from aura_voice.completion import CompletionResult, CompletionService
from aura_voice.errors import (
    CompletionError,
    ServiceFailure,
    TranscriptionError,
    scrub_credentials,
)
from aura_voice.models import AudioArtifact
from aura_voice.transcriber import STTResult, Transcriber

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ServiceFailure
    detail: str


Result = Union[Ok[T], Err]


class ProcessingPipeline:
    """
    Sequences the speech-to-text and completion collaborators

    Neither step raises; failures come back as ``Err`` with credentials
    scrubbed from the detail.
    """

    def __init__(self, transcriber: Transcriber, completion: CompletionService, api_key: Optional[str] = None):
        self.transcriber = transcriber
        self.completion = completion
        self._api_key = api_key

    def configure(self, api_key: Optional[str]) -> None:
        """Swap credentials on both collaborators"""
        self._api_key = api_key
        self.transcriber.configure(api_key)
        self.completion.configure(api_key)

    def transcribe(self, audio: AudioArtifact, language: Optional[str] = None) -> "Result[STTResult]":
        """
        Step A: speech-to-text

        Args:
            audio: Flushed recording
            language: Language hint ("auto" or None to detect)

        Returns:
            Ok(STTResult) with non-blank text, or Err
        """
        if audio.is_empty:
            return Err(ServiceFailure.EMPTY_AUDIO, "Recorded audio is empty")

        try:
            result = self.transcriber.transcribe(audio, language)
        except TranscriptionError as e:
            return self._err(e.kind, e.message)
        except Exception as e:
            logger.exception("Unexpected transcription failure")
            return self._err(ServiceFailure.SERVICE_ERROR, f"Transcription failed: {e}")

        text = (result.text or "").strip()
        if not text:
            return Err(ServiceFailure.EMPTY_AUDIO, "No speech detected")

        confidence = min(max(float(result.confidence), 0.0), 1.0)
        return Ok(STTResult(text=text, language=result.language or language, confidence=confidence))

    def complete(self, agent: AgentConfig, transcript: str) -> "Result[CompletionResult]":
        """
        Step B: completion under an agent's configuration

        Args:
            agent: Validated agent
            transcript: Text from step A

        Returns:
            Ok(CompletionResult) with non-empty text, or Err
        """
        try:
            result = self.completion.complete(
                agent.instruction, agent.model, agent.temperature, transcript
            )
        except CompletionError as e:
            return self._err(e.kind, e.message)
        except Exception as e:
            logger.exception("Unexpected completion failure")
            return self._err(ServiceFailure.SERVICE_ERROR, f"LLM processing failed: {e}")

        if not result.text or not result.text.strip():
            return Err(ServiceFailure.EMPTY_RESPONSE, "No response from the model")
        return Ok(result)

    def _err(self, kind: ServiceFailure, detail: str) -> Err:
        detail = scrub_credentials(detail, [self._api_key])
        logger.warning(f"Pipeline step failed ({kind.value}): {detail}")
        return Err(kind, detail)
