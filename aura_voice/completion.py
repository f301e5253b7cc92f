"""
Language-model completion backend
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

import openai

from aura_voice.config import CompletionConfig
from aura_voice.errors import CompletionError, ServiceFailure
from aura_voice.openai_client import classify_openai_error, make_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    """Completion output"""
    text: str
    model: str
    tokens_used: int


class CompletionService(Protocol):
    def complete(
        self, instruction: str, model: str, temperature: float, text: str
    ) -> CompletionResult:
        ...

    def configure(self, api_key: Optional[str]) -> None:
        ...


class OpenAICompletionService:
    """Chat completions with the agent instruction as system prompt"""

    def __init__(self, config: CompletionConfig, api_key: Optional[str] = None):
        self.config = config
        self._lock = threading.Lock()
        self._client = make_client(api_key, config.timeout)

    def configure(self, api_key: Optional[str]) -> None:
        """Swap credentials"""
        with self._lock:
            self._client = make_client(api_key, self.config.timeout)

    def complete(
        self, instruction: str, model: str, temperature: float, text: str
    ) -> CompletionResult:
        """
        Run one completion

        Args:
            instruction: Agent instruction (system message)
            model: Model id
            temperature: Sampling temperature
            text: User transcript

        Returns:
            CompletionResult

        Raises:
            CompletionError: On missing credentials, API failure or empty output
        """
        with self._lock:
            client = self._client
        if client is None:
            raise CompletionError(ServiceFailure.AUTH_FAILURE, "OpenAI API key is not configured")

        try:
            completion = client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": instruction},
                    {"role": "user", "content": text},
                ],
                temperature=temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.OpenAIError as e:
            raise CompletionError(classify_openai_error(e), f"LLM processing failed: {e}") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise CompletionError(ServiceFailure.EMPTY_RESPONSE, "No response from the model")

        tokens = completion.usage.total_tokens if completion.usage else 0
        logger.info(f"Completion from {completion.model or model}: {tokens} tokens")
        return CompletionResult(text=content, model=completion.model or model, tokens_used=tokens)
