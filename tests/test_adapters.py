"""Tests for the OpenAI-backed speech-to-text and completion adapters."""

import math
from types import SimpleNamespace

import httpx
import numpy as np
import openai
import pytest

from aura_voice.capture import encode_wav
from aura_voice.completion import OpenAICompletionService
from aura_voice.config import CompletionConfig, TranscriptionConfig
from aura_voice.errors import CompletionError, ServiceFailure, TranscriptionError
from aura_voice.models import AudioArtifact
from aura_voice.openai_client import classify_openai_error, make_client
from aura_voice.transcriber import OpenAITranscriber, create_transcriber, decode_wav

AUDIO = AudioArtifact(data=encode_wav(np.zeros(160, dtype=np.float32), 16000), sample_rate=16000, duration=0.01)
REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class FakeTranscriptions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


class FakeChatCompletions(FakeTranscriptions):
    pass


def fake_audio_client(transcriptions):
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))


def fake_chat_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def chat_response(content, tokens=12):
    return SimpleNamespace(
        model="gpt-4o-mini",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


class TestOpenAITranscriber:
    def test_no_key(self):
        with pytest.raises(TranscriptionError) as exc:
            OpenAITranscriber(TranscriptionConfig()).transcribe(AUDIO)
        assert exc.value.kind is ServiceFailure.AUTH_FAILURE

    def test_transcribe(self):
        transcriber = OpenAITranscriber(TranscriptionConfig())
        api = FakeTranscriptions(SimpleNamespace(
            text=" Hallo Welt ",
            language="german",
            segments=[SimpleNamespace(avg_logprob=-0.1), SimpleNamespace(avg_logprob=-0.3)],
        ))
        transcriber._client = fake_audio_client(api)

        result = transcriber.transcribe(AUDIO, "de")

        assert result.text == "Hallo Welt"
        assert result.language == "german"
        assert result.confidence == round(math.exp(-0.2), 3)
        assert api.kwargs["language"] == "de"
        assert api.kwargs["model"] == "whisper-1"
        assert api.kwargs["file"][0] == "recording.wav"

    def test_auto_language_not_sent(self):
        transcriber = OpenAITranscriber(TranscriptionConfig())
        api = FakeTranscriptions(SimpleNamespace(text="hi", language=None, segments=None))
        transcriber._client = fake_audio_client(api)

        result = transcriber.transcribe(AUDIO, "auto")

        assert "language" not in api.kwargs
        assert result.confidence == 0.95

    def test_rate_limit(self):
        transcriber = OpenAITranscriber(TranscriptionConfig())
        error = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None
        )
        transcriber._client = fake_audio_client(FakeTranscriptions(error=error))

        with pytest.raises(TranscriptionError) as exc:
            transcriber.transcribe(AUDIO)
        assert exc.value.kind is ServiceFailure.RATE_LIMITED


class TestOpenAICompletionService:
    def test_complete(self):
        service = OpenAICompletionService(CompletionConfig(max_tokens=100))
        api = FakeChatCompletions(chat_response("Done."))
        service._client = fake_chat_client(api)

        result = service.complete("Be brief", "gpt-4o-mini", 0.3, "hello")

        assert result.text == "Done."
        assert result.tokens_used == 12
        assert api.kwargs["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "hello"},
        ]
        assert api.kwargs["temperature"] == 0.3
        assert api.kwargs["max_tokens"] == 100

    def test_empty_response(self):
        service = OpenAICompletionService(CompletionConfig())
        service._client = fake_chat_client(FakeChatCompletions(chat_response(None)))
        with pytest.raises(CompletionError) as exc:
            service.complete("i", "m", 0.5, "t")
        assert exc.value.kind is ServiceFailure.EMPTY_RESPONSE

    def test_connection_error(self):
        service = OpenAICompletionService(CompletionConfig())
        error = openai.APIConnectionError(request=REQUEST)
        service._client = fake_chat_client(FakeChatCompletions(error=error))
        with pytest.raises(CompletionError) as exc:
            service.complete("i", "m", 0.5, "t")
        assert exc.value.kind is ServiceFailure.NETWORK_FAILURE

    def test_configure_swaps_client(self):
        service = OpenAICompletionService(CompletionConfig())
        assert service._client is None
        service.configure("sk-test-abcdefgh")
        assert service._client is not None


class TestHelpers:
    def test_make_client_without_key(self):
        assert make_client(None, 10) is None
        assert make_client("", 10) is None

    def test_classify_auth(self):
        error = openai.AuthenticationError(
            "bad key", response=httpx.Response(401, request=REQUEST), body=None
        )
        assert classify_openai_error(error) is ServiceFailure.AUTH_FAILURE

    def test_classify_other(self):
        assert classify_openai_error(ValueError("x")) is ServiceFailure.SERVICE_ERROR

    def test_decode_wav(self):
        samples = decode_wav(encode_wav(np.full(10, 0.5, dtype=np.float32), 16000))
        assert samples.dtype == np.float32
        assert samples[0] == pytest.approx(0.5, abs=1e-3)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_transcriber(TranscriptionConfig(backend="carrier-pigeon"), None)
