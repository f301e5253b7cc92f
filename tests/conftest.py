"""Shared fixtures: fake devices, fake services and a manually driven clock."""

import threading
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pytest

from aura_voice.agents import AgentConfig, AgentRegistry
from aura_voice.broadcaster import SurfaceBroadcaster
from aura_voice.capture import CaptureEngine
from aura_voice.completion import CompletionResult
from aura_voice.config import AudioConfig, SessionConfig
from aura_voice.errors import CaptureError, CaptureFailure
from aura_voice.history import ArtifactStore, HistoryStore
from aura_voice.pipeline import ProcessingPipeline
from aura_voice.session import SessionStateMachine
from aura_voice.settings import SettingsStore
from aura_voice.transcriber import STTResult


class FakeStream:
    def __init__(self):
        self.stopped = False
        self.closed = False
        self.aborted = False

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True

    def abort(self):
        self.aborted = True


class FakeStreamFactory:
    """Stands in for sounddevice; tests push audio through ``feed``"""

    def __init__(self):
        self.callback: Optional[Callable] = None
        self.finished_callback: Optional[Callable] = None
        self.streams: List[FakeStream] = []
        self.error: Optional[CaptureError] = None

    def __call__(self, audio_config, callback, finished_callback):
        if self.error is not None:
            raise self.error
        self.callback = callback
        self.finished_callback = finished_callback
        stream = FakeStream()
        self.streams.append(stream)
        return stream

    def feed(self, seconds: float = 0.5, amplitude: float = 0.1, sample_rate: int = 16000):
        frames = int(seconds * sample_rate)
        indata = np.full((frames, 1), amplitude, dtype=np.float32)
        self.callback(indata, frames, None, None)


class FakeTranscriber:
    def __init__(self, text: str = "hello world", language: str = "en", confidence: float = 0.9):
        self.text = text
        self.language = language
        self.confidence = confidence
        self.error: Optional[Exception] = None
        self.calls: List[Any] = []
        self.api_key: Optional[str] = None
        # When set, transcribe blocks until the test opens the gate
        self.gate: Optional[threading.Event] = None

    def configure(self, api_key):
        self.api_key = api_key

    def transcribe(self, audio, language=None):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        self.calls.append((audio, language))
        if self.error is not None:
            raise self.error
        return STTResult(text=self.text, language=self.language, confidence=self.confidence)


class FakeCompletion:
    def __init__(self, text: str = "processed"):
        self.text = text
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []
        self.api_key: Optional[str] = None

    def configure(self, api_key):
        self.api_key = api_key

    def complete(self, instruction, model, temperature, text):
        self.calls.append({
            "instruction": instruction,
            "model": model,
            "temperature": temperature,
            "text": text,
        })
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, model=model, tokens_used=42)


class ManualTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled and not self.fired:
            self.fired = True
            self.callback()


class ManualTimers:
    """Timer factory whose timers only fire when a test says so"""

    def __init__(self):
        self.timers: List[ManualTimer] = []

    def __call__(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.fired and not t.cancelled]

    def fire_all(self):
        for timer in self.pending():
            timer.fire()


class RecordingObserver:
    """Surface stand-in collecting every message it is sent"""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def __call__(self, message):
        self.messages.append(message)

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [m for m in self.messages if name is None or m.get("event") == name]

    def states(self) -> List[str]:
        return [m["snapshot"]["current_state"] for m in self.events("state-changed")]


TEST_AGENTS = [
    AgentConfig(id="dictation", name="Dictation", instruction="Clean up", auto_process_ai=False,
                hotkey="CommandOrControl+Alt+1"),
    AgentConfig(id="writer", name="Writer", instruction="Write a document", temperature=0.5,
                hotkey="CommandOrControl+Alt+2"),
    AgentConfig(id="off", name="Disabled", instruction="Nothing", enabled=False),
]


@pytest.fixture
def agents():
    return list(TEST_AGENTS)


@pytest.fixture
def artifacts(tmp_path):
    return ArtifactStore(tmp_path / "recordings")


@pytest.fixture
def history(tmp_path, artifacts):
    return HistoryStore(tmp_path / "history.jsonl", artifacts, max_entries=100)


@pytest.fixture
def stream_factory():
    return FakeStreamFactory()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def machine(tmp_path, agents, history, stream_factory, transcriber, completion, timers):
    settings_store = SettingsStore(tmp_path / "settings.yml")
    settings_store.save(settings_store.settings.merged({"agents": [a.to_dict() for a in agents]}))
    m = SessionStateMachine(
        registry=AgentRegistry(agents),
        history=history,
        capture=CaptureEngine(AudioConfig(level_interval=0.0), stream_factory=stream_factory),
        pipeline=ProcessingPipeline(transcriber, completion, api_key="sk-test-key-123456"),
        settings_store=settings_store,
        broadcaster=SurfaceBroadcaster(),
        session_config=SessionConfig(),
        selected_agent_id="writer",
        timer_factory=timers,
    )
    m.start()
    yield m
    m.stop()


def run(machine: SessionStateMachine, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
    """Submit a command, return its result and wait for follow-up work"""
    result = machine.submit(command, args).result(timeout=5)
    assert machine.wait_until_settled(timeout=5)
    return result


def settle(machine: SessionStateMachine) -> None:
    assert machine.wait_until_settled(timeout=5)


def empty_capture_error() -> CaptureError:
    return CaptureError(CaptureFailure.EMPTY_AUDIO, "No audio data recorded")
