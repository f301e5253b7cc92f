"""
Shared value types for the session core
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(str, Enum):
    """Authoritative session states"""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING_STT = "processing_stt"
    PROCESSING_LLM = "processing_llm"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class AppStateSnapshot:
    """The only authoritative state pushed to surfaces"""
    current_state: SessionState
    is_recording: bool
    selected_agent_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_state": self.current_state.value,
            "is_recording": self.is_recording,
            "selected_agent_id": self.selected_agent_id,
        }


@dataclass(frozen=True)
class AudioArtifact:
    """Flushed recording, WAV encoded"""
    data: bytes
    sample_rate: int
    duration: float
    mime_type: str = "audio/wav"

    @property
    def is_empty(self) -> bool:
        return not self.data


@dataclass
class Session:
    """The single live voice interaction"""
    id: int
    agent_id: str
    agent_name: str
    started_at: datetime
    auto_process_ai: bool = True
    audio_path: Optional[str] = None
    duration: Optional[float] = None


@dataclass(frozen=True)
class PendingTranscript:
    """Transcript awaiting a process-with-ai / skip-ai decision"""
    text: str
    agent_id: str
    agent_name: str
    auto_process_ai: bool
    language: Optional[str] = None
    audio_path: Optional[str] = None
    duration: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "language": self.language,
            "audio_path": self.audio_path,
            "duration": self.duration,
        }
