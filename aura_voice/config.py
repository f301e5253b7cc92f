"""
Configuration management for aura-voice
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# Auto-revert delays in seconds
COMPLETED_REVERT_SECONDS = 3.0
CAPTURE_ERROR_REVERT_SECONDS = 3.0
TRANSCRIPTION_ERROR_REVERT_SECONDS = 5.0
ERROR_MESSAGE_SECONDS = 5.0


@dataclass
class ServerConfig:
    """Server configuration"""
    socket_path: str = "aura-voice.sock"
    request_timeout: float = 30.0
    outbound_queue_size: int = 256
    hotkeys: bool = True


@dataclass
class StorageConfig:
    """On-disk locations for settings, history and recordings"""
    data_dir: str = "~/.aura"
    settings_file: str = "settings.yml"
    history_file: str = "history.jsonl"
    recordings_dir: str = "recordings"


@dataclass
class AudioConfig:
    """Audio configuration"""
    sample_rate: int = 16000
    buffer_size: int = 1600
    mic_device: Optional[int] = None
    level_interval: float = 0.1


@dataclass
class TranscriptionConfig:
    """Transcription configuration"""
    backend: str = "openai"
    model: str = "whisper-1"
    device: str = "cpu"
    compute_type: str = "int8"
    beam_size: int = 5
    timeout: float = 30.0


@dataclass
class CompletionConfig:
    """Completion configuration"""
    max_tokens: int = 4000
    timeout: float = 30.0


@dataclass
class SessionConfig:
    """Session timing"""
    completed_revert_seconds: float = COMPLETED_REVERT_SECONDS
    capture_error_revert_seconds: float = CAPTURE_ERROR_REVERT_SECONDS
    transcription_error_revert_seconds: float = TRANSCRIPTION_ERROR_REVERT_SECONDS
    error_message_seconds: float = ERROR_MESSAGE_SECONDS


@dataclass
class Config:
    """Main configuration container"""
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    config_path: Path = field(default_factory=Path.cwd)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file

        Args:
            config_path: Path to config file. If None, searches for config.yml
                        in the project root (relative to package location).

        Returns:
            Config object

        Raises:
            SystemExit: If config file not found
        """
        if config_path is not None:
            resolved_path = config_path
        else:
            package_dir = Path(__file__).parent
            project_root = package_dir.parent
            resolved_path = project_root / "config.yml"

        if not resolved_path.exists():
            logger.error(f"Config file not found: {resolved_path}")
            logger.error("Please copy config.example.yml to config.yml and customize it.")
            sys.exit(1)

        config_data = _load_yaml(resolved_path)
        logger.info(f"Loaded config from {resolved_path}")

        return cls.from_dict(config_data, config_path=resolved_path.parent)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any], config_path: Optional[Path] = None) -> "Config":
        """Build a Config from an already parsed mapping"""
        return cls(
            server=ServerConfig(**(config_data.get("server") or {})),
            storage=StorageConfig(**(config_data.get("storage") or {})),
            audio=AudioConfig(**(config_data.get("audio") or {})),
            transcription=TranscriptionConfig(**(config_data.get("transcription") or {})),
            completion=CompletionConfig(**(config_data.get("completion") or {})),
            session=SessionConfig(**(config_data.get("session") or {})),
            config_path=config_path or Path.cwd(),
        )

    def get_socket_path(self) -> Path:
        """Get the absolute path to the socket file"""
        return self._resolve(self.server.socket_path)

    def get_data_dir(self) -> Path:
        """Get the absolute path to the data directory"""
        return self._resolve(self.storage.data_dir)

    def get_settings_path(self) -> Path:
        return self.get_data_dir() / self.storage.settings_file

    def get_history_path(self) -> Path:
        return self.get_data_dir() / self.storage.history_file

    def get_recordings_dir(self) -> Path:
        return self.get_data_dir() / self.storage.recordings_dir

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return self.config_path / path


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return as dict"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
            return data if data else {}
    except Exception as e:
        logger.error(f"Error loading config file {path}: {e}")
        sys.exit(1)
