"""
User settings store

Key-value document holding agents, credentials, language preferences and
the history limit. Read once at boot and written back on every update.
Unlike config.yml (daemon wiring) this document is edited by surfaces.
"""

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from aura_voice.agents import DEFAULT_AGENTS, AgentConfig
from aura_voice.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPENAI_API_KEY"
DEFAULT_MAX_HISTORY_ENTRIES = 100


@dataclass(frozen=True)
class Settings:
    """User-editable settings"""
    api_key: str = ""
    language: str = "auto"
    ui_language: str = "en"
    save_audio_files: bool = False
    max_history_entries: int = DEFAULT_MAX_HISTORY_ENTRIES
    agents: List[AgentConfig] = field(default_factory=lambda: list(DEFAULT_AGENTS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Build settings from a document, falling back to defaults per key"""
        return cls().merged(data)

    def merged(self, partial: Dict[str, Any]) -> "Settings":
        """
        Return a copy with ``partial`` applied

        Args:
            partial: Subset of settings keys; ``agents`` is a list of mappings

        Raises:
            ValidationError: Unknown key or invalid value
        """
        known = set(self.__dataclass_fields__)
        unknown = set(partial) - known
        if unknown:
            raise ValidationError(f"Unknown settings keys: {sorted(unknown)}")

        changes = dict(partial)
        if "agents" in changes:
            agents = changes["agents"]
            if not isinstance(agents, list):
                raise ValidationError("'agents' must be a list")
            changes["agents"] = [
                a if isinstance(a, AgentConfig) else AgentConfig.from_dict(a) for a in agents
            ]
            ids = [agent.id for agent in changes["agents"]]
            if len(ids) != len(set(ids)):
                raise ValidationError("Agent ids must be unique")
        if "max_history_entries" in changes:
            limit = changes["max_history_entries"]
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
                raise ValidationError(f"max_history_entries must be a positive integer, got {limit!r}")
        for key in ("api_key", "language", "ui_language"):
            if key in changes and not isinstance(changes[key], str):
                raise ValidationError(f"'{key}' must be a string")
        if "save_audio_files" in changes and not isinstance(changes["save_audio_files"], bool):
            raise ValidationError("'save_audio_files' must be a boolean")

        return replace(self, **changes)

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        api_key = self.api_key
        if redact and api_key:
            api_key = f"{api_key[:3]}...{api_key[-4:]}" if len(api_key) > 10 else "***"
        return {
            "api_key": api_key,
            "language": self.language,
            "ui_language": self.ui_language,
            "save_audio_files": self.save_audio_files,
            "max_history_entries": self.max_history_entries,
            "agents": [agent.to_dict() for agent in self.agents],
        }

    def resolve_api_key(self) -> Optional[str]:
        """Stored key, or the environment key when none is stored"""
        key = self.api_key.strip() or os.environ.get(API_KEY_ENV, "").strip()
        return key or None


class SettingsStore:
    """YAML-backed settings document"""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._settings = Settings()

    def load(self) -> Settings:
        """Load settings from disk, merged over defaults"""
        if not self.path.exists():
            logger.info(f"No settings file at {self.path}, using defaults")
            return self._settings

        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
            settings = Settings.from_dict(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error(f"Failed to load settings from {self.path}: {e}; using defaults")
            return self._settings

        with self._lock:
            self._settings = settings
        logger.info(f"Loaded settings ({len(settings.agents)} agents) from {self.path}")
        return settings

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings

    def save(self, settings: Settings) -> None:
        """
        Persist settings

        The in-memory value is replaced even when the write fails.

        Raises:
            PersistenceError: If the document could not be written
        """
        with self._lock:
            self._settings = settings
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                yaml.safe_dump(settings.to_dict(), f, sort_keys=False, allow_unicode=True)
            os.replace(tmp_path, self.path)
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise PersistenceError(f"Failed to save settings: {e}") from e
        logger.debug(f"Saved settings to {self.path}")

