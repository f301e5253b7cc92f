"""Tests for user settings and the settings store."""

import os

import pytest
import yaml

from aura_voice.errors import PersistenceError, ValidationError
from aura_voice.settings import Settings, SettingsStore


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.language == "auto"
        assert settings.max_history_entries == 100
        assert settings.save_audio_files is False
        assert len(settings.agents) == 4

    def test_merged_keeps_other_keys(self):
        settings = Settings().merged({"language": "ja"})
        assert settings.language == "ja"
        assert settings.ui_language == "en"

    def test_merged_parses_agents(self):
        settings = Settings().merged({"agents": [{"id": "a", "name": "A", "instruction": "x"}]})
        assert settings.agents[0].id == "a"

    def test_duplicate_agent_ids(self):
        agent = {"id": "a", "name": "A", "instruction": "x"}
        with pytest.raises(ValidationError):
            Settings().merged({"agents": [agent, agent]})

    @pytest.mark.parametrize("partial", [
        {"unknown": 1},
        {"max_history_entries": 0},
        {"max_history_entries": True},
        {"save_audio_files": "yes"},
        {"language": 3},
        {"agents": "none"},
    ])
    def test_invalid(self, partial):
        with pytest.raises(ValidationError):
            Settings().merged(partial)

    def test_redacted(self):
        data = Settings(api_key="sk-abcdefghijklmnop").to_dict(redact=True)
        assert data["api_key"] == "sk-...mnop"

    def test_env_key_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        assert Settings().resolve_api_key() == "sk-from-env"
        assert Settings(api_key="sk-stored").resolve_api_key() == "sk-stored"

    def test_no_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert Settings().resolve_api_key() is None


class TestSettingsStore:
    def test_missing_file_gives_defaults(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.yml")
        assert store.load() == Settings()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "settings.yml"
        store = SettingsStore(path)
        store.save(Settings().merged({"language": "de", "max_history_entries": 10}))

        assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)
        loaded = SettingsStore(path).load()
        assert loaded.language == "de"
        assert loaded.max_history_entries == 10
        assert [a.id for a in loaded.agents] == [a.id for a in Settings().agents]

    def test_corrupt_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "settings.yml"
        path.write_text(yaml.safe_dump({"max_history_entries": -5}))
        assert SettingsStore(path).load() == Settings()

    def test_save_failure_keeps_memory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = SettingsStore(blocker / "settings.yml")

        with pytest.raises(PersistenceError):
            store.save(Settings(language="fr"))
        assert store.settings.language == "fr"
