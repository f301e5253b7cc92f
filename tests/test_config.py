"""Tests for daemon configuration."""

from pathlib import Path

import pytest
import yaml

from aura_voice.config import Config


class TestConfig:
    def test_defaults(self, tmp_path):
        config = Config.from_dict({}, config_path=tmp_path)
        assert config.session.completed_revert_seconds == 3.0
        assert config.session.transcription_error_revert_seconds == 5.0
        assert config.transcription.backend == "openai"
        assert config.get_socket_path() == tmp_path / "aura-voice.sock"

    def test_load(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({
            "storage": {"data_dir": "data"},
            "session": {"completed_revert_seconds": 1.5},
        }))
        config = Config.load(path)
        assert config.session.completed_revert_seconds == 1.5
        assert config.get_history_path() == tmp_path / "data" / "history.jsonl"
        assert config.get_recordings_dir() == tmp_path / "data" / "recordings"

    def test_home_expanded(self, tmp_path):
        config = Config.from_dict({}, config_path=tmp_path)
        assert config.get_data_dir() == Path("~/.aura").expanduser()

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit):
            Config.load(tmp_path / "nope.yml")

    def test_example_config_loads(self):
        example = Path(__file__).resolve().parent.parent / "config.example.yml"
        config = Config.load(example)
        assert config.audio.sample_rate == 16000
        assert config.audio.mic_device is None
