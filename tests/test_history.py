"""Tests for the bounded history store and artifact cleanup."""

import json
import logging
import os
from datetime import datetime, timezone

import pytest

from aura_voice.errors import ConfirmationRequiredError, PersistenceError, ValidationError
from aura_voice.history import ArtifactStore, HistoryEntry, HistoryStore
from aura_voice.models import AudioArtifact


def entry(n, audio_file_path=None, response="answer"):
    return HistoryEntry.create(
        "writer", "Writer", True, f"text {n}", response,
        audio_file_path=audio_file_path, duration=1.5,
    )


def audio_file(artifacts, n):
    return artifacts.save(AudioArtifact(data=b"RIFF" + bytes([n]) * 16, sample_rate=16000, duration=0.1))


class TestHistoryEntry:
    def test_partial(self):
        assert entry(1, response="").is_partial
        assert not entry(1).is_partial

    def test_timestamp_is_iso8601(self):
        e = HistoryEntry.create(
            "a", "A", False, "t", timestamp=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        )
        assert e.to_dict()["timestamp"] == "2024-05-01T12:30:00.000+00:00"

    def test_from_dict(self):
        original = HistoryEntry.create(
            "writer", "Writer", True, "text", "answer",
            duration=2.0, timestamp=datetime(2024, 5, 1, 9, 0, 0, 123000, tzinfo=timezone.utc),
        )
        assert HistoryEntry.from_dict(json.loads(original.to_jsonl())) == original


class TestHistoryStore:
    def test_append_and_list_newest_first(self, history):
        for n in range(3):
            history.append(entry(n))
        assert [e.transcription for e in history.list()] == ["text 2", "text 1", "text 0"]
        assert [e.transcription for e in history.list(newest_first=False)][0] == "text 0"

    def test_append_purges_oldest_with_audio(self, tmp_path, artifacts):
        store = HistoryStore(tmp_path / "h.jsonl", artifacts, max_entries=2)
        first_audio = audio_file(artifacts, 1)
        store.append(entry(1, audio_file_path=first_audio))
        store.append(entry(2))
        store.append(entry(3))

        assert len(store) == 2
        assert [e.transcription for e in store.list()] == ["text 3", "text 2"]
        assert not os.path.exists(first_audio)

    def test_reduction_example(self, tmp_path, artifacts):
        store = HistoryStore(tmp_path / "h.jsonl", artifacts, max_entries=5)
        for n in range(5):
            store.append(entry(n))

        assert store.check_reduction(3) == 2
        assert store.check_reduction(10) == 0

        with pytest.raises(ConfirmationRequiredError) as exc:
            store.set_max_entries(3)
        assert exc.value.delete_count == 2
        assert len(store) == 5
        assert store.max_entries == 5

        assert store.set_max_entries(3, confirmed=True) == 2
        assert [e.transcription for e in store.list(newest_first=False)] == ["text 2", "text 3", "text 4"]

    def test_confirmed_count_must_match(self, tmp_path, artifacts):
        store = HistoryStore(tmp_path / "h.jsonl", artifacts, max_entries=10)
        for n in range(5):
            store.append(entry(n))
        confirmed = store.check_reduction(3)
        store.append(entry(5))

        with pytest.raises(ConfirmationRequiredError) as exc:
            store.set_max_entries(3, confirmed=True, expected_delete_count=confirmed)
        assert exc.value.delete_count == 3
        assert len(store) == 6
        assert store.max_entries == 10

        assert store.set_max_entries(3, confirmed=True, expected_delete_count=3) == 3

    def test_raising_limit_needs_no_confirmation(self, history):
        history.append(entry(1))
        assert history.set_max_entries(500) == 0
        assert history.max_entries == 500

    def test_invalid_limit(self, history):
        with pytest.raises(ValidationError):
            history.check_reduction(0)

    def test_delete_removes_audio(self, history, artifacts):
        path = audio_file(artifacts, 2)
        entry_id = history.append(entry(1, audio_file_path=path))

        assert history.delete(entry_id) is True
        assert history.get(entry_id) is None
        assert history.delete(entry_id) is False

    def test_missing_audio_is_warning(self, history, caplog):
        entry_id = history.append(entry(1, audio_file_path="/nonexistent/recording.wav"))
        with caplog.at_level(logging.WARNING):
            assert history.delete(entry_id) is True
        assert "already gone" in caplog.text

    def test_clear(self, history, artifacts):
        path = audio_file(artifacts, 3)
        history.append(entry(1, audio_file_path=path))
        history.append(entry(2))
        assert history.clear() == 2
        assert len(history) == 0

    def test_persisted_as_jsonl(self, tmp_path, artifacts):
        path = tmp_path / "h.jsonl"
        store = HistoryStore(path, artifacts)
        store.append(entry(1))
        store.append(entry(2, response=""))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["transcription"] == "text 1"

        reloaded = HistoryStore(path, artifacts)
        assert reloaded.load() == 2
        assert reloaded.list()[0].is_partial

    def test_load_skips_malformed_lines(self, tmp_path, artifacts):
        path = tmp_path / "h.jsonl"
        path.write_text(entry(1).to_jsonl() + "\nnot json\n{\"id\": \"x\"}\n")
        store = HistoryStore(path, artifacts)
        assert store.load() == 1

    def test_save_failure_keeps_memory(self, tmp_path, artifacts):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = HistoryStore(blocker / "h.jsonl", artifacts)

        with pytest.raises(PersistenceError):
            store.append(entry(1))
        assert len(store) == 1


class TestArtifactStore:
    def test_save_writes_file(self, tmp_path):
        store = ArtifactStore(tmp_path / "rec")
        path = store.save(AudioArtifact(data=b"RIFFdata", sample_rate=16000, duration=0.2))
        assert path.endswith(".wav")
        with open(path, "rb") as f:
            assert f.read() == b"RIFFdata"

    def test_delete_none(self, tmp_path):
        assert ArtifactStore(tmp_path).delete(None) is False
