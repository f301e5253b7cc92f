"""
Bounded session history with audio artifact cleanup

Entries are kept in insertion order and persisted as JSONL with ISO 8601
timestamps. The entry limit is enforced on every append; lowering it is a
two-step operation (check, then confirmed apply).
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from aura_voice.errors import ConfirmationRequiredError, PersistenceError, ValidationError
from aura_voice.models import AudioArtifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """One finished session; response is empty for partial results"""
    id: str
    agent_id: str
    agent_name: str
    transcription: str
    response: str
    timestamp: datetime
    audio_file_path: Optional[str] = None
    duration: Optional[float] = None
    agent_auto_process_ai: bool = False

    @classmethod
    def create(
        cls,
        agent_id: str,
        agent_name: str,
        agent_auto_process_ai: bool,
        transcription: str,
        response: str = "",
        audio_file_path: Optional[str] = None,
        duration: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> "HistoryEntry":
        """Create an entry with a snapshot of the agent name and AI flag"""
        return cls(
            id=uuid.uuid4().hex[:12],
            agent_id=agent_id,
            agent_name=agent_name,
            transcription=transcription,
            response=response,
            timestamp=timestamp or datetime.now(timezone.utc).astimezone(),
            audio_file_path=audio_file_path,
            duration=duration,
            agent_auto_process_ai=agent_auto_process_ai,
        )

    @property
    def is_partial(self) -> bool:
        return not self.response

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "transcription": self.transcription,
            "response": self.response,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "audio_file_path": self.audio_file_path,
            "duration": self.duration,
            "agent_auto_process_ai": self.agent_auto_process_ai,
        }

    def to_jsonl(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=data["id"],
            agent_id=data["agent_id"],
            agent_name=data["agent_name"],
            transcription=data["transcription"],
            response=data.get("response") or "",
            timestamp=datetime.fromisoformat(data["timestamp"]),
            audio_file_path=data.get("audio_file_path"),
            duration=data.get("duration"),
            agent_auto_process_ai=bool(data.get("agent_auto_process_ai", False)),
        )


class ArtifactStore:
    """Write-once storage for recorded audio"""

    def __init__(self, directory: Path):
        self.directory = directory

    def save(self, artifact: AudioArtifact) -> str:
        """
        Write an audio artifact to disk

        Args:
            artifact: Flushed recording

        Returns:
            Absolute path of the written file

        Raises:
            PersistenceError: If the file could not be written
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
        extension = "wav" if "wav" in artifact.mime_type else "webm"
        path = self.directory / f"recording-{timestamp}.{extension}"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(artifact.data)
        except OSError as e:
            raise PersistenceError(f"Failed to save audio file: {e}") from e

        logger.info(f"Audio file saved: {path} ({len(artifact.data) // 1024} KB)")
        return str(path)

    def delete(self, path: Optional[str]) -> bool:
        """Delete an artifact; a missing file is only a warning"""
        if not path:
            return False
        try:
            os.unlink(path)
        except FileNotFoundError:
            logger.warning(f"Audio file already gone: {path}")
            return False
        except OSError as e:
            logger.warning(f"Failed to delete audio file {path}: {e}")
            return False
        logger.debug(f"Deleted audio file: {path}")
        return True


class HistoryStore:
    """
    Thread-safe bounded history

    Features:
    - Oldest-first purge on append, together with audio artifacts
    - Confirmed reduction of the entry limit
    - JSONL persistence, rewritten atomically on every change
    """

    def __init__(self, path: Path, artifacts: ArtifactStore, max_entries: int = 100):
        """
        Initialize history store

        Args:
            path: JSONL file backing the history
            artifacts: Store used to delete audio files of removed entries
            max_entries: Maximum number of retained entries
        """
        if max_entries < 1:
            raise ValidationError("max_entries must be at least 1")
        self.path = path
        self.artifacts = artifacts
        self._max_entries = max_entries
        self._entries: List[HistoryEntry] = []
        self._lock = threading.RLock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def load(self) -> int:
        """Load entries from disk, skipping malformed lines"""
        if not self.path.exists():
            return 0

        entries: List[HistoryEntry] = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(HistoryEntry.from_dict(json.loads(line)))
                    except (ValueError, KeyError, TypeError) as e:
                        logger.warning(f"Skipping malformed history line {line_no}: {e}")
        except OSError as e:
            logger.error(f"Failed to load history from {self.path}: {e}")
            return 0

        with self._lock:
            self._entries = entries
            overflow = self._overflow(len(entries), self._max_entries)
            if overflow:
                self._purge_oldest(overflow)
        logger.info(f"Loaded {len(entries)} history entries")
        return len(entries)

    def append(self, entry: HistoryEntry) -> str:
        """
        Append an entry, purging the oldest ones if the limit would be exceeded

        Args:
            entry: The new history entry

        Returns:
            The entry id

        Raises:
            PersistenceError: If the history file could not be written. The
                in-memory append has already happened.
        """
        with self._lock:
            overflow = self._overflow(len(self._entries) + 1, self._max_entries)
            if overflow:
                self._purge_oldest(overflow)
            self._entries.append(entry)
            self._save()

        logger.info(
            f"Added history entry {entry.id} ({entry.agent_name}, "
            f"{len(entry.transcription)} chars, partial={entry.is_partial})"
        )
        return entry.id

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def list(self, newest_first: bool = True) -> List[HistoryEntry]:
        with self._lock:
            entries = list(self._entries)
        if newest_first:
            entries.reverse()
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def delete(self, entry_id: str) -> bool:
        """Delete one entry and its audio artifact"""
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    break
            else:
                return False
            del self._entries[index]
            self.artifacts.delete(entry.audio_file_path)
            self._save()

        logger.info(f"Deleted history entry: {entry_id}")
        return True

    def clear(self) -> int:
        """Delete all entries and their audio artifacts"""
        with self._lock:
            removed = self._entries
            self._entries = []
            for entry in removed:
                self.artifacts.delete(entry.audio_file_path)
            self._save()

        logger.info(f"Cleared all history ({len(removed)} entries)")
        return len(removed)

    def check_reduction(self, new_max: int) -> int:
        """Number of entries that lowering the limit to ``new_max`` would delete"""
        if new_max < 1:
            raise ValidationError("max_history_entries must be at least 1")
        with self._lock:
            return self._overflow(len(self._entries), new_max)

    def set_max_entries(
        self,
        new_max: int,
        confirmed: bool = False,
        expected_delete_count: Optional[int] = None,
    ) -> int:
        """
        Change the entry limit

        Args:
            new_max: New limit
            confirmed: Caller has confirmed deletion of overflowing entries
            expected_delete_count: Deletion count the caller confirmed; a
                different count means the history changed in between

        Returns:
            Number of entries deleted

        Raises:
            ConfirmationRequiredError: If entries would be deleted and
                ``confirmed`` is False, or the count differs from
                ``expected_delete_count``. Nothing is changed.
        """
        with self._lock:
            delete_count = self.check_reduction(new_max)
            if delete_count and not confirmed:
                raise ConfirmationRequiredError(delete_count)
            if expected_delete_count is not None and delete_count != expected_delete_count:
                raise ConfirmationRequiredError(delete_count)
            self._max_entries = new_max
            if delete_count:
                self._purge_oldest(delete_count)
                self._save()

        if delete_count:
            logger.info(f"History limit set to {new_max}, purged {delete_count} entries")
        return delete_count

    @staticmethod
    def _overflow(count: int, limit: int) -> int:
        return max(0, count - limit)

    def _purge_oldest(self, count: int) -> None:
        """Drop the ``count`` oldest entries (called with lock held)"""
        purged = self._entries[:count]
        self._entries = self._entries[count:]
        for entry in purged:
            self.artifacts.delete(entry.audio_file_path)
        logger.debug(f"Purged {len(purged)} oldest history entries")

    def _save(self) -> None:
        """Rewrite the JSONL file (called with lock held)"""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                for entry in self._entries:
                    f.write(entry.to_jsonl())
                    f.write("\n")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to save history: {e}") from e
        logger.debug(f"Saved {len(self._entries)} history entries")
