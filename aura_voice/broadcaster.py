"""
Surface broadcaster

Explicit observer registry (``{id: send_fn}``) with a mandatory
reconciliation push on attach. Observers that cannot be reached are
pruned; nobody else notices.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from aura_voice.errors import SyncError
from aura_voice.models import AppStateSnapshot

logger = logging.getLogger(__name__)

SendFn = Callable[[Dict[str, Any]], None]

# Event names
APP_STATE = "app-state"
STATE_CHANGED = "state-changed"
RECORDING_STATE_CHANGED = "recording-state-changed"
SELECTED_AGENT_CHANGED = "selected-agent-changed"
HISTORY_UPDATED = "history-updated"
ERROR = "error"
TRANSCRIPT_PENDING = "transcript-pending"
SETTINGS_UPDATED = "settings-updated"
AUDIO_LEVEL = "audio-level"


def make_event(event: str, snapshot: Optional[AppStateSnapshot] = None, **payload: Any) -> Dict[str, Any]:
    """Build an event message"""
    message: Dict[str, Any] = {"type": "event", "event": event}
    if snapshot is not None:
        message["snapshot"] = snapshot.to_dict()
    message.update(payload)
    return message


class SurfaceBroadcaster:
    """Fan-out of events to attached surfaces"""

    def __init__(self):
        self._observers: Dict[str, SendFn] = {}
        self._lock = threading.RLock()

    @property
    def observer_ids(self) -> List[str]:
        with self._lock:
            return list(self._observers)

    def attach(
        self,
        observer_id: str,
        send: SendFn,
        snapshot: AppStateSnapshot,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Register an observer after pushing it the current snapshot

        Args:
            observer_id: Unique observer identifier
            send: Delivery function; raises SyncError when unreachable
            snapshot: Current authoritative state
            extra: Additional fields for the reconciliation message

        Returns:
            True if the observer was reachable and is now attached
        """
        with self._lock:
            try:
                send(make_event(APP_STATE, snapshot, **(extra or {})))
            except SyncError as e:
                logger.debug(f"Observer '{observer_id}' unreachable on attach: {e}")
                return False
            self._observers[observer_id] = send
        logger.info(f"Surface attached: {observer_id} ({len(self._observers)} total)")
        return True

    def detach(self, observer_id: str) -> bool:
        with self._lock:
            removed = self._observers.pop(observer_id, None)
        if removed is not None:
            logger.info(f"Surface detached: {observer_id}")
        return removed is not None

    def publish(self, message: Dict[str, Any]) -> int:
        """
        Deliver a message to every observer

        Returns:
            Number of observers reached
        """
        delivered = 0
        with self._lock:
            for observer_id, send in list(self._observers.items()):
                try:
                    send(message)
                    delivered += 1
                except SyncError as e:
                    del self._observers[observer_id]
                    logger.debug(f"Dropped unreachable surface '{observer_id}': {e}")
        return delivered
