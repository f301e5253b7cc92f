"""
Global hotkeys

Each enabled agent may carry an accelerator such as
``CommandOrControl+Alt+1``. Pressing it selects that agent and toggles
recording through the session queue, exactly like a surface command.
"""

import logging
import sys
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from aura_voice.agents import AgentConfig

logger = logging.getLogger(__name__)

ToggleFn = Callable[[str], None]

_MODIFIERS = {
    "cmd": "<cmd>",
    "command": "<cmd>",
    "meta": "<cmd>",
    "super": "<cmd>",
    "ctrl": "<ctrl>",
    "control": "<ctrl>",
    "alt": "<alt>",
    "option": "<alt>",
    "shift": "<shift>",
}


def format_hotkey(accelerator: str, platform: Optional[str] = None) -> str:
    """
    Convert an accelerator to pynput's hotkey syntax

    ``CommandOrControl+Alt+1`` -> ``<ctrl>+<alt>+1`` (``<cmd>`` on macOS)
    """
    platform = platform or sys.platform
    parts = [p.strip().lower() for p in accelerator.replace(" ", "").split("+") if p]
    out = []
    for part in parts:
        if part in ("commandorcontrol", "cmdorctrl"):
            out.append("<cmd>" if platform == "darwin" else "<ctrl>")
        elif part in _MODIFIERS:
            out.append(_MODIFIERS[part])
        elif len(part) > 1:
            out.append(f"<{part}>")
        else:
            out.append(part)
    return "+".join(out)


def build_bindings(agents: Iterable[AgentConfig], platform: Optional[str] = None) -> Dict[str, str]:
    """Map pynput hotkey strings to agent ids; first agent wins on conflicts"""
    bindings: Dict[str, str] = {}
    for agent in agents:
        if not agent.enabled or not agent.hotkey:
            continue
        combo = format_hotkey(agent.hotkey, platform)
        if combo in bindings:
            logger.warning(
                f"Hotkey {agent.hotkey} of agent '{agent.id}' already bound to '{bindings[combo]}'"
            )
            continue
        bindings[combo] = agent.id
    return bindings


class HotkeyManager:
    """Owns the pynput listener and rebinds it when agents change"""

    def __init__(self, on_toggle: ToggleFn):
        self.on_toggle = on_toggle
        self._listener: Any = None
        self._lock = threading.Lock()

    def bind(self, agents: Iterable[AgentConfig]) -> int:
        """
        (Re)start the listener with the hotkeys of ``agents``

        Returns:
            Number of hotkeys bound
        """
        from pynput import keyboard

        mapping = {}
        for combo, agent_id in build_bindings(agents).items():
            try:
                keyboard.HotKey.parse(combo)
            except ValueError as e:
                logger.warning(f"Invalid hotkey '{combo}' for agent '{agent_id}': {e}")
                continue
            mapping[combo] = self._make_handler(agent_id)

        with self._lock:
            self._stop_listener()
            if mapping:
                self._listener = keyboard.GlobalHotKeys(mapping)
                self._listener.start()

        logger.info(f"Registered {len(mapping)} global hotkeys")
        return len(mapping)

    def stop(self) -> None:
        with self._lock:
            self._stop_listener()

    def _make_handler(self, agent_id: str) -> Callable[[], None]:
        def handler() -> None:
            logger.debug(f"Hotkey pressed for agent '{agent_id}'")
            self.on_toggle(agent_id)
        return handler

    def _stop_listener(self) -> None:
        if self._listener is None:
            return
        try:
            self._listener.stop()
        except Exception as e:
            logger.warning(f"Error stopping hotkey listener: {e}")
        self._listener = None
