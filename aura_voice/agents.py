"""
Agent registry

Agents are named completion configurations (instruction, model,
temperature, hotkey). The registry is the single live view of them; the
session core re-validates its selection against it at every point of use.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from aura_voice.errors import AgentValidationError, AgentValidationReason, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class AgentConfig:
    """A named processing configuration"""
    id: str
    name: str
    instruction: str
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    enabled: bool = True
    auto_process_ai: bool = True
    hotkey: str = ""
    color: str = "#4f8cff"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
        """
        Build an agent from a settings document entry

        Args:
            data: Mapping with at least id, name and instruction

        Returns:
            AgentConfig

        Raises:
            ValidationError: If a field is missing or out of range
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Agent entry must be a mapping, got {type(data).__name__}")

        for key in ("id", "name", "instruction"):
            if not isinstance(data.get(key), str) or not data[key].strip():
                raise ValidationError(f"Agent field '{key}' must be a non-empty string")

        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown agent fields for '{data['id']}': {sorted(unknown)}")

        agent = cls(**{k: v for k, v in data.items() if k in known})

        if not isinstance(agent.temperature, (int, float)) or not 0 <= agent.temperature <= 2:
            raise ValidationError(
                f"Agent '{agent.id}' temperature must be between 0 and 2, got {agent.temperature!r}"
            )
        if not isinstance(agent.enabled, bool) or not isinstance(agent.auto_process_ai, bool):
            raise ValidationError(f"Agent '{agent.id}' flags must be booleans")
        return agent

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_AGENTS: List[AgentConfig] = [
    AgentConfig(
        id="transcription",
        name="Transcription",
        instruction=(
            "Turn the dictated text into a clean transcript.\n"
            "- Place punctuation correctly\n"
            "- Break lines at meaningful boundaries\n"
            "- Keep numbers and proper nouns exact\n"
            "- Smooth spoken language into natural sentences"
        ),
        temperature=0.3,
        auto_process_ai=False,
        hotkey="CommandOrControl+Alt+1",
        color="#4f8cff",
    ),
    AgentConfig(
        id="document-creation",
        name="Document Writer",
        instruction=(
            "Write a business document from the dictated input.\n"
            "- Subject / title\n"
            "- Polite, formal body text\n"
            "- Bullets or paragraphs where useful\n"
            "- Concise, easy to read wording"
        ),
        temperature=0.7,
        hotkey="CommandOrControl+Alt+2",
        color="#2ecc71",
    ),
    AgentConfig(
        id="search-keywords",
        name="Search Keywords",
        instruction=(
            "Generate effective search keywords from the dictated input.\n"
            "- 3-5 main keywords\n"
            "- 5-10 related keywords\n"
            "- Exclusion keywords if needed\n"
            "- Example queries with search operators"
        ),
        temperature=0.5,
        hotkey="CommandOrControl+Alt+3",
        color="#f39c12",
    ),
    AgentConfig(
        id="text-qa",
        name="Q&A",
        instruction=(
            "Answer the spoken question accurately and clearly.\n"
            "- Understand the intent of the question\n"
            "- Give concrete, practical answers\n"
            "- Include examples or steps when helpful\n"
            "- State clearly when something is unknown"
        ),
        temperature=0.6,
        hotkey="CommandOrControl+Alt+4",
        color="#9b59b6",
    ),
]


class AgentRegistry:
    """
    Thread-safe, ordered lookup of agent configurations

    Agents are replaced wholesale through :meth:`replace`; individual
    AgentConfig instances are immutable.
    """

    def __init__(self, agents: Optional[Iterable[AgentConfig]] = None):
        self._lock = threading.RLock()
        self._agents: Dict[str, AgentConfig] = {}
        self.replace(agents if agents is not None else DEFAULT_AGENTS)

    def replace(self, agents: Iterable[AgentConfig]) -> None:
        """Replace all agents, keeping the given order"""
        ordered: Dict[str, AgentConfig] = {}
        for agent in agents:
            if agent.id in ordered:
                raise ValidationError(f"Duplicate agent id: {agent.id}")
            ordered[agent.id] = agent
        with self._lock:
            self._agents = ordered
        logger.debug(f"Agent registry holds {len(ordered)} agents")

    def get(self, agent_id: Optional[str]) -> Optional[AgentConfig]:
        if agent_id is None:
            return None
        with self._lock:
            return self._agents.get(agent_id)

    def all(self) -> List[AgentConfig]:
        with self._lock:
            return list(self._agents.values())

    def get_enabled(self) -> List[AgentConfig]:
        with self._lock:
            return [agent for agent in self._agents.values() if agent.enabled]

    def first_enabled(self) -> Optional[AgentConfig]:
        enabled = self.get_enabled()
        return enabled[0] if enabled else None

    def validate_selection(self, agent_id: Optional[str]) -> AgentConfig:
        """
        Validate an agent selection against the live registry

        Args:
            agent_id: Selected agent id, or None

        Returns:
            The selected AgentConfig

        Raises:
            AgentValidationError: NotSelected, NotFound or Disabled
        """
        if not agent_id:
            raise AgentValidationError(AgentValidationReason.NOT_SELECTED, "No agent selected")

        agent = self.get(agent_id)
        if agent is None:
            raise AgentValidationError(
                AgentValidationReason.NOT_FOUND, f"Agent not found: {agent_id}"
            )
        if not agent.enabled:
            raise AgentValidationError(
                AgentValidationReason.DISABLED, f"Agent is disabled: {agent.name}"
            )
        return agent
