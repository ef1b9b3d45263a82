"""Persistence of agents, the active agent, and the default model id."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..chat.message_model import Agent

__all__ = ["AgentSnapshot", "AgentStore", "InMemoryAgentStore", "JsonAgentStore"]

LOGGER = logging.getLogger(__name__)
_DEFAULT_AGENTS_PATH = Path.home() / ".aide" / "agents.json"
_AGENTS_VERSION = 1


@dataclass(slots=True)
class AgentSnapshot:
    agents: List[Agent] = field(default_factory=list)
    active_id: Optional[str] = None
    default_model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": _AGENTS_VERSION,
            "agents": [agent.to_dict() for agent in self.agents],
            "active_id": self.active_id,
            "default_model": self.default_model,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AgentSnapshot":
        agents: List[Agent] = []
        for raw in payload.get("agents") or []:
            try:
                agents.append(Agent.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable agent record: %s", exc)
        return cls(
            agents=agents,
            active_id=payload.get("active_id") or None,
            default_model=payload.get("default_model") or None,
        )


class AgentStore(Protocol):
    def load(self) -> AgentSnapshot:
        ...

    def save(self, snapshot: AgentSnapshot) -> None:
        ...


class InMemoryAgentStore:
    """Keeps the last saved payload in memory; used by tests and one-shot CLI runs."""

    def __init__(self, snapshot: AgentSnapshot | None = None) -> None:
        self._payload: Dict[str, Any] | None = snapshot.to_dict() if snapshot else None
        self.save_count = 0

    def load(self) -> AgentSnapshot:
        if self._payload is None:
            return AgentSnapshot()
        return AgentSnapshot.from_dict(self._payload)

    def save(self, snapshot: AgentSnapshot) -> None:
        # Round-trip through JSON so callers cannot share mutable state with the store.
        self._payload = json.loads(json.dumps(snapshot.to_dict()))
        self.save_count += 1


class JsonAgentStore:
    """Stores the snapshot as a JSON document, written atomically."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = (path or _DEFAULT_AGENTS_PATH).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AgentSnapshot:
        if not self._path.exists():
            return AgentSnapshot()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return AgentSnapshot()
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.error("Failed to load agents from %s: %s", self._path, exc)
            return AgentSnapshot()
        if not isinstance(payload, dict):
            LOGGER.error("Agents file %s has unexpected structure", self._path)
            return AgentSnapshot()
        return AgentSnapshot.from_dict(payload)

    def save(self, snapshot: AgentSnapshot) -> None:
        body = json.dumps(snapshot.to_dict(), indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Saved %s agents to %s", len(snapshot.agents), self._path)
