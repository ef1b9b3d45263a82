"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from aide import events as events_module
from aide.context.workspace import LocalWorkspace
from aide.events import Event, EventBus

SAMPLE_FILES = {
    "src/auth.ts": "export class AuthService {\n  login(user: string) {\n    return authenticate(user);\n  }\n}\n",
    "src/utils.py": "def slugify(value):\n    return value.lower().replace(' ', '-')\n",
    "src/test.ts": "import { AuthService } from './auth';\n\nconst service = new AuthService();\n",
    "README.md": "# Sample project\n\nDatabase migrations live in db/.\n",
    "node_modules/pkg/index.js": "module.exports = function authenticate() {};\n",
}


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    for relative, content in SAMPLE_FILES.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def workspace(workspace_dir: Path) -> LocalWorkspace:
    return LocalWorkspace([workspace_dir], default_exclude=("**/node_modules/**",))


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus: EventBus) -> list[Event]:
    """Every event published on ``event_bus``, in order."""
    received: list[Event] = []
    for event_type in (
        events_module.AgentsChanged,
        events_module.ActiveAgentChanged,
        events_module.ToolExecuted,
        events_module.ModelsChanged,
        events_module.ToolsChanged,
        events_module.IndexChanged,
    ):
        event_bus.subscribe(event_type, received.append)
    return received
