"""Tests for agent persistence."""

from __future__ import annotations

import json
from pathlib import Path

from aide.chat.message_model import (
    Agent,
    AgentMode,
    Attachment,
    LineRange,
    Message,
    MessageRole,
    TextContent,
    TokenUsage,
    ToolCallContent,
    ToolResultContent,
)
from aide.services.agent_store import AgentSnapshot, InMemoryAgentStore, JsonAgentStore


def _agent() -> Agent:
    agent = Agent(name="Reviewer", mode=AgentMode.DEBUG, model="openai/gpt-4o")
    agent.messages.extend(
        [
            Message.text(MessageRole.USER, "why does login fail?"),
            Message(
                role=MessageRole.ASSISTANT,
                content=[TextContent(text="Checking."), ToolCallContent(call_id="c1", name="read_file", arguments={"path": "a.ts"})],
                model="openai/gpt-4o",
                usage=TokenUsage(input_tokens=12, output_tokens=4),
            ),
            Message(role=MessageRole.TOOL, content=[ToolResultContent(call_id="c1", result={"content": "x"})]),
        ]
    )
    agent.attachments.append(
        Attachment(kind="symbol", name="login", content="def login", source=Path("/repo/a.py"), range=LineRange(3, 3))
    )
    return agent


def test_json_store_roundtrip(tmp_path: Path) -> None:
    store = JsonAgentStore(tmp_path / "nested" / "agents.json")
    agent = _agent()

    store.save(AgentSnapshot(agents=[agent], active_id=agent.id, default_model="openai/gpt-4o"))
    snapshot = JsonAgentStore(store.path).load()

    assert snapshot.active_id == agent.id
    assert snapshot.default_model == "openai/gpt-4o"
    assert snapshot.agents == [agent]
    assert not store.path.with_suffix(".tmp").exists()


def test_missing_or_corrupt_file_yields_empty_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "agents.json"
    assert JsonAgentStore(path).load() == AgentSnapshot()

    path.write_text("[1, 2]", encoding="utf-8")
    assert JsonAgentStore(path).load() == AgentSnapshot()

    path.write_text("{oops", encoding="utf-8")
    assert JsonAgentStore(path).load() == AgentSnapshot()


def test_unreadable_agent_records_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "agents.json"
    good = _agent()
    path.write_text(
        json.dumps({"agents": [{"name": "no id"}, good.to_dict()], "active_id": good.id}),
        encoding="utf-8",
    )

    snapshot = JsonAgentStore(path).load()

    assert [agent.id for agent in snapshot.agents] == [good.id]


def test_in_memory_store_copies_state() -> None:
    store = InMemoryAgentStore()
    agent = _agent()

    store.save(AgentSnapshot(agents=[agent]))
    agent.name = "Renamed"
    loaded = store.load()

    assert loaded.agents[0].name == "Reviewer"
    assert loaded.agents[0] is not agent
    assert store.save_count == 1
