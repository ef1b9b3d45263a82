"""Agent management and the chat turn state machine.

A turn moves ``Idle -> AwaitingResponse -> ToolDispatch -> Idle``: the user
message is appended, the provider owning the agent's model is invoked, one
terminal assistant message is appended, and when the model finished with
``tool_calls`` each call is executed once and its result appended as a
``tool`` message. The model is not re-invoked with the tool results; callers
continue the conversation with another ``send_message`` call.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, List, Sequence

import httpx

from ...chat.message_model import (
    Agent,
    AgentMode,
    Attachment,
    Message,
    MessageContent,
    MessageRole,
    TextContent,
    TokenUsage,
    ToolCallContent,
    ToolResultContent,
    new_id,
)
from ...context.context_service import build_context
from ...context.workspace import LocalWorkspace
from ...core.cancellation import NONE, CancellationToken
from ...events import ActiveAgentChanged, AgentsChanged, EventBus, ModelsChanged, ToolExecuted
from ...services.agent_store import AgentSnapshot, AgentStore, InMemoryAgentStore
from ...services.settings import Settings
from ..ai_types import CompletionRequest, FinishReason, ModelInfo, StreamChunk
from ..errors import AgentNotFoundError, DuplicateRegistrationError, ProviderNotFoundError
from ..memory.embeddings import EmbeddingProvider, build_embedding_provider
from ..prompts import system_prompt
from ..providers.base import ProviderAdapter
from ..providers.factory import build_providers
from ..tokens import estimate_tokens
from ..tools.builtin import register_builtin_tools
from ..tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

#: Token allowance for attachment text rendered into a user message.
ATTACHMENT_TOKEN_BUDGET = 8_000
_SYSTEM_MESSAGE_ID = "system"


class ChatOrchestrator:
    """Owns agents, provider adapters, tools, and embedding providers.

    Args:
        providers: The configured adapter set; model ids are routed to the
            adapter whose id prefixes them.
        tools: Registry consulted in ``agent`` mode and for tool dispatch.
        agent_store: Persistence for agents and the default model id.
        event_bus: Receives change notifications.
        default_model: Default model id used when nothing was persisted.
        temperature: Sampling temperature forwarded with every request.
        max_tokens: Optional output cap forwarded with every request.
        tool_timeout: Per-call timeout for tool dispatch, in seconds.
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        *,
        tools: ToolRegistry | None = None,
        agent_store: AgentStore | None = None,
        event_bus: EventBus | None = None,
        default_model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tool_timeout: float | None = None,
        attachment_token_budget: int = ATTACHMENT_TOKEN_BUDGET,
    ) -> None:
        self._bus = event_bus or EventBus()
        self._providers: List[ProviderAdapter] = list(providers)
        self._tools = tools or ToolRegistry(event_bus=self._bus)
        self._store: AgentStore = agent_store or InMemoryAgentStore()
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._tool_timeout = tool_timeout
        self._attachment_budget = attachment_token_budget
        self._embedding_providers: Dict[str, EmbeddingProvider] = {}
        self._agents: Dict[str, Agent] = {}
        self._active_agent_id: str | None = None
        self._default_model_id: str | None = default_model or None
        self._closed = False
        self._load()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        workspace: LocalWorkspace | None = None,
        agent_store: AgentStore | None = None,
        event_bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "ChatOrchestrator":
        """Build the adapter set, tools, and embedding provider described by *settings*.

        Built-in workspace tools are registered only when *workspace* is given.
        """

        bus = event_bus or EventBus()
        providers = build_providers(
            settings,
            http_client=http_client,
            on_models_changed=lambda provider_id: bus.publish(ModelsChanged(provider_id)),
        )
        tools = ToolRegistry(event_bus=bus, default_timeout=settings.tool_timeout)
        if workspace is not None:
            register_builtin_tools(
                tools,
                workspace,
                exclude=tuple(settings.indexing.exclude_patterns),
                command_timeout=settings.tool_timeout,
            )
        orchestrator = cls(
            providers,
            tools=tools,
            agent_store=agent_store,
            event_bus=bus,
            default_model=settings.default_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            tool_timeout=settings.tool_timeout,
        )
        embedding_provider = build_embedding_provider(settings.embeddings, timeout=settings.request_timeout)
        if embedding_provider is not None:
            orchestrator.register_embedding_provider(embedding_provider)
        return orchestrator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    async def aclose(self) -> None:
        """Release provider connections and embedding clients."""

        if self._closed:
            return
        self._closed = True
        for adapter in self._providers:
            await adapter.aclose()
        for provider in self._embedding_providers.values():
            closer = getattr(provider, "aclose", None)
            if callable(closer):
                await closer()
        LOGGER.debug("Chat orchestrator closed")

    async def __aenter__(self) -> "ChatOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Providers and models
    # ------------------------------------------------------------------

    def get_providers(self) -> List[ProviderAdapter]:
        return list(self._providers)

    def find_provider(self, model_id: str) -> ProviderAdapter | None:
        for adapter in self._providers:
            if adapter.matches(model_id):
                return adapter
        return None

    async def get_available_models(self) -> List[ModelInfo]:
        """Aggregate every adapter's catalogue, skipping adapters that fail."""

        models: List[ModelInfo] = []
        for adapter in self._providers:
            try:
                models.extend(await adapter.list_models())
            except Exception as exc:
                LOGGER.error("Failed to list models from provider %s: %s", adapter.id, exc)
        return models

    async def get_default_model(self) -> ModelInfo | None:
        models = await self.get_available_models()
        if self._default_model_id:
            for model in models:
                if model.id == self._default_model_id:
                    return model
        return models[0] if models else None

    def set_default_model(self, model_id: str) -> None:
        self._default_model_id = model_id
        self._save()
        self._bus.publish(ModelsChanged())

    # ------------------------------------------------------------------
    # Embedding providers
    # ------------------------------------------------------------------

    def register_embedding_provider(self, provider: EmbeddingProvider) -> Callable[[], None]:
        """Register *provider*; the first registered provider is the active one.

        Raises:
            DuplicateRegistrationError: If a provider with the same name exists.
        """

        if provider.name in self._embedding_providers:
            raise DuplicateRegistrationError(f"Embedding provider '{provider.name}' is already registered")
        self._embedding_providers[provider.name] = provider
        LOGGER.info("Registered embedding provider: %s", provider.name)

        def _unregister() -> None:
            if self._embedding_providers.get(provider.name) is provider:
                del self._embedding_providers[provider.name]

        return _unregister

    def get_embedding_providers(self) -> List[EmbeddingProvider]:
        return list(self._embedding_providers.values())

    def active_embedding_provider(self) -> EmbeddingProvider | None:
        return next(iter(self._embedding_providers.values()), None)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def create_agent(
        self,
        name: str | None = None,
        mode: AgentMode = AgentMode.AGENT,
        *,
        model: str | None = None,
    ) -> Agent:
        """Create an agent and make it active.

        The model defaults to :meth:`get_default_model`; an empty string is
        stored when no model is available.
        """

        if model is None:
            default = await self.get_default_model()
            model = default.id if default is not None else (self._default_model_id or "")
        agent = Agent(name=name or f"Agent {len(self._agents) + 1}", mode=AgentMode(mode), model=model)
        self._agents[agent.id] = agent
        self._active_agent_id = agent.id
        LOGGER.info("Created agent %s (%s, model=%s)", agent.id, agent.name, agent.model or "<none>")
        self._save()
        self._bus.publish(AgentsChanged())
        self._bus.publish(ActiveAgentChanged(agent.id))
        return agent

    def get_agents(self) -> List[Agent]:
        return sorted(self._agents.values(), key=lambda agent: agent.last_active_at, reverse=True)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_active_agent(self) -> Agent | None:
        if self._active_agent_id is None:
            return None
        return self._agents.get(self._active_agent_id)

    def set_active_agent(self, agent_id: str) -> Agent:
        agent = self._require_agent(agent_id)
        self._active_agent_id = agent_id
        agent.touch()
        self._save()
        self._bus.publish(ActiveAgentChanged(agent_id))
        return agent

    def delete_agent(self, agent_id: str) -> bool:
        if agent_id not in self._agents:
            return False
        del self._agents[agent_id]
        if self._active_agent_id == agent_id:
            remaining = self.get_agents()
            self._active_agent_id = remaining[0].id if remaining else None
        self._save()
        self._bus.publish(AgentsChanged())
        self._bus.publish(ActiveAgentChanged(self._active_agent_id))
        return True

    def update_agent(
        self,
        agent_id: str,
        *,
        name: str | None = None,
        mode: AgentMode | str | None = None,
        model: str | None = None,
    ) -> Agent:
        agent = self._require_agent(agent_id)
        if name is not None:
            agent.name = name
        if mode is not None:
            agent.mode = AgentMode(mode)
        if model is not None:
            agent.model = model
        agent.touch()
        self._save()
        self._bus.publish(AgentsChanged())
        if self._active_agent_id == agent_id:
            self._bus.publish(ActiveAgentChanged(agent_id))
        return agent

    # ------------------------------------------------------------------
    # Chat turns
    # ------------------------------------------------------------------

    async def send_message(
        self,
        agent_id: str,
        content: str,
        attachments: Sequence[Attachment] | None = None,
        token: CancellationToken = NONE,
    ) -> Message:
        """Run one blocking turn and return the assistant message.

        Raises:
            AgentNotFoundError: Before any state change when *agent_id* is unknown.
            ProviderNotFoundError: When no adapter owns the agent's model; the
                user message stays appended so the turn can be retried.
            AideError: Provider failures propagate without an assistant message.
        """

        agent = self._require_agent(agent_id)
        self._append_user_message(agent, content, attachments)
        adapter = self._resolve_provider(agent)
        request = self._build_request(agent, stream=False)

        response = await adapter.complete(request, token)
        usage = response.usage or self._estimate_usage(adapter, request, response.content)
        assistant = Message(
            role=MessageRole.ASSISTANT,
            content=list(response.content),
            id=response.id,
            model=agent.model,
            usage=usage,
        )
        agent.messages.append(assistant)
        if response.finish_reason is FinishReason.TOOL_CALLS:
            await self._dispatch_tool_calls(agent, assistant.tool_calls, token)
        self._finish_turn(agent)
        return assistant

    async def send_message_stream(
        self,
        agent_id: str,
        content: str,
        attachments: Sequence[Attachment] | None = None,
        token: CancellationToken = NONE,
    ) -> AsyncIterator[StreamChunk]:
        """Run one streaming turn, yielding the adapter's chunks unchanged.

        The terminal assistant message is appended however the stream ends.
        A provider failure mid-stream is re-raised after that message (with
        whatever content had arrived) has been appended.
        """

        agent = self._require_agent(agent_id)
        self._append_user_message(agent, content, attachments)
        adapter = self._resolve_provider(agent)
        request = self._build_request(agent, stream=True)

        accumulated: List[MessageContent] = []
        text_block: TextContent | None = None
        last_chunk: StreamChunk | None = None
        usage: TokenUsage | None = None
        completed = False
        try:
            async with aclosing(adapter.complete_stream(request, token)) as stream:
                async for chunk in stream:
                    delta = chunk.delta
                    if isinstance(delta, TextContent):
                        if text_block is None:
                            text_block = TextContent(text="")
                            accumulated.append(text_block)
                        text_block.text += delta.text
                    elif isinstance(delta, ToolCallContent):
                        accumulated.append(delta)
                    if chunk.usage is not None:
                        usage = chunk.usage
                    last_chunk = chunk
                    yield chunk
            completed = True
        except Exception as exc:
            LOGGER.error("Stream for agent %s failed: %s", agent.id, exc)
            raise
        finally:
            agent.messages.append(
                Message(
                    role=MessageRole.ASSISTANT,
                    content=accumulated,
                    id=last_chunk.id if last_chunk is not None and last_chunk.id else new_id(),
                    model=agent.model,
                    usage=usage or self._estimate_usage(adapter, request, accumulated),
                )
            )
            if not completed:
                self._finish_turn(agent)

        finish_reason = last_chunk.finish_reason if last_chunk is not None else None
        if finish_reason is FinishReason.TOOL_CALLS:
            calls = [item for item in accumulated if isinstance(item, ToolCallContent)]
            await self._dispatch_tool_calls(agent, calls, token)
        self._finish_turn(agent)

    def count_tokens(self, text: str, model: str | None = None) -> int:
        target = model or self._default_model_id
        adapter = self.find_provider(target) if target else None
        if adapter is not None:
            return adapter.estimate_tokens(text, target)
        return estimate_tokens(text)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def _resolve_provider(self, agent: Agent) -> ProviderAdapter:
        adapter = self.find_provider(agent.model) if agent.model else None
        if adapter is None:
            raise ProviderNotFoundError(agent.model)
        return adapter

    def _append_user_message(
        self, agent: Agent, content: str, attachments: Sequence[Attachment] | None
    ) -> Message:
        parts: List[MessageContent] = [TextContent(text=content)]
        if attachments:
            agent.attachments.extend(attachments)
            rendered = build_context(attachments, self._attachment_budget)
            if rendered:
                parts.append(TextContent(text=rendered))
        message = Message(role=MessageRole.USER, content=parts)
        agent.messages.append(message)
        return message

    def _build_request(self, agent: Agent, *, stream: bool) -> CompletionRequest:
        system = Message.text(MessageRole.SYSTEM, system_prompt(agent.mode), id=_SYSTEM_MESSAGE_ID)
        tools = self._tools.definitions() if agent.mode is AgentMode.AGENT else ()
        return CompletionRequest(
            messages=[system, *agent.messages],
            model=agent.model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            tools=tools,
            stream=stream,
        )

    async def _dispatch_tool_calls(
        self, agent: Agent, calls: Sequence[ToolCallContent], token: CancellationToken
    ) -> None:
        for call in calls:
            if token.is_cancelled:
                LOGGER.info("Tool dispatch for agent %s cancelled", agent.id)
                break
            result = await self._tools.execute(
                call.name, call.arguments, call_id=call.call_id, timeout=self._tool_timeout
            )
            agent.messages.append(
                Message(
                    role=MessageRole.TOOL,
                    content=[ToolResultContent(call_id=call.call_id, result=result.value, is_error=result.is_error)],
                )
            )
            self._bus.publish(
                ToolExecuted(
                    agent_id=agent.id,
                    tool_name=call.name,
                    call_id=call.call_id,
                    success=not result.is_error,
                    duration_ms=result.duration_ms,
                )
            )

    def _estimate_usage(
        self, adapter: ProviderAdapter, request: CompletionRequest, content: Sequence[MessageContent]
    ) -> TokenUsage:
        prompt = "\n".join(message.text_content for message in request.messages)
        output = "".join(item.text for item in content if isinstance(item, TextContent))
        return TokenUsage(
            input_tokens=adapter.estimate_tokens(prompt, request.model),
            output_tokens=adapter.estimate_tokens(output, request.model),
        )

    def _finish_turn(self, agent: Agent) -> None:
        agent.touch()
        self._save()
        self._bus.publish(AgentsChanged())

    def _load(self) -> None:
        try:
            snapshot = self._store.load()
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.error("Failed to load agents: %s", exc)
            return
        for agent in snapshot.agents:
            self._agents[agent.id] = agent
        if snapshot.active_id in self._agents:
            self._active_agent_id = snapshot.active_id
        if snapshot.default_model:
            self._default_model_id = snapshot.default_model
        if self._agents:
            LOGGER.info("Restored %s agents", len(self._agents))

    def _save(self) -> None:
        snapshot = AgentSnapshot(
            agents=list(self._agents.values()),
            active_id=self._active_agent_id,
            default_model=self._default_model_id,
        )
        try:
            self._store.save(snapshot)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Failed to save agents: %s", exc)


__all__ = ["ATTACHMENT_TOKEN_BUDGET", "ChatOrchestrator"]
