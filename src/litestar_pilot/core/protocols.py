"""Host callback protocols for litestar-pilot.

The engine never talks to a model or a remote tool provider itself. The host
application supplies an object implementing :class:`PilotCallbacks`; the
dataclasses in this module are the values exchanged through it. Using Protocol
allows duck typing while maintaining type safety.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "LLMResponse",
    "PilotCallbacks",
    "ProgressCallback",
    "Provider",
    "ToolCall",
    "ToolDefinition",
]


@dataclass
class ToolDefinition:
    """Schema of a tool as offered to the model.

    Attributes:
        name: Tool name; unique across the catalog.
        description: What the tool does.
        input_schema: JSON schema of the tool arguments.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolDefinition:
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {"type": "object"},
        )


@dataclass
class Provider:
    """A reachable tool provider and its catalog.

    Attributes:
        id: Provider (connection) identifier passed back to ``call_tool``.
        title: Human readable name.
        tools: Tools this provider exposes.
    """

    id: str
    title: str
    tools: list[ToolDefinition] = field(default_factory=list)

    def has_tool(self, name: str) -> bool:
        return any(tool.name == name for tool in self.tools)


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        name: Tool to call.
        arguments: Decoded call arguments.
        id: Optional identifier assigned by the model.
    """

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class LLMResponse:
    """One non-streaming generation turn.

    Attributes:
        text: Generated text, if any.
        tool_calls: Tools the model asked to call, in order.
    """

    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


ProgressCallback: TypeAlias = Callable[[str, str], Awaitable[None]]
"""Async ``(step_name, message)`` progress hook bound to a single task."""


@runtime_checkable
class PilotCallbacks(Protocol):
    """Interface the host implements to connect the engine to the outside world.

    Hosts may also define ``async publish_event(event_type, data)``, a
    fire-and-forget notification for whatever delivers responses to users.
    It is optional; without it events are dropped.

    Example:
        >>> class EchoCallbacks:
        ...     async def call_llm(self, model, messages, tools):
        ...         return LLMResponse(text=messages[-1]["content"])
        ...
        ...     async def call_tool(self, provider_id, tool_name, arguments, **hints):
        ...         return {"ok": True}
        ...
        ...     async def list_providers(self):
        ...         return []
        ...
        ...     async def publish_event(self, event_type, data):
        ...         pass
        >>> isinstance(EchoCallbacks(), PilotCallbacks)
        True
    """

    async def call_llm(
        self,
        model: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[ToolDefinition],
    ) -> LLMResponse:
        """Run a single generation turn.

        Args:
            model: Concrete model identifier.
            messages: Chat messages with ``role`` and ``content`` keys.
            tools: Tools the model may call; empty to disable tool calling.

        Returns:
            The model's text and tool calls.
        """
        ...

    async def call_tool(
        self,
        provider_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        **hints: Any,
    ) -> Any:
        """Invoke one remote tool.

        Network and protocol failures, and responses the tool itself marks
        with ``isError``, must be raised as exceptions.

        Args:
            provider_id: Provider exposing the tool.
            tool_name: Name of the tool.
            arguments: Tool arguments.
            **hints: Optional execution hints such as ``timeout`` in milliseconds.

        Returns:
            The decoded tool result.
        """
        ...

    async def list_providers(self) -> list[Provider]:
        """Enumerate the currently reachable tool providers."""
        ...
