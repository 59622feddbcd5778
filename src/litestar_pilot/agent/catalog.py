"""Tool catalog shared by tool steps and the agent loop.

The catalog knows two kinds of tools: local tools supplied by the host as async
handlers, and remote tools exposed by providers through
``PilotCallbacks.list_providers``. Tool definitions seen once are remembered in
a :class:`ToolCache`, so a later step can be offered the full schema of a tool
an earlier step only named.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.protocols import ToolDefinition
from litestar_pilot.core.types import ToolPolicy
from litestar_pilot.exceptions import ToolNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence

    from litestar_pilot.core.protocols import PilotCallbacks, Provider

__all__ = ["LocalTool", "ToolCache", "ToolCatalog", "ToolLocation"]

logger = logging.getLogger(__name__)


@dataclass
class LocalTool:
    """A leaf tool implemented by the host process.

    Attributes:
        name: Tool name.
        handler: Async callable receiving the tool arguments.
        description: What the tool does.
        input_schema: JSON schema of the arguments.

    Example:
        >>> async def read_file(args):
        ...     return {"content": Path(args["path"]).read_text()}
        >>> tool = LocalTool(name="READ_FILE", handler=read_file, description="Read a file")
    """

    name: str
    handler: Callable[[dict[str, Any]], Awaitable[Any]]
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, input_schema=self.input_schema)

    async def call(self, arguments: dict[str, Any]) -> Any:
        return await self.handler(arguments)


class ToolCache:
    """Tool definitions remembered by name.

    One cache is owned by each orchestrator and handed to every run it starts.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ToolDefinition] = {}

    def get(self, name: str) -> ToolDefinition | None:
        return self._definitions.get(name)

    def set(self, definition: ToolDefinition) -> None:
        self._definitions[definition.name] = definition

    def clear(self) -> None:
        self._definitions.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)


@dataclass
class ToolLocation:
    """Where a tool lives.

    Attributes:
        name: Tool name.
        provider_id: Provider exposing the tool, ``None`` for local tools.
    """

    name: str
    provider_id: str | None = None

    @property
    def is_local(self) -> bool:
        return self.provider_id is None


class ToolCatalog:
    """Gathers tool definitions for a policy and routes tool calls.

    Attributes:
        callbacks: Host callbacks used to list providers and call remote tools.
        local_tools: Local tools keyed by name.
        cache: Tool definitions remembered across steps.
    """

    def __init__(
        self,
        callbacks: PilotCallbacks,
        local_tools: Iterable[LocalTool] = (),
        cache: ToolCache | None = None,
    ) -> None:
        """Initialize the catalog.

        Args:
            callbacks: Host callbacks.
            local_tools: Tools implemented in-process.
            cache: Shared tool cache; a private one is created when omitted.
        """
        self.callbacks = callbacks
        self.local_tools: dict[str, LocalTool] = {tool.name: tool for tool in local_tools}
        self.cache = cache if cache is not None else ToolCache()

    async def providers(self) -> list[Provider]:
        return list(await self.callbacks.list_providers())

    async def available_tool_names(self) -> set[str]:
        """Names of every local tool and every tool of a reachable provider."""
        names = set(self.local_tools)
        for provider in await self.providers():
            names.update(tool.name for tool in provider.tools)
        return names

    async def gather(
        self,
        policy: str | Sequence[str] | None,
        meta_tools: Sequence[ToolDefinition] = (),
        cache: ToolCache | None = None,
    ) -> list[ToolDefinition]:
        """Collect the tool definitions offered to the model.

        Args:
            policy: ``"all"``, ``"discover"``, ``"none"``, an explicit list of
                names, or ``None`` which behaves like ``"all"``.
            meta_tools: Definitions appended for ``discover`` and looked up
                by name for explicit lists.
            cache: Cache to use instead of the catalog's own.

        Returns:
            The tool definitions, local tools first.
        """
        cache = cache if cache is not None else self.cache
        if policy == ToolPolicy.NONE:
            return []
        if policy is not None and not isinstance(policy, str):
            return await self._gather_named(list(policy), meta_tools, cache)

        definitions: list[ToolDefinition] = []
        for tool in self.local_tools.values():
            definition = tool.definition
            definitions.append(definition)
            cache.set(definition)

        providers = await self.providers()
        logger.debug("Providers: %s", ", ".join(f"{p.title}({len(p.tools)})" for p in providers))
        for provider in providers:
            for definition in provider.tools:
                definitions.append(definition)
                cache.set(definition)

        if policy == ToolPolicy.DISCOVER:
            definitions.extend(meta_tools)
        return definitions

    async def _gather_named(
        self,
        names: list[str],
        meta_tools: Sequence[ToolDefinition],
        cache: ToolCache,
    ) -> list[ToolDefinition]:
        meta = {definition.name: definition for definition in meta_tools}
        providers: list[Provider] | None = None
        definitions: list[ToolDefinition] = []
        for name in names:
            if not isinstance(name, str):
                continue
            cached = cache.get(name)
            if cached is not None:
                definitions.append(cached)
                continue
            if name in meta:
                definitions.append(meta[name])
                continue
            if name in self.local_tools:
                definition = self.local_tools[name].definition
                definitions.append(definition)
                cache.set(definition)
                continue

            logger.debug("Tool %s not in cache, fetching providers", name)
            if providers is None:
                providers = await self.providers()
            definition = next(
                (tool for provider in providers for tool in provider.tools if tool.name == name),
                None,
            )
            if definition is None:
                logger.warning("Tool %s not found, offering a stub definition", name)
                definition = ToolDefinition(name=name, description=f'Tool "{name}" - schema not found')
            else:
                cache.set(definition)
            definitions.append(definition)
        return definitions

    async def locate(self, name: str, *, local_first: bool = True) -> ToolLocation:
        """Find where ``name`` lives.

        Args:
            name: Tool name.
            local_first: Prefer a local tool over a provider of the same name.

        Returns:
            The tool's location.

        Raises:
            ToolNotFoundError: If neither a local tool nor a provider exposes it.
        """
        if local_first and name in self.local_tools:
            return ToolLocation(name=name)
        for provider in await self.providers():
            if provider.has_tool(name):
                return ToolLocation(name=name, provider_id=provider.id)
        if name in self.local_tools:
            return ToolLocation(name=name)
        raise ToolNotFoundError(name)

    async def call(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        connection_id: str | None = None,
        local_first: bool = True,
        **hints: Any,
    ) -> Any:
        """Call a tool.

        Args:
            name: Tool name.
            arguments: Tool arguments.
            connection_id: Fixed provider to call, skipping lookup.
            local_first: Prefer a local tool over a provider of the same name.
            **hints: Execution hints forwarded to ``call_tool``.

        Returns:
            The tool result.

        Raises:
            ToolNotFoundError: If the tool cannot be located.
        """
        if connection_id:
            return await self.callbacks.call_tool(connection_id, name, arguments, **hints)
        location = await self.locate(name, local_first=local_first)
        if location.is_local:
            return await self.local_tools[name].call(arguments)
        return await self.callbacks.call_tool(location.provider_id, name, arguments, **hints)  # type: ignore[arg-type]
