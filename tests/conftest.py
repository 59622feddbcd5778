"""Shared test fixtures for litestar-pilot test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from litestar_pilot.config import PilotConfig
from litestar_pilot.core.definition import Workflow
from litestar_pilot.core.protocols import LLMResponse, Provider, ToolCall, ToolDefinition
from litestar_pilot.engine.orchestrator import WorkflowOrchestrator
from litestar_pilot.engine.registry import WorkflowRegistry
from litestar_pilot.storage.memory import MemoryTaskStore
from litestar_pilot.threads import ThreadManager

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_pilot.core.models import Task
    from litestar_pilot.storage.base import BaseTaskStore


class ScriptedCallbacks:
    """PilotCallbacks double that replays scripted model turns.

    Every call is recorded so tests can assert on what the engine sent.

    Attributes:
        responses: Model turns returned in order; exceptions are raised instead.
        providers: Providers returned by ``list_providers``.
        tool_results: Tool name to a result, an exception or a callable of the arguments.
        llm_calls: Recorded ``call_llm`` invocations.
        tool_calls: Recorded ``call_tool`` invocations.
        events: Recorded ``(event_type, data)`` publications.
    """

    def __init__(
        self,
        responses: Sequence[LLMResponse | Exception] = (),
        providers: Sequence[Provider] = (),
        tool_results: dict[str, Any] | None = None,
    ) -> None:
        self.responses: list[LLMResponse | Exception] = list(responses)
        self.providers = list(providers)
        self.tool_results: dict[str, Any] = dict(tool_results or {})
        self.llm_calls: list[dict[str, Any]] = []
        self.tool_calls: list[dict[str, Any]] = []
        self.events: list[tuple[str, dict[str, Any]]] = []

    def script(self, *responses: LLMResponse | Exception) -> None:
        self.responses.extend(responses)

    async def call_llm(self, model: str, messages: Any, tools: Any) -> LLMResponse:
        self.llm_calls.append(
            {
                "model": model,
                "messages": [dict(message) for message in messages],
                "tools": [tool.name for tool in tools],
            }
        )
        if not self.responses:
            return LLMResponse(text="(no scripted response)")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def call_tool(self, provider_id: str, tool_name: str, arguments: dict[str, Any], **hints: Any) -> Any:
        self.tool_calls.append({"provider": provider_id, "tool": tool_name, "arguments": arguments, "hints": hints})
        result = self.tool_results.get(tool_name, {"ok": True})
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(arguments)
        return result

    async def list_providers(self) -> list[Provider]:
        return list(self.providers)

    async def publish_event(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.append((event_type, data))

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [data for kind, data in self.events if kind == event_type]


def text(value: str) -> LLMResponse:
    """A model turn that ends the loop with ``value``."""
    return LLMResponse(text=value)


def calls(*pairs: tuple[str, dict[str, Any]], text: str | None = None) -> LLMResponse:
    """A model turn requesting the given ``(name, arguments)`` tool calls."""
    return LLMResponse(text=text, tool_calls=[ToolCall(name=name, arguments=args) for name, args in pairs])


def make_workflow(workflow_id: str, *steps: dict[str, Any], **extra: Any) -> Workflow:
    """Build a workflow from step documents.

    Args:
        workflow_id: Workflow id; also used as the title.
        *steps: Step documents in declaration order.
        **extra: Extra top level document keys, e.g. ``defaultInput``.

    Returns:
        The parsed workflow.
    """
    return Workflow.from_dict({"id": workflow_id, "title": workflow_id.title(), "steps": list(steps), **extra})


def tool_step(name: str, tool: str, input: dict[str, Any] | None = None, **extra: Any) -> dict[str, Any]:
    return {"name": name, "action": {"type": "tool", "toolName": tool}, "input": input or {}, **extra}


def code_step(name: str, code: str, input: dict[str, Any] | None = None, **extra: Any) -> dict[str, Any]:
    return {"name": name, "action": {"type": "code", "code": code}, "input": input or {}, **extra}


def template_step(name: str, template: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, "action": {"type": "template", "template": template}, **extra}


def llm_step(name: str, prompt: str, tools: Any = "all", **extra: Any) -> dict[str, Any]:
    action = {"type": "llm", "prompt": prompt, "model": extra.pop("model", "smart"), "tools": tools}
    if "maxIterations" in extra:
        action["maxIterations"] = extra.pop("maxIterations")
    return {"name": name, "action": action, "input": extra.pop("input", {}), **extra}


async def wait_for_terminal(store: BaseTaskStore, task_id: str, timeout: float = 2.0) -> Task:
    """Poll the store until the task reaches a terminal status.

    Raises:
        AssertionError: If the task does not settle within ``timeout`` seconds.
    """
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        task = await store.load_task(task_id)
        if task is not None and task.is_terminal:
            return task
        if asyncio.get_running_loop().time() > deadline:
            msg = f"Task {task_id} did not settle: {task.status if task else 'missing'}"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


@pytest.fixture
def mesh_provider() -> Provider:
    """A provider exposing a search and an email tool."""
    return Provider(
        id="mesh-1",
        title="Mesh",
        tools=[
            ToolDefinition(
                name="SEARCH",
                description="Search the web",
                input_schema={"type": "object", "properties": {"query": {"type": "string"}}},
            ),
            ToolDefinition(name="SEND_EMAIL", description="Send an email"),
        ],
    )


@pytest.fixture
def callbacks(mesh_provider: Provider) -> ScriptedCallbacks:
    """Scripted host callbacks with one provider."""
    return ScriptedCallbacks(providers=[mesh_provider])


@pytest.fixture
def pilot_config() -> PilotConfig:
    """Engine configuration with recognisable model ids."""
    return PilotConfig(fast_model="test/fast", smart_model="test/smart", history_turns=4, max_history=20)


@pytest.fixture
def task_store() -> MemoryTaskStore:
    """Fresh in-memory task store."""
    return MemoryTaskStore()


@pytest.fixture
def workflow_registry() -> WorkflowRegistry:
    """Registry over the packaged built-in workflows with no custom directory."""
    return WorkflowRegistry()


@pytest.fixture
def orchestrator(
    workflow_registry: WorkflowRegistry,
    task_store: MemoryTaskStore,
    callbacks: ScriptedCallbacks,
    pilot_config: PilotConfig,
) -> WorkflowOrchestrator:
    """Orchestrator wired to the scripted callbacks and the memory store."""
    return WorkflowOrchestrator(workflow_registry, task_store, callbacks, config=pilot_config)


@pytest.fixture
def thread_manager(task_store: MemoryTaskStore, pilot_config: PilotConfig) -> ThreadManager:
    """Thread manager over the memory store."""
    return ThreadManager(task_store, ttl_ms=pilot_config.thread_ttl_ms, max_history=pilot_config.max_history)
