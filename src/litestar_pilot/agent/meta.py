"""Meta-tools that let an agent inspect and drive the engine itself.

Meta-tools are offered to steps using the ``discover`` tool policy and are
callable by name from any ``llm`` step. They cover tool discovery, workflows,
background tasks and conversation threads.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.protocols import ToolDefinition
from litestar_pilot.core.types import TaskStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from litestar_pilot.core.context import RunContext
    from litestar_pilot.engine.orchestrator import WorkflowOrchestrator

__all__ = ["META_TOOL_NAMES", "MetaTools"]

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

_DEFINITIONS: list[ToolDefinition] = [
    ToolDefinition("list_local_tools", "List available local system tools", _EMPTY_SCHEMA),
    ToolDefinition("list_mesh_tools", "List available tools of every connected provider", _EMPTY_SCHEMA),
    ToolDefinition(
        "list_tools",
        "List every tool the agent can call, local and remote",
        _EMPTY_SCHEMA,
    ),
    ToolDefinition(
        "call_tool",
        "Call any tool by name. Use list_tools to see what is available.",
        {
            "type": "object",
            "properties": {
                "toolName": {"type": "string", "description": "Name of the tool to call"},
                "arguments": {"type": "object", "description": "Arguments for the tool"},
            },
            "required": ["toolName"],
        },
    ),
    ToolDefinition(
        "execute_task",
        "Hand a planned task and the tools it needs to the executor",
        {
            "type": "object",
            "properties": {
                "task": {"type": "string"},
                "tools": {
                    "type": "array",
                    "items": {"type": "object", "properties": {"name": {"type": "string"}}},
                },
                "context": {"type": "string"},
            },
            "required": ["task", "tools"],
        },
    ),
    ToolDefinition(
        "list_workflows",
        "List available workflows that can be executed. Workflows are pre-defined multi-step procedures.",
        _EMPTY_SCHEMA,
    ),
    ToolDefinition(
        "execute_workflow",
        "Execute a workflow by ID and wait for its result. Use list_workflows to see available workflows.",
        {
            "type": "object",
            "properties": {
                "workflowId": {"type": "string", "description": "The ID of the workflow to execute"},
                "input": {"type": "object", "description": "Input parameters for the workflow"},
            },
            "required": ["workflowId"],
        },
    ),
    ToolDefinition(
        "start_task",
        "Start a workflow as a new background task. You MUST provide workflowId; call list_workflows() first.",
        {
            "type": "object",
            "properties": {
                "workflowId": {"type": "string", "description": "REQUIRED. The ID of the workflow to run."},
                "input": {"type": "object", "description": "Input parameters for the workflow"},
            },
            "required": ["workflowId"],
        },
    ),
    ToolDefinition(
        "check_task",
        "Check the status and progress of a task. Returns current step, progress, and result if completed.",
        {
            "type": "object",
            "properties": {"taskId": {"type": "string", "description": "The task ID to check"}},
            "required": ["taskId"],
        },
    ),
    ToolDefinition(
        "list_tasks",
        "List recent tasks. Optionally filter by status (working, completed, failed, cancelled).",
        {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["working", "completed", "failed", "cancelled"],
                    "description": "Filter by status",
                },
                "limit": {"type": "number", "description": "Maximum number of tasks to return (default 10)"},
            },
        },
    ),
    ToolDefinition(
        "delete_task",
        "Delete a task from history.",
        {
            "type": "object",
            "properties": {"taskId": {"type": "string", "description": "The task ID to delete"}},
            "required": ["taskId"],
        },
    ),
    ToolDefinition(
        "NEW_THREAD",
        "Close the current conversation thread. The next message will start fresh. "
        "Use when the user says 'new thread', 'start over' and similar.",
        _EMPTY_SCHEMA,
    ),
]

META_TOOL_NAMES = frozenset(definition.name for definition in _DEFINITIONS)
"""Names of every meta-tool; never required from a provider."""

_WORKFLOW_ID_KEYS = ("workflowId", "workflow_id", "workflow", "id", "name")
_STATUS_VALUES = frozenset(status.value for status in TaskStatus)


def _workflow_id_from(args: dict[str, Any]) -> str | None:
    # Models spell the id argument in many ways.
    for key in _WORKFLOW_ID_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    nested = args.get("input")
    if isinstance(nested, dict):
        for key in ("workflowId", "workflow_id"):
            value = nested.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _preview(value: Any, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return text[:limit]


class MetaTools:
    """Handlers for the meta-tools, bound to one orchestrator.

    Attributes:
        orchestrator: The orchestrator whose registry, store and catalog are used.
    """

    def __init__(self, orchestrator: WorkflowOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._handlers: dict[str, Callable[[dict[str, Any], RunContext], Awaitable[Any]]] = {
            "list_local_tools": self.list_local_tools,
            "list_mesh_tools": self.list_mesh_tools,
            "list_tools": self.list_tools,
            "call_tool": self.call_tool,
            "execute_task": self.execute_task,
            "list_workflows": self.list_workflows,
            "execute_workflow": self.execute_workflow,
            "start_task": self.start_task,
            "check_task": self.check_task,
            "list_tasks": self.list_tasks,
            "delete_task": self.delete_task,
            "NEW_THREAD": self.new_thread,
        }

    @staticmethod
    def definitions() -> list[ToolDefinition]:
        return list(_DEFINITIONS)

    def handles(self, name: str) -> bool:
        return name in self._handlers

    async def call(self, name: str, args: dict[str, Any], run: RunContext) -> Any:
        """Dispatch a meta-tool call.

        Args:
            name: Meta-tool name.
            args: Arguments supplied by the model.
            run: The calling run.

        Returns:
            The meta-tool result.

        Raises:
            KeyError: If ``name`` is not a meta-tool.
        """
        return await self._handlers[name](args or {}, run)

    async def list_local_tools(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        await run.report("_discovery", "Listing local tools...")
        names = sorted(self.orchestrator.catalog.local_tools)
        return {"tools": names, "count": len(names)}

    async def list_mesh_tools(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        await run.report("_discovery", "Discovering provider tools...")
        providers = await self.orchestrator.catalog.providers()
        tools = [
            {
                "name": tool.name,
                "description": (tool.description or "")[:150],
                "connectionId": provider.id,
                "connectionName": provider.title,
            }
            for provider in providers
            for tool in provider.tools
        ]
        await run.report("_discovery", f"Found {len(tools)} tools from {len(providers)} connections")
        return {"allTools": tools, "totalToolCount": len(tools)}

    async def list_tools(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        definitions = await self.orchestrator.catalog.gather("all", cache=run.tool_cache)
        tools = [{"name": d.name, "description": (d.description or "")[:150]} for d in definitions]
        return {"tools": tools, "count": len(tools)}

    async def call_tool(self, args: dict[str, Any], run: RunContext) -> Any:
        tool_name = args.get("toolName") or args.get("name")
        if not isinstance(tool_name, str) or not tool_name:
            msg = "toolName is required. Use list_tools() to see available tools."
            raise ValueError(msg)
        if tool_name in META_TOOL_NAMES:
            msg = f"{tool_name} is a meta-tool; call it directly"
            raise ValueError(msg)
        arguments = args.get("arguments") or args.get("args") or {}
        return await self.orchestrator.catalog.call(tool_name, arguments, local_first=True)

    async def execute_task(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        tools = []
        for item in args.get("tools") or []:
            if isinstance(item, dict) and item.get("name"):
                tools.append(item["name"])
            elif isinstance(item, str):
                tools.append(item)
        return {"task": args.get("task"), "tools": tools, "context": args.get("context")}

    async def list_workflows(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        await run.report("_discovery", "Listing workflows...")
        workflows = self.orchestrator.registry.list()
        await run.report("_discovery", f"Found {len(workflows)} workflows")
        return {
            "workflows": [
                {
                    "id": workflow.id,
                    "title": workflow.title,
                    "description": workflow.description,
                    "stepCount": len(workflow.steps),
                    "steps": workflow.step_names,
                }
                for workflow in workflows
            ],
            "count": len(workflows),
        }

    async def execute_workflow(self, args: dict[str, Any], run: RunContext) -> Any:
        workflow_id = args.get("workflowId")
        if not isinstance(workflow_id, str) or not workflow_id.strip() or workflow_id == "undefined":
            await run.report("_workflow", f'Invalid workflow ID: "{workflow_id}"')
            msg = (
                f'Invalid workflow ID: "{workflow_id}". Please provide a valid workflow ID. '
                "Use list_workflows() to see available workflows."
            )
            raise ValueError(msg)
        workflow_input = args.get("input") if isinstance(args.get("input"), dict) else {}
        return await self.orchestrator.run_inline(workflow_id.strip(), workflow_input, run)

    async def start_task(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        workflow_id = _workflow_id_from(args)
        if not workflow_id:
            logger.error("start_task called without a workflow id: %s", json.dumps(args, default=str))
            msg = (
                "workflowId is required. Call list_workflows() first to see available IDs, "
                'then call start_task({ workflowId: "the-id", input: { ... } })'
            )
            raise ValueError(msg)
        workflow = self.orchestrator.registry.get(workflow_id)
        await run.report("_task", f"Starting task: {workflow.title}")

        workflow_input = dict(args.get("input")) if isinstance(args.get("input"), dict) else {}
        workflow_input["message"] = workflow_input.get("message") or run.input.get("message")
        task = await self.orchestrator.start_task(
            workflow_id,
            workflow_input,
            source=run.source,
            chat_id=run.chat_id,
        )
        return {
            "taskId": task.task_id,
            "workflow": workflow_id,
            "title": workflow.title,
            "status": "started",
            "message": f"Started task {task.task_id}. Ask me for status anytime.",
        }

    async def check_task(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        task_id = args.get("taskId")
        if not task_id:
            msg = "taskId is required"
            raise ValueError(msg)
        task = await self.orchestrator.store.load_task(task_id)
        if task is None:
            return {"error": f"Task not found: {task_id}"}

        current = task.current_step
        last_progress = current.progress_messages[-1].message if current and current.progress_messages else None
        summary: dict[str, Any] = {
            "taskId": task.task_id,
            "workflow": task.workflow_id,
            "status": str(task.status),
            "currentStep": current.step_name if current else None,
            "stepProgress": f"{task.current_step_index + 1}/{len(task.step_results) or '?'}",
            "lastProgress": last_progress,
            "createdAt": task.created_at.isoformat(),
        }
        if task.status == TaskStatus.COMPLETED:
            summary["result"] = task.result
        if task.status == TaskStatus.FAILED:
            summary["error"] = task.error
        return summary

    async def list_tasks(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        status = args.get("status") if args.get("status") in _STATUS_VALUES else None
        limit = args.get("limit") if isinstance(args.get("limit"), int) and args["limit"] > 0 else 10
        page = await self.orchestrator.store.list_tasks(limit=limit, status=status)

        tasks = []
        for task in page.tasks:
            topic = (
                task.workflow_input.get("topic")
                or task.workflow_input.get("message")
                or task.workflow_input.get("theme")
                or "(no topic)"
            )
            current = task.current_step
            tasks.append(
                {
                    "id": task.task_id,
                    "workflow": task.workflow_id,
                    "status": str(task.status),
                    "topic": topic[:100] if isinstance(topic, str) else topic,
                    "currentStep": current.step_name if current else None,
                    "createdAt": task.created_at.isoformat(),
                    "lastUpdatedAt": task.last_updated_at.isoformat(),
                    "resultPreview": (
                        _preview(task.result, 200)
                        if task.status == TaskStatus.COMPLETED and task.result
                        else None
                    ),
                }
            )
        return {
            "tasks": tasks,
            "count": len(tasks),
            "hint": "Use this context to understand what the user is referring to when they say "
            "'draft this', 'continue', etc.",
        }

    async def delete_task(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        task_id = args.get("taskId")
        if not task_id:
            msg = "taskId is required"
            raise ValueError(msg)
        deleted = await self.orchestrator.store.delete_task(task_id)
        return {
            "deleted": deleted,
            "taskId": task_id,
            "message": f"Task {task_id} deleted." if deleted else f"Task {task_id} not found.",
        }

    async def new_thread(self, args: dict[str, Any], run: RunContext) -> dict[str, Any]:
        source = args.get("source") or run.source
        chat_id = args.get("chatId") or run.chat_id
        closed = await self.orchestrator.store.close_thread(source, chat_id)
        if closed is None:
            return {
                "success": True,
                "hadActiveThread": False,
                "message": "No active thread to close. Next message will start fresh.",
            }
        return {
            "success": True,
            "hadActiveThread": True,
            "closedTaskId": closed.task_id,
            "message": "Thread closed. Next message will start a new conversation.",
        }
