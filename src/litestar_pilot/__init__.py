"""Litestar Pilot - async workflow orchestration for LLM agents on Litestar.

Workflows are JSON documents of steps that call tools, evaluate expressions,
render templates or run an LLM agent with tools. Steps reference each other
with ``@ref`` tokens; the orchestrator runs independent steps concurrently,
records every run as a task and lets conversations continue as threads.

Key Features:
    - Dependency levels derived from ``@input``/``@steps`` references
    - Tool, code, template and LLM steps with retries and skip conditions
    - Agent loop with tool discovery and meta-tools
    - Memory, file and database task stores
    - Conversation threads with end-of-conversation detection
    - Litestar plugin with REST API

Example:
    >>> from litestar import Litestar
    >>> from litestar_pilot import PilotPlugin, PilotPluginConfig
    >>>
    >>> app = Litestar(plugins=[PilotPlugin(config=PilotPluginConfig(callbacks=MyCallbacks()))])
"""

from __future__ import annotations

from litestar_pilot.__metadata__ import __project__, __version__
from litestar_pilot.agent.catalog import LocalTool
from litestar_pilot.config import PilotConfig
from litestar_pilot.core.definition import Step, Workflow
from litestar_pilot.core.models import Task
from litestar_pilot.core.protocols import LLMResponse, PilotCallbacks, Provider, ToolCall, ToolDefinition
from litestar_pilot.core.types import StepStatus, TaskStatus
from litestar_pilot.engine.orchestrator import ExecutionResult, WorkflowOrchestrator
from litestar_pilot.engine.registry import WorkflowRegistry
from litestar_pilot.exceptions import (
    ConfigurationError,
    MissingToolsError,
    OutputValidationError,
    PilotError,
    SandboxError,
    StepExecutionError,
    TaskAlreadyCompletedError,
    TaskNotFoundError,
    ToolNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from litestar_pilot.plugin import PilotPlugin, PilotPluginConfig
from litestar_pilot.service import MessageResult, PilotService
from litestar_pilot.steps.sandbox import FunctionRegistry
from litestar_pilot.storage import BaseTaskStore, FileTaskStore, MemoryTaskStore
from litestar_pilot.threads import ThreadManager

__all__ = (
    "BaseTaskStore",
    "ConfigurationError",
    "ExecutionResult",
    "FileTaskStore",
    "FunctionRegistry",
    "LLMResponse",
    "LocalTool",
    "MemoryTaskStore",
    "MessageResult",
    "MissingToolsError",
    "OutputValidationError",
    "PilotCallbacks",
    "PilotConfig",
    "PilotError",
    "PilotPlugin",
    "PilotPluginConfig",
    "PilotService",
    "Provider",
    "SandboxError",
    "Step",
    "StepExecutionError",
    "StepStatus",
    "Task",
    "TaskAlreadyCompletedError",
    "TaskNotFoundError",
    "TaskStatus",
    "ThreadManager",
    "ToolCall",
    "ToolDefinition",
    "ToolNotFoundError",
    "Workflow",
    "WorkflowNotFoundError",
    "WorkflowOrchestrator",
    "WorkflowRegistry",
    "WorkflowValidationError",
    "__project__",
    "__version__",
)
