"""Core domain module for litestar-pilot.

This module exports the fundamental building blocks of the engine: types,
workflow documents, reference resolution, task records, run context, host
callback protocols and events.
"""

from __future__ import annotations

from litestar_pilot.core.context import RunContext
from litestar_pilot.core.definition import (
    Action,
    CodeAction,
    LLMAction,
    Step,
    StepConfig,
    TemplateAction,
    ToolAction,
    Workflow,
)
from litestar_pilot.core.events import AgentResponse, PilotEvent, TaskCompleted, TaskProgress
from litestar_pilot.core.models import ProgressMessage, StepResult, Task, TaskPage
from litestar_pilot.core.protocols import LLMResponse, PilotCallbacks, Provider, ToolCall, ToolDefinition
from litestar_pilot.core.refs import RefContext, extract_refs, get_step_dependencies, resolve_refs
from litestar_pilot.core.types import ActionType, ModelTier, StepStatus, TaskStatus

__all__ = [
    "Action",
    "ActionType",
    "AgentResponse",
    "CodeAction",
    "LLMAction",
    "LLMResponse",
    "ModelTier",
    "PilotCallbacks",
    "PilotEvent",
    "ProgressMessage",
    "Provider",
    "RefContext",
    "RunContext",
    "Step",
    "StepConfig",
    "StepResult",
    "StepStatus",
    "Task",
    "TaskCompleted",
    "TaskPage",
    "TaskProgress",
    "TaskStatus",
    "TemplateAction",
    "ToolAction",
    "ToolCall",
    "ToolDefinition",
    "Workflow",
    "extract_refs",
    "get_step_dependencies",
    "resolve_refs",
]
