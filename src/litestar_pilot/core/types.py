"""Core type definitions for litestar-pilot.

This module defines the fundamental enums and type aliases used throughout
the engine: task and step states, action kinds, model tiers and tool policies.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "TERMINAL_TASK_STATUSES",
    "ActionType",
    "JSONValue",
    "ModelTier",
    "StepOutputs",
    "StepStatus",
    "TaskStatus",
    "ToolPolicy",
]


class TaskStatus(StrEnum):
    """Lifecycle state of a task (one workflow run).

    Attributes:
        WORKING: The orchestrator is walking the workflow's levels.
        INPUT_REQUIRED: Reserved for interactive runs; never set by the orchestrator.
        COMPLETED: All levels finished and a result was recorded.
        FAILED: A step error propagated and an error message was recorded.
        CANCELLED: The task was cancelled before reaching another terminal state.
    """

    WORKING = "working"
    INPUT_REQUIRED = "input_required"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})
"""Statuses a task never leaves once reached."""


class StepStatus(StrEnum):
    """Execution status of a single step result.

    Attributes:
        WORKING: Step has started and has not settled yet.
        COMPLETED: Step produced an output.
        FAILED: Step raised an error.
        SKIPPED: Step's ``skipIf`` condition matched.
    """

    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionType(StrEnum):
    """Kind of work a step performs.

    Attributes:
        TOOL: Direct call to a local or remote tool.
        CODE: Expression evaluated in the sandbox.
        LLM: Bounded agent loop with tool calling.
        TEMPLATE: Pure reference substitution.
    """

    TOOL = "tool"
    CODE = "code"
    LLM = "llm"
    TEMPLATE = "template"


class ModelTier(StrEnum):
    """Model tier requested by an LLM step."""

    FAST = "fast"
    SMART = "smart"


class ToolPolicy(StrEnum):
    """Named tool-selection policies for LLM steps.

    Attributes:
        ALL: Every local and remote tool.
        DISCOVER: Every tool plus the meta-tools for workflows, tasks and threads.
        NONE: No tools at all.
    """

    ALL = "all"
    DISCOVER = "discover"
    NONE = "none"


JSONValue: TypeAlias = Any
"""Any JSON-compatible value (dict, list, str, int, float, bool or None)."""

StepOutputs: TypeAlias = dict[str, Any]
"""Type alias for the mapping of step name to committed step output."""
