"""Workflow execution engine.

This module exports the dependency leveler, the workflow registry and the
orchestrator that runs workflows as tasks.
"""

from __future__ import annotations

from litestar_pilot.engine.graph import StepGraph, compute_step_levels, group_steps_by_level
from litestar_pilot.engine.orchestrator import (
    ExecutionResult,
    ToolValidationResult,
    WorkflowOrchestrator,
    extract_response,
)
from litestar_pilot.engine.registry import WorkflowRegistry

__all__ = [
    "ExecutionResult",
    "StepGraph",
    "ToolValidationResult",
    "WorkflowOrchestrator",
    "WorkflowRegistry",
    "compute_step_levels",
    "extract_response",
    "group_steps_by_level",
]
