"""Workflow run context.

This module provides the RunContext dataclass which carries the workflow input,
committed step outputs and the progress hook throughout one run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.refs import RefContext

if TYPE_CHECKING:
    from litestar_pilot.agent.catalog import ToolCache
    from litestar_pilot.core.definition import Workflow
    from litestar_pilot.core.protocols import ProgressCallback

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Execution context passed to every step of a run.

    Steps of one level read the same ``steps`` mapping; the orchestrator only
    commits outputs after the whole level settled.

    Attributes:
        workflow: The workflow being run.
        input: The workflow input (default input already merged in).
        steps: Committed step outputs keyed by step name.
        task_id: Task the run is recorded in, if any.
        source: Interface the request came from.
        chat_id: Optional chat identifier.
        tool_cache: Tool definitions cached for this orchestrator.
        on_progress: Async ``(step_name, message)`` hook bound to the task.
        step_prefix: Prefix applied to step names in progress reports; set for
            workflows run inline by an agent.

    Example:
        >>> run = RunContext(workflow=workflow, input={"topic": "AI"})
        >>> run.set_output("search", {"hits": 3})
        >>> run.ref_context().steps["search"]
        {'hits': 3}
    """

    workflow: Workflow
    input: dict[str, Any]
    steps: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None
    source: str = "api"
    chat_id: str | None = None
    tool_cache: ToolCache | None = None
    on_progress: ProgressCallback | None = None
    step_prefix: str | None = None

    def ref_context(self) -> RefContext:
        """Snapshot of the values ``@ref`` tokens resolve against."""
        return RefContext(input=self.input, steps=self.steps)

    def set_output(self, step_name: str, output: Any) -> None:
        self.steps[step_name] = output

    def get_output(self, step_name: str, default: Any = None) -> Any:
        return self.steps.get(step_name, default)

    async def report(self, step_name: str, message: str) -> None:
        """Report progress for ``step_name``.

        Progress hooks must never break a run, so their failures are logged.

        Args:
            step_name: Step reporting progress.
            message: Progress text.
        """
        name = f"{self.step_prefix}:{step_name}" if self.step_prefix else step_name
        logger.debug("[%s] %s: %s", self.task_id, name, message)
        if self.on_progress is None:
            return
        try:
            await self.on_progress(name, message)
        except Exception:
            logger.exception("Progress hook failed for task %s", self.task_id)

    def child(self, workflow: Workflow, input: dict[str, Any]) -> RunContext:
        """Create a context for running ``workflow`` inline within this run.

        The child shares the task, conversation key, cache and progress hook,
        merges ``input`` over this run's input and starts with no step outputs.

        Args:
            workflow: The workflow to run inline.
            input: Input supplied by the caller.

        Returns:
            A new RunContext whose progress is prefixed with the workflow id.
        """
        return RunContext(
            workflow=workflow,
            input={**self.input, **input},
            task_id=self.task_id,
            source=self.source,
            chat_id=self.chat_id,
            tool_cache=self.tool_cache,
            on_progress=self.on_progress,
            step_prefix=workflow.id,
        )
