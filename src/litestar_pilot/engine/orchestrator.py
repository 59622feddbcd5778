"""Workflow orchestrator.

The orchestrator turns a workflow document into a task: it checks the tools
the workflow needs, walks the dependency levels (steps of one level run
concurrently), records every step result in the task store and publishes
progress and completion events through the host callbacks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from litestar_pilot.agent.catalog import ToolCache, ToolCatalog
from litestar_pilot.agent.loop import AgentLoop
from litestar_pilot.agent.meta import META_TOOL_NAMES, MetaTools
from litestar_pilot.config import PilotConfig
from litestar_pilot.core.context import RunContext
from litestar_pilot.core.definition import LLMAction, ToolAction
from litestar_pilot.core.events import AgentResponse, TaskCompleted, TaskProgress
from litestar_pilot.core.models import StepResult, utc_now
from litestar_pilot.core.types import StepStatus, TaskStatus
from litestar_pilot.engine.graph import group_steps_by_level
from litestar_pilot.exceptions import MissingToolsError, WorkflowNotFoundError, WorkflowValidationError
from litestar_pilot.steps.dispatcher import StepDispatcher, StepOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from litestar_pilot.agent.catalog import LocalTool
    from litestar_pilot.core.definition import Step, Workflow
    from litestar_pilot.core.events import PilotEvent
    from litestar_pilot.core.models import Task
    from litestar_pilot.core.protocols import PilotCallbacks
    from litestar_pilot.engine.registry import WorkflowRegistry
    from litestar_pilot.steps.sandbox import FunctionRegistry
    from litestar_pilot.storage.base import BaseTaskStore

__all__ = [
    "ExecutionResult",
    "ToolValidationResult",
    "WorkflowOrchestrator",
    "extract_response",
]

logger = logging.getLogger(__name__)

FAILURE_RESPONSE = "Sorry, I couldn't complete that: {error}"


def extract_response(output: Any) -> str:
    """Turn a workflow output into reply text.

    Example:
        >>> extract_response({"response": "Done"})
        'Done'
        >>> extract_response({"count": 2})
        '{"count": 2}'
    """
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        for key in ("response", "text"):
            if isinstance(output.get(key), str):
                return output[key]
    return json.dumps(output, ensure_ascii=False, default=str)


def _final_output(workflow: Workflow, outputs: dict[str, Any]) -> Any:
    for step in reversed(workflow.steps):
        if outputs.get(step.name) is not None:
            return outputs[step.name]
    return None


@dataclass
class ToolValidationResult:
    """Outcome of checking a workflow's statically required tools.

    Attributes:
        valid: Whether every required tool is available.
        required: Sorted names the workflow needs.
        available: Names currently offered by local tools and providers.
        missing: Sorted required names nobody offers.
    """

    valid: bool
    required: list[str] = field(default_factory=list)
    available: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """Outcome of one workflow run.

    Attributes:
        task: The task as last stored.
        result: The final output, ``None`` on failure or cancellation.
        response: Reply text for the caller.
        error: Error message if the run failed.
    """

    task: Task
    result: Any = None
    response: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.task.status == TaskStatus.COMPLETED


@dataclass
class _StepRun:
    step: Step
    outcome: StepOutcome | None = None
    error: Exception | None = None


class WorkflowOrchestrator:
    """Runs workflows as tasks.

    Attributes:
        registry: Source of workflow documents.
        store: Task store recording every run.
        callbacks: Host callbacks for models, remote tools and events.
        config: Engine configuration.
        tool_cache: Tool definitions remembered across runs.
        catalog: Tool catalog over local tools and providers.
        meta: Meta-tools bound to this orchestrator.
        agent: Agent loop for ``llm`` steps.
        dispatcher: Step dispatcher.
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        store: BaseTaskStore,
        callbacks: PilotCallbacks,
        config: PilotConfig | None = None,
        local_tools: Iterable[LocalTool] = (),
        functions: FunctionRegistry | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.callbacks = callbacks
        self.config = config or PilotConfig()
        self.tool_cache = ToolCache()
        self.catalog = ToolCatalog(callbacks, local_tools, cache=self.tool_cache)
        self.meta = MetaTools(self)
        self.agent = AgentLoop(callbacks, self.catalog, self.config, meta=self.meta)
        self.dispatcher = StepDispatcher(self.catalog, self.agent, functions)
        self._running: dict[str, asyncio.Task[None]] = {}

    @staticmethod
    def required_tools(workflow: Workflow) -> list[str]:
        """Tools a workflow names statically.

        These are the tools of ``tool`` steps plus the literal names in explicit
        ``llm`` tool lists; references and meta-tools are not counted.
        """
        required: set[str] = set()
        for step in workflow.steps:
            action = step.action
            if isinstance(action, ToolAction):
                required.add(action.tool_name)
            elif isinstance(action, LLMAction) and isinstance(action.tools, list):
                required.update(
                    name
                    for name in action.tools
                    if isinstance(name, str) and not name.startswith("@") and name not in META_TOOL_NAMES
                )
        return sorted(required)

    async def validate_workflow_tools(self, workflow: Workflow) -> ToolValidationResult:
        required = self.required_tools(workflow)
        if not required:
            return ToolValidationResult(valid=True)
        available = await self.catalog.available_tool_names()
        missing = sorted(set(required) - available)
        if missing:
            logger.warning("Workflow %s is missing tools: %s", workflow.id, ", ".join(missing))
        return ToolValidationResult(
            valid=not missing,
            required=required,
            available=sorted(available),
            missing=missing,
        )

    async def prepare(self, workflow_id: str) -> Workflow:
        """Load a workflow and check it can run.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowValidationError: If the workflow is malformed or cyclic.
            MissingToolsError: If a required tool is unavailable.
        """
        workflow = self.registry.get(workflow_id)
        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(errors)
        validation = await self.validate_workflow_tools(workflow)
        if not validation.valid:
            raise MissingToolsError(workflow.title, validation.missing)
        return workflow

    async def execute_workflow(
        self,
        workflow_id: str,
        input: dict[str, Any] | None = None,
        source: str = "api",
        chat_id: str | None = None,
        existing_task: Task | None = None,
    ) -> ExecutionResult:
        """Run a workflow to completion as a task.

        Step failures do not raise: the task is failed and the result carries
        the error and a conversational fallback response.

        Args:
            workflow_id: Workflow to run.
            input: Workflow input; the workflow's ``defaultInput`` is merged underneath.
            source: Interface the request came from.
            chat_id: Optional chat identifier.
            existing_task: Already created task to run in, used by :meth:`start_task`.

        Returns:
            The execution result.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowValidationError: If the workflow is malformed or cyclic.
            MissingToolsError: If a required tool is unavailable.

        Example:
            >>> outcome = await orchestrator.execute_workflow("fast-router", {"message": "hi"}, source="cli")
            >>> outcome.response
            'Hello!'
        """
        workflow = await self.prepare(workflow_id)
        task = existing_task
        if task is None:
            task = await self.store.create_task(
                workflow_id,
                {**(workflow.default_input or {}), **(input or {})},
                source,
                chat_id=chat_id,
                ttl=self.config.task_ttl_ms,
            )
        logger.info("Running workflow %s as task %s", workflow_id, task.task_id)
        await self.on_progress(task.task_id, "_start", f"Start: {workflow.title}")
        return await self._execute(workflow, task, {})

    async def _execute(
        self,
        workflow: Workflow,
        task: Task,
        outputs: dict[str, Any],
        skipped: set[str] | None = None,
    ) -> ExecutionResult:
        run = self._run_context(workflow, task, outputs)
        try:
            cancelled = await self._run_levels(workflow, run, done=set(outputs) | (skipped or set()))
        except Exception as e:
            error = str(e) or e.__class__.__name__
            if await self._is_cancelled(task.task_id):
                logger.info("Task %s was cancelled before its failing step settled: %s", task.task_id, error)
                return ExecutionResult(task=await self.store.load_task(task.task_id) or task)
            logger.warning("Task %s failed: %s", task.task_id, error)
            await self.on_progress(task.task_id, "_error", f"Error: {error}")
            await self.store.fail_task(task.task_id, error)
            stored = await self.store.load_task(task.task_id) or task
            return ExecutionResult(task=stored, response=FAILURE_RESPONSE.format(error=error), error=error)

        if cancelled:
            logger.info("Task %s was cancelled", task.task_id)
            return ExecutionResult(task=await self.store.load_task(task.task_id) or task)

        result = _final_output(workflow, run.steps)
        await self.on_progress(task.task_id, "_end", f"Done: {workflow.title}")
        if await self.store.complete_task(task.task_id, result) is None and await self._is_cancelled(task.task_id):
            return ExecutionResult(task=await self.store.load_task(task.task_id) or task)
        stored = await self.store.load_task(task.task_id) or task
        return ExecutionResult(task=stored, result=result, response=extract_response(result))

    def _run_context(self, workflow: Workflow, task: Task, outputs: dict[str, Any]) -> RunContext:
        return RunContext(
            workflow=workflow,
            input=task.workflow_input,
            steps=dict(outputs),
            task_id=task.task_id,
            source=task.source,
            chat_id=task.chat_id,
            tool_cache=self.tool_cache,
            on_progress=partial(self.on_progress, task.task_id),
        )

    async def _is_cancelled(self, task_id: str) -> bool:
        task = await self.store.load_task(task_id)
        return task is not None and task.status == TaskStatus.CANCELLED

    async def _run_levels(self, workflow: Workflow, run: RunContext, done: set[str]) -> bool:
        """Run every level not yet done; return True if the task was cancelled."""
        for level in group_steps_by_level(workflow.steps):
            pending = [step for step in level if step.name not in done]
            if not pending:
                continue
            if run.task_id and await self._is_cancelled(run.task_id):
                return True

            runs = await asyncio.gather(*(self._run_step(step, run) for step in pending))

            first_error: Exception | None = None
            for step_run in runs:
                name = step_run.step.name
                if step_run.error is not None:
                    if step_run.step.config.continue_on_error:
                        run.set_output(name, None)
                    elif first_error is None:
                        first_error = step_run.error
                elif step_run.outcome is not None and not step_run.outcome.skipped:
                    run.set_output(name, step_run.outcome.output)
            if first_error is not None:
                raise first_error
        return False

    async def _run_step(self, step: Step, run: RunContext) -> _StepRun:
        task_id = run.task_id or ""
        result = StepResult(step_id=f"{task_id}_{step.name}", step_name=step.name, started_at=utc_now())
        await self.store.update_task_step(task_id, result)
        try:
            outcome = await self.dispatcher.execute(step, run)
        except Exception as e:
            logger.info("Step %s of task %s failed: %s", step.name, task_id, e)
            result.status = StepStatus.FAILED
            result.error = str(e)
            result.completed_at = utc_now()
            await self.store.update_task_step(task_id, result)
            return _StepRun(step=step, error=e)

        result.status = StepStatus.SKIPPED if outcome.skipped else StepStatus.COMPLETED
        result.output = {"skipped": True} if outcome.skipped else outcome.output
        result.completed_at = utc_now()
        await self.store.update_task_step(task_id, result)
        return _StepRun(step=step, outcome=outcome)

    async def run_inline(self, workflow_id: str, input: dict[str, Any], parent: RunContext) -> Any:
        """Run a workflow's steps inside another run, one step at a time.

        Used by the ``execute_workflow`` meta-tool. Nothing is persisted beyond
        progress messages, which are reported as ``<workflow_id>:<step>``.

        Args:
            workflow_id: Workflow to run.
            input: Input merged over the parent's input.
            parent: The calling run.

        Returns:
            The last declared step output that is not ``None``.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowValidationError: If the workflow is malformed or cyclic.
        """
        workflow = self.registry.get(workflow_id)
        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(errors)

        run = parent.child(workflow, input)
        for level in group_steps_by_level(workflow.steps):
            for step in level:
                await run.report(step.name, f"Running: {step.description or step.name}")
                try:
                    outcome = await self.dispatcher.execute(step, run)
                except Exception as e:
                    await run.report(step.name, f"Failed: {e}")
                    if not step.config.continue_on_error:
                        raise
                    continue
                if not outcome.skipped:
                    run.set_output(step.name, outcome.output)
                await run.report(step.name, "Skipped" if outcome.skipped else "Done")
        return _final_output(workflow, run.steps)

    async def start_task(
        self,
        workflow_id: str,
        input: dict[str, Any] | None = None,
        source: str = "api",
        chat_id: str | None = None,
    ) -> Task:
        """Start a workflow in the background.

        The task is created before this returns; the run continues in an
        ``asyncio.Task`` and announces its end with ``agent.response.<source>``
        and ``agent.task.completed`` events.

        Returns:
            The newly created task.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowValidationError: If the workflow is malformed or cyclic.
            MissingToolsError: If a required tool is unavailable.
        """
        workflow = await self.prepare(workflow_id)
        task = await self.store.create_task(
            workflow_id,
            {**(workflow.default_input or {}), **(input or {})},
            source,
            chat_id=chat_id,
            ttl=self.config.task_ttl_ms,
        )
        background = asyncio.create_task(self._run_background(workflow, task))
        self._running[task.task_id] = background
        background.add_done_callback(lambda _: self._running.pop(task.task_id, None))
        logger.info("Started background task %s for workflow %s", task.task_id, workflow_id)
        return task

    async def _run_background(self, workflow: Workflow, task: Task) -> None:
        try:
            outcome = await self.execute_workflow(
                workflow.id,
                task.workflow_input,
                source=task.source,
                chat_id=task.chat_id,
                existing_task=task,
            )
        except asyncio.CancelledError:
            logger.info("Background task %s cancelled", task.task_id)
            await self._announce(task, workflow, TaskStatus.CANCELLED)
            raise
        except Exception as e:
            logger.exception("Background task %s failed", task.task_id)
            await self.store.fail_task(task.task_id, str(e))
            await self._announce(task, workflow, TaskStatus.FAILED, error=str(e))
            return

        status = outcome.task.status
        if outcome.error is not None:
            await self._announce(task, workflow, TaskStatus.FAILED, error=outcome.error)
        elif status == TaskStatus.CANCELLED:
            await self._announce(task, workflow, TaskStatus.CANCELLED)
        else:
            await self._announce(task, workflow, TaskStatus.COMPLETED, response=outcome.response or "")

    async def _announce(
        self,
        task: Task,
        workflow: Workflow,
        status: TaskStatus,
        *,
        response: str | None = None,
        error: str | None = None,
    ) -> None:
        if status == TaskStatus.FAILED:
            text = f"Task failed: {error}"
        elif status == TaskStatus.CANCELLED:
            text = f"Task {task.task_id} was cancelled."
        else:
            text = response or ""
        await self.publish(AgentResponse(task_id=task.task_id, source=task.source, text=text, chat_id=task.chat_id))
        await self.publish(
            TaskCompleted(
                task_id=task.task_id,
                workflow_id=workflow.id,
                workflow_title=workflow.title,
                source=task.source,
                status=str(status),
                chat_id=task.chat_id,
                response=response,
                error=error,
            )
        )

    async def cancel_task(self, task_id: str) -> Task | None:
        """Cancel a live task.

        The stored status flips to ``cancelled`` (the level walk stops before
        the next level) and a background run, if any, is cancelled as well.

        Returns:
            The cancelled task, or ``None`` if it is missing or already terminal.
        """
        task = await self.store.cancel_task(task_id)
        background = self._running.pop(task_id, None)
        if task is not None and background is not None and not background.done():
            background.cancel()
        return task

    async def resume_task(self, task_id: str) -> ExecutionResult | None:
        """Continue a live task from its completed steps.

        Returns:
            ``None`` if the task does not exist; the stored result for
            terminal tasks; otherwise the result of running the remaining steps.
        """
        task = await self.store.load_task(task_id)
        if task is None:
            return None
        if task.is_terminal:
            return ExecutionResult(task=task, result=task.result, response=extract_response(task.result))

        try:
            workflow = self.registry.get(task.workflow_id)
        except WorkflowNotFoundError as e:
            await self.store.fail_task(task_id, str(e))
            stored = await self.store.load_task(task_id) or task
            return ExecutionResult(task=stored, error=str(e), response=FAILURE_RESPONSE.format(error=e))

        outputs: dict[str, Any] = {}
        for result in task.step_results:
            if result.status == StepStatus.COMPLETED:
                outputs[result.step_name] = result.output
        skipped = {result.step_name for result in task.step_results if result.status == StepStatus.SKIPPED}
        logger.info("Resuming task %s after %d completed steps", task_id, len(outputs))
        return await self._execute(workflow, task, outputs, skipped)

    async def on_progress(self, task_id: str, step_name: str, message: str) -> None:
        """Persist a progress message and publish it as an event."""
        await self.store.add_step_progress(task_id, step_name, message)
        await self.publish(TaskProgress(task_id=task_id, step_name=step_name, message=message))

    async def publish(self, event: PilotEvent) -> None:
        """Publish an event; delivery failures are logged, never raised."""
        publish_event = getattr(self.callbacks, "publish_event", None)
        if publish_event is None:
            return
        try:
            await publish_event(event.type, event.to_dict())
        except Exception:
            logger.exception("Failed to publish %s for task %s", event.type, event.task_id)

    def running_task_ids(self) -> Sequence[str]:
        return list(self._running)

    async def shutdown(self) -> None:
        """Cancel every background run and wait for them to settle."""
        pending = list(self._running.values())
        for background in pending:
            background.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._running.clear()
