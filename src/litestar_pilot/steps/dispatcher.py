"""Execution of a single workflow step.

The dispatcher evaluates a step's skip condition, resolves its input, hands it
to the strategy matching its action and checks the output contract.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.definition import CodeAction, LLMAction, TemplateAction, ToolAction
from litestar_pilot.core.refs import resolve_refs
from litestar_pilot.exceptions import OutputValidationError, SandboxError, StepExecutionError, ToolNotFoundError
from litestar_pilot.steps.conditions import evaluate_skip_if
from litestar_pilot.steps.sandbox import FunctionRegistry, run_code
from litestar_pilot.steps.schema import validate_output

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from litestar_pilot.agent.catalog import ToolCatalog
    from litestar_pilot.agent.loop import AgentLoop
    from litestar_pilot.core.context import RunContext
    from litestar_pilot.core.definition import Step

__all__ = ["StepDispatcher", "StepOutcome"]

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """Result of dispatching one step.

    Attributes:
        output: The step output; ``None`` for skipped steps.
        skipped: Whether the step's skip condition matched.
    """

    output: Any = None
    skipped: bool = False


class StepDispatcher:
    """Routes each step to the strategy for its action type.

    Attributes:
        catalog: Tool catalog used by ``tool`` steps.
        agent: Agent loop used by ``llm`` steps.
        functions: Extra functions callable from ``code`` steps.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        agent: AgentLoop,
        functions: FunctionRegistry | None = None,
    ) -> None:
        self.catalog = catalog
        self.agent = agent
        self.functions = functions or FunctionRegistry()

    async def execute(self, step: Step, run: RunContext) -> StepOutcome:
        """Execute ``step`` against the committed outputs of ``run``.

        Args:
            step: The step to execute.
            run: The current run.

        Returns:
            The step outcome.

        Raises:
            ToolNotFoundError: If a ``tool`` step names a tool nobody exposes.
            StepExecutionError: If a ``code`` or ``template`` step fails.
            OutputValidationError: If the output violates ``outputSchema``.
        """
        ref_context = run.ref_context()
        if evaluate_skip_if(step.config.skip_if, ref_context):
            await run.report(step.name, f"Skipped ({step.config.skip_if})")
            return StepOutcome(skipped=True)

        resolved_input = resolve_refs(step.input, ref_context)
        action = step.action

        if isinstance(action, ToolAction):
            output = await self._with_retries(step, run, lambda: self._run_tool(action, step, resolved_input))
        elif isinstance(action, CodeAction):
            output = await self._with_retries(step, run, lambda: self._run_code(action, resolved_input))
        elif isinstance(action, TemplateAction):
            output = self._run_template(action, step, run)
        elif isinstance(action, LLMAction):
            output = await self.agent.run(step, resolved_input, run)
        else:
            raise StepExecutionError(step.name, f"Unknown step type: {getattr(action, 'type', action)}")

        if step.output_schema and output:
            errors = validate_output(output, step.output_schema)
            if errors:
                raise OutputValidationError(step.name, errors)
        return StepOutcome(output=output)

    async def _run_tool(self, action: ToolAction, step: Step, resolved_input: Any) -> Any:
        hints: dict[str, Any] = {}
        if step.config.timeout_ms is not None:
            hints["timeout"] = step.config.timeout_ms
        arguments = resolved_input if isinstance(resolved_input, dict) else {"input": resolved_input}
        return await self.catalog.call(
            action.tool_name,
            arguments,
            connection_id=action.connection_id,
            local_first=False,
            **hints,
        )

    async def _run_code(self, action: CodeAction, resolved_input: Any) -> Any:
        try:
            return run_code(action.code, resolved_input, self.functions)
        except SandboxError as e:
            msg = f"Code execution failed: {e}"
            raise SandboxError(msg) from e

    def _run_template(self, action: TemplateAction, step: Step, run: RunContext) -> dict[str, Any]:
        if not action.template:
            raise StepExecutionError(step.name, "Template step requires a template")
        return {"response": resolve_refs(action.template, run.ref_context())}

    async def _with_retries(self, step: Step, run: RunContext, attempt: Callable[[], Awaitable[Any]]) -> Any:
        attempts = max(1, step.config.max_attempts)
        for number in range(1, attempts + 1):
            try:
                return await attempt()
            except ToolNotFoundError:
                raise
            except Exception as e:
                if number == attempts:
                    raise
                delay = step.config.backoff_ms * number / 1000
                logger.info("Step %s attempt %d/%d failed: %s", step.name, number, attempts, e)
                await run.report(step.name, f"Attempt {number} failed, retrying: {e}")
                if delay > 0:
                    await asyncio.sleep(delay)
        return None
