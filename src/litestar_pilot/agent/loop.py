"""Bounded tool-calling loop behind ``llm`` steps.

Each iteration asks the model for one turn. A turn without tool calls ends the
loop with a structured result; a turn with tool calls executes them and feeds
their results back as conversation messages. The loop stops early when the
model repeats the same call, and asks for a summary once ``maxIterations`` is
spent.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.refs import FULL_REF_PATTERN, resolve_refs

if TYPE_CHECKING:
    from litestar_pilot.agent.catalog import ToolCatalog
    from litestar_pilot.agent.meta import MetaTools
    from litestar_pilot.config import PilotConfig
    from litestar_pilot.core.context import RunContext
    from litestar_pilot.core.definition import LLMAction, Step
    from litestar_pilot.core.protocols import PilotCallbacks, ToolCall, ToolDefinition

__all__ = [
    "MAX_CONSECUTIVE_REPEATS",
    "AgentLoop",
    "parse_structured_output",
]

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_REPEATS = 3
TOOL_RESULT_LIMIT = 3000
SUMMARY_PROMPT = (
    "You've reached the iteration limit. Please provide a summary response based on the "
    "information you've gathered so far. Do NOT call any more tools - just summarize your findings."
)
TOOL_RESULT_PREFIX = "[Tool Result"

FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
RESPONSE_FIELD_PATTERN = re.compile(r'"response"\s*:\s*"((?:[^"\\]|\\.)*)"')


def parse_structured_output(text: str | None) -> dict[str, Any]:
    """Parse the model's final text into a result mapping.

    The text may be JSON, JSON inside a fenced code block, malformed JSON that
    still carries a ``"response"`` string, or plain prose.

    Args:
        text: The model's final text.

    Returns:
        A mapping with at least a ``response`` key when one could be found.
        For JSON objects every field is kept; ``taskForSmartAgent`` falls back
        to ``task`` and ``toolsForSmartAgent`` falls back to ``tools``.

    Example:
        >>> parse_structured_output('```json\\n{"response": "hi"}\\n```')
        {'response': 'hi'}
        >>> parse_structured_output("just text")
        {'response': 'just text'}
    """
    if not text:
        logger.warning("Empty model text received")
        return {"response": "(No response)"}

    match = FENCED_JSON_PATTERN.search(text)
    candidate = match.group(1) if match else text
    try:
        parsed = json.loads(candidate.strip())
    except ValueError:
        field_match = RESPONSE_FIELD_PATTERN.search(text)
        if field_match is None:
            return {"response": text}
        try:
            return {"response": json.loads(f'"{field_match.group(1)}"')}
        except ValueError:
            return {"response": field_match.group(1)}

    if not isinstance(parsed, dict):
        return {"response": text}

    result = dict(parsed)
    response = parsed.get("response")
    result["response"] = response if isinstance(response, str) else None

    task = parsed.get("taskForSmartAgent")
    if not isinstance(task, str):
        task = parsed.get("task") if isinstance(parsed.get("task"), str) else None
    tools = parsed.get("toolsForSmartAgent")
    if not isinstance(tools, list):
        tools = parsed.get("tools") if isinstance(parsed.get("tools"), list) else None
    for key, value in (("taskForSmartAgent", task), ("toolsForSmartAgent", tools)):
        if value is None:
            result.pop(key, None)
        else:
            result[key] = value
    return result


def _finalize(text: str | None) -> dict[str, Any]:
    parsed = parse_structured_output(text)
    output = {key: value for key, value in parsed.items() if value is not None}
    output["response"] = parsed.get("response") or text or "(Task completed)"
    if parsed.get("context"):
        output["context"] = json.dumps(parsed["context"], ensure_ascii=False)
    return output


def _call_signature(call: ToolCall) -> str:
    return f"{call.name}:{json.dumps(call.arguments, sort_keys=True, default=str)}"


def _is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and ("error" in result or "isError" in result)


class AgentLoop:
    """Runs ``llm`` steps.

    Attributes:
        callbacks: Host callbacks used for model turns.
        catalog: Tool catalog used to gather definitions and call tools.
        config: Engine configuration; maps model tiers to model ids.
        meta: Meta-tools callable by name from any step.
        max_consecutive_repeats: Identical consecutive calls tolerated.
    """

    def __init__(
        self,
        callbacks: PilotCallbacks,
        catalog: ToolCatalog,
        config: PilotConfig,
        meta: MetaTools | None = None,
        max_consecutive_repeats: int = MAX_CONSECUTIVE_REPEATS,
    ) -> None:
        self.callbacks = callbacks
        self.catalog = catalog
        self.config = config
        self.meta = meta
        self.max_consecutive_repeats = max_consecutive_repeats

    def build_messages(
        self,
        action: LLMAction,
        resolved_input: dict[str, Any],
        run: RunContext,
    ) -> list[dict[str, Any]]:
        """Assemble the initial conversation for a step.

        Args:
            action: The step's action.
            resolved_input: The step input after reference resolution.
            run: The current run.

        Returns:
            System message (if any), the recent history, then the prompt.
        """
        messages: list[dict[str, Any]] = []
        if action.system_prompt:
            messages.append({"role": "system", "content": action.system_prompt})

        history = resolved_input.get("history")
        if isinstance(history, list) and self.config.history_turns > 0:
            messages.extend(entry for entry in history[-self.config.history_turns :] if isinstance(entry, dict))

        prompt = resolve_refs(action.prompt, run.ref_context()) if isinstance(action.prompt, str) else None
        if not isinstance(prompt, str):
            prompt = "" if prompt is None else json.dumps(prompt, ensure_ascii=False, default=str)
        if not prompt:
            prompt = str(resolved_input.get("message") or "")
        messages.append({"role": "user", "content": prompt})
        return messages

    def resolve_tool_policy(self, action: LLMAction, step_name: str, run: RunContext) -> str | list[str] | None:
        """Resolve an ``@ref`` tools policy.

        A reference resolving to a list yields that list; anything else yields
        ``None`` so every tool is offered.
        """
        tools = action.tools
        if not (isinstance(tools, str) and FULL_REF_PATTERN.match(tools)):
            return tools
        resolved = resolve_refs(tools, run.ref_context())
        if isinstance(resolved, list):
            logger.debug("[%s] Resolved tools reference %s to %d tools", step_name, tools, len(resolved))
            return resolved
        logger.warning("[%s] Tools reference %s resolved to a non-list: %r", step_name, tools, resolved)
        return None

    async def execute_tool(self, call: ToolCall, run: RunContext) -> Any:
        """Execute one tool call requested by the model."""
        if self.meta is not None and self.meta.handles(call.name):
            return await self.meta.call(call.name, call.arguments, run)
        return await self.catalog.call(call.name, call.arguments, local_first=True)

    async def run(self, step: Step, resolved_input: dict[str, Any], run: RunContext) -> dict[str, Any]:
        """Run the loop for an ``llm`` step.

        Args:
            step: The step; its action must be an ``LLMAction``.
            resolved_input: The step input after reference resolution.
            run: The current run.

        Returns:
            A mapping that always carries a non-empty ``response``.
        """
        action: LLMAction = step.action  # type: ignore[assignment]
        tier = str(action.model).upper()
        model_id = self.config.model_for(str(action.model))
        await run.report(step.name, f"{tier}: Thinking...")

        messages = self.build_messages(action, resolved_input, run)
        policy = self.resolve_tool_policy(action, step.name, run)
        meta_definitions: list[ToolDefinition] = self.meta.definitions() if self.meta is not None else []
        tools = await self.catalog.gather(policy, meta_definitions, cache=run.tool_cache)
        logger.debug("[%s] %d tools offered: %s", step.name, len(tools), ", ".join(t.name for t in tools[:20]))
        await run.report(step.name, f"{tier}: {len(tools)} tools available")

        last_signature: str | None = None
        repeats = 0
        for _ in range(max(0, action.max_iterations)):
            response = await self.callbacks.call_llm(model_id, messages, tools)
            if not response.tool_calls:
                logger.debug("[%s] Final response: %s", step.name, (response.text or "")[:200])
                return _finalize(response.text)

            for call in response.tool_calls:
                signature = _call_signature(call)
                if signature == last_signature:
                    repeats += 1
                else:
                    last_signature, repeats = signature, 1
                if repeats >= self.max_consecutive_repeats:
                    logger.warning("[%s] Loop detected: %s called %d times in a row", step.name, call.name, repeats)
                    await run.report(step.name, f"Loop detected on {call.name}, stopping")
                    return {
                        "response": f"I got stuck in a loop calling {call.name}. The task may be partially complete."
                    }

                await run.report(step.name, f"{tier}: {call.name}...")
                await self._run_tool_call(call, response.text, messages, step.name, run)

        await run.report(step.name, f"{tier}: Reached iteration limit, summarizing...")
        return await self._summarize(model_id, messages, step.name)

    async def _run_tool_call(
        self,
        call: ToolCall,
        text: str | None,
        messages: list[dict[str, Any]],
        step_name: str,
        run: RunContext,
    ) -> None:
        try:
            result = await self.execute_tool(call, run)
        except Exception as e:
            logger.info("[%s] Tool %s raised: %s", step_name, call.name, e)
            await run.report(step_name, f"{call.name} threw: {e}")
            messages.append({"role": "user", "content": f"[Tool Error for {call.name}]: {e}"})
            return

        result_text = json.dumps(result, indent=2, ensure_ascii=False, default=str)
        logger.debug("[%s] Tool %s result (%d chars): %s", step_name, call.name, len(result_text), result_text[:500])
        if _is_error_result(result):
            await run.report(step_name, f"{call.name} error: {result_text[:200]}")
        else:
            await run.report(step_name, f"{call.name} completed")

        messages.append({"role": "assistant", "content": text or f"Calling {call.name}..."})
        messages.append(
            {"role": "user", "content": f"[Tool Result for {call.name}]:\n{result_text[:TOOL_RESULT_LIMIT]}"}
        )

    async def _summarize(self, model_id: str, messages: list[dict[str, Any]], step_name: str) -> dict[str, Any]:
        messages.append({"role": "user", "content": SUMMARY_PROMPT})
        try:
            summary = await self.callbacks.call_llm(model_id, messages, [])
        except Exception:
            logger.exception("[%s] Summary call failed", step_name)
        else:
            if summary.text:
                return {"response": summary.text}

        tool_results = "\n\n".join(
            message["content"]
            for message in messages
            if isinstance(message.get("content"), str) and message["content"].startswith(TOOL_RESULT_PREFIX)
        )
        if tool_results:
            return {"response": f"Research completed (partial results):\n\n{tool_results[:TOOL_RESULT_LIMIT]}"}
        return {"response": "Reached iteration limit. Some results may be incomplete."}
