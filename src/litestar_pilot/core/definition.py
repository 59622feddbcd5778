"""Workflow, step and action definitions.

This module provides the data structures for declarative workflows. A workflow
is an ordered list of named steps; each step carries exactly one action and an
input template whose string leaves may contain ``@ref`` tokens. Definitions are
stored as JSON documents using camelCase keys, so every structure here can be
built from and rendered back to that document format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from litestar_pilot.core.types import ActionType, ModelTier
from litestar_pilot.exceptions import WorkflowValidationError

__all__ = [
    "Action",
    "CodeAction",
    "LLMAction",
    "Step",
    "StepConfig",
    "TemplateAction",
    "ToolAction",
    "Workflow",
    "parse_action",
]

DEFAULT_MAX_ITERATIONS = 10


@dataclass
class ToolAction:
    """Call a single tool with the step's resolved input.

    Attributes:
        tool_name: Name of the tool to invoke.
        connection_id: Optional fixed provider id. When omitted the first
            provider exposing ``tool_name`` is used.
    """

    type: ClassVar[ActionType] = ActionType.TOOL

    tool_name: str
    connection_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": str(self.type), "toolName": self.tool_name}
        if self.connection_id:
            data["connectionId"] = self.connection_id
        return data


@dataclass
class CodeAction:
    """Transform the resolved input with a sandboxed expression.

    Attributes:
        code: A single expression with ``input`` in scope, e.g.
            ``"[item['title'] for item in input['items']]"``.
    """

    type: ClassVar[ActionType] = ActionType.CODE

    code: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": str(self.type), "code": self.code}


@dataclass
class LLMAction:
    """Run the bounded agent loop.

    Attributes:
        prompt: Prompt template; may contain ``@ref`` tokens.
        model: Model tier, ``fast`` or ``smart``.
        system_prompt: Optional system message.
        tools: Tool policy (``all``, ``discover``, ``none``), an explicit list
            of tool names, or an ``@ref`` resolving to such a list.
        max_iterations: Hard ceiling on LLM turns that may call tools.
    """

    type: ClassVar[ActionType] = ActionType.LLM

    prompt: str
    model: ModelTier = ModelTier.SMART
    system_prompt: str | None = None
    tools: str | list[str] = "all"
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": str(self.type),
            "prompt": self.prompt,
            "model": str(self.model),
            "tools": self.tools,
            "maxIterations": self.max_iterations,
        }
        if self.system_prompt:
            data["systemPrompt"] = self.system_prompt
        return data


@dataclass
class TemplateAction:
    """Produce ``{"response": <template with refs substituted>}``.

    Attributes:
        template: Text containing ``@ref`` tokens.
    """

    type: ClassVar[ActionType] = ActionType.TEMPLATE

    template: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": str(self.type), "template": self.template}


Action = Union[ToolAction, CodeAction, LLMAction, TemplateAction]


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise WorkflowValidationError([f"{kind} action requires '{key}'"])
    return value


def parse_action(data: dict[str, Any]) -> Action:
    """Build an action from its JSON document form.

    Args:
        data: Mapping with a ``type`` discriminator.

    Returns:
        The matching action dataclass.

    Raises:
        WorkflowValidationError: If the type is unknown or a required field is missing.

    Example:
        >>> parse_action({"type": "tool", "toolName": "SEARCH"})
        ToolAction(tool_name='SEARCH', connection_id=None)
    """
    kind = data.get("type")
    if kind == ActionType.TOOL:
        return ToolAction(
            tool_name=_require(data, "toolName", "tool"),
            connection_id=data.get("connectionId"),
        )
    if kind == ActionType.CODE:
        return CodeAction(code=_require(data, "code", "code"))
    if kind == ActionType.LLM:
        model = data.get("model") or ModelTier.SMART
        try:
            tier = ModelTier(model)
        except ValueError as e:
            raise WorkflowValidationError([f"Unknown model tier: {model}"]) from e
        return LLMAction(
            prompt=_require(data, "prompt", "llm"),
            model=tier,
            system_prompt=data.get("systemPrompt"),
            tools=data.get("tools", "all"),
            max_iterations=int(data.get("maxIterations") or DEFAULT_MAX_ITERATIONS),
        )
    if kind == ActionType.TEMPLATE:
        return TemplateAction(template=_require(data, "template", "template"))
    raise WorkflowValidationError([f"Unknown step type: {kind}"])


@dataclass
class StepConfig:
    """Execution hints for a step.

    Attributes:
        skip_if: ``empty:@ref`` or ``equals:@a,@b`` expression.
        continue_on_error: Record ``None`` and keep going when the step fails.
        max_attempts: Attempts for tool and code actions.
        backoff_ms: Base delay between attempts, multiplied by the attempt number.
        timeout_ms: Timeout hint forwarded to the tool callback.
    """

    skip_if: str | None = None
    continue_on_error: bool = False
    max_attempts: int = 1
    backoff_ms: int = 0
    timeout_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StepConfig:
        data = data or {}
        return cls(
            skip_if=data.get("skipIf"),
            continue_on_error=bool(data.get("continueOnError", False)),
            max_attempts=max(1, int(data.get("maxAttempts") or 1)),
            backoff_ms=int(data.get("backoffMs") or 0),
            timeout_ms=data.get("timeoutMs"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.skip_if:
            data["skipIf"] = self.skip_if
        if self.continue_on_error:
            data["continueOnError"] = True
        if self.max_attempts != 1:
            data["maxAttempts"] = self.max_attempts
        if self.backoff_ms:
            data["backoffMs"] = self.backoff_ms
        if self.timeout_ms is not None:
            data["timeoutMs"] = self.timeout_ms
        return data


@dataclass
class Step:
    """One node of a workflow's dependency graph.

    Attributes:
        name: Unique name within the workflow; other steps reference it as ``@name``.
        action: The work this step performs.
        input: Input template resolved against the workflow input and prior outputs.
        description: Optional human readable description.
        output_schema: Optional contract (``required`` + ``properties`` types).
        config: Execution hints.
    """

    name: str
    action: Action
    input: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    output_schema: dict[str, Any] | None = None
    config: StepConfig = field(default_factory=StepConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        name = data.get("name")
        if not name:
            raise WorkflowValidationError(["Step requires a 'name'"])
        action = data.get("action")
        if not isinstance(action, dict):
            raise WorkflowValidationError([f"Step '{name}' requires an 'action'"])
        return cls(
            name=name,
            action=parse_action(action),
            input=dict(data.get("input") or {}),
            description=data.get("description"),
            output_schema=data.get("outputSchema"),
            config=StepConfig.from_dict(data.get("config")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "action": self.action.to_dict(), "input": self.input}
        if self.description:
            data["description"] = self.description
        if self.output_schema:
            data["outputSchema"] = self.output_schema
        config = self.config.to_dict()
        if config:
            data["config"] = config
        return data


@dataclass
class Workflow:
    """A declarative workflow.

    Attributes:
        id: Workflow identifier, also its document key.
        title: Human readable title.
        steps: Ordered steps. Declaration order breaks ties inside a level and
            decides which output becomes the final result.
        description: Optional description.
        default_input: Values merged underneath the caller's input.
        created_at: Optional ISO timestamp from the stored document.
        updated_at: Optional ISO timestamp from the stored document.

    Example:
        >>> workflow = Workflow.from_dict(
        ...     {
        ...         "id": "greet",
        ...         "title": "Greet",
        ...         "steps": [
        ...             {"name": "hello", "action": {"type": "template", "template": "Hi @input.name"}}
        ...         ],
        ...     }
        ... )
        >>> workflow.validate()
        []
    """

    id: str
    title: str
    steps: list[Step] = field(default_factory=list)
    description: str | None = None
    default_input: dict[str, Any] | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Workflow:
        """Parse a workflow document.

        Args:
            data: The JSON document.

        Returns:
            The parsed workflow.

        Raises:
            WorkflowValidationError: If the document or any step is malformed.
        """
        if not isinstance(data, dict):
            raise WorkflowValidationError(["Workflow document must be an object"])
        steps = data.get("steps") or []
        if not isinstance(steps, list):
            raise WorkflowValidationError(["'steps' must be a list"])
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or data.get("id") or ""),
            steps=[Step.from_dict(step) for step in steps],
            description=data.get("description"),
            default_input=data.get("defaultInput"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.description:
            data["description"] = self.description
        if self.default_input:
            data["defaultInput"] = self.default_input
        if self.created_at:
            data["createdAt"] = self.created_at
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        return data

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def get_step(self, name: str) -> Step:
        """Return the step called ``name``.

        Raises:
            KeyError: If no step has that name.
        """
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    def validate(self) -> list[str]:
        """Validate the workflow structure.

        Returns:
            List of validation error messages. Empty if valid.
        """
        from litestar_pilot.engine.graph import StepGraph

        errors: list[str] = []
        if not self.id:
            errors.append("Workflow requires an 'id'")
        if not self.title:
            errors.append("Workflow requires a 'title'")
        if not self.steps:
            errors.append("Workflow must have at least one step")

        seen: set[str] = set()
        for name in self.step_names:
            if name in seen:
                errors.append(f"Duplicate step name: '{name}'")
            seen.add(name)

        if len(seen) == len(self.steps):
            errors.extend(StepGraph(self.steps).validate())
        return errors
