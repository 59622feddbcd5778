"""Exception hierarchy for litestar-pilot."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = (
    "ConfigurationError",
    "MissingToolsError",
    "OutputValidationError",
    "PilotError",
    "SandboxError",
    "StepExecutionError",
    "TaskAlreadyCompletedError",
    "TaskNotFoundError",
    "ToolNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
)


class PilotError(Exception):
    """Base exception for all litestar-pilot errors.

    All exceptions raised by litestar-pilot inherit from this class, so callers
    can catch every engine failure with a single except clause.
    """


class ConfigurationError(PilotError):
    """Raised when configuration values cannot be parsed.

    Attributes:
        key: The configuration key (usually an environment variable) at fault.
        value: The raw value that failed to parse.
    """

    def __init__(self, key: str, value: str, reason: str | None = None) -> None:
        """Initialize the exception with the offending setting.

        Args:
            key: The configuration key at fault.
            value: The raw value that failed to parse.
            reason: Optional explanation of what was expected.
        """
        self.key = key
        self.value = value
        msg = f"Invalid value for '{key}': {value!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class WorkflowNotFoundError(PilotError):
    """Raised when a workflow definition cannot be found in any store.

    Attributes:
        workflow_id: The ID of the workflow that was not found.
    """

    def __init__(self, workflow_id: str) -> None:
        """Initialize the exception with workflow details.

        Args:
            workflow_id: The ID of the workflow that was not found.
        """
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkflowValidationError(PilotError):
    """Raised when a workflow definition is malformed.

    This covers parse failures (unknown action types, missing fields),
    duplicate step names and dependency cycles between steps.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = list(errors)
        super().__init__(f"Workflow validation failed: {'; '.join(self.errors)}")


class MissingToolsError(PilotError):
    """Raised when a workflow statically requires tools nobody provides.

    Attributes:
        workflow_title: Title of the workflow being started.
        missing: Sorted names of the unavailable tools.
    """

    def __init__(self, workflow_title: str, missing: Sequence[str]) -> None:
        """Initialize the exception with the missing tool names.

        Args:
            workflow_title: Title of the workflow being started.
            missing: Names of the unavailable tools.
        """
        self.workflow_title = workflow_title
        self.missing = list(missing)
        missing_list = "\n".join(f"  - {name}" for name in self.missing)
        super().__init__(
            f'Workflow "{workflow_title}" requires tools that are not available:\n\n'
            f"Missing tools:\n{missing_list}\n\n"
            "Make sure the required connections are configured in the mesh."
        )


class StepExecutionError(PilotError):
    """Raised when a step fails to execute.

    This wraps the underlying exception that caused the step to fail,
    providing context about which step failed.

    Attributes:
        step_name: The name of the step that failed.
        cause: The underlying exception or message, if any.
    """

    def __init__(self, step_name: str, cause: Exception | str | None = None) -> None:
        """Initialize the exception with step execution details.

        Args:
            step_name: The name of the step that failed.
            cause: The underlying exception or a message describing the failure.
        """
        self.step_name = step_name
        self.cause = cause
        msg = f"Step '{step_name}' failed"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class OutputValidationError(PilotError):
    """Raised when a step output does not satisfy its declared schema.

    Attributes:
        step_name: The name of the step whose output was rejected.
        errors: The individual schema violations.
    """

    def __init__(self, step_name: str, errors: Sequence[str]) -> None:
        """Initialize the exception with schema violations.

        Args:
            step_name: The name of the step whose output was rejected.
            errors: The individual schema violations.
        """
        self.step_name = step_name
        self.errors = list(errors)
        super().__init__(f'Output validation failed for step "{step_name}": {", ".join(self.errors)}')


class ToolNotFoundError(PilotError):
    """Raised when no provider or local tool exposes a requested tool.

    Attributes:
        tool_name: The name of the tool that could not be located.
    """

    def __init__(self, tool_name: str) -> None:
        """Initialize the exception with the tool name.

        Args:
            tool_name: The name of the tool that could not be located.
        """
        self.tool_name = tool_name
        super().__init__(f"Could not find connection for tool: {tool_name}")


class SandboxError(PilotError):
    """Raised when a code expression is rejected or fails inside the sandbox."""


class TaskNotFoundError(PilotError):
    """Raised when a task record does not exist.

    Attributes:
        task_id: The ID of the task that was not found.
    """

    def __init__(self, task_id: str) -> None:
        """Initialize the exception with task details.

        Args:
            task_id: The ID of the task that was not found.
        """
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")


class TaskAlreadyCompletedError(PilotError):
    """Raised when an operation needs a live task but the task is terminal.

    Attributes:
        task_id: The ID of the task.
        status: The terminal status of the task.
    """

    def __init__(self, task_id: str, status: str) -> None:
        """Initialize the exception with task state details.

        Args:
            task_id: The ID of the task.
            status: The current terminal status of the task.
        """
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task '{task_id}' is already {status}")
