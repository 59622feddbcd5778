"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

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


@pytest.mark.unit
class TestPilotError:
    """Tests for the base exception."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError("KEY", "x"),
            MissingToolsError("W", ["A"]),
            OutputValidationError("s", ["bad"]),
            SandboxError("nope"),
            StepExecutionError("s"),
            TaskAlreadyCompletedError("t", "completed"),
            TaskNotFoundError("t"),
            ToolNotFoundError("T"),
            WorkflowNotFoundError("w"),
            WorkflowValidationError(["bad"]),
        ],
    )
    def test_everything_is_a_pilot_error(self, exc: PilotError) -> None:
        """Test that one except clause catches every engine error."""
        with pytest.raises(PilotError):
            raise exc


@pytest.mark.unit
class TestMessages:
    """Tests for exception messages and attributes."""

    def test_configuration_error(self) -> None:
        """Test ConfigurationError with and without a reason."""
        exc = ConfigurationError("THREAD_TTL_MS", "soon", "expected an integer")

        assert exc.key == "THREAD_TTL_MS"
        assert exc.value == "soon"
        assert str(exc) == "Invalid value for 'THREAD_TTL_MS': 'soon' (expected an integer)"
        assert str(ConfigurationError("K", "v")) == "Invalid value for 'K': 'v'"

    def test_workflow_not_found(self) -> None:
        """Test WorkflowNotFoundError."""
        exc = WorkflowNotFoundError("research-first")

        assert exc.workflow_id == "research-first"
        assert str(exc) == "Workflow not found: research-first"

    def test_workflow_validation(self) -> None:
        """Test that validation errors are joined."""
        exc = WorkflowValidationError(["Duplicate step name: a", "Workflow has no steps"])

        assert exc.errors == ["Duplicate step name: a", "Workflow has no steps"]
        assert str(exc) == "Workflow validation failed: Duplicate step name: a; Workflow has no steps"

    def test_missing_tools(self) -> None:
        """Test the missing tools message lists every tool."""
        exc = MissingToolsError("Research First", ["SEARCH", "SEND_EMAIL"])

        assert exc.missing == ["SEARCH", "SEND_EMAIL"]
        assert 'Workflow "Research First" requires tools that are not available' in str(exc)
        assert "  - SEARCH\n  - SEND_EMAIL" in str(exc)

    def test_step_execution(self) -> None:
        """Test StepExecutionError with and without a cause."""
        cause = ValueError("bad input")
        exc = StepExecutionError("plan", cause)

        assert exc.step_name == "plan"
        assert exc.cause is cause
        assert str(exc) == "Step 'plan' failed: bad input"
        assert str(StepExecutionError("plan")) == "Step 'plan' failed"

    def test_output_validation(self) -> None:
        """Test OutputValidationError."""
        exc = OutputValidationError("plan", ["missing key", "wrong type"])

        assert exc.errors == ["missing key", "wrong type"]
        assert str(exc) == 'Output validation failed for step "plan": missing key, wrong type'

    def test_tool_not_found(self) -> None:
        """Test ToolNotFoundError."""
        exc = ToolNotFoundError("SEARCH")

        assert exc.tool_name == "SEARCH"
        assert str(exc) == "Could not find connection for tool: SEARCH"

    def test_task_errors(self) -> None:
        """Test the task lookup and state errors."""
        assert str(TaskNotFoundError("task_x")) == "Task 'task_x' not found"
        exc = TaskAlreadyCompletedError("task_x", "failed")
        assert exc.status == "failed"
        assert str(exc) == "Task 'task_x' is already failed"
