"""Tests for domain events."""

from __future__ import annotations

import pytest


@pytest.mark.unit
class TestTaskProgress:
    """Tests for progress events."""

    def test_task_progress_event(self) -> None:
        """Test TaskProgress type and payload."""
        from litestar_pilot.core.events import TASK_PROGRESS, TaskProgress

        event = TaskProgress(task_id="task_x", step_name="plan", message="Thinking...")

        assert event.type == TASK_PROGRESS == "agent.task.progress"
        assert event.to_dict() == {"taskId": "task_x", "stepName": "plan", "message": "Thinking..."}


@pytest.mark.unit
class TestAgentResponse:
    """Tests for response events."""

    def test_type_follows_source(self) -> None:
        """Test that each interface gets its own event type."""
        from litestar_pilot.core.events import AgentResponse

        assert AgentResponse(task_id="t", source="whatsapp", text="hi").type == "agent.response.whatsapp"
        assert AgentResponse(task_id="t", source="cli", text="hi").type == "agent.response.cli"

    def test_payload(self) -> None:
        """Test AgentResponse payload defaults."""
        from litestar_pilot.core.events import AgentResponse

        event = AgentResponse(task_id="task_x", source="cli", text="Done", chat_id="c1")

        assert event.to_dict() == {
            "taskId": "task_x",
            "source": "cli",
            "chatId": "c1",
            "text": "Done",
            "isFinal": True,
        }


@pytest.mark.unit
class TestTaskCompleted:
    """Tests for completion events."""

    def test_completed_payload(self) -> None:
        """Test the payload of a successful task."""
        from litestar_pilot.core.events import TASK_COMPLETED, TaskCompleted

        event = TaskCompleted(
            task_id="task_x",
            workflow_id="research-first",
            workflow_title="Research First",
            source="cli",
            status="completed",
            response="Here you go",
        )

        assert event.type == TASK_COMPLETED
        data = event.to_dict()
        assert data["workflowTitle"] == "Research First"
        assert data["response"] == "Here you go"
        assert data["chatId"] is None
        assert "error" not in data

    def test_failed_payload(self) -> None:
        """Test the payload of a failed task."""
        from litestar_pilot.core.events import TaskCompleted

        event = TaskCompleted(
            task_id="task_x",
            workflow_id="w",
            workflow_title="W",
            source="cli",
            status="failed",
            error="boom",
        )

        data = event.to_dict()
        assert data["status"] == "failed"
        assert data["error"] == "boom"
        assert "response" not in data


@pytest.mark.unit
class TestBaseEvent:
    """Tests for the PilotEvent base class."""

    def test_base_event_has_no_payload(self) -> None:
        """Test that the base class cannot be serialised."""
        from litestar_pilot.core.events import PilotEvent

        with pytest.raises(NotImplementedError):
            PilotEvent(task_id="t").to_dict()
