"""Domain events for the task lifecycle.

This module defines the events the engine publishes through
the host's optional ``publish_event`` callback. Each event knows its type string and how to
render itself as the camelCase payload delivered to subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "AGENT_RESPONSE_PREFIX",
    "TASK_COMPLETED",
    "TASK_PROGRESS",
    "AgentResponse",
    "PilotEvent",
    "TaskCompleted",
    "TaskProgress",
]

TASK_PROGRESS = "agent.task.progress"
TASK_COMPLETED = "agent.task.completed"
AGENT_RESPONSE_PREFIX = "agent.response."


@dataclass
class PilotEvent:
    """Base class for all published events.

    Attributes:
        task_id: Task the event belongs to.
    """

    event_type: ClassVar[str] = ""

    task_id: str

    @property
    def type(self) -> str:
        return self.event_type

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass
class TaskProgress(PilotEvent):
    """Event emitted for every progress message recorded on a task.

    Attributes:
        task_id: Task the message belongs to.
        step_name: Step that reported progress.
        message: The progress text.
    """

    event_type: ClassVar[str] = TASK_PROGRESS

    step_name: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"taskId": self.task_id, "stepName": self.step_name, "message": self.message}


@dataclass
class AgentResponse(PilotEvent):
    """Event carrying the final text for the interface a request came from.

    The event type is ``agent.response.<source>`` so each interface only
    subscribes to its own replies.

    Attributes:
        task_id: Task that produced the response.
        source: Interface that should deliver the text.
        text: The response text.
        chat_id: Optional chat the text belongs to.
        is_final: Whether this is the last response for the task.

    Example:
        >>> AgentResponse(task_id="task_x", source="whatsapp", text="hi").type
        'agent.response.whatsapp'
    """

    source: str
    text: str
    chat_id: str | None = None
    is_final: bool = True

    @property
    def type(self) -> str:
        return f"{AGENT_RESPONSE_PREFIX}{self.source}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "source": self.source,
            "chatId": self.chat_id,
            "text": self.text,
            "isFinal": self.is_final,
        }


@dataclass
class TaskCompleted(PilotEvent):
    """Event emitted when a background task settles, successfully or not.

    Attributes:
        task_id: The settled task.
        workflow_id: Workflow that was run.
        workflow_title: Title of that workflow.
        source: Interface the task was started from.
        status: ``completed``, ``failed`` or ``cancelled``.
        chat_id: Optional chat identifier.
        response: Response text for completed tasks.
        error: Error message for failed tasks.
    """

    event_type: ClassVar[str] = TASK_COMPLETED

    workflow_id: str
    workflow_title: str
    source: str
    status: str
    chat_id: str | None = None
    response: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "workflowId": self.workflow_id,
            "workflowTitle": self.workflow_title,
            "source": self.source,
            "chatId": self.chat_id,
            "status": self.status,
        }
        if self.response is not None:
            data["response"] = self.response
        if self.error is not None:
            data["error"] = self.error
        return data
