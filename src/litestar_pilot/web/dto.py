"""Data Transfer Objects for the pilot web API.

This module defines DTOs for serializing and deserializing tasks, workflows
and messages in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar_pilot.core.definition import Workflow
    from litestar_pilot.core.models import StepResult, Task, TaskPage
    from litestar_pilot.engine.orchestrator import ExecutionResult
    from litestar_pilot.service import MessageResult

__all__ = [
    "CloseThreadDTO",
    "EventDTO",
    "ExecutionResultDTO",
    "MessageResultDTO",
    "SendMessageDTO",
    "StartWorkflowDTO",
    "StepResultDTO",
    "TaskDTO",
    "TaskDetailDTO",
    "TaskPageDTO",
    "ThreadClosedDTO",
    "WorkflowSummaryDTO",
]


@dataclass
class StartWorkflowDTO:
    """DTO for starting a workflow in the background.

    Attributes:
        input: Workflow input.
        source: Interface the request comes from.
        chat_id: Optional chat identifier.
    """

    input: dict[str, Any] | None = None
    source: str = "api"
    chat_id: str | None = None


@dataclass
class SendMessageDTO:
    """DTO for a free-form message.

    Attributes:
        text: Message text.
        source: Interface the message comes from.
        chat_id: Optional chat identifier.
        force_new_thread: Ignore any continuable thread.
        workflow_id: Workflow to run instead of the default one.
    """

    text: str
    source: str = "api"
    chat_id: str | None = None
    force_new_thread: bool = False
    workflow_id: str | None = None


@dataclass
class CloseThreadDTO:
    """DTO for closing the active thread of a conversation."""

    source: str = "api"
    chat_id: str | None = None


@dataclass
class EventDTO:
    """DTO for one inbound event.

    Attributes:
        type: Event type, ``user.message`` or ``workflow.start``.
        id: Optional event id echoed back in the result.
        source: Default source for the event's data.
        data: Event payload.
    """

    type: str
    id: str | None = None
    source: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "source": self.source, "data": self.data}


@dataclass
class WorkflowSummaryDTO:
    """DTO for workflow metadata."""

    id: str
    title: str
    description: str | None
    steps: list[str]

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> WorkflowSummaryDTO:
        return cls(
            id=workflow.id,
            title=workflow.title,
            description=workflow.description,
            steps=workflow.step_names,
        )


@dataclass
class StepResultDTO:
    """DTO for one recorded step."""

    step_id: str
    step_name: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    output: Any = None
    error: str | None = None
    progress_messages: list[dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: StepResult) -> StepResultDTO:
        return cls(
            step_id=result.step_id,
            step_name=result.step_name,
            status=str(result.status),
            started_at=result.started_at,
            completed_at=result.completed_at,
            output=result.output,
            error=result.error,
            progress_messages=[message.to_dict() for message in result.progress_messages],
        )


@dataclass
class TaskDTO:
    """DTO for a task summary.

    Attributes:
        task_id: Task identifier.
        workflow_id: Workflow the task runs.
        status: Task status.
        source: Interface the task came from.
        chat_id: Optional chat identifier.
        current_step: Name of the most recently updated step.
        created_at: When the task was created.
        last_updated_at: When the task last changed.
        thread_closed: Whether the task can no longer be continued.
    """

    task_id: str
    workflow_id: str
    status: str
    source: str
    chat_id: str | None
    current_step: str | None
    created_at: datetime
    last_updated_at: datetime
    thread_closed: bool = False

    @classmethod
    def from_task(cls, task: Task) -> TaskDTO:
        current = task.current_step
        return cls(
            task_id=task.task_id,
            workflow_id=task.workflow_id,
            status=str(task.status),
            source=task.source,
            chat_id=task.chat_id,
            current_step=current.step_name if current else None,
            created_at=task.created_at,
            last_updated_at=task.last_updated_at,
            thread_closed=task.thread_closed,
        )


@dataclass
class TaskDetailDTO(TaskDTO):
    """DTO for a task with its input, step results and outcome."""

    workflow_input: dict[str, Any] = field(default_factory=dict)
    step_results: list[StepResultDTO] = field(default_factory=list)
    result: Any = None
    error: str | None = None
    status_message: str | None = None

    @classmethod
    def from_task(cls, task: Task) -> TaskDetailDTO:
        summary = TaskDTO.from_task(task)
        return cls(
            **vars(summary),
            workflow_input=task.workflow_input,
            step_results=[StepResultDTO.from_result(result) for result in task.step_results],
            result=task.result,
            error=task.error,
            status_message=task.status_message,
        )


@dataclass
class TaskPageDTO:
    """DTO for one page of tasks."""

    tasks: list[TaskDTO]
    next_cursor: str | None = None

    @classmethod
    def from_page(cls, page: TaskPage) -> TaskPageDTO:
        return cls(tasks=[TaskDTO.from_task(task) for task in page.tasks], next_cursor=page.next_cursor)


@dataclass
class ExecutionResultDTO:
    """DTO for the outcome of a synchronous run."""

    task_id: str
    status: str
    result: Any = None
    response: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, outcome: ExecutionResult) -> ExecutionResultDTO:
        return cls(
            task_id=outcome.task.task_id,
            status=str(outcome.task.status),
            result=outcome.result,
            response=outcome.response,
            error=outcome.error,
        )


@dataclass
class MessageResultDTO:
    """DTO for the reply to a message."""

    task_id: str
    response: str
    continued: bool
    previous_task_id: str | None
    status: str
    thread_closed: bool

    @classmethod
    def from_result(cls, message: MessageResult) -> MessageResultDTO:
        return cls(
            task_id=message.task_id,
            response=message.response,
            continued=message.continued,
            previous_task_id=message.previous_task_id,
            status=message.status,
            thread_closed=message.thread_closed,
        )


@dataclass
class ThreadClosedDTO:
    """DTO for the outcome of closing a thread."""

    closed: bool
    task_id: str | None = None
