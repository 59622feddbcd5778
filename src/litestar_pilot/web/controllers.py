"""REST API controllers for the pilot engine.

This module provides three controller classes:
- WorkflowController: List, inspect, create and start workflows
- ConversationController: Messages, threads and inbound events
- TaskController: Inspect, cancel and resume tasks
"""

from __future__ import annotations

from typing import Any, ClassVar

from litestar import Controller, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK, HTTP_202_ACCEPTED

from litestar_pilot.service import PilotService  # noqa: TC001 - needed for DI
from litestar_pilot.web.dto import (
    CloseThreadDTO,
    EventDTO,
    ExecutionResultDTO,
    MessageResultDTO,
    SendMessageDTO,
    StartWorkflowDTO,
    TaskDetailDTO,
    TaskDTO,
    TaskPageDTO,
    ThreadClosedDTO,
    WorkflowSummaryDTO,
)

__all__ = [
    "ConversationController",
    "TaskController",
    "WorkflowController",
]


class WorkflowController(Controller):
    """API controller for workflow documents.

    Tags: Workflows
    """

    path = "/workflows"
    tags: ClassVar[list[str]] = ["Workflows"]

    @get("/")
    async def list_workflows(self, pilot_service: PilotService) -> list[WorkflowSummaryDTO]:
        """List every known workflow.

        Args:
            pilot_service: Injected pilot service.

        Returns:
            Workflow summaries sorted by id.
        """
        return [WorkflowSummaryDTO.from_workflow(workflow) for workflow in pilot_service.list_workflows()]

    @get("/{workflow_id:str}")
    async def get_workflow(self, workflow_id: str, pilot_service: PilotService) -> dict[str, Any]:
        """Get a workflow document.

        Args:
            workflow_id: The workflow id.
            pilot_service: Injected pilot service.

        Returns:
            The full workflow document.
        """
        return pilot_service.get_workflow(workflow_id).to_dict()

    @post("/")
    async def create_workflow(self, data: dict[str, Any], pilot_service: PilotService) -> dict[str, Any]:
        """Validate and save a workflow document.

        Args:
            data: The workflow document.
            pilot_service: Injected pilot service.

        Returns:
            The saved document.
        """
        return pilot_service.create_workflow(data).to_dict()

    @post("/{workflow_id:str}/start", status_code=HTTP_202_ACCEPTED)
    async def start_workflow(
        self,
        workflow_id: str,
        data: StartWorkflowDTO,
        pilot_service: PilotService,
    ) -> TaskDTO:
        """Start a workflow in the background.

        Args:
            workflow_id: The workflow id.
            data: Input and conversation key.
            pilot_service: Injected pilot service.

        Returns:
            The created task.
        """
        task = await pilot_service.start_workflow(
            workflow_id,
            data.input or {},
            source=data.source,
            chat_id=data.chat_id,
        )
        return TaskDTO.from_task(task)


class ConversationController(Controller):
    """API controller for messages, threads and events.

    Tags: Conversations
    """

    path = "/"
    tags: ClassVar[list[str]] = ["Conversations"]

    @post("/messages", status_code=HTTP_200_OK)
    async def send_message(self, data: SendMessageDTO, pilot_service: PilotService) -> MessageResultDTO:
        """Run a message through the default workflow, continuing any recent thread."""
        message = await pilot_service.send_message(
            data.text,
            data.source,
            chat_id=data.chat_id,
            force_new_thread=data.force_new_thread,
            workflow_id=data.workflow_id,
        )
        return MessageResultDTO.from_result(message)

    @post("/threads/close", status_code=HTTP_200_OK)
    async def close_thread(self, data: CloseThreadDTO, pilot_service: PilotService) -> ThreadClosedDTO:
        closed = await pilot_service.new_thread(data.source, data.chat_id)
        return ThreadClosedDTO(closed=closed is not None, task_id=closed.task_id if closed else None)

    @post("/events", status_code=HTTP_200_OK)
    async def handle_events(self, data: list[EventDTO], pilot_service: PilotService) -> list[dict[str, Any]]:
        """Route a batch of inbound events.

        Args:
            data: The events.
            pilot_service: Injected pilot service.

        Returns:
            One result per event.
        """
        return await pilot_service.handle_events(event.to_dict() for event in data)


class TaskController(Controller):
    """API controller for tasks.

    Tags: Tasks
    """

    path = "/tasks"
    tags: ClassVar[list[str]] = ["Tasks"]

    @get("/")
    async def list_tasks(
        self,
        pilot_service: PilotService,
        limit: int = Parameter(default=50, ge=1, le=1000, description="Maximum number of results"),
        status: str | None = Parameter(default=None, description="Filter by status"),
        source: str | None = Parameter(default=None, description="Filter by source"),
        cursor: str | None = Parameter(default=None, description="Cursor returned by the previous page"),
    ) -> TaskPageDTO:
        """List tasks newest first.

        Args:
            pilot_service: Injected pilot service.
            limit: Maximum number of results.
            status: Optional status filter.
            source: Optional source filter.
            cursor: Optional pagination cursor.

        Returns:
            One page of tasks.
        """
        page = await pilot_service.list_tasks(limit=limit, status=status, source=source, cursor=cursor)
        return TaskPageDTO.from_page(page)

    @get("/stats")
    async def task_stats(self, pilot_service: PilotService) -> dict[str, Any]:
        return await pilot_service.task_stats()

    @get("/{task_id:str}")
    async def get_task(self, task_id: str, pilot_service: PilotService) -> TaskDetailDTO:
        """Get a task with its step results.

        Args:
            task_id: The task id.
            pilot_service: Injected pilot service.

        Returns:
            The task detail.
        """
        return TaskDetailDTO.from_task(await pilot_service.get_task(task_id))

    @post("/{task_id:str}/cancel", status_code=HTTP_200_OK)
    async def cancel_task(self, task_id: str, pilot_service: PilotService) -> TaskDTO:
        return TaskDTO.from_task(await pilot_service.cancel_task(task_id))

    @post("/{task_id:str}/resume", status_code=HTTP_200_OK)
    async def resume_task(self, task_id: str, pilot_service: PilotService) -> ExecutionResultDTO:
        """Resume a task from its completed steps and wait for the outcome."""
        return ExecutionResultDTO.from_result(await pilot_service.resume_task(task_id))
