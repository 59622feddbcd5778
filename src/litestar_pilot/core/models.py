"""Task records persisted by the task stores.

A task is the durable record of one workflow run. It is stored as a single
JSON document with camelCase keys; these dataclasses are the in-process form
of that document.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from litestar_pilot.core.types import TERMINAL_TASK_STATUSES, StepStatus, TaskStatus

__all__ = [
    "ProgressMessage",
    "StepResult",
    "Task",
    "TaskPage",
    "generate_task_id",
    "parse_timestamp",
    "utc_now",
]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    """Return the current time as a timezone aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are assumed to be UTC. A trailing ``Z`` is accepted.
    """
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def generate_task_id(now: datetime | None = None) -> str:
    """Generate a task id of the form ``task_<YYYY-MM-DD>_<HHMMSS>_<rand4>``.

    Ids sort chronologically, which the stores rely on for newest-first listing.

    Example:
        >>> generate_task_id(datetime(2025, 1, 31, 9, 5, 7, tzinfo=timezone.utc))[:23]
        'task_2025-01-31_090507_'
    """
    now = now or utc_now()
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"task_{now:%Y-%m-%d}_{now:%H%M%S}_{suffix}"


@dataclass
class ProgressMessage:
    """One entry of a step's append-only progress log.

    Attributes:
        timestamp: ISO timestamp; together with ``message`` it identifies the entry.
        message: Human readable progress text.
    """

    timestamp: str
    message: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.timestamp, self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressMessage:
        return cls(timestamp=str(data.get("timestamp", "")), message=str(data.get("message", "")))


@dataclass
class StepResult:
    """Recorded execution of one step within a task.

    Attributes:
        step_id: ``<task_id>_<step_name>``; the upsert key.
        step_name: Name of the step.
        started_at: When the step started.
        status: Current step status.
        completed_at: When the step settled.
        output: Step output, ``{"skipped": True}`` for skipped steps.
        error: Error message if the step failed.
        progress_messages: Append-only progress log.
    """

    step_id: str
    step_name: str
    started_at: datetime
    status: StepStatus = StepStatus.WORKING
    completed_at: datetime | None = None
    output: Any = None
    error: str | None = None
    progress_messages: list[ProgressMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stepId": self.step_id,
            "stepName": self.step_name,
            "startedAt": _iso(self.started_at),
            "status": str(self.status),
            "progressMessages": [message.to_dict() for message in self.progress_messages],
        }
        if self.completed_at is not None:
            data["completedAt"] = _iso(self.completed_at)
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepResult:
        return cls(
            step_id=data["stepId"],
            step_name=data["stepName"],
            started_at=parse_timestamp(data["startedAt"]),  # type: ignore[arg-type]
            status=StepStatus(data.get("status", StepStatus.WORKING)),
            completed_at=parse_timestamp(data.get("completedAt")),
            output=data.get("output"),
            error=data.get("error"),
            progress_messages=[ProgressMessage.from_dict(m) for m in data.get("progressMessages") or []],
        )


@dataclass
class Task:
    """Durable record of a single workflow run.

    Attributes:
        task_id: Identifier generated by :func:`generate_task_id`.
        workflow_id: Workflow being run.
        workflow_input: Input the workflow was started with.
        source: Interface the request came from; half of the conversation key.
        chat_id: Optional chat identifier; the other half of the conversation key.
        status: Current lifecycle state.
        current_step_index: Position in ``step_results`` of the most recently updated step.
        step_results: Ordered per-step results.
        created_at: When the task was created.
        last_updated_at: When the task last changed.
        ttl: Optional lifetime in milliseconds, measured from ``created_at``.
        thread_closed: Whether this task may no longer be continued as a thread.
        result: Final output for completed tasks.
        error: Error message for failed tasks.
        status_message: Optional note attached to the latest status change.
    """

    task_id: str
    workflow_id: str
    workflow_input: dict[str, Any]
    source: str
    chat_id: str | None = None
    status: TaskStatus = TaskStatus.WORKING
    current_step_index: int = 0
    step_results: list[StepResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    last_updated_at: datetime = field(default_factory=utc_now)
    ttl: int | None = None
    thread_closed: bool = False
    result: Any = None
    error: str | None = None
    status_message: str | None = None

    @classmethod
    def create(
        cls,
        workflow_id: str,
        workflow_input: dict[str, Any],
        source: str,
        *,
        chat_id: str | None = None,
        ttl: int | None = None,
        now: datetime | None = None,
    ) -> Task:
        """Create a fresh ``working`` task.

        Args:
            workflow_id: Workflow being run.
            workflow_input: Input the workflow is started with.
            source: Interface the request came from.
            chat_id: Optional chat identifier.
            ttl: Optional lifetime in milliseconds.
            now: Creation time, defaults to the current time.

        Returns:
            The new task; it is not persisted yet.
        """
        now = now or utc_now()
        return cls(
            task_id=generate_task_id(now),
            workflow_id=workflow_id,
            workflow_input=workflow_input,
            source=source,
            chat_id=chat_id,
            created_at=now,
            last_updated_at=now,
            ttl=ttl,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def current_step(self) -> StepResult | None:
        """The step result at ``current_step_index``, if recorded."""
        if 0 <= self.current_step_index < len(self.step_results):
            return self.step_results[self.current_step_index]
        return None

    def find_step(self, step_name: str) -> StepResult | None:
        for result in self.step_results:
            if result.step_name == step_name:
                return result
        return None

    def touch(self, now: datetime | None = None) -> None:
        self.last_updated_at = now or utc_now()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "taskId": self.task_id,
            "workflowId": self.workflow_id,
            "workflowInput": self.workflow_input,
            "source": self.source,
            "status": str(self.status),
            "currentStepIndex": self.current_step_index,
            "stepResults": [result.to_dict() for result in self.step_results],
            "createdAt": _iso(self.created_at),
            "lastUpdatedAt": _iso(self.last_updated_at),
        }
        if self.chat_id is not None:
            data["chatId"] = self.chat_id
        if self.ttl is not None:
            data["ttl"] = self.ttl
        if self.thread_closed:
            data["threadClosed"] = True
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.status_message is not None:
            data["statusMessage"] = self.status_message
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Parse a stored task document.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If a status or timestamp is malformed.
        """
        return cls(
            task_id=data["taskId"],
            workflow_id=data["workflowId"],
            workflow_input=data.get("workflowInput") or {},
            source=data.get("source") or "api",
            chat_id=data.get("chatId"),
            status=TaskStatus(data.get("status", TaskStatus.WORKING)),
            current_step_index=int(data.get("currentStepIndex", 0)),
            step_results=[StepResult.from_dict(r) for r in data.get("stepResults") or []],
            created_at=parse_timestamp(data["createdAt"]),  # type: ignore[arg-type]
            last_updated_at=parse_timestamp(data.get("lastUpdatedAt") or data["createdAt"]),  # type: ignore[arg-type]
            ttl=data.get("ttl"),
            thread_closed=bool(data.get("threadClosed", False)),
            result=data.get("result"),
            error=data.get("error"),
            status_message=data.get("statusMessage"),
        )


@dataclass
class TaskPage:
    """One page of a task listing.

    Attributes:
        tasks: Tasks on this page, newest first.
        next_cursor: Task id to pass as ``cursor`` for the next page, if any.
    """

    tasks: list[Task]
    next_cursor: str | None = None
