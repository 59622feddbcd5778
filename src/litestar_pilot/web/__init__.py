"""REST API for litestar-pilot.

The API is mounted by :class:`~litestar_pilot.plugin.PilotPlugin` when
``enable_api=True`` (the default).

Example:
    Mount under a versioned prefix with authentication guards::

        from litestar import Litestar
        from litestar_pilot import PilotPlugin, PilotPluginConfig

        config = PilotPluginConfig(
            callbacks=MyCallbacks(),
            api_path_prefix="/api/v1/pilot",
            api_guards=[require_auth_guard],
        )

        app = Litestar(plugins=[PilotPlugin(config=config)])
"""

from __future__ import annotations

from litestar_pilot.web.controllers import ConversationController, TaskController, WorkflowController
from litestar_pilot.web.dto import (
    CloseThreadDTO,
    EventDTO,
    ExecutionResultDTO,
    MessageResultDTO,
    SendMessageDTO,
    StartWorkflowDTO,
    StepResultDTO,
    TaskDetailDTO,
    TaskDTO,
    TaskPageDTO,
    ThreadClosedDTO,
    WorkflowSummaryDTO,
)
from litestar_pilot.web.exceptions import pilot_error_handler, status_code_for

__all__ = [
    "CloseThreadDTO",
    "ConversationController",
    "EventDTO",
    "ExecutionResultDTO",
    "MessageResultDTO",
    "SendMessageDTO",
    "StartWorkflowDTO",
    "StepResultDTO",
    "TaskController",
    "TaskDTO",
    "TaskDetailDTO",
    "TaskPageDTO",
    "ThreadClosedDTO",
    "WorkflowController",
    "WorkflowSummaryDTO",
    "pilot_error_handler",
    "status_code_for",
]
