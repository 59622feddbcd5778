"""Exception handling for pilot web endpoints.

Maps the :class:`PilotError` hierarchy onto HTTP responses.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from litestar import MediaType, Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from litestar_pilot.exceptions import (
    MissingToolsError,
    OutputValidationError,
    PilotError,
    TaskAlreadyCompletedError,
    TaskNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["pilot_error_handler", "status_code_for"]

logger = logging.getLogger(__name__)

_STATUS_CODES: tuple[tuple[type[PilotError], int], ...] = (
    (WorkflowNotFoundError, HTTP_404_NOT_FOUND),
    (TaskNotFoundError, HTTP_404_NOT_FOUND),
    (WorkflowValidationError, HTTP_400_BAD_REQUEST),
    (OutputValidationError, HTTP_400_BAD_REQUEST),
    (MissingToolsError, HTTP_422_UNPROCESSABLE_ENTITY),
    (TaskAlreadyCompletedError, HTTP_409_CONFLICT),
)


def status_code_for(exc: PilotError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


def _error_name(exc: Exception) -> str:
    name = exc.__class__.__name__.removesuffix("Error")
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def pilot_error_handler(
    _request: Request,
    exc: PilotError,
) -> Response:
    """Exception handler for PilotError.

    Args:
        _request: The Litestar request object.
        exc: The raised error.

    Returns:
        JSON response with the error name, message and any error details.
    """
    status_code = status_code_for(exc)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Unhandled pilot error: %s", exc)

    content: dict[str, Any] = {"error": _error_name(exc), "message": str(exc)}
    if isinstance(exc, (WorkflowValidationError, OutputValidationError)):
        content["errors"] = exc.errors
    if isinstance(exc, MissingToolsError):
        content["missing"] = exc.missing
    return Response(content=content, status_code=status_code, media_type=MediaType.JSON)
