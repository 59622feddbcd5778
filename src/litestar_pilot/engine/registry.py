"""Workflow registry for managing workflow definitions.

Workflows are JSON documents. The registry merges three sources, in order of
precedence: workflows registered in memory, documents in the custom
workflows directory and the built-in documents shipped with the package.
"""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.definition import Workflow
from litestar_pilot.core.models import utc_now
from litestar_pilot.exceptions import WorkflowNotFoundError, WorkflowValidationError

if TYPE_CHECKING:
    import os
    from collections.abc import Iterator, Sequence
    from importlib.resources.abc import Traversable

__all__ = ["DEFAULT_WORKFLOW_ID", "WorkflowRegistry"]

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_ID = "fast-router"
WORKFLOW_SUFFIX = ".json"


def _builtin_root() -> Traversable:
    return resources.files("litestar_pilot") / "workflows"


class WorkflowRegistry:
    """Registry for storing and retrieving workflow definitions.

    Attributes:
        custom_dir: Directory of user workflow documents; ``save`` writes here.
        builtin_dir: Directory of built-in documents; defaults to the package data.
        default_workflow: Id returned by :meth:`get_default`.
    """

    def __init__(
        self,
        custom_dir: str | os.PathLike[str] | None = None,
        builtin_dir: str | os.PathLike[str] | None = None,
        default_workflow: str = DEFAULT_WORKFLOW_ID,
    ) -> None:
        self.custom_dir = Path(custom_dir).expanduser() if custom_dir else None
        self.builtin_dir = Path(builtin_dir) if builtin_dir else None
        self.default_workflow = default_workflow
        self._workflows: dict[str, Workflow] = {}

    def register(self, workflow: Workflow) -> None:
        """Register a workflow in memory.

        In-memory workflows take precedence over every document source.

        Args:
            workflow: The workflow to register.

        Raises:
            WorkflowValidationError: If the workflow is invalid.

        Example:
            >>> registry = WorkflowRegistry()
            >>> registry.register(Workflow.from_dict(document))
        """
        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(errors)
        self._workflows[workflow.id] = workflow

    def get(self, workflow_id: str) -> Workflow:
        """Retrieve a workflow by id.

        Args:
            workflow_id: The workflow id.

        Returns:
            The workflow.

        Raises:
            WorkflowNotFoundError: If no source has the workflow.
        """
        if workflow_id in self._workflows:
            return self._workflows[workflow_id]
        for document in self._candidates(workflow_id):
            workflow = self._parse(document, workflow_id)
            if workflow is not None:
                return workflow
        raise WorkflowNotFoundError(workflow_id)

    def list(self) -> list[Workflow]:
        """List every known workflow sorted by id.

        Custom documents shadow built-ins with the same id, and in-memory
        workflows shadow both.
        """
        merged: dict[str, Workflow] = {}
        for source in (self._iter_documents(self._builtin_entries()), self._iter_documents(self._custom_entries())):
            for workflow in source:
                merged[workflow.id] = workflow
        merged.update(self._workflows)
        return [merged[key] for key in sorted(merged)]

    def exists(self, workflow_id: str) -> bool:
        try:
            self.get(workflow_id)
        except WorkflowNotFoundError:
            return False
        return True

    def get_default(self) -> Workflow:
        return self.get(self.default_workflow)

    def save(self, workflow: Workflow) -> Workflow:
        """Validate and persist a workflow.

        The document is written to the custom directory; without one, the
        workflow is registered in memory instead.

        Args:
            workflow: The workflow to save.

        Returns:
            The saved workflow with its timestamps set.

        Raises:
            WorkflowValidationError: If the workflow is invalid.
        """
        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(errors)

        now = utc_now().isoformat()
        workflow.created_at = workflow.created_at or now
        workflow.updated_at = now

        if self.custom_dir is None:
            self._workflows[workflow.id] = workflow
            return workflow

        path = self._custom_path(workflow.id)
        self.custom_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(workflow.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Saved workflow %s to %s", workflow.id, path)
        return workflow

    def delete(self, workflow_id: str) -> bool:
        """Delete an in-memory or custom workflow.

        Built-in workflows cannot be deleted.

        Returns:
            True if something was deleted.
        """
        removed = self._workflows.pop(workflow_id, None) is not None
        if self.custom_dir is not None:
            path = self._custom_path(workflow_id)
            if path.is_file():
                path.unlink()
                removed = True
        return removed

    def _custom_path(self, workflow_id: str) -> Path:
        if not workflow_id or Path(workflow_id).name != workflow_id or workflow_id.startswith("."):
            raise WorkflowValidationError([f"Invalid workflow id: {workflow_id!r}"])
        return self.custom_dir / f"{workflow_id}{WORKFLOW_SUFFIX}"  # type: ignore[operator]

    def _custom_entries(self) -> Sequence[Path]:
        if self.custom_dir is None or not self.custom_dir.is_dir():
            return []
        return sorted(self.custom_dir.glob(f"*{WORKFLOW_SUFFIX}"))

    def _builtin_entries(self) -> Sequence[Traversable]:
        root: Traversable = self.builtin_dir if self.builtin_dir is not None else _builtin_root()
        if not root.is_dir():
            return []
        return sorted(
            (entry for entry in root.iterdir() if entry.name.endswith(WORKFLOW_SUFFIX)),
            key=lambda entry: entry.name,
        )

    def _candidates(self, workflow_id: str) -> Iterator[Traversable]:
        name = f"{workflow_id}{WORKFLOW_SUFFIX}"
        for entry in self._custom_entries():
            if entry.name == name:
                yield entry
        for entry in self._builtin_entries():
            if entry.name == name:
                yield entry

    def _iter_documents(self, entries: Sequence[Traversable]) -> Iterator[Workflow]:
        for entry in entries:
            workflow = self._parse(entry, entry.name[: -len(WORKFLOW_SUFFIX)])
            if workflow is not None:
                yield workflow

    @staticmethod
    def _parse(entry: Traversable, fallback_id: str) -> Workflow | None:
        try:
            document: dict[str, Any] = json.loads(entry.read_text(encoding="utf-8"))
            workflow = Workflow.from_dict(document)
        except (OSError, ValueError, WorkflowValidationError) as e:
            logger.warning("Skipping unreadable workflow document %s: %s", entry.name, e)
            return None
        if not workflow.id:
            workflow.id = fallback_id
        return workflow
