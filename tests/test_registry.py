"""Tests for the workflow registry."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from litestar_pilot.engine.registry import DEFAULT_WORKFLOW_ID, WorkflowRegistry
from litestar_pilot.exceptions import WorkflowNotFoundError, WorkflowValidationError
from tests.conftest import code_step, make_workflow, template_step

if TYPE_CHECKING:
    from pathlib import Path

BUILTIN_IDS = {"direct-execution", "execute-multi-step", "fast-router", "research-first"}


def _write(directory: Path, workflow_id: str, title: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    document = {"id": workflow_id, "title": title, "steps": [template_step("reply", title)]}
    (directory / f"{workflow_id}.json").write_text(json.dumps(document), encoding="utf-8")


@pytest.mark.unit
class TestBuiltins:
    """Tests for the packaged workflows."""

    def test_builtins_are_listed(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that every packaged workflow is available."""
        assert {workflow.id for workflow in workflow_registry.list()} == BUILTIN_IDS

    @pytest.mark.parametrize("workflow_id", sorted(BUILTIN_IDS))
    def test_builtins_are_valid(self, workflow_registry: WorkflowRegistry, workflow_id: str) -> None:
        """Test that the packaged workflows pass validation."""
        assert workflow_registry.get(workflow_id).validate() == []

    def test_default_workflow(self, workflow_registry: WorkflowRegistry) -> None:
        """Test the default workflow lookup."""
        assert workflow_registry.get_default().id == DEFAULT_WORKFLOW_ID

    def test_multi_step_skips_execution_without_tools(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that the planner/executor pair is wired through references."""
        workflow = workflow_registry.get("execute-multi-step")
        execute = workflow.get_step("execute")
        assert execute.config.skip_if == "empty:@plan.toolsForExecutor"
        assert execute.action.tools == "@plan.toolsForExecutor"


@pytest.mark.unit
class TestRegistry:
    """Tests for registration, precedence and persistence."""

    def test_get_missing(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that unknown ids raise WorkflowNotFoundError."""
        with pytest.raises(WorkflowNotFoundError, match="nope"):
            workflow_registry.get("nope")
        assert workflow_registry.exists("nope") is False

    def test_register_shadows_builtin(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that in-memory workflows take precedence."""
        workflow_registry.register(make_workflow("fast-router", template_step("reply", "stubbed")))

        assert workflow_registry.get("fast-router").step_names == ["reply"]
        assert [w.title for w in workflow_registry.list() if w.id == "fast-router"] == ["Fast-Router"]

    def test_register_rejects_invalid(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that cyclic workflows cannot be registered."""
        workflow = make_workflow(
            "cycle",
            code_step("a", "input", {"x": "@b"}),
            code_step("b", "input", {"x": "@a"}),
        )
        with pytest.raises(WorkflowValidationError):
            workflow_registry.register(workflow)

    def test_custom_directory_shadows_builtin(self, tmp_path: Path) -> None:
        """Test that custom documents override built-ins with the same id."""
        _write(tmp_path, "fast-router", "Custom Router")
        _write(tmp_path, "extra", "Extra")
        registry = WorkflowRegistry(custom_dir=tmp_path)

        assert registry.get("fast-router").title == "Custom Router"
        listed = {workflow.id: workflow.title for workflow in registry.list()}
        assert listed["fast-router"] == "Custom Router"
        assert listed["extra"] == "Extra"
        assert set(listed) == BUILTIN_IDS | {"extra"}

    def test_unreadable_documents_are_skipped(self, tmp_path: Path) -> None:
        """Test that broken JSON files do not break listing."""
        (tmp_path / "broken.json").write_text("{", encoding="utf-8")
        registry = WorkflowRegistry(custom_dir=tmp_path)

        assert {workflow.id for workflow in registry.list()} == BUILTIN_IDS
        with pytest.raises(WorkflowNotFoundError):
            registry.get("broken")

    def test_missing_id_falls_back_to_file_name(self, tmp_path: Path) -> None:
        """Test that a document without an id takes the file name."""
        document = {"title": "Anonymous", "steps": [template_step("reply", "hi")]}
        (tmp_path / "anonymous.json").write_text(json.dumps(document), encoding="utf-8")

        assert WorkflowRegistry(custom_dir=tmp_path).get("anonymous").id == "anonymous"

    def test_save_to_custom_directory(self, tmp_path: Path) -> None:
        """Test that saving writes a document and stamps timestamps."""
        registry = WorkflowRegistry(custom_dir=tmp_path / "workflows")

        saved = registry.save(make_workflow("greet", template_step("reply", "Hello @input.name")))

        assert saved.created_at is not None
        assert saved.updated_at is not None
        stored = json.loads((tmp_path / "workflows" / "greet.json").read_text(encoding="utf-8"))
        assert stored["steps"][0]["action"] == {"type": "template", "template": "Hello @input.name"}
        assert WorkflowRegistry(custom_dir=tmp_path / "workflows").get("greet").created_at == saved.created_at

    def test_save_without_directory_registers(self, workflow_registry: WorkflowRegistry) -> None:
        """Test that saving without a custom directory keeps the workflow in memory."""
        workflow_registry.save(make_workflow("greet", template_step("reply", "hi")))
        assert workflow_registry.exists("greet")

    def test_save_rejects_unsafe_id(self, tmp_path: Path) -> None:
        """Test that ids cannot escape the custom directory."""
        registry = WorkflowRegistry(custom_dir=tmp_path)
        with pytest.raises(WorkflowValidationError, match="Invalid workflow id"):
            registry.save(make_workflow("../escape", template_step("reply", "hi")))

    def test_delete(self, tmp_path: Path) -> None:
        """Test deleting custom workflows but never built-ins."""
        registry = WorkflowRegistry(custom_dir=tmp_path)
        registry.save(make_workflow("greet", template_step("reply", "hi")))

        assert registry.delete("greet") is True
        assert registry.exists("greet") is False
        assert registry.delete("fast-router") is False
        assert registry.exists("fast-router") is True
