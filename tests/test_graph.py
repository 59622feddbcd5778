"""Tests for the dependency graph and level grouping."""

from __future__ import annotations

import pytest

from litestar_pilot.engine.graph import StepGraph, compute_step_levels, group_steps_by_level
from tests.conftest import code_step, make_workflow, template_step, tool_step


@pytest.mark.unit
class TestStepLevels:
    """Tests for level computation."""

    def test_independent_steps_share_level_zero(self) -> None:
        """Test that steps without references all sit at level 0."""
        workflow = make_workflow("flat", tool_step("a", "SEARCH"), tool_step("b", "SEARCH"))
        assert compute_step_levels(workflow.steps) == {"a": 0, "b": 0}

    def test_level_is_one_above_deepest_dependency(self) -> None:
        """Test that a step sits one level above its deepest dependency."""
        workflow = make_workflow(
            "diamond",
            tool_step("fetch", "SEARCH"),
            code_step("left", "input", {"x": "@fetch"}),
            code_step("right", "input", {"x": "@fetch.items"}),
            code_step("deeper", "input", {"x": "@left"}),
            template_step("join", "@right and @deeper"),
        )
        assert compute_step_levels(workflow.steps) == {
            "fetch": 0,
            "left": 1,
            "right": 1,
            "deeper": 2,
            "join": 3,
        }

    def test_forward_reference_is_a_dependency(self) -> None:
        """Test that declaration order does not limit dependencies."""
        workflow = make_workflow(
            "forward",
            code_step("summary", "input", {"x": "@raw"}),
            tool_step("raw", "SEARCH"),
        )
        assert compute_step_levels(workflow.steps) == {"summary": 1, "raw": 0}

    def test_group_by_level_keeps_declaration_order(self) -> None:
        """Test that levels preserve declaration order within a level."""
        workflow = make_workflow(
            "order",
            tool_step("b", "SEARCH"),
            code_step("c", "input", {"x": "@b"}),
            tool_step("a", "SEARCH"),
        )
        grouped = group_steps_by_level(workflow.steps)
        assert [[step.name for step in level] for level in grouped] == [["b", "a"], ["c"]]

    def test_empty_workflow_has_no_levels(self) -> None:
        """Test grouping an empty step list."""
        assert group_steps_by_level([]) == []

    def test_cycle_does_not_loop_forever(self) -> None:
        """Test that levels() terminates on cyclic references."""
        workflow = make_workflow(
            "cycle",
            code_step("a", "input", {"x": "@b"}),
            code_step("b", "input", {"x": "@a"}),
        )
        levels = StepGraph(workflow.steps).levels()
        assert set(levels) == {"a", "b"}


@pytest.mark.unit
class TestStepGraph:
    """Tests for graph queries and validation."""

    def test_dependents(self) -> None:
        """Test the reverse adjacency."""
        workflow = make_workflow(
            "deps",
            tool_step("fetch", "SEARCH"),
            code_step("left", "input", {"x": "@fetch"}),
            code_step("right", "input", {"x": "@fetch"}),
        )
        graph = StepGraph(workflow.steps)
        assert graph.get_dependents("fetch") == ["left", "right"]
        assert graph.get_dependents("left") == []
        assert graph.get_dependents("missing") == []

    def test_find_cycles(self) -> None:
        """Test that a cycle is reported as a closed path."""
        workflow = make_workflow(
            "cycle",
            code_step("a", "input", {"x": "@c"}),
            code_step("b", "input", {"x": "@a"}),
            code_step("c", "input", {"x": "@b"}),
        )
        cycles = StepGraph(workflow.steps).find_cycles()
        assert len(cycles) == 1
        assert cycles[0][0] == cycles[0][-1]
        assert set(cycles[0]) == {"a", "b", "c"}

    def test_validate_acyclic_graph(self) -> None:
        """Test that an acyclic graph validates cleanly."""
        workflow = make_workflow("ok", tool_step("a", "SEARCH"), code_step("b", "input", {"x": "@a"}))
        assert StepGraph(workflow.steps).validate() == []

    def test_validate_reports_cycle(self) -> None:
        """Test that validation reports the cycle path."""
        workflow = make_workflow(
            "cycle",
            code_step("a", "input", {"x": "@b"}),
            code_step("b", "input", {"x": "@a"}),
        )
        errors = StepGraph(workflow.steps).validate()
        assert len(errors) == 1
        assert errors[0].startswith("Dependency cycle detected:")
