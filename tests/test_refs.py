"""Tests for reference resolution and dependency extraction."""

from __future__ import annotations

import pytest

from litestar_pilot.core.definition import Step
from litestar_pilot.core.refs import (
    RefContext,
    extract_refs,
    get_nested_value,
    get_step_dependencies,
    resolve_refs,
    stringify,
)


@pytest.fixture
def ref_context() -> RefContext:
    return RefContext(
        input={"message": "hello", "user": {"name": "Ada"}},
        steps={
            "search": {"hits": 3, "items": [{"title": "First"}, {"title": "Second"}]},
            "plan": {"tools": ["SEARCH", "SEND_EMAIL"], "empty": []},
            "flag": False,
        },
    )


@pytest.mark.unit
class TestGetNestedValue:
    """Tests for dotted path lookup."""

    def test_walks_dicts_and_lists(self) -> None:
        """Test that numeric segments index into lists."""
        value = {"items": [{"title": "a"}, {"title": "b"}]}
        assert get_nested_value(value, "items.1.title") == "b"

    def test_missing_segment_returns_none(self) -> None:
        """Test that a missing key anywhere yields None."""
        assert get_nested_value({"a": {"b": 1}}, "a.c.d") is None

    def test_out_of_range_index_returns_none(self) -> None:
        """Test that indexing past the end yields None."""
        assert get_nested_value({"items": [1]}, "items.5") is None

    def test_scalar_in_path_returns_none(self) -> None:
        """Test that walking into a scalar yields None."""
        assert get_nested_value({"a": 5}, "a.b") is None


@pytest.mark.unit
class TestResolveRefs:
    """Tests for resolve_refs."""

    def test_full_reference_keeps_type(self, ref_context: RefContext) -> None:
        """Test that a single-token string resolves to the raw value."""
        assert resolve_refs("@search.hits", ref_context) == 3
        assert resolve_refs("@plan.tools", ref_context) == ["SEARCH", "SEND_EMAIL"]

    def test_whole_step_output(self, ref_context: RefContext) -> None:
        """Test referencing a step output without a path."""
        assert resolve_refs("@search", ref_context)["hits"] == 3

    def test_input_reference(self, ref_context: RefContext) -> None:
        """Test that @input points at the workflow input."""
        assert resolve_refs("@input.user.name", ref_context) == "Ada"
        assert resolve_refs("@input", ref_context)["message"] == "hello"

    def test_embedded_reference_is_stringified(self, ref_context: RefContext) -> None:
        """Test that tokens inside longer strings become text."""
        assert resolve_refs("Found @search.hits results", ref_context) == "Found 3 results"

    def test_embedded_object_is_json(self, ref_context: RefContext) -> None:
        """Test that embedded non-string values render as compact JSON."""
        assert resolve_refs("Tools: @plan.tools", ref_context) == 'Tools: ["SEARCH","SEND_EMAIL"]'

    def test_embedded_missing_path_renders_empty(self, ref_context: RefContext) -> None:
        """Test that an embedded path that does not exist renders as an empty string."""
        assert resolve_refs("[@search.nope]", ref_context) == "[]"

    def test_trailing_full_stop_is_not_part_of_path(self, ref_context: RefContext) -> None:
        """Test that a sentence ending after a token keeps its full stop."""
        assert resolve_refs("Hello @input.user.name.", ref_context) == "Hello Ada."

    def test_unknown_name_is_left_untouched(self, ref_context: RefContext) -> None:
        """Test that references to unknown steps stay visible."""
        assert resolve_refs("@later.value", ref_context) == "@later.value"
        assert resolve_refs("see @later", ref_context) == "see @later"

    def test_falsy_output_resolves(self, ref_context: RefContext) -> None:
        """Test that a committed False output is not treated as missing."""
        assert resolve_refs("@flag", ref_context) is False

    def test_recurses_into_containers(self, ref_context: RefContext) -> None:
        """Test that lists and dicts are resolved recursively."""
        resolved = resolve_refs(
            {"query": "@input.message", "nested": ["@search.items.0.title", 7, None]},
            ref_context,
        )
        assert resolved == {"query": "hello", "nested": ["First", 7, None]}

    def test_does_not_mutate_template(self, ref_context: RefContext) -> None:
        """Test that the input template is left unchanged."""
        template = {"query": "@input.message"}
        resolve_refs(template, ref_context)
        assert template == {"query": "@input.message"}

    def test_non_string_scalars_pass_through(self, ref_context: RefContext) -> None:
        """Test that numbers and booleans are returned as-is."""
        assert resolve_refs(42, ref_context) == 42
        assert resolve_refs(True, ref_context) is True


@pytest.mark.unit
class TestExtractRefs:
    """Tests for extract_refs and get_step_dependencies."""

    def test_collects_unique_names_in_order(self) -> None:
        """Test that names are unique and ordered by first occurrence."""
        value = {"a": "@b.x and @a", "list": ["@b", "@input.message", {"deep": "@c"}]}
        assert extract_refs(value) == ["b", "a", "input", "c"]

    def test_step_dependencies_scan_llm_prompt_and_tools(self) -> None:
        """Test that LLM prompts and tool references count as dependencies."""
        step = Step.from_dict(
            {
                "name": "execute",
                "action": {"type": "llm", "prompt": "@plan.task", "tools": "@discover.tools"},
                "input": {"message": "@input.message"},
            }
        )
        deps = get_step_dependencies(step, ["plan", "discover", "execute"])
        assert deps == ["plan", "discover"]

    def test_step_dependencies_scan_template_text(self) -> None:
        """Test that template text counts toward dependencies."""
        step = Step.from_dict({"name": "reply", "action": {"type": "template", "template": "Hi @lookup.name"}})
        assert get_step_dependencies(step, ["lookup", "reply"]) == ["lookup"]

    def test_step_dependencies_ignore_self_input_and_unknown(self) -> None:
        """Test that @input, the step itself and unknown names are ignored."""
        step = Step.from_dict(
            {
                "name": "loop",
                "action": {"type": "code", "code": "input"},
                "input": {"a": "@loop.value", "b": "@input.x", "c": "@ghost"},
            }
        )
        assert get_step_dependencies(step, ["loop"]) == []


@pytest.mark.unit
def test_stringify() -> None:
    """Test rendering values for embedding."""
    assert stringify("text") == "text"
    assert stringify(None) == ""
    assert stringify({"a": 1}) == '{"a":1}'
    assert stringify(1.5) == "1.5"
