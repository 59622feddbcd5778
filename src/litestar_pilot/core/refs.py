"""Reference resolution for step inputs.

Step inputs, prompts and templates may embed ``@name`` or ``@name.dotted.path``
tokens. ``@input`` points at the workflow input, any other name points at the
committed output of a previous step. This module resolves those tokens and
extracts them for dependency analysis.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar_pilot.core.types import ActionType

if TYPE_CHECKING:
    from litestar_pilot.core.definition import Step

__all__ = [
    "FULL_REF_PATTERN",
    "INPUT_REF",
    "REF_PATTERN",
    "RefContext",
    "extract_refs",
    "get_nested_value",
    "get_step_dependencies",
    "resolve_refs",
    "stringify",
]

REF_PATTERN = re.compile(r"@(\w+)(?:\.([.\w]+))?")
"""Matches a reference token anywhere inside a string."""

FULL_REF_PATTERN = re.compile(r"^@(\w+)(?:\.([.\w]+))?$")
"""Matches a string that consists of exactly one reference token."""

INPUT_REF = "input"
"""Reserved reference name for the workflow input."""

_MISSING = object()


@dataclass(frozen=True)
class RefContext:
    """Values that reference tokens resolve against.

    Attributes:
        input: The workflow input, reachable as ``@input``.
        steps: Committed step outputs keyed by step name.

    Example:
        >>> ctx = RefContext(input={"topic": "AI"}, steps={"search": {"hits": 3}})
        >>> resolve_refs("@search.hits", ctx)
        3
    """

    input: Mapping[str, Any] = field(default_factory=dict)
    steps: Mapping[str, Any] = field(default_factory=dict)


def get_nested_value(value: Any, path: str) -> Any:
    """Walk a dotted path through dicts (by key) and lists (by index).

    Args:
        value: The root value.
        path: Dot separated path, e.g. ``"items.0.title"``.

    Returns:
        The value at the path, or ``None`` when any segment is missing.
    """
    current = value
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def stringify(value: Any) -> str:
    """Render a resolved value for embedding inside a larger string."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _lookup(name: str, context: RefContext) -> Any:
    if name == INPUT_REF:
        return context.input
    if name in context.steps:
        return context.steps[name]
    return _MISSING


def _split_path(path: str | None) -> tuple[str | None, str]:
    # A sentence ending right after a token ("see @a.value.") must not
    # swallow the full stop into the path.
    if not path:
        return None, ""
    stripped = path.rstrip(".")
    return (stripped or None), path[len(stripped) :]


def _resolve_string(text: str, context: RefContext) -> Any:
    full = FULL_REF_PATTERN.match(text)
    if full:
        name, raw_path = full.groups()
        path, trailing = _split_path(raw_path)
        if not trailing:
            value = _lookup(name, context)
            if value is _MISSING:
                return text
            if path and isinstance(value, (Mapping, list)):
                return get_nested_value(value, path)
            return value

    def replace(match: re.Match[str]) -> str:
        name, raw_path = match.groups()
        value = _lookup(name, context)
        if value is _MISSING:
            return match.group(0)
        path, trailing = _split_path(raw_path)
        if path and isinstance(value, (Mapping, list)):
            value = get_nested_value(value, path)
        return stringify(value) + trailing

    return REF_PATTERN.sub(replace, text)


def resolve_refs(value: Any, context: RefContext) -> Any:
    """Replace every reference token inside ``value``.

    A string made of a single token resolves to the raw referenced value, so
    ``"@a.count"`` can yield an ``int``. Tokens embedded in longer strings are
    stringified. Lists and dicts are resolved recursively. Unknown names are
    left untouched so unresolved references stay visible.

    Args:
        value: Any JSON-like value.
        context: The workflow input and committed step outputs.

    Returns:
        A new value with all resolvable references substituted.

    Example:
        >>> resolve_refs("@a.b.c", RefContext(steps={"a": {"b": {"c": 42}}}))
        42
        >>> resolve_refs("total: @a.b.c", RefContext(steps={"a": {"b": {"c": 42}}}))
        'total: 42'
    """
    if isinstance(value, str):
        return _resolve_string(value, context)
    if isinstance(value, list):
        return [resolve_refs(item, context) for item in value]
    if isinstance(value, Mapping):
        return {key: resolve_refs(item, context) for key, item in value.items()}
    return value


def extract_refs(value: Any) -> list[str]:
    """Collect every referenced name inside ``value`` in traversal order.

    Args:
        value: Any JSON-like value.

    Returns:
        Unique reference names, first occurrence first.
    """
    names: dict[str, None] = {}

    def visit(item: Any) -> None:
        if isinstance(item, str):
            for match in REF_PATTERN.finditer(item):
                names.setdefault(match.group(1), None)
        elif isinstance(item, list):
            for child in item:
                visit(child)
        elif isinstance(item, Mapping):
            for child in item.values():
                visit(child)

    visit(value)
    return list(names)


def get_step_dependencies(step: Step, step_names: Iterable[str]) -> list[str]:
    """Return the names of workflow steps that ``step`` references.

    The step input is scanned, plus the ``prompt`` and ``tools`` fields of
    LLM actions and the text of template actions. Only names of actual steps
    count; ``@input`` and the step's own name are ignored.

    Args:
        step: The step to analyse.
        step_names: Names of every step in the workflow.

    Returns:
        Dependency names in order of first reference.
    """
    known = set(step_names)
    sources: list[Any] = [step.input]
    if step.action.type == ActionType.LLM:
        sources.append(step.action.prompt)
        sources.append(step.action.tools)
    elif step.action.type == ActionType.TEMPLATE:
        sources.append(step.action.template)
    return [name for name in extract_refs(sources) if name in known and name != step.name]
