"""Skip conditions for workflow steps.

Two forms are understood:

- ``empty:@ref`` skips when the referenced value is missing or an empty list.
- ``equals:@a,@b`` skips when both referenced values are JSON-equal.

Any other expression never skips.
"""

from __future__ import annotations

import json
from typing import Any

from litestar_pilot.core.refs import RefContext, resolve_refs

__all__ = ["evaluate_skip_if"]

EMPTY_PREFIX = "empty:"
EQUALS_PREFIX = "equals:"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def evaluate_skip_if(expression: str | None, context: RefContext) -> bool:
    """Evaluate a ``skipIf`` expression.

    Args:
        expression: The expression, e.g. ``"empty:@plan.toolsForExecutor"``.
        context: Values the references resolve against.

    Returns:
        True if the step should be skipped.

    Example:
        >>> evaluate_skip_if("empty:@a.items", RefContext(steps={"a": {"items": []}}))
        True
    """
    if not expression:
        return False

    if expression.startswith(EMPTY_PREFIX):
        value = resolve_refs(expression[len(EMPTY_PREFIX) :].strip(), context)
        return value is None or (isinstance(value, list) and not value)

    if expression.startswith(EQUALS_PREFIX):
        parts = expression[len(EQUALS_PREFIX) :].split(",")
        if len(parts) != 2:
            return False
        left = resolve_refs(parts[0].strip(), context)
        right = resolve_refs(parts[1].strip(), context)
        return _canonical(left) == _canonical(right)

    return False
