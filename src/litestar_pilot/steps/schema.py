"""Output contract checks for steps that declare an ``outputSchema``.

Only the ``required`` list and the ``type`` of each entry in ``properties`` are
checked; this is a contract, not a full JSON Schema implementation.
"""

from __future__ import annotations

from typing import Any

__all__ = ["json_type_name", "validate_output"]


def json_type_name(value: Any) -> str:
    """Name the JSON type of a Python value.

    Example:
        >>> json_type_name([1, 2])
        'array'
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def validate_output(output: Any, schema: dict[str, Any] | None) -> list[str]:
    """Check ``output`` against a step's declared schema.

    Args:
        output: The step output.
        schema: Mapping with optional ``required`` and ``properties`` keys.

    Returns:
        List of violations. Empty if the output satisfies the schema.
    """
    if not schema:
        return []
    if not isinstance(output, dict):
        if schema.get("required") or schema.get("properties"):
            return ["Output must be an object"]
        return []

    errors = [f'Missing required field "{name}"' for name in schema.get("required") or [] if name not in output]

    for name, field_schema in (schema.get("properties") or {}).items():
        expected = field_schema.get("type") if isinstance(field_schema, dict) else None
        if not expected or name not in output:
            continue
        actual = json_type_name(output[name])
        if expected == "integer" and actual == "number" and float(output[name]).is_integer():
            continue
        if actual != expected:
            errors.append(f'Field "{name}" should be {expected}, got {actual}')
    return errors
