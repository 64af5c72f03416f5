"""
LocalPilot Argument Validation

Checks a tool call's argument payload against the JSON-Schema-style
``input_schema`` a tool server advertised for it. Covers the subset that
tool servers actually publish: ``type`` (single or list), ``properties``,
``required``, ``additionalProperties: false``, ``items``, ``enum`` and
``minimum``/``maximum`` for numbers.

Unknown keywords are ignored so richer schemas still validate on the
subset we understand.
"""

from __future__ import annotations

from typing import Any

from localpilot.exceptions import SchemaValidationError

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "null": lambda v: v is None,
}


def schema_errors(value: Any, schema: dict[str, Any], path: str = "$") -> list[str]:
    """Return every violation of ``schema`` by ``value`` (empty when valid)."""
    if not isinstance(schema, dict) or not schema:
        return []

    errors: list[str] = []

    expected = schema.get("type")
    if expected is not None:
        types = expected if isinstance(expected, list) else [expected]
        known = [t for t in types if t in _TYPE_CHECKS]
        if known and not any(_TYPE_CHECKS[t](value) for t in known):
            return [f"{path}: expected {' or '.join(known)}, got {_json_type(value)}"]

    if "enum" in schema and value not in schema["enum"]:
        errors.append(f"{path}: {value!r} is not one of {schema['enum']!r}")

    if _TYPE_CHECKS["number"](value):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"{path}: {value} is below minimum {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"{path}: {value} is above maximum {schema['maximum']}")

    if isinstance(value, dict):
        properties = schema.get("properties") or {}
        for name in schema.get("required") or []:
            if name not in value:
                errors.append(f"{path}: missing required property '{name}'")
        for name, item in value.items():
            if name in properties:
                errors.extend(schema_errors(item, properties[name], f"{path}.{name}"))
            elif schema.get("additionalProperties") is False:
                errors.append(f"{path}: unexpected property '{name}'")

    if isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, item in enumerate(value):
            errors.extend(schema_errors(item, schema["items"], f"{path}[{i}]"))

    return errors


def validate_arguments(tool_name: str, arguments: Any, schema: dict[str, Any]) -> None:
    """Raise SchemaValidationError if ``arguments`` do not satisfy ``schema``.

    The payload itself must always be a JSON object, whatever the schema says.
    """
    if not isinstance(arguments, dict):
        raise SchemaValidationError(
            tool_name, [f"$: expected object, got {_json_type(arguments)}"]
        )
    errors = schema_errors(arguments, schema)
    if errors:
        raise SchemaValidationError(tool_name, errors)


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__
