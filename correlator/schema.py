"""JSON schema for the YAML configuration file."""

import jsonschema
from jsonschema.exceptions import best_match

_NON_EMPTY_STRINGS = {"type": "array", "items": {"type": "string"}, "minItems": 1}
_NON_EMPTY_INTS = {"type": "array", "items": {"type": "integer"}, "minItems": 1}

CONFIG_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "id_field": {"type": "string", "minLength": 1},
        "timeout": {"type": "integer", "minimum": 1},
        "cleanup_interval": {"type": "integer", "minimum": 1},
        "flush_triggers": {"$ref": "#/$defs/rule_set"},
        "completion_triggers": {"$ref": "#/$defs/rule_set"},
    },
    "$defs": {
        "rule_set": {
            "type": ["array", "null"],
            "items": {"$ref": "#/$defs/rule"},
        },
        "rule": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {"$ref": "#/$defs/matcher"},
        },
        "matcher": {
            "oneOf": [
                {"$ref": "#/$defs/tagged"},
                # Untagged shorthand, see config.normalize_matcher
                {"type": "string"},
                {"type": "integer"},
                _NON_EMPTY_STRINGS,
                _NON_EMPTY_INTS,
                {
                    "type": "object",
                    "required": ["regex"],
                    "additionalProperties": False,
                    "properties": {"regex": {"type": "string"}},
                },
            ],
        },
        "tagged": {
            "type": "object",
            "required": ["kind"],
            "oneOf": [
                {
                    "properties": {"kind": {"const": "equals"}, "value": {"type": "string"}},
                    "required": ["value"],
                },
                {
                    "properties": {"kind": {"const": "equals_int"}, "value": {"type": "integer"}},
                    "required": ["value"],
                },
                {
                    "properties": {"kind": {"const": "one_of"}, "values": _NON_EMPTY_STRINGS},
                    "required": ["values"],
                },
                {
                    "properties": {"kind": {"const": "one_of_int"}, "values": _NON_EMPTY_INTS},
                    "required": ["values"],
                },
                {
                    "properties": {"kind": {"const": "regex"}, "pattern": {"type": "string"}},
                    "required": ["pattern"],
                },
            ],
        },
    },
}

_validator = jsonschema.Draft202012Validator(CONFIG_SCHEMA)


def validate_config(data) -> list[tuple[str | None, str]]:
    """Return (top-level key, message) pairs for *data*; empty when it conforms.

    The key is None for problems at the root, such as unknown keys.
    Only the most relevant error per top-level problem is reported.
    """
    errors = list(_validator.iter_errors(data))
    if not errors:
        return []
    problems = []
    for error in errors:
        best = best_match([error])
        path = list(best.absolute_path)
        location = "/".join(str(p) for p in path) or "<root>"
        key = str(path[0]) if path else None
        problems.append((key, f"{location}: {best.message}"))
    return problems
