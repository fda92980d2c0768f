"""Configuration loading from an optional YAML file plus CLI overrides."""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import yaml

from correlator.matchers import (
    DEFAULT_FLUSH_RULES,
    Equals,
    EqualsInt,
    FieldMatcher,
    OneOf,
    OneOfInt,
    Regex,
    Rule,
    RuleSet,
)
from correlator.schema import validate_config

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_ID_FIELD = "trace_id"
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_CLEANUP_INTERVAL_MS = 1000

RULE_KEYS = ("flush_triggers", "completion_triggers")


class ConfigError(ValueError):
    """Invalid trigger rule definition. Fatal at startup."""


@dataclass(frozen=True)
class Config:
    id_field: str = DEFAULT_ID_FIELD
    timeout_ms: int = DEFAULT_TIMEOUT_MS           # since the last line of the transaction
    cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS
    flush_rules: RuleSet = DEFAULT_FLUSH_RULES
    completion_rules: RuleSet = RuleSet()


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def normalize_matcher(definition: Any) -> dict:
    """Turn a matcher definition into its tagged form ({"kind": ..., ...}).

    Tagged definitions pass through. Untagged shorthand is resolved in this
    order: str -> equals, int -> equals_int, list of str -> one_of,
    list of int -> one_of_int, {"regex": ...} -> regex. Anything else
    (floats, booleans, empty or mixed lists) is rejected.
    """
    if isinstance(definition, dict):
        if "kind" in definition:
            return definition
        if set(definition) == {"regex"}:
            return {"kind": "regex", "pattern": definition["regex"]}
        raise ConfigError(f"matcher mapping needs a 'kind' key: {definition!r}")
    if isinstance(definition, str):
        return {"kind": "equals", "value": definition}
    if _is_int(definition):
        return {"kind": "equals_int", "value": definition}
    if isinstance(definition, list) and definition:
        if all(isinstance(v, str) for v in definition):
            return {"kind": "one_of", "values": definition}
        if all(_is_int(v) for v in definition):
            return {"kind": "one_of_int", "values": definition}
    raise ConfigError(f"cannot determine matcher kind for {definition!r}")


def build_matcher(definition: Any) -> FieldMatcher:
    tagged = normalize_matcher(definition)
    kind = tagged.get("kind")
    if kind == "equals":
        return Equals(tagged["value"])
    if kind == "equals_int":
        if not _is_int(tagged["value"]):
            raise ConfigError(f"equals_int needs an integer, got {tagged['value']!r}")
        return EqualsInt(tagged["value"])
    if kind == "one_of":
        return OneOf(tuple(tagged["values"]))
    if kind == "one_of_int":
        if not all(_is_int(v) for v in tagged["values"]):
            raise ConfigError(f"one_of_int needs integers, got {tagged['values']!r}")
        return OneOfInt(tuple(tagged["values"]))
    if kind == "regex":
        try:
            return Regex(tagged["pattern"])
        except re.error as e:
            raise ConfigError(f"invalid regex {tagged['pattern']!r}: {e}") from e
    raise ConfigError(f"unknown matcher kind {kind!r}")


def build_rule_set(rules: list[dict] | None) -> RuleSet:
    if not rules:
        return RuleSet()
    return RuleSet(tuple(
        Rule(tuple((name, build_matcher(definition)) for name, definition in rule.items()))
        for rule in rules
    ))


def load_yaml_config(path: str | None) -> dict:
    """Read the YAML config file. Returns an empty dict if there is none.

    A missing, unreadable or unparseable file is not fatal: a warning is
    logged and defaults apply.
    """
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        logger.warning("Config file %s not readable (%s), using defaults", path, e)
        return {}
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s (%s), using defaults", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded config from %s", path)
    return data


def config_from_dict(data: dict) -> Config:
    """Validate parsed config data and build a Config.

    Invalid trigger rules raise ConfigError. Any other problem (an unknown
    key, a badly typed setting) is logged and the setting's default applies.
    """
    problems = validate_config(data)
    fatal = [message for key, message in problems if key in RULE_KEYS]
    if fatal:
        raise ConfigError("invalid trigger rules: " + "; ".join(fatal))

    data = dict(data)
    for key, message in problems:
        logger.warning("Ignoring config setting (%s), using default", message)
        if key is not None:
            data.pop(key, None)

    if "flush_triggers" in data:
        flush_rules = build_rule_set(data["flush_triggers"])
    else:
        flush_rules = DEFAULT_FLUSH_RULES

    return Config(
        id_field=data.get("id_field", DEFAULT_ID_FIELD),
        timeout_ms=data.get("timeout", DEFAULT_TIMEOUT_MS),
        cleanup_interval_ms=data.get("cleanup_interval", DEFAULT_CLEANUP_INTERVAL_MS),
        flush_rules=flush_rules,
        completion_rules=build_rule_set(data.get("completion_triggers")),
    )


def load_config(cli_args, yaml_data: dict) -> Config:
    """Build Config from parsed YAML data, with CLI args taking precedence."""
    data = dict(yaml_data)
    if getattr(cli_args, "id_field", None):
        data["id_field"] = cli_args.id_field
    if getattr(cli_args, "timeout", None) is not None:
        data["timeout"] = cli_args.timeout
    if getattr(cli_args, "cleanup_interval", None) is not None:
        data["cleanup_interval"] = cli_args.cleanup_interval
    return config_from_dict(data)


def default_config_path() -> str | None:
    return os.environ.get("CORRELATOR_CONFIG") or None
