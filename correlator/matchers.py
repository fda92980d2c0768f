"""Field matchers, rules, and rule sets used for flush and completion triggers.

A rule set matches a record if any of its rules matches. A rule matches if
any of its (field, matcher) pairs matches the record's value for that field.
A missing field never matches. A matcher applied to a value of the wrong JSON
type evaluates False rather than raising.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from correlator.models import Record


def _is_int(value: Any) -> bool:
    # bool is an int subclass in Python but not a JSON integer
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Equals:
    value: str
    kind = "equals"

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and value.casefold() == self.value.casefold()


@dataclass(frozen=True)
class EqualsInt:
    value: int
    kind = "equals_int"

    def matches(self, value: Any) -> bool:
        return _is_int(value) and value == self.value


@dataclass(frozen=True)
class OneOf:
    values: tuple[str, ...]
    kind = "one_of"

    def matches(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        folded = value.casefold()
        return any(folded == v.casefold() for v in self.values)


@dataclass(frozen=True)
class OneOfInt:
    values: tuple[int, ...]
    kind = "one_of_int"

    def matches(self, value: Any) -> bool:
        return _is_int(value) and value in self.values


@dataclass(frozen=True)
class Regex:
    """Case-insensitive, unanchored search. Compiled once on construction."""

    pattern: str
    _compiled: re.Pattern = field(init=False, repr=False, compare=False)
    kind = "regex"

    def __post_init__(self):
        object.__setattr__(self, "_compiled", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, value: Any) -> bool:
        return isinstance(value, str) and self._compiled.search(value) is not None


FieldMatcher = Equals | EqualsInt | OneOf | OneOfInt | Regex


@dataclass(frozen=True)
class Rule:
    conditions: tuple[tuple[str, FieldMatcher], ...]

    def matches(self, fields: Any) -> bool:
        if not isinstance(fields, dict):
            return False
        for name, matcher in self.conditions:
            if name in fields and matcher.matches(fields[name]):
                return True
        return False


@dataclass(frozen=True)
class RuleSet:
    rules: tuple[Rule, ...] = ()

    def matches(self, fields: Any) -> bool:
        return any(rule.matches(fields) for rule in self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def evaluate(record: Record, flush_rules: RuleSet, completion_rules: RuleSet) -> tuple[bool, bool]:
    """Return (flushed, completed). Both rule sets are always evaluated."""
    flushed = flush_rules.matches(record.fields)
    completed = completion_rules.matches(record.fields)
    return flushed, completed


DEFAULT_FLUSH_RULES = RuleSet((
    Rule((("level", OneOf(("error", "fatal", "critical"))),)),
))
