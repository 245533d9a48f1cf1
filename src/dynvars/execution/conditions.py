"""
Restricted boolean conditions over the variable document.

A condition is a JSON mapping. Logical nodes use the keys "and", "or" (lists
of conditions) and "not" (one condition). A leaf names a "path" and any of
the comparators eq, neq, gt, gte, lt, lte, in, nin, match, exists and value;
all comparators present on a leaf must hold. A leaf without comparators
tests the truthiness of the value at its path.

Evaluation is fail-closed: malformed conditions, non-numeric ordering
operands and invalid patterns evaluate to False instead of raising.
"""

import logging
import math
import re
from typing import Any

from dynvars.core.document import DocumentStore
from dynvars.core.types import Condition

logger = logging.getLogger(__name__)

_REGEX_LITERAL = re.compile(r"^/(?P<pattern>.*)/(?P<flags>[imsx]*)$", re.DOTALL)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}

LOGICAL_KEYS = ("and", "or", "not")
LEAF_COMPARATORS = ("exists", "eq", "neq", "gt", "gte", "lt", "lte", "in", "nin", "match", "value")


def is_number(value: Any) -> bool:
    """Check for an int or float that is not a bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    """
    Deep JSON equality.

    Booleans never equal numbers, and 1 equals 1.0 as in JSON.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        if isinstance(left, float) and isinstance(right, float) and math.isnan(left) and math.isnan(right):
            return False
        return left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            values_equal(left[key], right[key]) for key in left
        )
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )
    return type(left) is type(right) and left == right


def strictly_equal(left: Any, right: Any) -> bool:
    """Deep equality that also requires matching numeric types."""
    if is_number(left) and is_number(right) and type(left) is not type(right):
        return False
    return values_equal(left, right)


def compile_pattern(pattern: Any) -> re.Pattern | None:
    """
    Compile a pattern, accepting the "/body/flags" literal form.

    Returns:
        Compiled pattern, or None when the pattern is not usable
    """
    if not isinstance(pattern, str):
        return None
    flags = 0
    literal = _REGEX_LITERAL.match(pattern)
    if literal:
        pattern = literal.group("pattern")
        for flag in literal.group("flags"):
            flags |= _REGEX_FLAGS[flag]
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        logger.debug("Invalid pattern %r in condition: %s", pattern, e)
        return None


def _membership(value: Any, options: Any) -> bool | None:
    if not isinstance(options, list):
        return None
    return any(values_equal(value, option) for option in options)


def _ordered(value: Any, operand: Any, comparator: str) -> bool:
    if not (is_number(value) and is_number(operand)):
        return False
    if comparator == "gt":
        return value > operand
    if comparator == "gte":
        return value >= operand
    if comparator == "lt":
        return value < operand
    return value <= operand


def compare(value: Any, comparator: str, operand: Any) -> bool:
    """
    Apply one comparator to a resolved value.

    Params:
        value: Value resolved from the document (None when missing)
        comparator: Comparator name
        operand: Right-hand side taken from the condition

    Returns:
        Whether the comparison holds; unknown comparators are False
    """
    if comparator == "exists":
        return (value is not None) == bool(operand)
    if comparator == "eq":
        return values_equal(value, operand)
    if comparator == "neq":
        return not values_equal(value, operand)
    if comparator in ("gt", "gte", "lt", "lte"):
        return _ordered(value, operand, comparator)
    if comparator == "in":
        return bool(_membership(value, operand))
    if comparator == "nin":
        member = _membership(value, operand)
        return member is False
    if comparator == "match":
        compiled = compile_pattern(operand)
        if compiled is None or not isinstance(value, str):
            return False
        return compiled.search(value) is not None
    if comparator == "value":
        return strictly_equal(value, operand)
    return False


class ConditionEvaluator:
    """Evaluates guard and test conditions against a document store."""

    def __init__(self, store: DocumentStore):
        """
        Initialize the evaluator.

        Params:
            store: Document the condition paths are resolved against
        """
        self.store = store

    def evaluate(self, condition: Condition | None) -> bool:
        """
        Evaluate a condition.

        Params:
            condition: Condition mapping; None or {} always holds

        Returns:
            True if the condition holds, False otherwise (including when it
            is malformed)
        """
        if not condition:
            return True
        if not isinstance(condition, dict):
            logger.debug("Condition is not a mapping: %r", condition)
            return False

        if "and" in condition:
            children = condition["and"]
            return isinstance(children, list) and all(self.evaluate(child) for child in children)
        if "or" in condition:
            children = condition["or"]
            return isinstance(children, list) and any(self.evaluate(child) for child in children)
        if "not" in condition:
            child = condition["not"]
            if not isinstance(child, dict):
                return False
            return not self.evaluate(child)

        return self._evaluate_leaf(condition)

    def _evaluate_leaf(self, leaf: Condition) -> bool:
        if "path" not in leaf:
            logger.debug("Condition leaf without path: %r", leaf)
            return False
        value = self.store.get(leaf["path"])
        comparators = [name for name in LEAF_COMPARATORS if name in leaf]
        if not comparators:
            return bool(value)
        return all(compare(value, name, leaf[name]) for name in comparators)
