"""Pure-logic condition evaluator for automation rules.

Evaluates single field comparisons against a fact map (the field values of
a device event or snapshot). No database imports, easy to unit test.

Every function here returns a bool and never raises on type mismatches:
anything that cannot be compared evaluates to False.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from iot_automations.schemas.automation import Condition, LogicOperator

logger = logging.getLogger(__name__)

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _strict_equals(actual: Any, expected: Any) -> bool:
    """Type-sensitive equality: ``1 == 1.0`` but ``1 != "1"`` and ``1 != True``."""
    if actual is _MISSING:
        return False
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    return actual == expected


def _needle_text(expected: Any) -> str:
    """Text form of a substring needle: ``True`` reads "true", ``None`` "null", ``3.0`` "3"."""
    if isinstance(expected, bool):
        return "true" if expected else "false"
    if expected is None:
        return "null"
    if isinstance(expected, float) and expected.is_integer():
        return str(int(expected))
    return str(expected)


def _contains(actual: Any, expected: Any) -> bool | None:
    """Substring/membership test; None when ``actual`` is not searchable.

    Substring needles are compared as text, so ``"room 12"`` contains ``12``.
    List membership stays type-sensitive.
    """
    if isinstance(actual, str):
        return _needle_text(expected) in actual
    if isinstance(actual, list | tuple):
        return any(_strict_equals(item, expected) for item in actual)
    return None


def _compare_numeric(actual: Any, operator: str, expected: Any) -> bool:
    if not _is_number(actual) or not _is_number(expected):
        return False
    if operator == "greater_than":
        return actual > expected
    if operator == "less_than":
        return actual < expected
    if operator == "greater_than_or_equal":
        return actual >= expected
    if operator == "less_than_or_equal":
        return actual <= expected
    return False


def evaluate_condition(condition: Condition, facts: Mapping[str, Any]) -> bool:
    """Evaluate one condition against ``facts``.

    Returns False for unknown operators (fail-closed).
    """
    actual = facts.get(condition.field, _MISSING) if isinstance(facts, Mapping) else _MISSING
    operator = condition.operator
    expected = condition.value

    if operator == "equals":
        return _strict_equals(actual, expected)

    if operator == "not_equals":
        return not _strict_equals(actual, expected)

    if operator in ("greater_than", "less_than", "greater_than_or_equal", "less_than_or_equal"):
        return _compare_numeric(actual, operator, expected)

    if operator == "contains":
        return _contains(actual, expected) is True

    if operator == "not_contains":
        found = _contains(actual, expected)
        return True if found is None else not found

    logger.warning("Unknown automation condition operator: %s", operator)
    return False


def evaluate_conditions(
    conditions: Iterable[Condition],
    facts: Mapping[str, Any],
    logic: LogicOperator = LogicOperator.and_,
) -> bool:
    """Combine condition results with AND/OR.

    AND over an empty list is True, OR over an empty list is False.
    """
    results = [evaluate_condition(condition, facts) for condition in conditions]
    if logic == LogicOperator.or_:
        return any(results)
    return all(results)
