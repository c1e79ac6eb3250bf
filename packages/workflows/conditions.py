from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .errors import ConditionError
from .schema import ConditionConfig, ConditionOperator
from .templating import lookup, render_value


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return render_value(expected) in actual
    if isinstance(actual, list):
        needle = render_value(expected)
        return any(render_value(item) == needle for item in actual)
    return False


def _member_of(actual: Any, expected: Any) -> bool:
    if isinstance(expected, str):
        options = [item.strip() for item in expected.split(",")]
    elif isinstance(expected, list):
        options = [render_value(item) for item in expected]
    else:
        return False
    return render_value(actual) in options


def _compare(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    left = _as_number(actual)
    right = _as_number(expected)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GT:
        return left > right
    if operator == ConditionOperator.GTE:
        return left >= right
    if operator == ConditionOperator.LT:
        return left < right
    return left <= right


def parse_condition(config: ConditionConfig | Mapping[str, Any]) -> ConditionConfig:
    if isinstance(config, ConditionConfig):
        return config
    try:
        return ConditionConfig.model_validate(dict(config))
    except ValidationError as exc:
        operator = config.get("operator")
        raise ConditionError(f"invalid condition (operator={operator!r})", details={"errors": exc.errors()}) from exc


def evaluate(condition: ConditionConfig | Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    parsed = parse_condition(condition)
    actual = lookup(context, parsed.field)
    expected = parsed.value
    operator = parsed.operator

    if operator == ConditionOperator.EQUALS:
        return render_value(actual) == render_value(expected)
    if operator == ConditionOperator.NOT_EQUALS:
        return render_value(actual) != render_value(expected)
    if operator == ConditionOperator.CONTAINS:
        return _contains(actual, expected)
    if operator == ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if operator in {ConditionOperator.GT, ConditionOperator.GTE, ConditionOperator.LT, ConditionOperator.LTE}:
        return _compare(actual, expected, operator)
    if operator == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if operator == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    if operator == ConditionOperator.STARTS_WITH:
        return actual is not None and render_value(actual).startswith(render_value(expected))
    if operator == ConditionOperator.ENDS_WITH:
        return actual is not None and render_value(actual).endswith(render_value(expected))
    if operator == ConditionOperator.IN:
        return _member_of(actual, expected)
    if operator == ConditionOperator.NOT_IN:
        return not _member_of(actual, expected)
    raise ConditionError(f"unsupported condition operator: {operator}")
