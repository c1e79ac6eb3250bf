from __future__ import annotations

import pytest

from packages.workflows.conditions import evaluate
from packages.workflows.errors import ConditionError

CONTEXT = {
    "task": {"status": "Done", "priority": "high", "estimate": "8", "tags": ["urgent", "billing"], "notes": ""},
    "deal": {"amount": 1500, "stage": "closed_won", "owner": None, "meta": {}},
    "flags": {"approved": True},
}


def _check(field: str, operator: str, value=None) -> bool:
    return evaluate({"field": field, "operator": operator, "value": value}, CONTEXT)


def test_equals_compares_rendered_strings() -> None:
    assert _check("task.status", "equals", "Done")
    assert not _check("task.status", "equals", "done")
    assert _check("deal.amount", "equals", "1500")
    assert _check("flags.approved", "equals", "true")
    assert _check("task.status", "not_equals", "todo")
    assert _check("task.missing", "equals", "")


def test_contains_handles_strings_and_lists() -> None:
    assert _check("deal.stage", "contains", "won")
    assert _check("task.tags", "contains", "urgent")
    assert not _check("task.tags", "contains", "urg")
    assert _check("task.tags", "not_contains", "legal")
    assert not _check("deal.amount", "contains", "15")


def test_numeric_operators_coerce_and_reject_non_numbers() -> None:
    assert _check("deal.amount", "gt", 1000)
    assert _check("deal.amount", "gte", "1500")
    assert _check("task.estimate", "lt", 10)
    assert _check("task.estimate", "lte", 8)
    assert not _check("task.status", "gt", 1)
    assert not _check("deal.owner", "lt", 5)


def test_emptiness_checks() -> None:
    assert _check("deal.owner", "is_empty")
    assert _check("task.notes", "is_empty")
    assert _check("deal.meta", "is_empty")
    assert _check("task.missing", "is_empty")
    assert _check("task.tags", "is_not_empty")
    assert not _check("deal.amount", "is_empty")


def test_prefix_suffix_and_membership() -> None:
    assert _check("deal.stage", "starts_with", "closed")
    assert _check("deal.stage", "ends_with", "_won")
    assert not _check("deal.owner", "starts_with", "")
    assert _check("task.priority", "in", "low, high")
    assert _check("task.priority", "in", ["high", "critical"])
    assert _check("task.priority", "not_in", ["low"])


def test_unknown_operator_raises_condition_error() -> None:
    with pytest.raises(ConditionError):
        evaluate({"field": "task.status", "operator": "matches", "value": "x"}, CONTEXT)


def test_missing_field_raises_condition_error() -> None:
    with pytest.raises(ConditionError):
        evaluate({"operator": "equals", "value": "x"}, CONTEXT)


def test_equals_keeps_loose_string_coercion() -> None:
    context = {"stock": {"count": 0, "label": "0"}}
    assert evaluate({"field": "stock.count", "operator": "equals", "value": "0"}, context)
    assert not evaluate({"field": "stock.label", "operator": "equals", "value": False}, context)


def test_equals_treats_whole_floats_like_integers() -> None:
    context = {"deal": {"points": 5.0}}
    assert evaluate({"field": "deal.points", "operator": "equals", "value": "5"}, context)
    assert evaluate({"field": "deal.points", "operator": "in", "value": [5, 8]}, context)
