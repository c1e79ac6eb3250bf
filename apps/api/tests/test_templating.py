from __future__ import annotations

from packages.workflows.templating import (
    config_variables,
    extract_variables,
    has_variables,
    lookup,
    render_value,
    resolve,
    resolve_config,
)

CONTEXT = {
    "task": {"title": "Ship release", "assignee": {"name": "Ada"}, "done": True, "estimate": 3},
    "contact": {"emails": ["a@example.com", "b@example.com"]},
    "trigger": {"data": {"payload": {"items": [{"sku": "X-1"}]}}},
    "empty": None,
}


def test_lookup_walks_nested_paths_and_indexes() -> None:
    assert lookup(CONTEXT, "task.assignee.name") == "Ada"
    assert lookup(CONTEXT, "contact.emails[1]") == "b@example.com"
    assert lookup(CONTEXT, "contact.emails.0") == "a@example.com"
    assert lookup(CONTEXT, "trigger.data.payload.items[0].sku") == "X-1"


def test_lookup_returns_none_for_missing_segments() -> None:
    assert lookup(CONTEXT, "task.missing") is None
    assert lookup(CONTEXT, "contact.emails[5]") is None
    assert lookup(CONTEXT, "task.title.deeper") is None
    assert lookup(CONTEXT, "") is None


def test_render_value_formats_native_types() -> None:
    assert render_value(None) == ""
    assert render_value(True) == "true"
    assert render_value(False) == "false"
    assert render_value(3) == "3"
    assert render_value({"a": 1}) == '{"a": 1}'
    assert render_value(["x", "y"]) == '["x", "y"]'


def test_render_value_drops_fraction_from_whole_floats() -> None:
    assert render_value(5.0) == "5"
    assert render_value(-2.0) == "-2"
    assert render_value(2.5) == "2.5"
    assert resolve("points={{points}}", {"points": 8.0}) == "points=8"


def test_resolve_substitutes_tokens_and_blanks_missing_values() -> None:
    rendered = resolve("{{ task.title }} for {{task.assignee.name}}{{task.nope}}!", CONTEXT)
    assert rendered == "Ship release for Ada!"
    assert resolve("done={{task.done}} est={{task.estimate}} none={{empty}}", CONTEXT) == "done=true est=3 none="


def test_resolve_leaves_non_strings_and_plain_text_untouched() -> None:
    assert resolve(42, CONTEXT) == 42
    assert resolve("no variables here", CONTEXT) == "no variables here"
    assert resolve("{ single braces }", CONTEXT) == "{ single braces }"


def test_resolve_config_walks_nested_structures() -> None:
    config = {
        "title": "Follow up {{task.title}}",
        "tags": ["{{task.assignee.name}}", "static"],
        "nested": {"count": 2, "label": "{{contact.emails[0]}}"},
    }
    assert resolve_config(config, CONTEXT) == {
        "title": "Follow up Ship release",
        "tags": ["Ada", "static"],
        "nested": {"count": 2, "label": "a@example.com"},
    }


def test_resolving_twice_gives_identical_output() -> None:
    template = "{{task.title}} / {{task.assignee}} / {{contact.emails}} / {{task.missing}}"
    first = resolve(template, CONTEXT)
    assert resolve(template, CONTEXT) == first
    assert resolve_config({"a": [template]}, CONTEXT) == resolve_config({"a": [template]}, CONTEXT)


def test_variable_extraction_deduplicates_in_order() -> None:
    assert extract_variables("{{a.b}} {{ c }} {{a.b}}") == ["a.b", "c"]
    assert has_variables("hello {{name}}")
    assert not has_variables("hello")
    assert config_variables({"x": "{{task.title}}", "y": ["{{contact.email}}", "{{task.title}}"]}) == [
        "task.title",
        "contact.email",
    ]
