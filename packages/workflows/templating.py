"""Variable resolution for step configs.

Templates reference the run context with ``{{ namespace.path }}`` tokens. A
path that does not resolve renders as an empty string, so authors can
reference optional data without guarding every step.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

TEMPLATE_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def _split_path(path: str) -> list[str]:
    normalized = _INDEX_PATTERN.sub(r".\1", path.strip())
    return [part.strip() for part in normalized.split(".") if part.strip()]


def lookup(context: Mapping[str, Any], path: str | None) -> Any:
    """Return the native value at a dotted path, or None when any segment is missing."""
    if not path:
        return None
    current: Any = context
    for part in _split_path(path):
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def resolve(template: Any, context: Mapping[str, Any]) -> Any:
    if not isinstance(template, str):
        return template
    return TEMPLATE_PATTERN.sub(lambda match: render_value(lookup(context, match.group(1))), template)


def resolve_config(value: Any, context: Mapping[str, Any]) -> Any:
    """Resolve every string leaf of a JSON-shaped config."""
    if isinstance(value, str):
        return resolve(value, context)
    if isinstance(value, list):
        return [resolve_config(item, context) for item in value]
    if isinstance(value, dict):
        return {key: resolve_config(item, context) for key, item in value.items()}
    return value


def extract_variables(template: str) -> list[str]:
    seen: list[str] = []
    for match in TEMPLATE_PATTERN.finditer(template):
        path = match.group(1).strip()
        if path and path not in seen:
            seen.append(path)
    return seen


def has_variables(template: str) -> bool:
    return TEMPLATE_PATTERN.search(template) is not None


def config_variables(value: Any) -> list[str]:
    found: list[str] = []
    if isinstance(value, str):
        found.extend(extract_variables(value))
    elif isinstance(value, list):
        for item in value:
            found.extend(config_variables(item))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(config_variables(item))
    return list(dict.fromkeys(found))
