"""Template resolution for node configuration values.

``{{path}}`` and ``${path}`` references are looked up by dot path in a
scope built from the node's inputs and the run's shared variables. A value
that is exactly one reference resolves to the referenced object itself;
references embedded in longer strings are rendered as text. Unresolved
references are left untouched.
"""

import json
import re
from typing import Any, Dict, Optional

_MISSING = object()

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}|\$\{([^}]+)\}")
WHOLE_TEMPLATE_PATTERN = re.compile(r"^\s*(?:\{\{([^}]+)\}\}|\$\{([^}]+)\})\s*$")


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    """
    Look up a dot-separated path in nested dicts and lists.

    Numeric segments index into lists. Returns ``default`` when any segment
    is missing.
    """
    current = obj
    for part in path.strip().split('.'):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.lstrip('-').isdigit():
            index = int(part)
            if -len(current) <= index < len(current):
                current = current[index]
            else:
                return default
        else:
            return default
    return current


def set_path(obj: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Set a dot-separated path, creating intermediate dicts as needed."""
    parts = path.strip().split('.')
    current = obj
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value
    return obj


def build_scope(inputs: Any, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Lookup scope: input keys overlaid by shared variables."""
    scope: Dict[str, Any] = {}
    if isinstance(inputs, dict):
        scope.update(inputs)
    if variables:
        scope.update(variables)
    return scope


def build_extended_scope(inputs: Any, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Scope used by logger messages.

    Besides the plain scope it exposes the whole input as ``data`` and
    lifts the keys of ``inputs["data"]``, ``inputs["value"]`` and
    ``inputs["inputs"]["data"]`` to the top level, so messages can name
    fields of an upstream redisGet or condition result directly.
    """
    scope = build_scope(inputs, variables)
    scope["data"] = inputs
    if isinstance(inputs, dict):
        for nested in (
            inputs.get("data"),
            inputs.get("value"),
            get_path(inputs, "inputs.data"),
        ):
            if isinstance(nested, dict):
                scope.update(nested)
    return scope


def stringify(value: Any) -> str:
    """Render a resolved value inside a larger string."""
    if isinstance(value, (dict, list, bool)) or value is None:
        return json.dumps(value, default=str)
    return str(value)


def _reference(match: "re.Match") -> str:
    return (match.group(1) or match.group(2)).strip()


def render(template: str, scope: Dict[str, Any]) -> str:
    """Substitute every reference in ``template`` with its rendered value."""
    def substitute(match):
        value = get_path(scope, _reference(match), _MISSING)
        if value is _MISSING:
            return match.group(0)
        return stringify(value)

    return TEMPLATE_PATTERN.sub(substitute, template)


def resolve(value: Any, scope: Dict[str, Any]) -> Any:
    """
    Resolve templates in ``value``.

    Strings that consist of a single reference keep the referenced value's
    type. Dicts and lists are resolved recursively.
    """
    if isinstance(value, str):
        whole = WHOLE_TEMPLATE_PATTERN.match(value)
        if whole:
            resolved = get_path(scope, _reference(whole), _MISSING)
            return value if resolved is _MISSING else resolved
        return render(value, scope)
    if isinstance(value, dict):
        return {key: resolve(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve(item, scope) for item in value]
    return value


def resolve_string(value: Any, scope: Dict[str, Any]) -> Any:
    """Render templates in a string, leaving non-strings alone."""
    if isinstance(value, str):
        return render(value, scope)
    return value


def has_template(value: Any) -> bool:
    """Whether ``value`` is a string containing a template reference."""
    return isinstance(value, str) and TEMPLATE_PATTERN.search(value) is not None
