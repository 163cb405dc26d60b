"""JSON schema normalization for tool parameters."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

_DICT_CHILDREN = ("properties", "patternProperties", "$defs", "definitions")
_SCHEMA_CHILDREN = ("additionalProperties", "not", "contains", "propertyNames", "if", "then", "else")
_LIST_CHILDREN = ("anyOf", "oneOf", "allOf")


def _collapse_optional(node: dict[str, Any]) -> None:
    """Turn pydantic's ``Optional[X]`` rendering into plain ``X``."""
    kind = node.get("type")
    if isinstance(kind, list) and len(kind) == 2 and "null" in kind:
        node["type"] = next(item for item in kind if item != "null")
        if node.get("default") is None:
            node.pop("default", None)
        return

    branches = node.get("anyOf")
    if not isinstance(branches, list) or len(branches) != 2:
        return
    nulls = [b for b in branches if isinstance(b, dict) and b.get("type") == "null"]
    others = [b for b in branches if isinstance(b, dict) and b.get("type") != "null"]
    if len(nulls) != 1 or len(others) != 1:
        return
    node.pop("anyOf")
    if node.get("default") is None:
        node.pop("default", None)
    for key, value in others[0].items():
        if key != "title":
            node.setdefault(key, value)


def _walk(node: Any) -> None:
    if isinstance(node, list):
        for item in node:
            _walk(item)
        return
    if not isinstance(node, dict):
        return

    node.pop("title", None)
    _collapse_optional(node)
    if node.get("type") == "object" and isinstance(node.get("properties"), dict):
        node.setdefault("additionalProperties", False)

    for key in _DICT_CHILDREN:
        value = node.get(key)
        if isinstance(value, dict):
            for child in value.values():
                _walk(child)
    for key in _LIST_CHILDREN:
        value = node.get(key)
        if isinstance(value, list):
            _walk(value)
    for key in _SCHEMA_CHILDREN:
        value = node.get(key)
        if isinstance(value, dict):
            _walk(value)
    items = node.get("items")
    if isinstance(items, (dict, list)):
        _walk(items)


def strictify_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Copy ``schema`` with titles dropped, optionals collapsed and objects closed.

    Object schemas that declare ``properties`` get ``additionalProperties: false``
    unless they already say otherwise.
    """
    result = deepcopy(schema or {})
    _walk(result)
    return result
