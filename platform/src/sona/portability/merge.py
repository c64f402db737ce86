"""Structural merge of JSON documents.

Payloads are lifted into a small tagged variant (object, array, scalar) so
every pairing of kinds is handled by one explicit branch of ``merge``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

Scalar = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class JsonScalar:
    value: Scalar


@dataclass(frozen=True)
class JsonArray:
    items: tuple[JsonValue, ...]


@dataclass(frozen=True)
class JsonObject:
    fields: tuple[tuple[str, JsonValue], ...]

    def as_dict(self) -> dict[str, JsonValue]:
        return dict(self.fields)


JsonValue = Union[JsonObject, JsonArray, JsonScalar]


def from_python(value: Any) -> JsonValue:
    if isinstance(value, dict):
        return JsonObject(tuple((str(k), from_python(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return JsonArray(tuple(from_python(v) for v in value))
    if value is None or isinstance(value, (str, int, float, bool)):
        return JsonScalar(value)
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def to_python(node: JsonValue) -> Any:
    if isinstance(node, JsonObject):
        return {key: to_python(value) for key, value in node.fields}
    if isinstance(node, JsonArray):
        return [to_python(item) for item in node.items]
    return node.value


def _identity(node: JsonValue) -> str:
    """Canonical text of a node; equal JSON values share one identity."""
    return json.dumps(to_python(node), sort_keys=True, ensure_ascii=False)


def merge(target: JsonValue, source: JsonValue) -> JsonValue:
    """Merge ``source`` into ``target``.

    object + object  recurse key by key, target key order first
    array + array    union without duplicates, target order then new source items
    anything else    source wins
    """
    if isinstance(target, JsonObject) and isinstance(source, JsonObject):
        merged = target.as_dict()
        for key, value in source.fields:
            merged[key] = merge(merged[key], value) if key in merged else value
        return JsonObject(tuple(merged.items()))

    if isinstance(target, JsonArray) and isinstance(source, JsonArray):
        seen: set[str] = set()
        items = []
        for item in target.items + source.items:
            identity = _identity(item)
            if identity not in seen:
                seen.add(identity)
                items.append(item)
        return JsonArray(tuple(items))

    return source


def deep_merge(target: Any, source: Any) -> Any:
    return to_python(merge(from_python(target), from_python(source)))


def merge_synonyms(
    existing: dict[str, list[str]], incoming: dict[str, list[str]]
) -> dict[str, list[str]]:
    """Per word, de-duplicated union in first-seen order; one-sided words pass through."""
    result = dict(existing)
    for word, synonyms in incoming.items():
        if word in result:
            result[word] = list(dict.fromkeys([*result[word], *synonyms]))
        else:
            result[word] = synonyms
    return result
