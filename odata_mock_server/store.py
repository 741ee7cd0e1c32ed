"""In-memory CRUD primitives for entity-set mocks.

Every mutation keeps the primary key unique within its mock's record list;
callers check :func:`is_unique` before inserting or re-keying a record.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from .errors import KeyNotInUrlError, MalformedBodyError
from .loader import LoadedMock

# Grammar: "(" ["'"] key ["'"] ")" [ "?" query ], anchored at the end of the URL.
_KEY_PATTERN = re.compile(r"\('?([^')]*)'?\)(?:\?.*|)$")
_BODY_PATTERN = re.compile(r"(\{.*\})", re.DOTALL)


def entity_key_from_url(url: str) -> str:
    """Return the key addressed by ``url``.

    Raises :class:`KeyNotInUrlError` when the URL names the whole collection.
    """

    match = _KEY_PATTERN.search(url)
    if match is None:
        raise KeyNotInUrlError(f"Could not find a key in {url}")
    return match.group(1)


def entity_data_from_body(body: str | None) -> dict[str, Any]:
    """Parse the first JSON object found in a request body."""

    match = _BODY_PATTERN.search(body or "")
    if match is None:
        raise MalformedBodyError(f"Could not find any entity data in {body}")
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as exc:
        raise MalformedBodyError(f"Invalid entity data in request body: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedBodyError(f"Could not find any entity data in {body}")
    return data


def keys_equal(left: Any, right: Any) -> bool:
    """Compare keys, treating a URL's string key as equal to a typed scalar key."""

    if left == right:
        return True
    if isinstance(left, bool) or isinstance(right, bool) or left is None or right is None:
        return False
    if isinstance(left, str) != isinstance(right, str):
        return str(left) == str(right)
    return False


def find_entity_index(mock: LoadedMock, key: Any) -> int:
    """Position of the record holding ``key``, or -1."""

    key_field = mock.definition.key
    for index, entity in enumerate(mock.entities):
        if keys_equal(entity.get(key_field), key):
            return index
    return -1


def find_entity(mock: LoadedMock, key: Any) -> dict[str, Any] | None:
    index = find_entity_index(mock, key)
    return mock.entities[index] if index >= 0 else None


def is_unique(mock: LoadedMock, key: Any) -> bool:
    return find_entity_index(mock, key) < 0


def insert_entity(mock: LoadedMock, entity: dict[str, Any]) -> dict[str, Any]:
    mock.entities.append(entity)
    return entity


def merge_entity(mock: LoadedMock, index: int, changes: Mapping[str, Any]) -> dict[str, Any]:
    """Overwrite the fields present in ``changes`` and run the mock's decorator."""

    entity = mock.entities[index]
    entity.update(changes)
    if mock.definition.decorator:
        mock.definition.decorator(entity)
    return entity


def delete_entity(mock: LoadedMock, key: Any) -> bool:
    """Remove the record holding ``key``; unknown keys are ignored.

    Returns whether a record was removed.
    """

    index = find_entity_index(mock, key)
    if index < 0:
        return False
    del mock.entities[index]
    return True
