"""Query option interpretation for entity-set GET requests.

Each function handles exactly one system query option with its own
narrow pattern. None of them mutate the record list they receive.

Supported grammar::

    $filter=<function>(<field>,'<substring>')     containment, case-sensitive
    $orderby=<field>[%20<asc|desc>]               single field
    $skip=<n>&$top=<n>                            both, in this order
    $expand=<navigation>[,<navigation>...]        one level
    $count                                        anywhere in the URL
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import unquote

from .errors import UnsupportedQueryError
from .loader import LoadedMock, LoadedService
from .store import find_entity

COUNT_ANNOTATION = "@odata.count"

_FIELD_NAME = re.compile(r"^\w+$")
_FILTER = re.compile(r"\$filter=[^&]*\(([^,&]*),'([^'&]*)'\)")
_ORDERBY = re.compile(r"\$orderby=(\w*)(?:(?:%20|\+| )(\w+))?")
_SKIP_TOP = re.compile(r"\$skip=(\d+)&\$top=(\d+)")
_EXPAND = re.compile(r"\$expand=([^&#]*)")
_COUNT = re.compile(r"\$count")


def _check_field(field_name: str, option: str) -> None:
    if not _FIELD_NAME.match(field_name):
        raise UnsupportedQueryError(f"{option} on field {field_name} are not supported.")


def apply_filter(url: str, entities: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep the records whose field contains the requested substring."""

    match = _FILTER.search(url)
    if match is None:
        return list(entities)

    field_name, query = match.group(1), unquote(match.group(2))
    _check_field(field_name, "Filters")
    return [
        entity
        for entity in entities
        if entity.get(field_name) is not None and query in str(entity[field_name])
    ]


def _sort_value(entity: dict[str, Any], field_name: str) -> str:
    value = entity.get(field_name)
    return "" if value is None else str(value).upper()


def apply_sort(url: str, entities: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order records by one field, comparing case-insensitively."""

    match = _ORDERBY.search(url)
    if match is None:
        return list(entities)

    field_name = match.group(1)
    descending = (match.group(2) or "asc").lower() == "desc"
    _check_field(field_name, "Sorting")
    return sorted(entities, key=lambda entity: _sort_value(entity, field_name), reverse=descending)


def apply_skip_top(url: str, entities: list[dict[str, Any]]) -> list[dict[str, Any]]:
    match = _SKIP_TOP.search(url)
    if match is None:
        return list(entities)
    skip, top = int(match.group(1)), int(match.group(2))
    return entities[skip : skip + top]


def wants_count(url: str) -> bool:
    return _COUNT.search(url) is not None


def requested_expansions(url: str) -> list[str]:
    match = _EXPAND.search(url)
    if match is None or not match.group(1):
        return []
    return [unquote(name).strip() for name in match.group(1).split(",") if name.strip()]


def expanded_field_decorations(
    url: str,
    mock: LoadedMock,
    service: LoadedService,
    entity: dict[str, Any],
) -> dict[str, Any]:
    """Resolve the requested navigation properties of ``entity``.

    Unknown navigation names and dangling foreign keys are skipped.
    """

    navigations = mock.definition.navigations
    decorations: dict[str, Any] = {}
    if not navigations:
        return decorations

    for name in requested_expansions(url):
        navigation = navigations.get(name)
        if navigation is None:
            continue
        target = service.entity_set(navigation.entity_set)
        if target is None:
            continue
        related = find_entity(target, entity.get(navigation.field))
        if related is not None:
            decorations[name] = related
    return decorations


def query_collection(url: str, entities: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], int]:
    """Apply filter, sort and paging; return the page and the filtered total."""

    result = apply_filter(url, entities)
    count = len(result)
    result = apply_sort(url, result)
    result = apply_skip_top(url, result)
    return result, count
