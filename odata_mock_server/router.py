"""Dispatch of direct (non-batch) requests to the matching mock."""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable

import structlog

from . import query, store
from .errors import KeyNotInUrlError
from .loader import LoadedMock, LoadedService
from .models import EntitySetMock
from .response_builder import (
    ODataResponse,
    base_decorations,
    coerce_response,
    count_response,
    duplicate_key_error,
    error_response,
    invalid_key_error,
    json_response,
    json_response_decorated,
    missing_key_error,
    no_content_response,
    simple_response,
)

LOGGER = structlog.get_logger("odata_mock_server")


@dataclass
class InterceptedRequest:
    method: str
    url: str
    body: str | None = None


def _context(service: LoadedService, mock: LoadedMock) -> dict[str, Any]:
    definition: EntitySetMock = mock.definition  # type: ignore[assignment]
    return base_decorations(service.base_url, definition.entity_set, definition.key)


def handle_simple_request(mock: LoadedMock) -> ODataResponse:
    return simple_response(mock.definition.resource, mock.response_text or "")


def handle_function_request(mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    payload = store.entity_data_from_body(request.body) if (request.body or "").strip() else None
    return coerce_response(mock.definition.handler(payload))


def handle_count_request(mock: LoadedMock) -> ODataResponse:
    return count_response(len(mock.entities))


def handle_entity_request(service: LoadedService, mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    """GET one entity by key, or a filtered/sorted/paged view of the collection."""

    definition: EntitySetMock = mock.definition  # type: ignore[assignment]
    decorations = _context(service, mock)
    try:
        key = store.entity_key_from_url(request.url)
    except KeyNotInUrlError:
        page, count = query.query_collection(request.url, mock.entities)
        if query.wants_count(request.url):
            decorations[query.COUNT_ANNOTATION] = count
        values = [
            {**query.expanded_field_decorations(request.url, mock, service, entity), **entity}
            for entity in page
        ]
        return json_response({**decorations, "value": values})

    entity = store.find_entity(mock, key)
    if entity is None:
        return invalid_key_error(definition.entity_set, definition.key, key)
    decorations.update(query.expanded_field_decorations(request.url, mock, service, entity))
    return json_response_decorated(entity, decorations)


def handle_post_request(service: LoadedService, mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    """Create an entity; a missing key is generated when the mock declares a generator."""

    definition: EntitySetMock = mock.definition  # type: ignore[assignment]
    entity = store.entity_data_from_body(request.body)
    if definition.key not in entity and definition.key_generator:
        entity[definition.key] = definition.key_generator()

    key = entity.get(definition.key)
    if key is None:
        return missing_key_error(definition.entity_set, definition.key)
    if not store.is_unique(mock, key):
        return duplicate_key_error(definition.entity_set, definition.key, key)

    if definition.decorator:
        definition.decorator(entity)
    store.insert_entity(mock, entity)
    return json_response_decorated(entity, _context(service, mock), HTTPStatus.CREATED)


def handle_patch_request(mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    """Merge the body's fields into an existing entity.

    Changing the key to its current value is allowed; changing it to a key
    held by another record is rejected without touching the collection.
    """

    definition: EntitySetMock = mock.definition  # type: ignore[assignment]
    key = store.entity_key_from_url(request.url)
    changes = store.entity_data_from_body(request.body)

    index = store.find_entity_index(mock, key)
    if index < 0:
        return invalid_key_error(definition.entity_set, definition.key, key)

    if definition.key in changes:
        new_key = changes[definition.key]
        if not store.keys_equal(new_key, key) and not store.is_unique(mock, new_key):
            return duplicate_key_error(definition.entity_set, definition.key, new_key)

    store.merge_entity(mock, index, changes)
    return no_content_response()


def handle_delete_request(mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    store.delete_entity(mock, store.entity_key_from_url(request.url))
    return no_content_response()


def _handle_entity_set(service: LoadedService, mock: LoadedMock, request: InterceptedRequest) -> ODataResponse:
    method = request.method.upper()
    if method == "GET":
        if "/$count" in request.url:
            return handle_count_request(mock)
        return handle_entity_request(service, mock, request)
    if method == "PATCH":
        return handle_patch_request(mock, request)
    if method == "POST":
        return handle_post_request(service, mock, request)
    if method == "DELETE":
        return handle_delete_request(mock, request)
    return error_response(HTTPStatus.METHOD_NOT_ALLOWED, "Invalid method")


def _dispatch(service: LoadedService, request: InterceptedRequest) -> ODataResponse:
    for mock in service.mocks:
        if not mock.definition.url.search(request.url):
            continue
        if mock.kind == "simple":
            return handle_simple_request(mock)
        if mock.kind == "function":
            return handle_function_request(mock, request)
        if mock.kind == "entity_set":
            return _handle_entity_set(service, mock, request)
        raise ValueError(f"Invalid mock type: {mock.kind}")
    return error_response(HTTPStatus.NOT_FOUND, f"Service not found: {request.url}")


def guarded(
    handler: Callable[[LoadedService, InterceptedRequest], ODataResponse],
    service: LoadedService,
    request: InterceptedRequest,
) -> ODataResponse:
    """Run ``handler``, converting any exception into a 500 error response."""

    try:
        return handler(service, request)
    except Exception as exc:
        LOGGER.exception(
            "request_failed",
            service=service.name,
            method=request.method,
            url=request.url,
        )
        return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))


def handle_direct_request(service: LoadedService, request: InterceptedRequest) -> ODataResponse:
    """Answer one request with the first mock whose URL pattern matches.

    Never raises: failures come back as OData error responses.
    """

    return guarded(_dispatch, service, request)
