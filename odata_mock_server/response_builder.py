"""Builders for OData JSON envelopes and raw response tuples."""

from __future__ import annotations

import json
import mimetypes
from http import HTTPStatus
from typing import Any, Mapping, NamedTuple

from .errors import InvalidDecorationError

ODATA_VERSION = "4.0"
JSON_CONTENT_TYPE = "application/json; odata.metadata=minimal"
SIMPLE_CONTENT_TYPES = {
    "xml": "application/xml",
    "json": "application/json",
}


class ODataResponse(NamedTuple):
    """Status, headers and body of one synthesized response."""

    status: int
    headers: dict[str, str]
    body: str = ""


def to_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def basic_response(status: int, content_type: str | None = None, body: str = "") -> ODataResponse:
    headers = {"OData-Version": ODATA_VERSION}
    if content_type:
        headers["Content-Type"] = content_type
    return ODataResponse(int(status), headers, body)


def json_response(payload: Any, status: int = HTTPStatus.OK) -> ODataResponse:
    """Serialize ``payload`` (unless it is already JSON text) as a minimal-metadata response."""

    body = payload if isinstance(payload, str) else to_json(payload)
    return basic_response(status, JSON_CONTENT_TYPE, body)


def _as_object(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise InvalidDecorationError("Invalid decoration") from exc
    if not isinstance(value, Mapping):
        raise InvalidDecorationError("Invalid decoration")
    return dict(value)


def decorate(entity: Any, decorations: Any) -> dict[str, Any]:
    """Merge ``decorations`` in front of the entity's own properties.

    Both arguments may be mappings or JSON object text. The stored entity is
    never modified; on a name clash the entity's value wins.
    """

    entity_object = _as_object(entity)
    merged = _as_object(decorations)
    merged.update(entity_object)
    return merged


def json_response_decorated(entity: Any, decorations: Any, status: int = HTTPStatus.OK) -> ODataResponse:
    return json_response(decorate(entity, decorations), status)


def base_decorations(base_url: str, entity_set: str, key: str) -> dict[str, Any]:
    """The ``@odata.context`` annotation every entity-set payload starts with."""

    return {"@odata.context": f"{base_url}$metadata#{entity_set}({key})/$entity"}


def error_response(status: int, message: str, target: str | None = None) -> ODataResponse:
    """Build the canonical OData error envelope for ``status``."""

    error_message: dict[str, str] = {"lang": "en-US", "value": message}
    if target:
        error_message["target"] = target
    return json_response({"error": {"code": str(int(status)), "message": error_message}}, int(status))


def invalid_key_error(entity_set: str, key_field: str, key: Any) -> ODataResponse:
    return error_response(
        HTTPStatus.NOT_FOUND,
        f"Cannot find {entity_set} with {key_field} '{key}'",
        key_field,
    )


def duplicate_key_error(entity_set: str, key_field: str, key: Any) -> ODataResponse:
    return error_response(
        HTTPStatus.BAD_REQUEST,
        f"There is already a(n) {entity_set} with {key_field} '{key}'.",
        key_field,
    )


def missing_key_error(entity_set: str, key_field: str) -> ODataResponse:
    return error_response(
        HTTPStatus.BAD_REQUEST,
        f"A(n) {entity_set} needs a value for {key_field}.",
        key_field,
    )


def simple_content_type(resource: str) -> str:
    extension = resource.rsplit(".", 1)[-1].lower() if "." in resource else ""
    if extension in SIMPLE_CONTENT_TYPES:
        return SIMPLE_CONTENT_TYPES[extension]
    guessed, _ = mimetypes.guess_type(resource)
    return guessed or "text/plain"


def simple_response(resource: str, body: str) -> ODataResponse:
    return basic_response(HTTPStatus.OK, simple_content_type(resource), body)


def count_response(count: int) -> ODataResponse:
    return basic_response(HTTPStatus.OK, "text/plain", str(count))


def no_content_response() -> ODataResponse:
    return basic_response(HTTPStatus.NO_CONTENT)


def coerce_response(result: Any) -> ODataResponse:
    """Accept a handler's ``(status, headers, body)`` tuple or wrap a value as 200 JSON."""

    if isinstance(result, ODataResponse):
        return result
    if isinstance(result, tuple) and len(result) == 3 and isinstance(result[0], int):
        status, headers, body = result
        if body is not None and not isinstance(body, str):
            body = to_json(body)
        return ODataResponse(int(status), dict(headers or {}), body or "")
    return json_response(result)
