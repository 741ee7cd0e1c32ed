"""OData v4 ``$batch`` support: multipart/mixed decoding and encoding.

Request framing understood by :func:`decode_batch`::

    --<outer>                                   first line of the body
    Content-Type: multipart/mixed;boundary=<inner>   optional change set
    ...
    --<inner>
    Content-Type: application/http
    <blank>
    <METHOD> <relative url> HTTP/1.1
    <headers>
    <blank>
    <body line>
    --<inner>--
    --<outer>--

Without a change set the outer parts carry the operations directly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from http import HTTPStatus

import structlog

from .errors import BatchFormatError
from .loader import LoadedService
from .response_builder import ODataResponse, basic_response, error_response
from .router import InterceptedRequest, guarded, handle_direct_request

LOGGER = structlog.get_logger("odata_mock_server")

CRLF = "\r\n"

_CHANGE_SET = re.compile(r"multipart/mixed;\s*boundary=([^\s;]+)")
# Method and URL on the request line; the last line before the part's final
# line break is the (possibly empty) body.
_OPERATION = re.compile(r"(GET|DELETE|PATCH|POST|PUT) (\S+)[\s\S]+\r?\n([^\r\n]*)\r?\n\Z")


@dataclass
class BatchOperation:
    method: str
    url: str
    body: str


@dataclass
class BatchRequest:
    outer_boundary: str
    inner_boundary: str | None = None
    operations: list[BatchOperation] = field(default_factory=list)


def outer_boundary(body: str) -> str:
    """The first line of the body, e.g. ``--batch_id-123``."""

    first_line = body.split("\n", 1)[0].rstrip("\r")
    if not first_line.startswith("--") or len(first_line) <= 2:
        raise BatchFormatError(f"Batch body does not start with a boundary line: {first_line!r}")
    return first_line


def parse_operation(part: str) -> BatchOperation:
    match = _OPERATION.search(part)
    if match is None:
        raise BatchFormatError(f"Could not find a request line in batch part: {part.strip()!r}")
    return BatchOperation(method=match.group(1), url=match.group(2), body=match.group(3))


def split_parts(body: str) -> tuple[str, str | None, list[str]]:
    """Split a batch body into its operation parts.

    Returns the outer boundary, the change-set boundary (or ``None``) and the
    raw text of each operation part in request order.
    """

    boundary = outer_boundary(body)
    outer_parts = body.split(boundary)[1:-1]
    if not outer_parts:
        raise BatchFormatError("Batch body contains no parts")

    match = _CHANGE_SET.search(outer_parts[0])
    if match is None:
        return boundary, None, outer_parts

    inner = match.group(1)
    return boundary, inner, outer_parts[0].split(f"--{inner}")[1:-1]


def decode_batch(body: str) -> BatchRequest:
    boundary, inner, parts = split_parts(body)
    return BatchRequest(
        outer_boundary=boundary,
        inner_boundary=inner,
        operations=[parse_operation(part) for part in parts],
    )


def encode_part(response: ODataResponse, part_boundary: str, content_id: str | None = None) -> str:
    """Frame one sub-response as an ``application/http`` part."""

    text = f"{part_boundary}{CRLF}Content-Type: application/http{CRLF}"
    if content_id is not None:
        text += f"Content-ID:{content_id}{CRLF}"
    text += f"{CRLF}HTTP/1.1 {response.status}{CRLF}"
    if response.headers and response.status != HTTPStatus.NO_CONTENT:
        for name, value in response.headers.items():
            text += f"{name}: {value}{CRLF}"
    text += CRLF
    if response.body:
        text += response.body
    return text + CRLF


def encode_batch(outer: str, inner: str | None, responses: list[ODataResponse]) -> str:
    """Encode sub-responses, in request order, into one multipart body."""

    body = ""
    if inner:
        part_boundary = f"--{inner}"
        body += f"{outer}{CRLF}Content-Type: multipart/mixed; boundary={inner}{CRLF}{CRLF}"
    else:
        part_boundary = outer

    for index, response in enumerate(responses):
        body += encode_part(response, part_boundary, f"{index}.0" if inner else None)

    if inner:
        body += f"--{inner}--{CRLF}"
    return body + f"{outer}--"


def _resolve_url(service: LoadedService, url: str) -> str:
    if re.match(r"^[a-z][a-z0-9+.-]*://", url, re.IGNORECASE):
        return url
    return service.base_url + url


def _process_batch(service: LoadedService, request: InterceptedRequest) -> ODataResponse:
    boundary, inner, parts = split_parts(request.body or "")

    responses = []
    for part in parts:
        try:
            operation = parse_operation(part)
        except BatchFormatError as exc:
            LOGGER.warning("batch_part_invalid", service=service.name, error=str(exc))
            responses.append(error_response(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc)))
            continue
        responses.append(
            handle_direct_request(
                service,
                InterceptedRequest(
                    method=operation.method,
                    url=_resolve_url(service, operation.url),
                    body=operation.body,
                ),
            )
        )

    return basic_response(
        HTTPStatus.OK,
        f"multipart/mixed;boundary={boundary[2:]}",
        encode_batch(boundary, inner, responses),
    )


def handle_batch_request(service: LoadedService, request: InterceptedRequest) -> ODataResponse:
    """Answer a ``$batch`` POST; each operation is dispatched like a direct request.

    A malformed operation part yields a 500 part in its position; a body
    without valid outer framing yields a single 500 response.
    """

    return guarded(_process_batch, service, request)
