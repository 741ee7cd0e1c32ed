"""Interception layer answering httpx traffic for the configured OData services."""

from __future__ import annotations

import asyncio
import time
from http import HTTPStatus
from urllib.parse import unquote, unquote_plus

import httpx
import structlog

from .batch import handle_batch_request
from .errors import InterceptionError
from .loader import FileFixtureReader, FixtureReader, LoadedService, load_services
from .models import MockServerConfig
from .response_builder import ODataResponse, error_response
from .router import InterceptedRequest, handle_direct_request

LOGGER = structlog.get_logger("odata_mock_server")


# Characters that delimit query options; kept escaped inside option values.
_QUERY_DELIMITERS = {"%": "%25", "&": "%26", "#": "%23"}


def normalize_url(url: str) -> str:
    """Percent-decode an intercepted URL for pattern matching.

    The path is decoded as a whole. Query options are decoded one at a time,
    and delimiter characters inside a value stay escaped so a value like
    ``'x&y'`` cannot split its option in two.
    """

    path, separator, query_string = url.partition("?")
    if not separator:
        return unquote(path)
    options = []
    for option in query_string.split("&"):
        name, equals, value = option.partition("=")
        value = "".join(_QUERY_DELIMITERS.get(char, char) for char in unquote_plus(value))
        options.append(f"{unquote_plus(name)}{equals}{value}")
    return f"{unquote(path)}?{'&'.join(options)}"


def is_batch_request(request: InterceptedRequest) -> bool:
    return request.method.upper() == "POST" and request.url.split("?", 1)[0].endswith("$batch")


def dispatch(service: LoadedService, request: InterceptedRequest) -> ODataResponse:
    if is_batch_request(request):
        return handle_batch_request(service, request)
    return handle_direct_request(service, request)


class ODataMockServer:
    """Loads fixtures for all configured services and answers their requests.

    Usage::

        server = ODataMockServer(config)
        await server.start()
        client = httpx.Client(transport=server.transport())
        ...
        server.stop()

    Requests whose URL matches no service are forwarded to ``passthrough``
    (or ``async_passthrough``) when given, otherwise rejected with
    :class:`InterceptionError`.
    """

    def __init__(
        self,
        config: MockServerConfig,
        reader: FixtureReader | None = None,
        passthrough: httpx.BaseTransport | None = None,
        async_passthrough: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._reader = reader or FileFixtureReader(config.fixtures_root)
        self._passthrough = passthrough
        self._async_passthrough = async_passthrough
        self._services: list[LoadedService] = []
        self._active = False
        self._logger = LOGGER.bind(services=[service.name for service in config.services])

    @property
    def active(self) -> bool:
        return self._active

    @property
    def services(self) -> list[LoadedService]:
        return list(self._services)

    @property
    def delay_seconds(self) -> float:
        return self._config.response_delay_ms / 1000

    async def start(self) -> None:
        """Load every fixture, then begin intercepting.

        Any fixture failure propagates and leaves the server inactive.
        """

        self._logger.info("interception_starting")
        self._services = await load_services(self._config.services, self._reader)
        self._active = True
        self._logger.info(
            "interception_started",
            delay_ms=self._config.response_delay_ms,
            entity_sets=sorted(name for service in self._services for name in service.entity_sets),
        )

    def stop(self) -> None:
        """Stop intercepting and discard all in-memory entity data."""

        self._logger.info("interception_stopping", active=self._active)
        self._active = False
        self._services = []
        self._logger.info("interception_stopped")

    def find_service(self, url: str) -> LoadedService | None:
        if not self._active:
            return None
        for service in self._services:
            if service.config.matches(url):
                return service
        return None

    def handle(self, service: LoadedService, request: InterceptedRequest) -> ODataResponse:
        """Answer one intercepted request, logging the exchange."""

        request_logger = self._logger.bind(service=service.name)
        request_logger.info(
            "request_received",
            method=request.method,
            url=request.url,
            request_body=request.body or "",
        )
        response = dispatch(service, request)
        request_logger.info(
            "response_sent",
            method=request.method,
            url=request.url,
            status=response.status,
            headers=response.headers,
            response_body=response.body,
        )
        return response

    def _answer(self, service: LoadedService, request: httpx.Request, url: str) -> ODataResponse:
        try:
            body = request.content.decode("utf-8") if request.content else None
        except UnicodeDecodeError as exc:
            self._logger.exception("request_failed", service=service.name, method=request.method, url=url)
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
        return self.handle(service, InterceptedRequest(method=request.method, url=url, body=body))

    @staticmethod
    def _to_httpx(response: ODataResponse, request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            response.status,
            headers=response.headers,
            content=response.body.encode("utf-8"),
            request=request,
        )

    def _unhandled(self, request: httpx.Request) -> InterceptionError:
        self._logger.warning("request_not_intercepted", method=request.method, url=str(request.url))
        return InterceptionError(f"No active mock service for {request.method} {request.url}")

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        url = normalize_url(str(request.url))
        service = self.find_service(url)
        if service is None:
            if self._passthrough is not None:
                return self._passthrough.handle_request(request)
            raise self._unhandled(request)
        response = self._answer(service, request, url)
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        return self._to_httpx(response, request)

    async def handle_request_async(self, request: httpx.Request) -> httpx.Response:
        url = normalize_url(str(request.url))
        service = self.find_service(url)
        if service is None:
            if self._async_passthrough is not None:
                return await self._async_passthrough.handle_async_request(request)
            raise self._unhandled(request)
        response = self._answer(service, request, url)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        return self._to_httpx(response, request)

    def transport(self) -> httpx.MockTransport:
        """Create an httpx transport answering requests for ``httpx.Client``."""

        return httpx.MockTransport(self.handle_request)

    def async_transport(self) -> httpx.MockTransport:
        """Create an httpx transport answering requests for ``httpx.AsyncClient``."""

        return httpx.MockTransport(self.handle_request_async)

    async def __aenter__(self) -> "ODataMockServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()
