"""Exceptions raised by the OData mock server."""

from __future__ import annotations


class ODataMockError(Exception):
    """Base class for all mock server errors."""


class ConfigError(ODataMockError):
    """Raised when a service or mock declaration is invalid."""


class FixtureLoadError(ODataMockError):
    """Raised when a fixture resource cannot be fetched or parsed."""

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"Could not load fixture {locator}: {reason}")
        self.locator = locator


class UnsupportedQueryError(ODataMockError):
    """Raised for query options outside the supported OData subset."""


class KeyNotInUrlError(ODataMockError):
    """Raised when a URL does not address a single entity by key.

    Entity-set handlers catch this to fall back to collection handling.
    """


class MalformedBodyError(ODataMockError):
    """Raised when a request body carries no JSON object."""


class InvalidDecorationError(ODataMockError):
    """Raised when an entity or its decorations are not JSON objects."""


class BatchFormatError(ODataMockError):
    """Raised when a $batch body does not follow the multipart framing."""


class InterceptionError(ODataMockError):
    """Raised by the transport for requests no active service handles."""
