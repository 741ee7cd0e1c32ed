"""In-process OData v4 mock server for httpx clients."""

from .config import load_config
from .errors import (
    BatchFormatError,
    ConfigError,
    FixtureLoadError,
    InterceptionError,
    ODataMockError,
    UnsupportedQueryError,
)
from .logging_utils import configure_logging
from .models import EntitySetMock, FunctionMock, LoggingConfig, MockServerConfig, Navigation, ServiceConfig, SimpleMock
from .response_builder import ODataResponse
from .router import InterceptedRequest
from .server import ODataMockServer

__all__ = [
    "BatchFormatError",
    "ConfigError",
    "EntitySetMock",
    "FixtureLoadError",
    "FunctionMock",
    "InterceptedRequest",
    "InterceptionError",
    "LoggingConfig",
    "MockServerConfig",
    "Navigation",
    "ODataMockError",
    "ODataMockServer",
    "ODataResponse",
    "ServiceConfig",
    "SimpleMock",
    "UnsupportedQueryError",
    "configure_logging",
    "load_config",
]
