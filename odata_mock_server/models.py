"""Pydantic models describing the services and mocks to intercept."""

from __future__ import annotations

import importlib
import re
from pathlib import Path
from re import Pattern
from typing import Annotated, Any, Callable, Literal, TypeVar, Union

from pydantic import BaseModel, BeforeValidator, Field, ValidationInfo, field_validator, model_validator

from .errors import ConfigError


def import_hook(reference: Any) -> Any:
    """Resolve a ``"package.module:function"`` reference to the callable it names.

    Callables (and ``None``) are returned unchanged so declarations built in
    Python and declarations loaded from YAML share one validation path.
    """

    if reference is None or callable(reference):
        return reference
    if not isinstance(reference, str) or ":" not in reference:
        raise ConfigError(f"Hook reference {reference!r} must use module:function format")
    module_name, function_name = reference.split(":", 1)
    module = importlib.import_module(module_name)
    func = getattr(module, function_name, None)
    if func is None:
        raise ConfigError(f"Hook function {function_name} not found in {module_name}")
    return func


T = TypeVar("T")

# Callable field that also accepts a "module:function" reference.
Hook = Annotated[T, BeforeValidator(import_hook)]


class Navigation(BaseModel):
    """Navigation property resolved on ``$expand`` through a foreign key."""

    entity_set: str
    field: str


class SimpleMock(BaseModel):
    """Static document (e.g. ``$metadata``) returned verbatim."""

    kind: Literal["simple"] = "simple"
    url: Pattern[str]
    resource: str
    response_text: str | None = None


class FunctionMock(BaseModel):
    """Function import answered by a Python callable.

    The handler receives the parsed JSON request body (``None`` when the body
    is empty) and returns either a complete ``(status, headers, body)`` tuple
    or any JSON-serializable value, which is sent as a 200 response.
    """

    kind: Literal["function"] = "function"
    url: Pattern[str]
    handler: Hook[Callable[..., Any]]


class EntitySetMock(BaseModel):
    """Entity collection addressable by primary key."""

    kind: Literal["entity_set"] = "entity_set"
    url: Pattern[str]
    entity_set: str
    key: str
    resource: str | None = None
    navigations: dict[str, Navigation] = Field(default_factory=dict)
    key_generator: Hook[Callable[[], Any] | None] = None
    decorator: Hook[Callable[[dict[str, Any]], Any] | None] = None
    data: dict[str, Any] | None = None
    response_text: str | None = None

    @field_validator("data", mode="before")
    @classmethod
    def wrap_collection(cls, value: Any) -> Any:
        if isinstance(value, list):
            return {"value": value}
        return value

    @model_validator(mode="after")
    def check_source(self) -> "EntitySetMock":
        if self.resource is None and self.data is None and self.response_text is None:
            raise ValueError(f"Entity set {self.entity_set} needs a resource, inline data or response_text")
        if self.data is not None and not isinstance(self.data.get("value"), list):
            raise ValueError(f"Inline data for {self.entity_set} must be a list or a {{'value': [...]}} collection")
        return self


MockDefinition = Annotated[Union[SimpleMock, FunctionMock, EntitySetMock], Field(discriminator="kind")]


class ServiceConfig(BaseModel):
    """One simulated OData endpoint and the mocks it serves."""

    name: str
    base_url: str
    base_url_pattern: Pattern[str] | None = None
    namespace: str = ""
    mocks: list[MockDefinition] = Field(default_factory=list)

    @field_validator("base_url")
    @classmethod
    def ensure_trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else f"{value}/"

    @model_validator(mode="after")
    def default_pattern(self) -> "ServiceConfig":
        if self.base_url_pattern is None:
            self.base_url_pattern = re.compile(re.escape(self.base_url.rstrip("/")))
        return self

    def matches(self, url: str) -> bool:
        return bool(self.base_url_pattern and self.base_url_pattern.search(url))


LogFormat = Literal["console", "plain", "json"]


class LoggingConfig(BaseModel):
    """Log settings; a missing ``format`` defers to the environment."""

    level: str = "INFO"
    format: LogFormat | None = None

    @field_validator("level", "format", mode="before")
    @classmethod
    def normalize_case(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str):
            return value
        return value.upper() if info.field_name == "level" else value.lower()


class MockServerConfig(BaseModel):
    """Top-level configuration consumed by :class:`ODataMockServer`."""

    services: list[ServiceConfig] = Field(default_factory=list)
    response_delay_ms: int = Field(default=1000, ge=0)
    fixtures_root: Path | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
