"""Fixture loading: fetch every mock's resource once and keep it in memory."""

from __future__ import annotations

import asyncio
import copy
import io
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog

from .errors import ConfigError, FixtureLoadError
from .models import EntitySetMock, FunctionMock, MockDefinition, ServiceConfig

LOGGER = structlog.get_logger("odata_mock_server")

FixtureReader = Callable[[str], Awaitable[str]]


class FileFixtureReader:
    """Reads fixture resources relative to a root directory."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or Path.cwd()

    async def __call__(self, locator: str) -> str:
        path = self.root / locator
        return await asyncio.to_thread(path.read_text, encoding="utf-8")


@dataclass
class LoadedMock:
    """A mock declaration together with its parsed data and serialized text."""

    definition: MockDefinition
    data: Any = None
    response_text: str | None = None

    @property
    def kind(self) -> str:
        return self.definition.kind

    @property
    def entities(self) -> list[dict[str, Any]]:
        """The live record list of an entity-set mock."""

        return self.data["value"]


@dataclass
class LoadedService:
    """Runtime state of one service: its loaded mocks and entity-set index."""

    config: ServiceConfig
    mocks: list[LoadedMock] = field(default_factory=list)
    entity_sets: dict[str, LoadedMock] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def base_url(self) -> str:
        return self.config.base_url

    def entity_set(self, name: str) -> LoadedMock | None:
        return self.entity_sets.get(name)


def serialize_xml(text: str) -> tuple[ET.Element, str]:
    """Parse an XML document and serialize its root element back to text.

    Namespace prefixes declared by the document (including a default
    namespace) are registered first so the serialized form keeps them
    (``edmx:``, unprefixed ``Schema``) instead of ``ns0:``.
    """

    for _, (prefix, uri) in ET.iterparse(io.StringIO(text), events=("start-ns",)):
        ET.register_namespace(prefix, uri)
    root = ET.fromstring(text)
    return root, ET.tostring(root, encoding="unicode")


def parse_fixture(locator: str, text: str) -> tuple[Any, str]:
    """Return the parsed form and canonical text of a fetched resource."""

    extension = locator.rsplit(".", 1)[-1].lower() if "." in locator else ""
    try:
        if extension == "xml":
            return serialize_xml(text)
        if extension == "json":
            data = json.loads(text)
            return data, json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    except (ET.ParseError, json.JSONDecodeError) as exc:
        raise FixtureLoadError(locator, str(exc)) from exc
    return text, text


def _as_collection(mock: EntitySetMock, data: Any, locator: str) -> dict[str, Any]:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise FixtureLoadError(locator, str(exc)) from exc
    if isinstance(data, list):
        data = {"value": data}
    if not isinstance(data, dict) or not isinstance(data.get("value"), list):
        raise FixtureLoadError(locator, f"entity set {mock.entity_set} must be a JSON collection")
    return data


async def load_mock(service: ServiceConfig, definition: MockDefinition, reader: FixtureReader) -> LoadedMock:
    """Obtain the data of a single mock, fetching its resource when needed."""

    loaded = LoadedMock(definition=definition)
    if isinstance(definition, FunctionMock):
        return loaded

    inline_data = getattr(definition, "data", None)
    if inline_data is not None:
        loaded.data = copy.deepcopy(inline_data)
        loaded.response_text = definition.response_text or json.dumps(inline_data, separators=(",", ":"))
        return loaded

    locator = f"{service.namespace}{definition.resource}" if definition.resource else definition.entity_set
    if definition.response_text is not None:
        loaded.response_text = definition.response_text
        loaded.data = definition.response_text
    else:
        try:
            text = await reader(locator)
        except (OSError, UnicodeDecodeError) as exc:
            raise FixtureLoadError(locator, str(exc)) from exc
        loaded.data, loaded.response_text = parse_fixture(locator, text)

    if isinstance(definition, EntitySetMock):
        loaded.data = _as_collection(definition, loaded.data, locator)
    return loaded


async def load_service(service: ServiceConfig, reader: FixtureReader) -> LoadedService:
    loaded_mocks = await asyncio.gather(*(load_mock(service, mock, reader) for mock in service.mocks))
    loaded = LoadedService(config=service, mocks=list(loaded_mocks))
    for mock in loaded.mocks:
        if isinstance(mock.definition, EntitySetMock):
            name = mock.definition.entity_set
            if name in loaded.entity_sets:
                raise ConfigError(f"Entity set {name} is declared twice in service {service.name}")
            loaded.entity_sets[name] = mock
    return loaded


async def load_services(services: list[ServiceConfig], reader: FixtureReader) -> list[LoadedService]:
    """Load every mock of every service concurrently.

    Completes only when all fetches have succeeded; the first failure is
    raised to the caller.
    """

    LOGGER.info("fixtures_loading", services=len(services), mocks=sum(len(s.mocks) for s in services))
    loaded = await asyncio.gather(*(load_service(service, reader) for service in services))
    LOGGER.info("fixtures_loaded", entity_sets=sum(len(s.entity_sets) for s in loaded))
    return list(loaded)
