"""Shared fixtures: a sample OData service backed by files in tmp_path."""

from __future__ import annotations

import asyncio
import itertools
import json
import re
from pathlib import Path

import httpx
import pytest

from odata_mock_server import EntitySetMock, FunctionMock, MockServerConfig, Navigation, ServiceConfig, SimpleMock
from odata_mock_server.loader import FileFixtureReader, LoadedService, load_services
from odata_mock_server.server import ODataMockServer

BASE_URL = "http://localhost/odata/v4/Sample.svc/"

METADATA = (
    '<edmx:Edmx xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx" Version="4.0">'
    "<edmx:DataServices>"
    '<Schema xmlns="http://docs.oasis-open.org/odata/ns/edm" Namespace="Sample">'
    '<EntityType Name="Person"><Key><PropertyRef Name="personId"/></Key></EntityType>'
    "</Schema>"
    "</edmx:DataServices>"
    "</edmx:Edmx>"
)

PEOPLE = [
    {"personId": "1", "name": "Anna", "departmentId": "D1"},
    {"personId": "2", "name": "bob", "departmentId": "D2"},
    {"personId": "3", "name": "Carla", "departmentId": "D9"},
]

DEPARTMENTS = [
    {"id": "D1", "title": "Research"},
    {"id": "D2", "title": "Sales"},
]


def write_fixtures(root: Path) -> Path:
    service_dir = root / "Sample.svc"
    (service_dir / "data").mkdir(parents=True)
    (service_dir / "metadata.xml").write_text(METADATA, encoding="utf-8")
    (service_dir / "data" / "Person.json").write_text(json.dumps({"value": PEOPLE}), encoding="utf-8")
    (service_dir / "data" / "Department.json").write_text(json.dumps(DEPARTMENTS), encoding="utf-8")
    return root


def sample_service(key_generator=None, decorator=None) -> ServiceConfig:
    counter = itertools.count(100)
    return ServiceConfig(
        name="Sample",
        base_url=BASE_URL,
        base_url_pattern=re.compile(r"/odata/v4/Sample\.svc"),
        namespace="Sample.svc/",
        mocks=[
            SimpleMock(url=re.compile(r"/\$metadata(\?.*|)$"), resource="metadata.xml"),
            FunctionMock(
                url=re.compile(r"/Echo(\(.*\)|)(\?.*|)$"),
                handler=lambda payload: {"received": payload},
            ),
            EntitySetMock(
                url=re.compile(r"/Person(\(.*\)|/\$count|)(\?.*|)$"),
                resource="data/Person.json",
                entity_set="Person",
                key="personId",
                navigations={"Department": Navigation(entity_set="Department", field="departmentId")},
                key_generator=key_generator or (lambda: str(next(counter))),
                decorator=decorator,
            ),
            EntitySetMock(
                url=re.compile(r"/Department(\(.*\)|/\$count|)(\?.*|)$"),
                resource="data/Department.json",
                entity_set="Department",
                key="id",
            ),
        ],
    )


@pytest.fixture
def fixtures_root(tmp_path: Path) -> Path:
    return write_fixtures(tmp_path)


@pytest.fixture
def config(fixtures_root: Path) -> MockServerConfig:
    return MockServerConfig(services=[sample_service()], response_delay_ms=0, fixtures_root=fixtures_root)


@pytest.fixture
def loaded_service(config: MockServerConfig) -> LoadedService:
    services = asyncio.run(load_services(config.services, FileFixtureReader(config.fixtures_root)))
    return services[0]


@pytest.fixture
def server(config: MockServerConfig):
    mock_server = ODataMockServer(config)
    asyncio.run(mock_server.start())
    yield mock_server
    mock_server.stop()


@pytest.fixture
def client(server: ODataMockServer):
    with httpx.Client(transport=server.transport(), base_url=BASE_URL) as http_client:
        yield http_client
