from __future__ import annotations

import asyncio
import json
from pathlib import Path

from odata_mock_server.loader import FileFixtureReader, LoadedService, load_services
from odata_mock_server.router import InterceptedRequest, handle_direct_request

from conftest import BASE_URL, sample_service


def _send(service: LoadedService, method: str, path: str, body: str | None = None):
    return handle_direct_request(service, InterceptedRequest(method=method, url=BASE_URL + path, body=body))


def _keys(service: LoadedService) -> list:
    return [entity["personId"] for entity in service.entity_set("Person").entities]


def test_metadata_is_served_verbatim(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "$metadata")

    assert response.status == 200
    assert response.headers["Content-Type"] == "application/xml"
    assert response.body.startswith("<edmx:Edmx")


def test_get_entity_by_key_with_expand(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person('1')?$expand=Department")

    payload = json.loads(response.body)
    assert response.status == 200
    assert payload["@odata.context"] == f"{BASE_URL}$metadata#Person(personId)/$entity"
    assert payload["Department"] == {"id": "D1", "title": "Research"}
    assert payload["name"] == "Anna"


def test_get_unknown_key_is_404_with_target(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person('404')")

    error = json.loads(response.body)["error"]
    assert response.status == 404
    assert error["code"] == "404"
    assert error["message"]["target"] == "personId"


def test_get_collection_with_query_and_count(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person?$count=true&$orderby=name%20desc&$skip=0&$top=2")

    payload = json.loads(response.body)
    assert payload["@odata.count"] == 3
    assert [entity["name"] for entity in payload["value"]] == ["Carla", "bob"]


def test_count_route_returns_plain_number(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person/$count")

    assert response.status == 200
    assert response.body == "3"


def test_post_generates_missing_key(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "POST", "Person", '{"name": "Dora"}')

    payload = json.loads(response.body)
    assert response.status == 201
    assert payload["personId"] == "100"
    assert _keys(loaded_service) == ["1", "2", "3", "100"]
    assert len(set(_keys(loaded_service))) == 4


def test_post_duplicate_key_is_rejected_without_mutation(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "POST", "Person", '{"personId": "2", "name": "Clone"}')

    assert response.status == 400
    assert "There is already a(n) Person with personId '2'." in response.body
    assert _keys(loaded_service) == ["1", "2", "3"]


def test_patch_merges_fields(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "PATCH", "Person('2')", '{"name": "Bobby"}')

    assert response.status == 204
    assert response.body == ""
    assert loaded_service.entity_set("Person").entities[1] == {"personId": "2", "name": "Bobby", "departmentId": "D2"}


def test_patch_unknown_key_is_404(loaded_service: LoadedService) -> None:
    before = json.dumps(loaded_service.entity_set("Person").entities)

    response = _send(loaded_service, "PATCH", "Person('99')", '{"name": "Ghost"}')

    assert response.status == 404
    assert json.dumps(loaded_service.entity_set("Person").entities) == before


def test_patch_to_existing_key_is_rejected(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "PATCH", "Person('1')", '{"personId": "3"}')

    assert response.status == 400
    assert _keys(loaded_service) == ["1", "2", "3"]


def test_patch_key_to_own_value_succeeds(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "PATCH", "Person('1')", '{"personId": "1", "name": "Annie"}')

    assert response.status == 204
    assert loaded_service.entity_set("Person").entities[0]["name"] == "Annie"


def test_delete_unknown_key_is_noop(loaded_service: LoadedService) -> None:
    assert _send(loaded_service, "DELETE", "Person('nope')").status == 204
    assert _send(loaded_service, "DELETE", "Person('2')").status == 204
    assert _keys(loaded_service) == ["1", "3"]


def test_unsupported_method_is_405(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "PUT", "Person('1')", "{}")

    assert response.status == 405


def test_unmatched_route_is_404(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Nothing")

    assert response.status == 404
    assert "Service not found" in response.body


def test_function_mock_wraps_result(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "POST", "Echo", '{"value": 1}')

    assert response.status == 200
    assert json.loads(response.body) == {"received": {"value": 1}}


def test_errors_become_500(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person?$filter=contains(tolower(name),'a')")

    assert response.status == 500
    assert json.loads(response.body)["error"]["message"]["value"] == "Filters on field name) are not supported."


def test_malformed_post_body_becomes_500(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "POST", "Person", "not json")

    assert response.status == 500
    assert _keys(loaded_service) == ["1", "2", "3"]


def test_decorator_runs_after_create_and_merge(fixtures_root: Path) -> None:
    def stamp(entity: dict) -> None:
        entity["displayName"] = entity.get("name", "").upper()

    service = asyncio.run(load_services([sample_service(decorator=stamp)], FileFixtureReader(fixtures_root)))[0]

    created = _send(service, "POST", "Person", '{"name": "Dora"}')
    _send(service, "PATCH", "Person('1')", '{"name": "Ann"}')

    assert json.loads(created.body)["displayName"] == "DORA"
    assert service.entity_set("Person").entities[0]["displayName"] == "ANN"


def test_keys_stay_distinct_across_mixed_writes(loaded_service: LoadedService) -> None:
    assert _send(loaded_service, "POST", "Person", '{"name": "Dora"}').status == 201
    assert _send(loaded_service, "POST", "Person", '{"personId": 1, "name": "Int"}').status == 400
    assert _send(loaded_service, "DELETE", "Person('2')").status == 204
    assert _send(loaded_service, "PATCH", "Person('100')", '{"personId": 3}').status == 400
    assert _send(loaded_service, "PATCH", "Person('100')", '{"personId": "2"}').status == 204
    assert _send(loaded_service, "POST", "Person", '{"personId": 2}').status == 400
    assert _send(loaded_service, "POST", "Person", '{"personId": 7, "name": "Gus"}').status == 201

    keys = _keys(loaded_service)
    assert keys == ["1", "3", "2", 7]
    assert len({str(key) for key in keys}) == len(keys)
    assert json.loads(_send(loaded_service, "GET", "Person(7)").body)["name"] == "Gus"


def test_collection_expand_decorates_each_entity(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "GET", "Person?$expand=Department")

    values = json.loads(response.body)["value"]
    assert response.status == 200
    assert values[0]["Department"] == {"id": "D1", "title": "Research"}
    assert values[1]["Department"] == {"id": "D2", "title": "Sales"}
    assert "Department" not in values[2]
    assert values[2]["departmentId"] == "D9"


def test_post_without_key_or_generator_is_rejected(loaded_service: LoadedService) -> None:
    response = _send(loaded_service, "POST", "Department", '{"title": "Ops"}')

    error = json.loads(response.body)["error"]
    assert response.status == 400
    assert error["message"]["value"] == "A(n) Department needs a value for id."
    assert error["message"]["target"] == "id"
    assert len(loaded_service.entity_set("Department").entities) == 2
