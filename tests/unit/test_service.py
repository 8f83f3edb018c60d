from __future__ import annotations

from typing import Any

import pytest

from facetdb_py import (
    Entity,
    FilterCondition,
    InvalidCollectionError,
    InvalidOptionsError,
    ModelDefinitionError,
    Service,
)
from facetdb_py.mocks import FakeDynamoDBClient
from facetdb_py.testkit import attribute_values


def _task_model(**overrides: Any) -> dict[str, Any]:
    model: dict[str, Any] = {
        "model": {"service": "taskapp", "entity": "task", "version": "1"},
        "attributes": {"task_id": "string", "employee": "string", "status": "string"},
        "indexes": {
            "task": {
                "pk": {"field": "pk", "composite": ["task_id"]},
                "sk": {"field": "sk", "composite": []},
            },
            "assigned": {
                "index": "gsi2",
                "collection": "assignments",
                "pk": {"field": "gsi2pk", "composite": ["employee"]},
                "sk": {"field": "gsi2sk", "composite": ["status"]},
            },
        },
    }
    model.update(overrides)
    return model


def _employee_model(pk_composite: tuple[str, ...] = ("employee",), index: str = "gsi2") -> dict[str, Any]:
    return {
        "model": {"service": "taskapp", "entity": "employee", "version": "1"},
        "attributes": {"employee": "string", "office": "string"},
        "indexes": {
            "employee": {
                "pk": {"field": "pk", "composite": ["employee"]},
                "sk": {"field": "sk", "composite": []},
            },
            "tasks": {
                "index": index,
                "collection": "assignments",
                "pk": {"field": "gsi2pk", "composite": list(pk_composite)},
                "sk": {"field": "gsi2sk", "composite": []},
            },
        },
    }


def _service(client: Any | None = None) -> Service:
    return Service([Entity(_task_model()), Entity(_employee_model())], client=client, table="work")


def test_service_collects_entities_and_collections() -> None:
    service = _service()

    assert service.name == "taskapp"
    assert set(service.entities) == {"task", "employee"}
    assert service.collection_names == frozenset({"assignments"})
    assert list(service.collections) == ["assignments"]
    assert all(entity.table == "work" for entity in service.entities.values())


def test_collection_params_filter_by_member_identity() -> None:
    params = _service().collections.assignments(employee="e1").params()

    assert params["IndexName"] == "gsi2"
    assert params["KeyConditionExpression"] == "#pk = :pk and begins_with(#sk1, :sk1)"
    assert params["ExpressionAttributeValues"][":pk"] == "$taskapp#employee_e1"
    assert params["ExpressionAttributeValues"][":sk1"] == "$assignments"
    assert params["FilterExpression"] == (
        "(#__fdb_e___task = :__fdb_e___task AND #__fdb_v___task = :__fdb_v___task) OR "
        "(#__fdb_e___employee = :__fdb_e___employee AND #__fdb_v___employee = :__fdb_v___employee)"
    )
    assert params["ExpressionAttributeNames"]["#__fdb_e___employee"] == "__fdb_e__"
    assert params["ExpressionAttributeValues"][":__fdb_e___employee"] == "employee"


def test_collection_filters_wrap_the_identity_clause() -> None:
    chain = _service().collection("assignments", {"employee": "e1"})
    params = chain.where(FilterCondition.eq("status", "open")).params()

    assert params["FilterExpression"].startswith("(#f_status = :f1) AND ((#__fdb_e___task")


def test_collection_groups_results_by_member() -> None:
    client = FakeDynamoDBClient()
    service = _service(client)
    task = service.entities["task"].put({"task_id": "t1", "employee": "e1", "status": "open"}).params()["Item"]
    employee = service.entities["employee"].put({"employee": "e1", "office": "hq"}).params()["Item"]
    stranger = {**task, "__fdb_e__": "note"}
    client.expect(
        "query",
        {"TableName": "work", "IndexName": "gsi2"},
        response={"Items": [attribute_values(employee), attribute_values(task), attribute_values(stranger)]},
    )

    result = service.collections.assignments(employee="e1").go()

    assert result.data == {
        "task": [{"task_id": "t1", "employee": "e1", "status": "open"}],
        "employee": [{"employee": "e1", "office": "hq"}],
    }
    assert result.cursor is None
    client.assert_no_pending()


def test_collection_returns_a_cursor_and_accepts_it_back() -> None:
    client = FakeDynamoDBClient()
    service = _service(client)
    key = {
        "gsi2pk": "$taskapp#employee_e1",
        "gsi2sk": "$assignments#task_1",
        "pk": "$taskapp#task_id_t1",
        "sk": "$task_1",
    }
    client.expect("query", response={"Items": [], "LastEvaluatedKey": attribute_values(key)})
    client.expect("query", {"ExclusiveStartKey": attribute_values(key)}, response={"Items": []})

    cursor = service.collections.assignments(employee="e1").go().cursor
    assert isinstance(cursor, str)
    service.collections.assignments(employee="e1").go(cursor=cursor)
    client.assert_no_pending()


def test_collection_raw_mode_returns_the_response() -> None:
    client = FakeDynamoDBClient()
    service = _service(client)
    client.expect("query", response={"Items": [], "Count": 0})

    assert service.collections.assignments(employee="e1").go(raw=True).data == {"Items": [], "Count": 0}


@pytest.mark.parametrize("options", [{"attributes": ["status"]}, {"pager": "item"}])
def test_collection_rejects_unsupported_options(options: dict[str, Any]) -> None:
    with pytest.raises(InvalidOptionsError):
        _service().collections.assignments(employee="e1").params(**options)


def test_unknown_collection_raises() -> None:
    service = _service()
    with pytest.raises(InvalidCollectionError):
        service.collection("nope")
    with pytest.raises(AttributeError):
        _ = service.collections.nope


def test_entities_from_different_services_are_rejected() -> None:
    other = _task_model(model={"service": "billing", "entity": "task", "version": "1"})
    with pytest.raises(ModelDefinitionError) as exc:
        Service([Entity(other), Entity(_employee_model())])
    assert exc.value.code == "invalid_service"

    with pytest.raises(ModelDefinitionError):
        Service([])


def test_collections_must_share_their_key_shape() -> None:
    with pytest.raises(ModelDefinitionError) as exc:
        Service({"task": Entity(_task_model()), "employee": Entity(_employee_model(("office",)))})
    assert exc.value.code == "inconsistent_collection"


def test_mapping_aliases_name_the_result_groups() -> None:
    client = FakeDynamoDBClient()
    service = Service({"jobs": Entity(_task_model()), "people": Entity(_employee_model())}, client=client, table="work")
    client.expect("query", response={"Items": []})

    assert service.collections.assignments(employee="e1").go().data == {"jobs": [], "people": []}


def test_collections_must_live_on_one_index() -> None:
    with pytest.raises(ModelDefinitionError) as exc:
        Service([Entity(_task_model()), Entity(_employee_model(index="gsi3"))])
    assert exc.value.code == "inconsistent_collection"
