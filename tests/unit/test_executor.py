from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import ClientError

from facetdb_py import (
    ConditionFailedError,
    Entity,
    FilterCondition,
    InvalidOptionsError,
    KeyOwnershipError,
    NotFoundError,
    UnknownError,
)
from facetdb_py.mocks import ANY, FakeDynamoDBClient
from facetdb_py.testkit import attribute_values, fake_entity


def _task_model() -> dict[str, Any]:
    return {
        "model": {"service": "taskapp", "entity": "task", "version": "1"},
        "attributes": {
            "task_id": "string",
            "project": "string",
            "employee": "string",
            "status": "string",
            "secret": {"type": "string", "hidden": True},
            "title": {"type": "string", "field": "t", "get": lambda value, item: value.upper()},
        },
        "indexes": {
            "task": {
                "pk": {"field": "pk", "composite": ["task_id"]},
                "sk": {"field": "sk", "composite": ["project", "employee"]},
            },
            "project": {
                "index": "gsi1",
                "pk": {"field": "gsi1pk", "composite": ["project"]},
                "sk": {"field": "gsi1sk", "composite": ["employee", "status"]},
            },
        },
    }


def _stored(entity: Entity, task_id: str, **attrs: Any) -> dict[str, Any]:
    facets = {"task_id": task_id, "project": "p1", "employee": "e1", "status": "open", **attrs}
    return entity.put(facets).params()["Item"]


def _av(item: dict[str, Any]) -> dict[str, Any]:
    return attribute_values(item)


def _client_error(code: str, message: str = "nope") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, "Operation")


def test_get_formats_owned_item_and_hides_keys() -> None:
    entity, client = fake_entity(_task_model())
    item = _stored(entity, "t1", title="hello", secret="s")
    client.expect("get_item", {"TableName": "test-table", "Key": ANY}, response={"Item": _av(item)})

    result = entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go()

    assert result.data == {"task_id": "t1", "project": "p1", "employee": "e1", "status": "open", "title": "HELLO"}
    client.assert_no_pending()


def test_get_include_keys_keeps_key_and_identity_fields() -> None:
    entity, client = fake_entity(_task_model())
    item = _stored(entity, "t1")
    client.expect("get_item", response={"Item": _av(item)})

    data = entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go(include_keys=True).data

    assert data["pk"] == "$taskapp#task_id_t1"
    assert data["__fdb_e__"] == "task"


def test_get_ignores_the_write_response_option() -> None:
    entity, client = fake_entity(_task_model())
    item = _stored(entity, "t1")

    def no_return_values(req: Any) -> None:
        assert "ReturnValues" not in req

    client.expect("get_item", no_return_values, response={"Item": _av(item)})
    client.expect("get_item", response={"Item": _av(item)})
    keys = {"task_id": "t1", "project": "p1", "employee": "e1"}

    assert entity.get(keys).go(response="all_new").data["task_id"] == "t1"
    assert entity.get(keys).go(response="none").data["task_id"] == "t1"


def test_get_miss_returns_none() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("get_item", response={})

    assert entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go().data is None


def test_get_of_foreign_item_is_dropped_unless_ownership_is_ignored() -> None:
    entity, client = fake_entity(_task_model())
    foreign = {**_stored(entity, "t1"), "__fdb_e__": "note"}
    client.expect("get_item", response={"Item": _av(foreign)})
    client.expect("get_item", response={"Item": _av(foreign)})
    keys = {"task_id": "t1", "project": "p1", "employee": "e1"}

    assert entity.get(keys).go().data is None
    assert entity.get(keys).go(ignore_ownership=True).data["task_id"] == "t1"


def test_put_returns_the_written_item() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("put_item", response={})

    data = entity.put({"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}).go().data

    assert data == {"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}


def test_update_response_modes() -> None:
    entity, client = fake_entity(_task_model())
    keys = {"task_id": "t1", "project": "p1", "employee": "e1"}
    stored = _stored(entity, "t1", status="closed")
    client.expect("update_item", {"ReturnValues": "ALL_NEW"}, response={"Attributes": _av(stored)})
    client.expect("update_item", {"ReturnValues": "NONE"}, response={})
    client.expect("update_item", response={})

    assert entity.update(keys).set(status="closed").go(response="all_new").data["status"] == "closed"
    assert entity.update(keys).set(status="closed").go(response="none").data is None
    assert entity.update(keys).set(status="closed").go().data == {}
    client.assert_no_pending()


def test_delete_without_attributes_returns_empty_record() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("delete_item", response={})

    assert entity.delete({"task_id": "t1", "project": "p1", "employee": "e1"}).go().data == {}


def test_raw_returns_the_service_response() -> None:
    entity, client = fake_entity(_task_model())
    item = _stored(entity, "t1")
    client.expect("get_item", response={"Item": _av(item), "ConsumedCapacity": {"TableName": "test-table"}})

    data = entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go(raw=True).data

    assert data["Item"] == item
    assert data["ConsumedCapacity"] == {"TableName": "test-table"}


def test_parse_hook_replaces_formatting() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("get_item", response={"Item": _av(_stored(entity, "t1"))})

    data = entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go(
        parse=lambda options, response: sorted(response["Item"])
    ).data

    assert "pk" in data


def test_query_stops_after_one_page_by_default_and_returns_cursor() -> None:
    entity, client = fake_entity(_task_model())
    last_key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_e1"}
    client.expect(
        "query",
        {"TableName": "test-table", "KeyConditionExpression": "#pk = :pk and begins_with(#sk1, :sk1)"},
        response={"Items": [_av(_stored(entity, "t1"))], "LastEvaluatedKey": _av(last_key)},
    )

    result = entity.query.task(task_id="t1").go()

    assert [record["task_id"] for record in result.data] == ["t1"]
    assert isinstance(result.cursor, str)
    assert entity.deserialize_cursor(result.cursor) == last_key
    assert entity.owns_cursor(result.cursor)
    client.assert_no_pending()


def test_query_limit_counts_kept_records_across_pages() -> None:
    entity, client = fake_entity(_task_model())
    first_key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_b"}
    second_key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_c"}
    client.expect(
        "query",
        lambda req: _assert_no_start_key(req, limit=3),
        response={
            "Items": [_av(_stored(entity, "t1", employee="a")), _av(_stored(entity, "t1", employee="b"))],
            "LastEvaluatedKey": _av(first_key),
        },
    )
    client.expect(
        "query",
        {"Limit": 1, "ExclusiveStartKey": _av(first_key)},
        response={"Items": [_av(_stored(entity, "t1", employee="c"))], "LastEvaluatedKey": _av(second_key)},
    )

    result = entity.query.task(task_id="t1").go(limit=3, pages="all")

    assert [record["employee"] for record in result.data] == ["a", "b", "c"]
    assert entity.deserialize_cursor(result.cursor) == second_key
    client.assert_no_pending()


def _assert_no_start_key(req: dict[str, Any], *, limit: int) -> None:
    assert "ExclusiveStartKey" not in req
    assert req["Limit"] == limit


def test_query_all_pages_runs_until_exhausted() -> None:
    entity, client = fake_entity(_task_model())
    key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_a"}
    client.expect("query", response={"Items": [_av(_stored(entity, "t1", employee="a"))], "LastEvaluatedKey": _av(key)})
    client.expect("query", {"ExclusiveStartKey": _av(key)}, response={"Items": []})

    result = entity.query.task(task_id="t1").go(pages="all")

    assert len(result.data) == 1
    assert result.cursor is None
    client.assert_no_pending()


def test_query_filters_out_records_of_other_entities() -> None:
    entity, client = fake_entity(_task_model())
    mine = _stored(entity, "t1")
    other = {**_stored(entity, "t2"), "__fdb_e__": "note"}
    client.expect("scan", response={"Items": [_av(other), _av(mine)]})

    result = entity.scan().where(FilterCondition.eq("status", "open")).go()

    assert [record["task_id"] for record in result.data] == ["t1"]


def test_cursor_option_becomes_exclusive_start_key() -> None:
    entity, client = fake_entity(_task_model())
    key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_a"}
    client.expect("query", {"ExclusiveStartKey": _av(key)}, response={"Items": []})

    entity.query.task(task_id="t1").go(cursor=entity.serialize_cursor(key))

    client.assert_no_pending()


@pytest.mark.parametrize(
    ("options", "message"),
    [
        ({"cursor": "not base64 json"}, "invalid cursor"),
        ({"cursor": {"pk": "x"}}, "cursor must be a string"),
        ({"cursor": "abc", "pager": "raw"}, "raw cursors"),
        ({"cursor": "abc", "pager": "item"}, "item cursors"),
    ],
)
def test_invalid_cursors_raise(options: dict[str, Any], message: str) -> None:
    entity, _ = fake_entity(_task_model())
    with pytest.raises(InvalidOptionsError, match=message) as exc:
        entity.query.task(task_id="t1").go(**options)
    assert exc.value.code == "invalid_cursor"


def test_raw_pager_passes_last_evaluated_key_through() -> None:
    entity, client = fake_entity(_task_model())
    key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_a"}
    client.expect("query", response={"Items": [], "LastEvaluatedKey": _av(key)})
    client.expect("query", {"ExclusiveStartKey": _av(key)}, response={"Items": []})

    cursor = entity.query.task(task_id="t1").go(pager="raw").cursor
    assert cursor == key
    entity.query.task(task_id="t1").go(pager="raw", cursor=cursor)
    client.assert_no_pending()


def test_item_pager_round_trips_through_facets() -> None:
    entity, client = fake_entity(_task_model())
    key = {
        "gsi1pk": "$taskapp#project_p1",
        "gsi1sk": "$task_1#employee_e1#status_open",
        "pk": "$taskapp#task_id_t1",
        "sk": "$task_1#project_p1#employee_e1",
    }
    client.expect("query", response={"Items": [_av(_stored(entity, "t1"))], "LastEvaluatedKey": _av(key)})
    client.expect("query", {"ExclusiveStartKey": _av(key)}, response={"Items": []})

    cursor = entity.query.project(project="p1").go(pager="item").cursor
    assert cursor == {"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}

    entity.query.project(project="p1").go(pager="item", cursor=cursor)
    client.assert_no_pending()


def test_item_pager_falls_back_to_last_record_for_foreign_keys() -> None:
    entity, client = fake_entity(_task_model())
    foreign_key = {"pk": "$other#x_1", "sk": "$thing_1"}
    client.expect(
        "query",
        response={"Items": [_av(_stored(entity, "t1", employee="z"))], "LastEvaluatedKey": _av(foreign_key)},
    )

    cursor = entity.query.task(task_id="t1").go(pager="item").cursor

    assert cursor == {"task_id": "t1", "project": "p1", "employee": "z"}


def test_item_pager_without_record_to_fall_back_on_raises() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("query", response={"Items": [], "LastEvaluatedKey": _av({"pk": "$other#x_1", "sk": "$thing_1"})})

    with pytest.raises(KeyOwnershipError):
        entity.query.task(task_id="t1").go(pager="item")


def test_raw_query_returns_first_page_response() -> None:
    entity, client = fake_entity(_task_model())
    key = {"pk": "$taskapp#task_id_t1", "sk": "$task_1#project_p1#employee_a"}
    client.expect("query", response={"Items": [], "LastEvaluatedKey": _av(key), "Count": 0})

    result = entity.query.task(task_id="t1").go(raw=True, pages="all")

    assert result.data["Count"] == 0
    assert result.cursor == key
    client.assert_no_pending()


@pytest.mark.parametrize(
    ("code", "error_type"),
    [
        ("ConditionalCheckFailedException", ConditionFailedError),
        ("ResourceNotFoundException", NotFoundError),
    ],
)
def test_service_errors_are_mapped(code: str, error_type: type[Exception]) -> None:
    entity, client = fake_entity(_task_model())
    client.expect("put_item", error=_client_error(code))

    with pytest.raises(error_type) as exc:
        entity.create({"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}).go()
    assert isinstance(exc.value.__cause__, ClientError)


def test_original_err_reraises_the_client_error() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("put_item", error=_client_error("ConditionalCheckFailedException"))

    with pytest.raises(ClientError):
        entity.create({"task_id": "t1", "project": "p1", "employee": "e1", "status": "open"}).go(original_err=True)


def test_unexpected_errors_are_wrapped_as_unknown() -> None:
    entity, client = fake_entity(_task_model())
    client.expect("query", error=RuntimeError("socket closed"))

    with pytest.raises(UnknownError, match="socket closed"):
        entity.query.task(task_id="t1").go()


def test_entity_uses_a_fake_client_passed_as_document_client() -> None:
    client = FakeDynamoDBClient()
    entity = Entity({**_task_model(), "table": "tasks"}, client=client)
    client.expect("get_item", {"TableName": "tasks"}, response={})

    entity.get({"task_id": "t1", "project": "p1", "employee": "e1"}).go()

    client.assert_no_pending()
