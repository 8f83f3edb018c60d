from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import pytest
from botocore.exceptions import ClientError

from facetdb_py import AwsError, Entity
from facetdb_py.batch import BatchOrder, run_in_waves
from facetdb_py.testkit import attribute_values, fake_entity, plain_values

TABLE = "test-table"


def _model() -> dict[str, Any]:
    return {
        "model": {"service": "shop", "entity": "order", "version": "1"},
        "attributes": {"order_id": "string", "customer": "string", "total": "number"},
        "indexes": {
            "order": {
                "pk": {"field": "pk", "composite": ["order_id"]},
                "sk": {"field": "sk", "composite": ["customer"]},
            }
        },
    }


def _keys(count: int) -> list[dict[str, Any]]:
    return [{"order_id": f"o{i}", "customer": "c1"} for i in range(count)]


def _stored(entity: Entity, key: dict[str, Any]) -> dict[str, Any]:
    order_id = plain_values(key)["pk"].rsplit("_", 1)[-1]
    return entity.put({"order_id": order_id, "customer": "c1", "total": 10}).params()["Item"]


def _requested(req: dict[str, Any]) -> list[dict[str, Any]]:
    return req["RequestItems"][TABLE]["Keys"]


def _echo(entity: Entity, *, reverse: bool = False, delay: float = 0.0) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def handler(req: dict[str, Any]) -> dict[str, Any]:
        if delay:
            time.sleep(delay)
        items = [attribute_values(_stored(entity, key)) for key in _requested(req)]
        if reverse:
            items.reverse()
        return {"Responses": {TABLE: items}}

    return handler


def test_run_in_waves_keeps_input_order() -> None:
    assert run_in_waves(list(range(7)), lambda n: n * 2, concurrency=3) == [0, 2, 4, 6, 8, 10, 12]
    assert run_in_waves([], lambda n: n, concurrency=2) == []


def test_run_in_waves_settles_the_failing_wave_before_raising() -> None:
    finished: list[int] = []
    lock = threading.Lock()

    def work(n: int) -> int:
        if n == 0:
            raise RuntimeError("first failed")
        time.sleep(0.05)
        with lock:
            finished.append(n)
        return n

    with pytest.raises(RuntimeError, match="first failed"):
        run_in_waves([0, 1, 2], work, concurrency=2)
    assert finished == [1]


def test_batch_get_bounds_requests_in_flight() -> None:
    entity, client = fake_entity(_model())
    client.on("batch_get_item", _echo(entity, delay=0.05))

    result = entity.get(_keys(450)).go(concurrency=2)

    assert len(client.calls_to("batch_get_item")) == 5
    assert 1 <= client.max_in_flight <= 2
    assert len(result.data) == 450
    assert result.unprocessed == []


def test_batch_get_default_concurrency_is_sequential() -> None:
    entity, client = fake_entity(_model())
    client.on("batch_get_item", _echo(entity, delay=0.01))

    entity.get(_keys(250)).go()

    assert client.max_in_flight == 1


def test_batch_get_failure_stops_later_waves() -> None:
    entity, client = fake_entity(_model())
    echo = _echo(entity, delay=0.05)

    def handler(req: dict[str, Any]) -> dict[str, Any]:
        if plain_values(_requested(req)[0])["pk"] == "$shop#order_id_o0":
            raise ClientError(
                {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}}, "BatchGetItem"
            )
        return echo(req)

    client.on("batch_get_item", handler)

    with pytest.raises(AwsError) as exc:
        entity.get(_keys(250)).go(concurrency=2)

    assert exc.value.aws_code == "ProvisionedThroughputExceededException"
    assert len(client.calls_to("batch_get_item")) == 2


def test_batch_get_preserves_request_order_when_asked() -> None:
    entity, client = fake_entity(_model())
    client.on("batch_get_item", _echo(entity, reverse=True))

    ordered = entity.get(_keys(5)).go(preserve_batch_order=True).data
    arrived = entity.get(_keys(5)).go().data

    assert [record["order_id"] for record in ordered] == ["o0", "o1", "o2", "o3", "o4"]
    assert [record["order_id"] for record in arrived] == ["o4", "o3", "o2", "o1", "o0"]


def test_batch_get_leaves_missing_slots_empty() -> None:
    entity, client = fake_entity(_model())

    def handler(req: dict[str, Any]) -> dict[str, Any]:
        keys = _requested(req)
        return {"Responses": {TABLE: [attribute_values(_stored(entity, keys[1]))]}}

    client.on("batch_get_item", handler)

    data = entity.get(_keys(3)).go(preserve_batch_order=True).data

    assert data[0] is None
    assert data[1]["order_id"] == "o1"
    assert data[2] is None


def test_batch_get_reports_unprocessed_keys_as_facets_or_raw() -> None:
    entity, client = fake_entity(_model())

    def handler(req: dict[str, Any]) -> dict[str, Any]:
        keys = _requested(req)
        return {
            "Responses": {TABLE: [attribute_values(_stored(entity, keys[0]))]},
            "UnprocessedKeys": {TABLE: {"Keys": keys[1:]}},
        }

    client.on("batch_get_item", handler)

    result = entity.get(_keys(3)).go()
    assert [record["order_id"] for record in result.data] == ["o0"]
    assert result.unprocessed == [{"order_id": "o1", "customer": "c1"}, {"order_id": "o2", "customer": "c1"}]

    raw = entity.get(_keys(3)).go(unprocessed="raw")
    assert raw.unprocessed[0] == {"pk": "$shop#order_id_o1", "sk": "$order_1#customer_c1"}


def test_batch_write_chunks_and_reports_unprocessed_items() -> None:
    entity, client = fake_entity(_model())

    def handler(req: dict[str, Any]) -> dict[str, Any]:
        requests = req["RequestItems"][TABLE]
        return {"UnprocessedItems": {TABLE: requests[:1]}}

    client.on("batch_write_item", handler)
    items = [{**key, "total": 1} for key in _keys(30)]

    result = entity.put(items).go(concurrency=2)

    sizes = sorted(len(req["RequestItems"][TABLE]) for req in client.calls_to("batch_write_item"))
    assert sizes == [5, 25]
    assert sorted(entry["order_id"] for entry in result.unprocessed) == ["o0", "o25"]


def test_batch_delete_reports_unprocessed_keys() -> None:
    entity, client = fake_entity(_model())

    def handler(req: dict[str, Any]) -> dict[str, Any]:
        return {"UnprocessedItems": {TABLE: req["RequestItems"][TABLE][-1:]}}

    client.on("batch_write_item", handler)

    result = entity.delete(_keys(2)).go()

    assert result.unprocessed == [{"order_id": "o1", "customer": "c1"}]


def test_batch_order_keeps_first_slot_for_duplicate_keys() -> None:
    entity = Entity(_model())
    keys = [{"pk": "a", "sk": "1"}, {"pk": "b", "sk": "1"}, {"pk": "a", "sk": "1"}]

    order = BatchOrder(entity.model, keys)

    assert order.size == 3
    assert order.slot({"pk": "a", "sk": "1", "total": 1}) == 0
    assert order.slot({"pk": "b", "sk": "1"}) == 1
    assert order.slot({"pk": "c", "sk": "1"}) is None
