from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()

_ITEM_KEYS = ("Key", "Item", "ExclusiveStartKey")
_OPERATIONS = (
    "get_item",
    "put_item",
    "delete_item",
    "update_item",
    "query",
    "scan",
    "batch_get_item",
    "batch_write_item",
)


def _to_document_safe(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {str(k): _to_document_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_document_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_to_document_safe(v) for v in value}
    return value


def _from_document_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, Binary):
        return bytes(value.value)
    if isinstance(value, dict):
        return {k: _from_document_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_document_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_from_document_safe(v) for v in value}
    return value


def to_attribute_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(_to_document_safe(value))


def from_attribute_value(av: Mapping[str, Any]) -> Any:
    return _from_document_safe(_deserializer.deserialize(dict(av)))


def marshal_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {str(k): to_attribute_value(v) for k, v in item.items()}


def unmarshal_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {str(k): from_attribute_value(v) for k, v in item.items()}


def _marshal_request(params: Mapping[str, Any]) -> dict[str, Any]:
    req = dict(params)
    for key in _ITEM_KEYS:
        if req.get(key) is not None:
            req[key] = marshal_item(req[key])
    if req.get("ExpressionAttributeValues"):
        req["ExpressionAttributeValues"] = marshal_item(req["ExpressionAttributeValues"])

    request_items = req.get("RequestItems")
    if isinstance(request_items, Mapping):
        marshalled: dict[str, Any] = {}
        for table, spec in request_items.items():
            if isinstance(spec, Mapping):
                marshalled[table] = {**spec, "Keys": [marshal_item(k) for k in spec.get("Keys", [])]}
            else:
                marshalled[table] = [_marshal_write_request(r) for r in spec]
        req["RequestItems"] = marshalled
    return req


def _marshal_write_request(request: Mapping[str, Any]) -> dict[str, Any]:
    if "PutRequest" in request:
        return {"PutRequest": {"Item": marshal_item(request["PutRequest"]["Item"])}}
    if "DeleteRequest" in request:
        return {"DeleteRequest": {"Key": marshal_item(request["DeleteRequest"]["Key"])}}
    raise ValueError(f"unsupported write request: {sorted(request)}")


def _unmarshal_write_request(request: Mapping[str, Any]) -> dict[str, Any]:
    if "PutRequest" in request:
        return {"PutRequest": {"Item": unmarshal_item(request["PutRequest"]["Item"])}}
    if "DeleteRequest" in request:
        return {"DeleteRequest": {"Key": unmarshal_item(request["DeleteRequest"]["Key"])}}
    raise ValueError(f"unsupported write request: {sorted(request)}")


def _unmarshal_response(resp: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(resp)
    for key in ("Item", "Attributes", "LastEvaluatedKey"):
        if out.get(key):
            out[key] = unmarshal_item(out[key])
    if "Items" in out:
        out["Items"] = [unmarshal_item(item) for item in out.get("Items") or []]
    if "Responses" in out:
        out["Responses"] = {
            table: [unmarshal_item(item) for item in items] for table, items in (out["Responses"] or {}).items()
        }
    if "UnprocessedKeys" in out:
        out["UnprocessedKeys"] = {
            table: {**spec, "Keys": [unmarshal_item(k) for k in spec.get("Keys", [])]}
            for table, spec in (out["UnprocessedKeys"] or {}).items()
        }
    if "UnprocessedItems" in out:
        out["UnprocessedItems"] = {
            table: [_unmarshal_write_request(r) for r in requests]
            for table, requests in (out["UnprocessedItems"] or {}).items()
        }
    return out


class DocumentClient:
    """Plain-value facade over a low-level DynamoDB client.

    Requests and responses use Python values; attribute-value marshalling
    happens here and nowhere else.
    """

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("dynamodb")
        return self._client

    def execute(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        if operation not in _OPERATIONS:
            raise ValueError(f"unsupported operation: {operation}")
        resp = getattr(self.client, operation)(**_marshal_request(params))
        return _unmarshal_response(resp or {})


def normalize_client(client: Any | None) -> DocumentClient:
    if isinstance(client, DocumentClient):
        return client
    return DocumentClient(client)
