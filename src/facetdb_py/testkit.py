from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .client import marshal_item, unmarshal_item
from .entity import Entity
from .mocks import ANY, FakeDynamoDBClient


def attribute_values(item: Mapping[str, Any]) -> dict[str, Any]:
    """Attribute-value form of a plain item, for fake responses and expectations."""
    return marshal_item(item)


def plain_values(item: Mapping[str, Any]) -> dict[str, Any]:
    return unmarshal_item(item)


def fake_entity(
    model: Mapping[str, Any], *, table: str = "test-table", **config: Any
) -> tuple[Entity, FakeDynamoDBClient]:
    client = FakeDynamoDBClient()
    return Entity(model, client=client, table=table, **config), client


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "attribute_values",
    "fake_entity",
    "plain_values",
]
