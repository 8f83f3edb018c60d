from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Self

from .compiler import ChainState, UpdateOperation, UpdateOp
from .expressions import FilterExpression

if TYPE_CHECKING:
    from .entity import Entity


def _merge(values: Mapping[str, Any] | None, kwargs: Mapping[str, Any]) -> dict[str, Any]:
    return {**(values or {}), **kwargs}


class Chain:
    """Immutable request builder; every step returns a new chain.

    ``params`` compiles the accumulated state without executing it, ``go``
    compiles and executes it.
    """

    def __init__(self, entity: Entity, state: ChainState) -> None:
        self._entity = entity
        self._state = state

    @property
    def state(self) -> ChainState:
        return self._state

    def _next(self, **changes: Any) -> Self:
        return type(self)(self._entity, replace(self._state, **changes))

    def params(self, **options: Any) -> Any:
        return self._entity._compile(self._state, options)

    def go(self, **options: Any) -> Any:
        return self._entity._execute(self._state, options)


class WriteChain(Chain):
    def where(self, *conditions: FilterExpression) -> Self:
        return self._next(conditions=self._state.conditions + conditions)


class UpdateChain(WriteChain):
    def _op(self, op: UpdateOp, values: Mapping[str, Any]) -> Self:
        updates = tuple(UpdateOperation(op=op, attribute=name, value=value) for name, value in values.items())
        return self._next(updates=self._state.updates + updates)

    def set(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        return self._op("set", _merge(values, kwargs))

    def remove(self, *attributes: str) -> Self:
        return self._op("remove", dict.fromkeys(attributes))

    def add(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        return self._op("add", _merge(values, kwargs))

    def subtract(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        return self._op("subtract", _merge(values, kwargs))

    def append(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        return self._op("append", _merge(values, kwargs))

    def delete(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        return self._op("delete", _merge(values, kwargs))


class QueryChain(Chain):
    def where(self, *filters: FilterExpression) -> Self:
        return self._next(filters=self._state.filters + filters)

    filter = where


class SortKeyChain(QueryChain):
    """Query on one access pattern, narrowed by its sort key composite attributes."""

    def _range(self, query_type: str, *facets: Mapping[str, Any] | None) -> QueryChain:
        state = replace(self._state, query_type=query_type, sk_facets=tuple(facets))
        return QueryChain(self._entity, state)

    def begins(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        return self._range("begins", _merge(facets, kwargs))

    def between(self, start: Mapping[str, Any], end: Mapping[str, Any] | None = None) -> QueryChain:
        return self._range("between", start, end)

    def gt(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        return self._range("gt", _merge(facets, kwargs))

    def gte(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        return self._range("gte", _merge(facets, kwargs))

    def lt(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        return self._range("lt", _merge(facets, kwargs))

    def lte(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        return self._range("lte", _merge(facets, kwargs))
