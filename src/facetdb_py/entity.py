from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from .batch import BatchOrchestrator
from .chain import Chain, QueryChain, SortKeyChain, UpdateChain, WriteChain
from .client import DocumentClient, normalize_client
from .compiler import DEFAULT_IDENTIFIERS, ChainState, ParameterCompiler
from .cursor import CursorFormatter, DefaultCursorFormatter, validate_cursor_formatter
from .errors import InvalidIdentifierError, InvalidOptionsError
from .executor import Executor
from .expressions import FilterCondition
from .matcher import IndexMatch, find_best_index
from .model import PRIMARY_INDEX, EntityModel, normalize_model
from .options import ExecutionOptions, resolve_options
from .results import BatchGetResult, BatchWriteResult, ItemResult, QueryResult

logger = logging.getLogger(__name__)

_BATCH_METHODS = frozenset({"batch_get", "batch_put", "batch_delete"})


def _is_batch(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, Mapping))


def _facets(values: Mapping[str, Any] | None, kwargs: Mapping[str, Any]) -> dict[str, Any]:
    return {**(values or {}), **kwargs}


class QueryNamespace:
    """``entity.query.<access_pattern>(**facets)`` entry points."""

    def __init__(self, entity: Entity) -> None:
        self._entity = entity

    def __call__(self, access_pattern: str, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> SortKeyChain:
        model = self._entity.model
        definition = model.for_access_pattern(access_pattern)
        state = ChainState(method="query", index=definition.name, keys=_facets(facets, kwargs))
        return SortKeyChain(self._entity, state)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name not in self._entity.model.access_patterns:
            raise AttributeError(name)

        def access_pattern(facets: Mapping[str, Any] | None = None, **kwargs: Any) -> SortKeyChain:
            return self(name, facets, **kwargs)

        return access_pattern

    def __dir__(self) -> list[str]:
        return sorted(self._entity.model.access_patterns)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entity.model.access_patterns)


class Entity:
    """One logical record type stored in a shared DynamoDB table."""

    def __init__(
        self,
        model: Mapping[str, Any],
        *,
        client: Any | None = None,
        table: str | None = None,
        identifiers: Mapping[str, str] | None = None,
        cursor_formatter: CursorFormatter | None = None,
    ) -> None:
        self._model = normalize_model(model)
        self._table = table or self._model.table
        self._identifiers = dict(DEFAULT_IDENTIFIERS)
        for kind, name in (identifiers or {}).items():
            self._set_identifier(kind, name)
        self._client = normalize_client(client)
        self._cursor_formatter: CursorFormatter = (
            validate_cursor_formatter(cursor_formatter) if cursor_formatter is not None else DefaultCursorFormatter()
        )
        self.query = QueryNamespace(self)
        self._rebuild()

    def _rebuild(self) -> None:
        self._compiler = ParameterCompiler(self._model, identifiers=self._identifiers, table=self._table)
        self._executor = Executor(
            self._model,
            identifiers=self._identifiers,
            client=self._client,
            cursor_formatter=self._cursor_formatter,
        )
        self._batch = BatchOrchestrator(self._model, self._executor)

    @property
    def model(self) -> EntityModel:
        return self._model

    @property
    def name(self) -> str:
        return self._model.entity

    @property
    def version(self) -> str:
        return self._model.version

    @property
    def service(self) -> str:
        return self._model.service

    @property
    def table(self) -> str | None:
        return self._table

    @property
    def identifiers(self) -> Mapping[str, str]:
        return dict(self._identifiers)

    @property
    def client(self) -> DocumentClient:
        return self._client

    @property
    def compiler(self) -> ParameterCompiler:
        return self._compiler

    @property
    def executor(self) -> Executor:
        return self._executor

    def _set_identifier(self, kind: str, name: str) -> None:
        if kind not in DEFAULT_IDENTIFIERS:
            raise InvalidIdentifierError(
                f"invalid identifier type {kind!r}, expected one of {sorted(DEFAULT_IDENTIFIERS)}"
            )
        if not isinstance(name, str) or not name:
            raise InvalidIdentifierError(f"identifier {kind!r} must be a non-empty string")
        self._identifiers[kind] = name

    def set_identifier(self, kind: str, name: str) -> None:
        self._set_identifier(kind, name)
        self._rebuild()

    def set_table_name(self, table: str) -> None:
        if not isinstance(table, str) or not table:
            raise InvalidOptionsError("table must be a non-empty string")
        self._table = table
        self._rebuild()

    def set_client(self, client: Any) -> None:
        self._client = normalize_client(client)
        self._rebuild()

    def get(self, keys: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> Chain:
        if _is_batch(keys):
            return Chain(self, ChainState(method="batch_get", items=tuple(keys)))
        return Chain(self, ChainState(method="get", keys=dict(keys)))

    def delete(self, keys: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> Chain:
        if _is_batch(keys):
            return Chain(self, ChainState(method="batch_delete", items=tuple(keys)))
        return WriteChain(self, ChainState(method="delete", keys=dict(keys)))

    def remove(self, keys: Mapping[str, Any]) -> WriteChain:
        return WriteChain(self, ChainState(method="remove", keys=dict(keys)))

    def put(self, item: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> Chain:
        if _is_batch(item):
            return Chain(self, ChainState(method="batch_put", items=tuple(item)))
        return WriteChain(self, ChainState(method="put", item=dict(item)))

    def create(self, item: Mapping[str, Any]) -> WriteChain:
        return WriteChain(self, ChainState(method="create", item=dict(item)))

    def update(self, keys: Mapping[str, Any]) -> UpdateChain:
        return UpdateChain(self, ChainState(method="update", keys=dict(keys)))

    def patch(self, keys: Mapping[str, Any]) -> UpdateChain:
        return UpdateChain(self, ChainState(method="patch", keys=dict(keys)))

    def scan(self) -> QueryChain:
        return QueryChain(self, ChainState(method="scan"))

    def best_index(self, facets: Mapping[str, Any]) -> IndexMatch:
        return find_best_index(self._model, facets)

    def find(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        """Query the index that best covers ``facets``, scanning when none does."""
        values = _facets(facets, kwargs)
        match = find_best_index(self._model, values)
        if match.should_scan:
            logger.debug("no index covers %s for %s, falling back to scan", sorted(values), self.name)
            filters = tuple(FilterCondition.eq(name, value) for name, value in values.items())
            return QueryChain(self, ChainState(method="scan", filters=filters))
        return QueryChain(self, ChainState(method="query", index=match.index, keys=values))

    def match(self, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryChain:
        """Like ``find`` but every supplied attribute must also equal its value."""
        values = _facets(facets, kwargs)
        chain = self.find(values)
        if chain.state.method == "scan":
            return chain
        return chain.where(*(FilterCondition.eq(name, value) for name, value in values.items()))

    def owns_item(self, item: Mapping[str, Any]) -> bool:
        return self._executor.owns_item(item)

    def owns_last_evaluated_key(self, key: Mapping[str, Any] | None) -> bool:
        return self._executor.owns_last_evaluated_key(key)

    def owns_cursor(self, cursor: str | None) -> bool:
        return self.owns_last_evaluated_key(self.deserialize_cursor(cursor))

    def serialize_cursor(self, key: Mapping[str, Any] | None) -> str | None:
        return self._cursor_formatter.serialize(key)

    def deserialize_cursor(self, cursor: str | None) -> dict[str, Any] | None:
        return self._cursor_formatter.deserialize(cursor)

    def parse(self, response: Mapping[str, Any], **options: Any) -> Any:
        """Format a raw response (``Item``, ``Items`` or ``Attributes``) or a bare item."""
        resolved = resolve_options(options, {"ignore_ownership": True})
        if "Items" in response:
            items = [self._executor.format_item(item, resolved) for item in response["Items"] or []]
            return [item for item in items if item is not None]
        if "Item" in response or "Attributes" in response:
            item = response.get("Item") or response.get("Attributes")
            return self._executor.format_item(item, resolved) if item else None
        return self._executor.format_item(response, resolved)

    def _compile(self, state: ChainState, options: Mapping[str, Any]) -> Any:
        resolved = resolve_options(options)
        if state.method in _BATCH_METHODS:
            return self._compiler.batch_params(state, resolved)
        return self._compiler.params(state, resolved)

    def _execute(
        self, state: ChainState, options: Mapping[str, Any]
    ) -> ItemResult | QueryResult | BatchGetResult | BatchWriteResult:
        resolved = resolve_options(options)
        if state.method in _BATCH_METHODS:
            return self._execute_batch(state, resolved)

        params = self._compiler.params(state, resolved)
        if state.method in ("query", "scan"):
            index = state.index if state.method == "query" else PRIMARY_INDEX
            return self._executor.execute_query(state.method, params, resolved, index=index)
        return self._executor.execute_operation(state.method, params, resolved)

    def _execute_batch(self, state: ChainState, options: ExecutionOptions) -> BatchGetResult | BatchWriteResult:
        batches = self._compiler.batch_params(state, options)
        table = self._compiler.table_name(options)
        if state.method == "batch_get":
            return self._batch.batch_get(batches, options, table=table)
        return self._batch.batch_write(state.method, batches, options, table=table)

    def __repr__(self) -> str:
        return f"Entity(service={self.service!r}, entity={self.name!r}, version={self.version!r})"
