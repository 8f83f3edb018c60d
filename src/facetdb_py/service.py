from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import replace
from typing import Any, Self

from .compiler import ChainState
from .entity import Entity
from .errors import InvalidCollectionError, InvalidOptionsError, ModelDefinitionError
from .executor import OPERATIONS, paginate
from .expressions import FilterExpression, merge_expression_attributes
from .options import ExecutionOptions, resolve_options
from .results import QueryResult

logger = logging.getLogger(__name__)


class CollectionChain:
    """Query across every entity of a collection, grouping results by entity alias."""

    def __init__(self, service: Service, name: str, state: ChainState) -> None:
        self._service = service
        self._name = name
        self._state = state

    @property
    def state(self) -> ChainState:
        return self._state

    def where(self, *filters: FilterExpression) -> Self:
        return type(self)(self._service, self._name, replace(self._state, filters=self._state.filters + filters))

    filter = where

    def params(self, **options: Any) -> dict[str, Any]:
        return self._service._compile_collection(self._name, self._state, resolve_options(options))

    def go(self, **options: Any) -> QueryResult:
        return self._service._execute_collection(self._name, self._state, resolve_options(options))


class CollectionNamespace:
    """``service.collections.<name>(**facets)`` entry points."""

    def __init__(self, service: Service) -> None:
        self._service = service

    def __call__(self, name: str, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> CollectionChain:
        return self._service.collection(name, facets, **kwargs)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name not in self._service.collection_names:
            raise AttributeError(name)

        def collection(facets: Mapping[str, Any] | None = None, **kwargs: Any) -> CollectionChain:
            return self._service.collection(name, facets, **kwargs)

        return collection

    def __dir__(self) -> list[str]:
        return sorted(self._service.collection_names)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._service.collection_names))


class Service:
    """Entities sharing one table, queried together through their collections."""

    def __init__(
        self,
        entities: Mapping[str, Entity] | Sequence[Entity],
        *,
        client: Any | None = None,
        table: str | None = None,
    ) -> None:
        if isinstance(entities, Mapping):
            members = dict(entities)
        else:
            members = {entity.name: entity for entity in entities}
        if not members:
            raise ModelDefinitionError("a service needs at least one entity", code="invalid_service")

        names = {entity.service for entity in members.values()}
        if len(names) != 1:
            raise ModelDefinitionError(
                f"entities belong to different services: {sorted(names)}", code="invalid_service"
            )
        self.name = names.pop()

        for entity in members.values():
            if client is not None:
                entity.set_client(client)
            if table is not None:
                entity.set_table_name(table)

        self.entities = members
        self._collections = self._join_collections(members)
        self.collections = CollectionNamespace(self)

    @property
    def collection_names(self) -> frozenset[str]:
        return frozenset(self._collections)

    @staticmethod
    def _join_collections(members: Mapping[str, Entity]) -> dict[str, tuple[str, ...]]:
        joined: dict[str, list[str]] = {}
        shapes: dict[str, tuple[str, Any]] = {}
        for alias, entity in members.items():
            model = entity.model
            for name, index in model.collections.items():
                definition = model.index(index)
                shape = (
                    definition.name,
                    definition.pk.field,
                    definition.pk.composite,
                    definition.sk.field if definition.sk is not None else None,
                    model.sub_collections[name],
                )
                seen = shapes.get(name)
                if seen is None:
                    shapes[name] = (alias, shape)
                elif seen[1] != shape:
                    raise ModelDefinitionError(
                        f"collection {name!r} is defined differently on {seen[0]!r} and {alias!r}",
                        code="inconsistent_collection",
                    )
                joined.setdefault(name, []).append(alias)
        return {name: tuple(aliases) for name, aliases in joined.items()}

    def collection(self, name: str, facets: Mapping[str, Any] | None = None, **kwargs: Any) -> CollectionChain:
        aliases = self._collections.get(name)
        if aliases is None:
            raise InvalidCollectionError(f"service {self.name!r} has no collection {name!r}")
        lead = self.entities[aliases[0]]
        state = ChainState(
            method="query",
            index=lead.model.collections[name],
            keys={**(facets or {}), **kwargs},
            query_type="collection",
            collection=name,
        )
        return CollectionChain(self, name, state)

    def _members(self, name: str) -> dict[str, Entity]:
        return {alias: self.entities[alias] for alias in self._collections[name]}

    def _compile_collection(self, name: str, state: ChainState, options: ExecutionOptions) -> dict[str, Any]:
        if options.attributes:
            raise InvalidOptionsError("attributes are not supported on collection queries")
        if options.pager == "item":
            raise InvalidOptionsError("collection queries support the cursor and raw pagers only")

        members = self._members(name)
        lead = next(iter(members.values()))
        params = lead.compiler.params(state, options)

        terms: list[str] = []
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        for alias, entity in members.items():
            expression, identity_names, identity_values = entity.compiler.identity_expression(alias)
            terms.append(f"({expression})")
            names.update(identity_names)
            values.update(identity_values)

        identity = " OR ".join(terms)
        existing = params.get("FilterExpression")
        params["FilterExpression"] = f"({existing}) AND ({identity})" if existing else identity
        params["ExpressionAttributeNames"] = merge_expression_attributes(params.get("ExpressionAttributeNames"), names)
        params["ExpressionAttributeValues"] = merge_expression_attributes(
            params.get("ExpressionAttributeValues"), values
        )
        return params

    def _execute_collection(self, name: str, state: ChainState, options: ExecutionOptions) -> QueryResult:
        params = self._compile_collection(name, state, options)
        members = self._members(name)
        executor = next(iter(members.values())).executor
        start_key = executor.exclusive_start_key(options, state.index)

        if options.raw:
            req = dict(params)
            if start_key:
                req["ExclusiveStartKey"] = start_key
            response = executor.call(OPERATIONS["query"], req, options)
            return QueryResult(data=response, cursor=response.get("LastEvaluatedKey"))

        data: dict[str, list[Any]] = {alias: [] for alias in members}

        def on_page(response: dict[str, Any]) -> int:
            kept = 0
            for item in response.get("Items") or []:
                for alias, entity in members.items():
                    if entity.owns_item(item):
                        data[alias].append(
                            entity.model.schema.format_item_for_retrieval(item, include_keys=options.include_keys)
                        )
                        kept += 1
                        break
                else:
                    logger.debug("collection %r returned an item no member owns", name)
            return kept

        last_key = paginate(
            lambda req: executor.call(OPERATIONS["query"], req, options),
            params,
            options,
            start_key=start_key,
            on_page=on_page,
        )
        return QueryResult(data=data, cursor=executor.format_cursor(options, last_key, index=state.index))
