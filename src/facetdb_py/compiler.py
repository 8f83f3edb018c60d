from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import (
    IncompleteCompositeAttributesError,
    InvalidAttributeError,
    InvalidCollectionError,
    InvalidOptionsError,
    ValidationError,
)
from .expressions import FilterBuilder, FilterExpression, UpdateExpression, merge_expression_attributes, placeholder
from .keys import encode_key, index_keys, make_parameter_key
from .model import PRIMARY_INDEX, EntityModel, IndexDefinition, format_key_casing
from .options import RETURN_VALUES, ExecutionOptions

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25

type Method = Literal[
    "get",
    "delete",
    "remove",
    "put",
    "create",
    "update",
    "patch",
    "query",
    "scan",
    "batch_get",
    "batch_put",
    "batch_delete",
]
type QueryType = Literal["is", "begins", "between", "gt", "gte", "lt", "lte", "collection"]
type UpdateOp = Literal["set", "remove", "add", "subtract", "append", "delete"]

COMPARISONS: Mapping[str, str] = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<="}

DEFAULT_IDENTIFIERS: Mapping[str, str] = {"entity": "__fdb_e__", "version": "__fdb_v__"}


@dataclass(frozen=True)
class UpdateOperation:
    op: UpdateOp
    attribute: str
    value: Any = None


@dataclass(frozen=True)
class ChainState:
    method: Method
    index: str = PRIMARY_INDEX
    keys: Mapping[str, Any] = field(default_factory=dict)
    query_type: QueryType = "is"
    sk_facets: tuple[Mapping[str, Any] | None, ...] = ()
    item: Mapping[str, Any] = field(default_factory=dict)
    items: tuple[Mapping[str, Any], ...] = ()
    updates: tuple[UpdateOperation, ...] = ()
    filters: tuple[FilterExpression, ...] = ()
    conditions: tuple[FilterExpression, ...] = ()
    collection: str | None = None


def chunked[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _drop_none(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _sk_facets(state: ChainState, position: int) -> Mapping[str, Any]:
    if position < len(state.sk_facets):
        return state.sk_facets[position] or {}
    return {}


class ParameterCompiler:
    def __init__(self, model: EntityModel, *, identifiers: Mapping[str, str], table: str | None) -> None:
        self._model = model
        self._schema = model.schema
        self._identifiers = identifiers
        self._table = table

    def table_name(self, options: ExecutionOptions) -> str:
        table = options.table or self._table
        if not table:
            raise InvalidOptionsError("no table name configured for this entity", code="missing_table")
        return table

    def identity_item(self) -> dict[str, str]:
        return {
            self._identifiers["entity"]: self._model.entity,
            self._identifiers["version"]: self._model.version,
        }

    def identity_expression(self, alias: str | None = None) -> tuple[str, dict[str, str], dict[str, str]]:
        names: dict[str, str] = {}
        values: dict[str, str] = {}
        terms: list[str] = []
        for kind, expected in (("entity", self._model.entity), ("version", self._model.version)):
            identifier = self._identifiers[kind]
            ref = placeholder(identifier if alias is None else f"{identifier}_{alias}")
            names[f"#{ref}"] = identifier
            values[f":{ref}"] = expected
            terms.append(f"#{ref} = :{ref}")
        return " AND ".join(terms), names, values

    def params(self, state: ChainState, options: ExecutionOptions) -> dict[str, Any]:
        match state.method:
            case "get" | "delete" | "remove":
                params = self._simple(state)
            case "put" | "create":
                params = self._put(state.item)
            case "update" | "patch":
                params = self._update(state)
            case "query":
                params = self._query(state)
            case "scan":
                params = self._scan(state)
            case _:
                raise ValidationError(f"method {state.method!r} compiles to batches")

        params["TableName"] = self.table_name(options)
        if state.method == "remove" or state.method == "patch":
            self._apply_existence(params, "attribute_exists")
        elif state.method == "create":
            self._apply_existence(params, "attribute_not_exists")
        if state.method not in ("get", "query", "scan"):
            self._apply_conditions(params, state.conditions)

        self._apply_options(params, state, options)
        logger.debug("compiled %s params for %s: %r", state.method, self._model.entity, params)
        return params

    def batch_params(self, state: ChainState, options: ExecutionOptions) -> list[dict[str, Any]]:
        table = self.table_name(options)
        if state.method == "batch_get":
            keys = [self.primary_key(item) for item in state.items]
            spec: dict[str, Any] = dict(options.params)
            projection = self._projection(options, index=None)
            if projection is not None:
                spec["ProjectionExpression"], spec["ExpressionAttributeNames"] = projection
            batches = [
                {"RequestItems": {table: {**spec, "Keys": list(chunk)}}} for chunk in chunked(keys, BATCH_GET_LIMIT)
            ]
        elif state.method == "batch_put":
            writes = [{"PutRequest": {"Item": self._put(item)["Item"]}} for item in state.items]
            batches = [{"RequestItems": {table: list(chunk)}} for chunk in chunked(writes, BATCH_WRITE_LIMIT)]
        elif state.method == "batch_delete":
            writes = [{"DeleteRequest": {"Key": self.primary_key(item)}} for item in state.items]
            batches = [{"RequestItems": {table: list(chunk)}} for chunk in chunked(writes, BATCH_WRITE_LIMIT)]
        else:
            raise ValidationError(f"method {state.method!r} does not compile to batches")

        logger.debug("compiled %d %s batches for %s", len(batches), state.method, self._model.entity)
        return batches

    def primary_key(self, facets: Mapping[str, Any]) -> dict[str, Any]:
        primary = self._model.primary
        self._expect_facets(primary, facets, primary.composite)
        return make_parameter_key(primary, index_keys(self._model, PRIMARY_INDEX, facets))

    def _expect_facets(self, definition: IndexDefinition, facets: Mapping[str, Any], names: Sequence[str]) -> None:
        missing = tuple(name for name in names if facets.get(name) is None)
        if missing:
            raise IncompleteCompositeAttributesError(missing=missing, access_patterns=(definition.access_pattern,))

    def _simple(self, state: ChainState) -> dict[str, Any]:
        return {"Key": self.primary_key(state.keys)}

    def _apply_existence(self, params: dict[str, Any], function: str) -> None:
        primary = self._model.primary
        names = {"#pk": primary.pk.field}
        expression = f"{function}(#pk)"
        if primary.sk is not None:
            names["#sk"] = primary.sk.field
            expression = f"{expression} AND {function}(#sk)"
        params["ExpressionAttributeNames"] = merge_expression_attributes(
            params.get("ExpressionAttributeNames"), names
        )
        params["ConditionExpression"] = expression

    def _apply_conditions(self, params: dict[str, Any], conditions: Sequence[FilterExpression]) -> None:
        builder = FilterBuilder(self._schema, conditions, prefix="c")
        built = builder.build()
        if not built:
            return
        existing = params.get("ConditionExpression")
        params["ConditionExpression"] = f"{existing} AND {built}" if existing else built
        params["ExpressionAttributeNames"] = merge_expression_attributes(
            params.get("ExpressionAttributeNames"), builder.get_names()
        )
        values = merge_expression_attributes(params.get("ExpressionAttributeValues"), builder.get_values())
        if values:
            params["ExpressionAttributeValues"] = values

    def _put(self, item: Mapping[str, Any]) -> dict[str, Any]:
        values = _drop_none(self._schema.apply_defaults(item))
        self._schema.check_required(values)
        attributes = _drop_none(self._schema.apply_attribute_setters(values))

        primary = self._model.primary
        self._expect_facets(primary, attributes, primary.composite)

        missing: list[str] = []
        access_patterns: list[str] = []
        keys: dict[str, Any] = {}
        for definition in self._model.indexes.values():
            impacted = definition.is_primary
            for key in (definition.pk, definition.sk):
                if key is None:
                    continue
                supplied = [name for name in key.composite if attributes.get(name) is not None]
                if supplied and len(supplied) != len(key.composite):
                    missing.extend(name for name in key.composite if name not in supplied)
                    access_patterns.append(definition.access_pattern)
                impacted = impacted or bool(supplied)
            if impacted:
                keys.update(make_parameter_key(definition, index_keys(self._model, definition.name, attributes)))

        if missing:
            raise IncompleteCompositeAttributesError(
                missing=tuple(dict.fromkeys(missing)),
                access_patterns=tuple(dict.fromkeys(access_patterns)),
            )

        return {
            "Item": {
                **self._schema.translate_to_fields(attributes),
                **keys,
                **self.identity_item(),
            }
        }

    def _update(self, state: ChainState) -> dict[str, Any]:
        primary = self._model.primary
        key_facets = {name: state.keys.get(name) for name in primary.composite}
        key = self.primary_key(key_facets)
        primary_fields = {primary.pk.field} | ({primary.sk.field} if primary.sk is not None else set())

        sets: dict[str, Any] = {}
        removed: list[str] = []
        for operation in state.updates:
            attr = self._schema.require_attribute(operation.attribute)
            if operation.attribute in primary.composite or attr.field in primary_fields:
                raise InvalidAttributeError(
                    f"attribute {operation.attribute!r} is part of the primary index and cannot be updated"
                )
            if attr.readonly:
                raise InvalidAttributeError(f"attribute {operation.attribute!r} is read-only and cannot be updated")
            if operation.op not in ("set", "remove") and operation.attribute in self._model.by_attribute:
                raise InvalidAttributeError(
                    f"composite attribute {operation.attribute!r} only supports set and remove operations"
                )
            if operation.op == "set":
                sets[operation.attribute] = operation.value
            elif operation.op == "remove":
                removed.append(operation.attribute)

        prepared = self._schema.apply_attribute_setters(sets)
        expression = UpdateExpression()
        for operation in state.updates:
            attr = self._schema.attributes[operation.attribute]
            match operation.op:
                case "set":
                    if not expression.has_path(attr.field):
                        expression.set(attr.field, prepared[operation.attribute])
                case "remove":
                    expression.remove(attr.field)
                case "add":
                    expression.add(attr.field, operation.value)
                case "subtract":
                    expression.subtract(attr.field, operation.value)
                case "append":
                    expression.append(attr.field, operation.value)
                case "delete":
                    expression.delete(attr.field, operation.value)

        self._update_derived_keys(expression, key_facets, prepared, removed)

        for name in primary.composite:
            attr = self._schema.attributes[name]
            if attr.field not in primary_fields and not expression.has_path(attr.field):
                expression.set(attr.field, key_facets[name])
        for identifier, value in self.identity_item().items():
            if not expression.has_path(identifier):
                expression.set(identifier, value)

        params: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": expression.build(),
            "ExpressionAttributeNames": expression.get_names(),
        }
        values = expression.get_values()
        if values:
            params["ExpressionAttributeValues"] = values
        return params

    def _update_derived_keys(
        self,
        expression: UpdateExpression,
        key_facets: Mapping[str, Any],
        sets: Mapping[str, Any],
        removed: Sequence[str],
    ) -> None:
        available = {**key_facets, **sets}
        missing: list[str] = []
        access_patterns: list[str] = []
        for definition in self._model.indexes.values():
            if definition.is_primary:
                continue
            pk_touched = False
            for key in (definition.pk, definition.sk):
                if key is None:
                    continue
                if any(name in removed for name in key.composite):
                    if not expression.has_path(key.field):
                        expression.remove(key.field)
                    continue
                if not any(name in sets for name in key.composite):
                    continue
                absent = [name for name in key.composite if available.get(name) is None]
                if absent:
                    missing.extend(absent)
                    access_patterns.append(definition.access_pattern)
                    continue
                if key.key_type == "pk":
                    pk_touched = True
                if not expression.has_path(key.field):
                    expression.set(key.field, encode_key(self._model, key, available))

            sk = definition.sk
            if pk_touched and sk is not None and not sk.composite and not expression.has_path(sk.field):
                expression.set(sk.field, encode_key(self._model, sk, {}))

        if missing:
            raise IncompleteCompositeAttributesError(
                missing=tuple(dict.fromkeys(missing)),
                access_patterns=tuple(dict.fromkeys(access_patterns)),
            )

    def _query(self, state: ChainState) -> dict[str, Any]:
        definition = self._model.index(state.index)
        self._expect_facets(definition, state.keys, definition.pk.composite)
        query_type = state.query_type
        sk = definition.sk

        names: dict[str, str] = {"#pk": definition.pk.field}
        values: dict[str, Any] = {}
        partial = query_type != "is"
        values[":pk"] = encode_key(self._model, definition.pk, state.keys, partial=partial)
        condition = "#pk = :pk"

        if sk is None:
            if query_type not in ("is", "begins"):
                raise ValidationError(f"index {definition.access_pattern!r} has no sort key for a {query_type} query")
        elif query_type == "collection":
            names["#sk1"] = sk.field
            values[":sk1"] = self.collection_prefix(state.collection)
            condition = f"{condition} and begins_with(#sk1, :sk1)"
        elif query_type in ("is", "begins"):
            facets = {**state.keys, **_sk_facets(state, 0)}
            sk_value = encode_key(self._model, sk, facets, partial=partial)
            complete = all(facets.get(name) is not None for name in sk.composite)
            if sk_value != "":
                names["#sk1"] = sk.field
                values[":sk1"] = sk_value
                if query_type == "is" and complete:
                    condition = f"{condition} and #sk1 = :sk1"
                else:
                    condition = f"{condition} and begins_with(#sk1, :sk1)"
        elif query_type == "between":
            start = _sk_facets(state, 0)
            end = state.sk_facets[1] if len(state.sk_facets) > 1 else None
            names["#sk1"] = sk.field
            values[":sk1"] = encode_key(self._model, sk, {**state.keys, **start}, partial=True)
            if end is None:
                condition = f"{condition} and #sk1 >= :sk1"
            else:
                values[":sk2"] = encode_key(self._model, sk, {**state.keys, **end}, partial=True)
                condition = f"{condition} and #sk1 BETWEEN :sk1 AND :sk2"
        elif query_type in COMPARISONS:
            facets = {**state.keys, **_sk_facets(state, 0)}
            names["#sk1"] = sk.field
            values[":sk1"] = encode_key(self._model, sk, facets, partial=True)
            condition = f"{condition} and #sk1 {COMPARISONS[query_type]} :sk1"
        else:
            raise ValidationError(f"invalid query type: {query_type}")

        params: dict[str, Any] = {"KeyConditionExpression": condition}
        if not definition.is_primary:
            params["IndexName"] = definition.name
        self._apply_filters(params, state.filters, names, values)
        return params

    def collection_prefix(self, collection: str | None) -> str:
        if collection is None or collection not in self._model.sub_collections:
            raise InvalidCollectionError(f"entity {self._model.entity!r} is not part of collection {collection!r}")
        definition = self._model.index(self._model.collections[collection])
        chain = self._model.sub_collections[collection]
        sk = definition.sk
        casing = sk.casing if sk is not None else "default"
        return format_key_casing("$" + "#".join(chain), casing)

    def _scan(self, state: ChainState) -> dict[str, Any]:
        primary = self._model.primary
        keys = index_keys(self._model, PRIMARY_INDEX, {})
        identity, names, values = self.identity_expression()
        terms: list[str] = []
        if isinstance(keys.pk, str) and keys.pk:
            names["#pk"] = primary.pk.field
            values[":pk"] = keys.pk
            terms.append("begins_with(#pk, :pk)")
        terms.append(identity)
        if primary.sk is not None and isinstance(keys.sk, str) and keys.sk:
            names["#sk"] = primary.sk.field
            values[":sk"] = keys.sk
            terms.append("begins_with(#sk, :sk)")

        params: dict[str, Any] = {}
        self._apply_filters(params, state.filters, names, values, base=" AND ".join(terms))
        return params

    def _apply_filters(
        self,
        params: dict[str, Any],
        filters: Sequence[FilterExpression],
        names: Mapping[str, str],
        values: Mapping[str, Any],
        *,
        base: str = "",
    ) -> None:
        builder = FilterBuilder(self._schema, filters, prefix="f")
        built = builder.build()
        expression = " AND ".join(part for part in (base, built) if part)
        params["ExpressionAttributeNames"] = merge_expression_attributes(builder.get_names(), names)
        params["ExpressionAttributeValues"] = merge_expression_attributes(builder.get_values(), values)
        if expression:
            params["FilterExpression"] = expression

    def _projection(self, options: ExecutionOptions, *, index: str | None) -> tuple[str, dict[str, str]] | None:
        if not options.attributes:
            return None

        unknown = [name for name in options.attributes if self._schema.get_attribute(name) is None]
        if unknown:
            raise InvalidOptionsError(f"unknown attributes provided in query options: {', '.join(unknown)}")

        fields = [self._schema.get_field_name(name) for name in options.attributes]
        if not options.raw and not options.ignore_ownership:
            fields.extend(self._identifiers[kind] for kind in ("entity", "version"))
        if index is not None and not options.raw and options.pager != "raw":
            composite = list(self._model.primary.composite)
            if index != PRIMARY_INDEX:
                composite.extend(self._model.index(index).composite)
            fields.extend(self._schema.get_field_name(name) for name in composite)

        names = {f"#p_{placeholder(f)}": f for f in dict.fromkeys(fields)}
        return ", ".join(names), names

    def _apply_options(self, params: dict[str, Any], state: ChainState, options: ExecutionOptions) -> None:
        if state.method in ("get", "query", "scan"):
            index = state.index if state.method == "query" else (PRIMARY_INDEX if state.method == "scan" else None)
            projection = self._projection(options, index=index)
            if projection is not None:
                params["ProjectionExpression"] = projection[0]
                params["ExpressionAttributeNames"] = merge_expression_attributes(
                    params.get("ExpressionAttributeNames"), projection[1]
                )

        if options.response != "default" and state.method not in ("get", "query", "scan"):
            params["ReturnValues"] = RETURN_VALUES[options.response]
        if options.order is not None and state.method == "query":
            params["ScanIndexForward"] = options.order == "asc"
        if options.limit is not None and state.method in ("query", "scan"):
            params["Limit"] = options.limit

        params.update(options.params)
