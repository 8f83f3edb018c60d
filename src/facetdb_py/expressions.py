from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Protocol

from .attributes import Schema
from .errors import InvalidAttributeError, ValidationError

type LogicalOp = Literal["AND", "OR"]

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def placeholder(name: str) -> str:
    return _UNSAFE.sub("_", name)


@dataclass(frozen=True)
class FilterCondition:
    attribute: str
    op: str
    values: tuple[Any, ...] = ()

    @staticmethod
    def eq(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="=", values=(value,))

    @staticmethod
    def ne(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="!=", values=(value,))

    @staticmethod
    def lt(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="<", values=(value,))

    @staticmethod
    def lte(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="<=", values=(value,))

    @staticmethod
    def gt(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op=">", values=(value,))

    @staticmethod
    def gte(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op=">=", values=(value,))

    @staticmethod
    def between(attribute: str, low: Any, high: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="between", values=(low, high))

    @staticmethod
    def begins_with(attribute: str, prefix: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="begins_with", values=(prefix,))

    @staticmethod
    def contains(attribute: str, value: Any) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="contains", values=(value,))

    @staticmethod
    def in_(attribute: str, values: Sequence[Any]) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="in", values=(list(values),))

    @staticmethod
    def exists(attribute: str) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="exists")

    @staticmethod
    def not_exists(attribute: str) -> FilterCondition:
        return FilterCondition(attribute=attribute, op="not_exists")


@dataclass(frozen=True)
class FilterGroup:
    op: LogicalOp
    filters: tuple[FilterExpression, ...]

    @staticmethod
    def and_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="AND", filters=tuple(filters))

    @staticmethod
    def or_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="OR", filters=tuple(filters))


type FilterExpression = FilterCondition | FilterGroup


class ExpressionBuilder(Protocol):
    def build(self) -> str: ...

    def get_names(self) -> Mapping[str, str]: ...

    def get_values(self) -> Mapping[str, Any]: ...


def merge_expression_attributes(*maps: Mapping[str, Any] | None) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for mapping in maps:
        if not mapping:
            continue
        for key, value in mapping.items():
            if key in merged and merged[key] != value:
                raise ValidationError(f"expression attribute collision: {key}")
            merged[key] = value
    return merged


class FilterBuilder:
    """Compiles filter/condition trees over logical attribute names.

    Names render as ``#<prefix>_<attribute>`` and values as ``:<prefix><n>``,
    so a filter (``f``) and a condition (``c``) never share placeholders.
    """

    def __init__(self, schema: Schema, expressions: Sequence[FilterExpression] = (), *, prefix: str = "f") -> None:
        self._schema = schema
        self._prefix = prefix
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._counter = 0
        parts = [self._build(expr) for expr in expressions]
        parts = [p for p in parts if p]
        if len(parts) > 1:
            parts = [p if p.startswith("(") else f"({p})" for p in parts]
        self._expression = " AND ".join(parts)

    def build(self) -> str:
        return self._expression

    def get_names(self) -> dict[str, str]:
        return dict(self._names)

    def get_values(self) -> dict[str, Any]:
        return dict(self._values)

    def _name_ref(self, attribute: str) -> str:
        attr = self._schema.get_attribute(attribute)
        if attr is None:
            raise InvalidAttributeError(f"unknown attribute in expression: {attribute}")
        ref = f"#{self._prefix}_{placeholder(attribute)}"
        existing = self._names.get(ref)
        if existing is not None and existing != attr.field:
            raise ValidationError(f"expression attribute name collision: {ref}")
        self._names[ref] = attr.field
        return ref

    def _value_ref(self, value: Any) -> str:
        self._counter += 1
        ref = f":{self._prefix}{self._counter}"
        self._values[ref] = value
        return ref

    def _build(self, node: FilterExpression) -> str:
        if isinstance(node, FilterGroup):
            parts = [self._build(f) for f in node.filters]
            parts = [p for p in parts if p]
            if not parts:
                return ""
            return "(" + f" {node.op} ".join(parts) + ")"

        if not isinstance(node, FilterCondition):
            raise ValidationError("invalid filter expression")

        name = self._name_ref(node.attribute)
        op = node.op.upper()
        vals = node.values

        comparisons = {"=": "=", "EQ": "=", "!=": "<>", "<>": "<>", "NE": "<>", "<": "<", "LT": "<"}
        comparisons.update({"<=": "<=", "LE": "<=", ">": ">", "GT": ">", ">=": ">=", "GE": ">="})
        if op in comparisons:
            if len(vals) != 1:
                raise ValidationError(f"{node.op} requires one value")
            return f"{name} {comparisons[op]} {self._value_ref(vals[0])}"

        if op == "BETWEEN":
            if len(vals) != 2:
                raise ValidationError("BETWEEN requires two values")
            left = self._value_ref(vals[0])
            right = self._value_ref(vals[1])
            return f"{name} BETWEEN {left} AND {right}"

        if op == "IN":
            if len(vals) != 1:
                raise ValidationError("IN requires a single sequence")
            in_values = vals[0]
            if not isinstance(in_values, Sequence) or isinstance(in_values, (str, bytes, bytearray)):
                raise ValidationError("IN requires a sequence of values")
            if len(in_values) > 100:
                raise ValidationError("IN supports maximum 100 values")
            refs = [self._value_ref(v) for v in in_values]
            return f"{name} IN (" + ", ".join(refs) + ")"

        if op == "BEGINS_WITH":
            if len(vals) != 1:
                raise ValidationError("BEGINS_WITH requires one value")
            return f"begins_with({name}, {self._value_ref(vals[0])})"

        if op == "CONTAINS":
            if len(vals) != 1:
                raise ValidationError("CONTAINS requires one value")
            return f"contains({name}, {self._value_ref(vals[0])})"

        if op in {"EXISTS", "ATTRIBUTE_EXISTS"}:
            if vals:
                raise ValidationError("EXISTS does not take a value")
            return f"attribute_exists({name})"

        if op in {"NOT_EXISTS", "ATTRIBUTE_NOT_EXISTS"}:
            if vals:
                raise ValidationError("NOT_EXISTS does not take a value")
            return f"attribute_not_exists({name})"

        raise ValidationError(f"unsupported filter operator: {node.op}")


class UpdateExpression:
    """Accumulates SET/REMOVE/ADD/DELETE clauses over physical field names."""

    def __init__(self) -> None:
        self._set: list[str] = []
        self._remove: list[str] = []
        self._add: list[str] = []
        self._delete: list[str] = []
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._paths: set[str] = set()
        self._counter = 0

    def has_path(self, field: str) -> bool:
        return field in self._paths

    def _name_ref(self, field: str) -> str:
        if field in self._paths:
            raise ValidationError(f"update modifies {field!r} more than once")
        self._paths.add(field)
        ref = f"#u_{placeholder(field)}"
        existing = self._names.get(ref)
        if existing is not None and existing != field:
            raise ValidationError(f"expression attribute name collision: {ref}")
        self._names[ref] = field
        return ref

    def _value_ref(self, value: Any) -> str:
        self._counter += 1
        ref = f":u{self._counter}"
        self._values[ref] = value
        return ref

    def set(self, field: str, value: Any) -> None:
        ref = self._name_ref(field)
        self._set.append(f"{ref} = {self._value_ref(value)}")

    def remove(self, field: str) -> None:
        self._remove.append(self._name_ref(field))

    def add(self, field: str, value: Any) -> None:
        if not isinstance(value, (int, float, Decimal, set, frozenset)) or isinstance(value, bool):
            raise ValidationError("ADD requires a numeric or set value")
        ref = self._name_ref(field)
        self._add.append(f"{ref} {self._value_ref(value)}")

    def subtract(self, field: str, value: Any) -> None:
        if not isinstance(value, (int, float, Decimal)) or isinstance(value, bool):
            raise ValidationError("subtract requires a numeric value")
        ref = self._name_ref(field)
        zero = self._value_ref(0)
        self._set.append(f"{ref} = if_not_exists({ref}, {zero}) - {self._value_ref(value)}")

    def append(self, field: str, values: Sequence[Any]) -> None:
        if not isinstance(values, (list, tuple)):
            raise ValidationError("append requires a list value")
        ref = self._name_ref(field)
        empty = self._value_ref([])
        self._set.append(f"{ref} = list_append(if_not_exists({ref}, {empty}), {self._value_ref(list(values))})")

    def delete(self, field: str, value: Any) -> None:
        if isinstance(value, (list, tuple)):
            value = set(value)
        if not isinstance(value, (set, frozenset)):
            raise ValidationError("DELETE requires a set value")
        ref = self._name_ref(field)
        self._delete.append(f"{ref} {self._value_ref(value)}")

    def build(self) -> str:
        parts: list[str] = []
        if self._set:
            parts.append("SET " + ", ".join(self._set))
        if self._remove:
            parts.append("REMOVE " + ", ".join(self._remove))
        if self._add:
            parts.append("ADD " + ", ".join(self._add))
        if self._delete:
            parts.append("DELETE " + ", ".join(self._delete))
        return " ".join(parts)

    def get_names(self) -> dict[str, str]:
        return dict(self._names)

    def get_values(self) -> dict[str, Any]:
        return dict(self._values)
