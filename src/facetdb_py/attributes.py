from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from .errors import InvalidAttributeError, MissingAttributeError, ModelDefinitionError

type AttributeType = Literal["string", "number", "boolean", "list", "map", "set", "enum", "any"]

_ATTRIBUTE_TYPES = frozenset({"string", "number", "boolean", "list", "map", "set", "enum", "any"})
_ATTRIBUTE_OPTIONS = frozenset(
    {
        "type",
        "field",
        "label",
        "required",
        "readOnly",
        "readonly",
        "hidden",
        "default",
        "get",
        "set",
        "format",
        "values",
    }
)


@dataclass(frozen=True)
class Attribute:
    name: str
    field: str
    type: AttributeType = "string"
    label: str | None = None
    required: bool = False
    readonly: bool = False
    hidden: bool = False
    default: Any = None
    values: tuple[Any, ...] = ()
    getter: Callable[[Any, Mapping[str, Any]], Any] | None = None
    setter: Callable[[Any, Mapping[str, Any]], Any] | None = None
    formatter: Callable[[str], str] | None = None

    def default_value(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default


def _parse_attribute(name: str, raw: Any) -> Attribute:
    if isinstance(raw, str):
        raw = {"type": raw}
    elif isinstance(raw, (list, tuple)):
        raw = {"type": "enum", "values": list(raw)}

    if not isinstance(raw, Mapping):
        raise ModelDefinitionError(f"attribute {name!r} must be a type name, an enum list or a map")

    unknown = set(raw).difference(_ATTRIBUTE_OPTIONS)
    if unknown:
        raise ModelDefinitionError(f"attribute {name!r} has unknown options: {sorted(unknown)}")

    attr_type = raw.get("type", "string")
    if isinstance(attr_type, (list, tuple)):
        raw = {**raw, "values": list(attr_type)}
        attr_type = "enum"
    if attr_type not in _ATTRIBUTE_TYPES:
        raise ModelDefinitionError(f"attribute {name!r} has invalid type: {attr_type!r}")

    for hook in ("get", "set", "format"):
        if raw.get(hook) is not None and not callable(raw[hook]):
            raise ModelDefinitionError(f"attribute {name!r} option {hook!r} must be callable")

    field = raw.get("field") or name
    if not isinstance(field, str):
        raise ModelDefinitionError(f"attribute {name!r} field must be a string")

    label = raw.get("label")
    if label is not None and not isinstance(label, str):
        raise ModelDefinitionError(f"attribute {name!r} label must be a string")

    return Attribute(
        name=name,
        field=field,
        type=attr_type,
        label=label,
        required=bool(raw.get("required", False)),
        readonly=bool(raw.get("readOnly", raw.get("readonly", False))),
        hidden=bool(raw.get("hidden", False)),
        default=raw.get("default"),
        values=tuple(raw.get("values") or ()),
        getter=raw.get("get"),
        setter=raw.get("set"),
        formatter=raw.get("format"),
    )


class Schema:
    """Attribute lookup, field translation and item formatting for one entity.

    Values are not type-checked here; keys only need ``number`` and ``boolean``
    to decode captured key segments back into Python values.
    """

    def __init__(self, attributes: Mapping[str, Any]) -> None:
        if not isinstance(attributes, Mapping) or not attributes:
            raise ModelDefinitionError("model attributes must be a non-empty map")

        self.attributes: dict[str, Attribute] = {}
        self._by_field: dict[str, Attribute] = {}
        for name, raw in attributes.items():
            attr = _parse_attribute(str(name), raw)
            if attr.field in self._by_field:
                raise ModelDefinitionError(
                    f"attributes {self._by_field[attr.field].name!r} and {attr.name!r} share field {attr.field!r}",
                    code="duplicate_attribute_fields",
                )
            self.attributes[attr.name] = attr
            self._by_field[attr.field] = attr

    def get_attribute(self, name: str) -> Attribute | None:
        return self.attributes.get(name)

    def require_attribute(self, name: str) -> Attribute:
        attr = self.attributes.get(name)
        if attr is None:
            raise InvalidAttributeError(f"unknown attribute: {name}")
        return attr

    def get_field_name(self, name: str) -> str:
        return self.require_attribute(name).field

    def attribute_for_field(self, field: str) -> Attribute | None:
        return self._by_field.get(field)

    def get_readonly(self) -> tuple[str, ...]:
        return tuple(name for name, attr in self.attributes.items() if attr.readonly)

    def apply_defaults(self, values: Mapping[str, Any]) -> dict[str, Any]:
        out = dict(values)
        for name, attr in self.attributes.items():
            if out.get(name) is None and attr.default is not None:
                out[name] = attr.default_value()
        return out

    def check_required(self, values: Mapping[str, Any]) -> None:
        missing = [name for name, attr in self.attributes.items() if attr.required and values.get(name) is None]
        if missing:
            raise MissingAttributeError(f"missing required attributes: {', '.join(missing)}")

    def apply_attribute_setters(self, values: Mapping[str, Any]) -> dict[str, Any]:
        out = dict(values)
        for name, value in values.items():
            attr = self.attributes.get(name)
            if attr is not None and attr.setter is not None:
                out[name] = attr.setter(value, values)
        return out

    def translate_to_fields(self, values: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in values.items():
            attr = self.attributes.get(name)
            if attr is None or value is None:
                continue
            out[attr.field] = value
        return out

    def format_item_for_retrieval(self, item: Mapping[str, Any], *, include_keys: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field, value in item.items():
            attr = self._by_field.get(field)
            if attr is not None:
                data[attr.name] = value
            elif include_keys:
                data[field] = value

        for name in list(data):
            attr = self.attributes.get(name)
            if attr is None:
                continue
            if attr.hidden:
                del data[name]
            elif attr.getter is not None:
                data[name] = attr.getter(data[name], data)
        return data

    def translate_from_fields(self, item: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for field, value in item.items():
            attr = self._by_field.get(field)
            if attr is not None:
                out[attr.name] = value
        return out
