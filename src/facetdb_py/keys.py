from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import KeyOwnershipError, MissingAttributeError
from .model import PRIMARY_INDEX, EntityModel, IndexDefinition, KeyTemplate, format_key_casing

type KeyValue = str | int | float | Decimal


@dataclass(frozen=True)
class DecodedKey:
    facets: dict[str, Any]
    # False when the key did not match its template and the facets were
    # taken from the record that produced it instead.
    parsed: bool = True


@dataclass(frozen=True)
class IndexKeys:
    pk: KeyValue
    sk: KeyValue | None = None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return str(value)


def is_numeric_key(model: EntityModel, template: KeyTemplate) -> bool:
    if not template.is_custom or len(template.composite) != 1:
        return False
    if any(label.label for label in template.labels):
        return False
    attr = model.schema.get_attribute(template.composite[0])
    return attr is not None and attr.type == "number"


def encode_key(
    model: EntityModel,
    template: KeyTemplate,
    values: Mapping[str, Any],
    *,
    partial: bool = False,
) -> KeyValue:
    if is_numeric_key(model, template):
        value = values.get(template.composite[0])
        if value is not None:
            return value

    key = template.prefix
    for entry in template.labels:
        value = values.get(entry.name) if entry.name else None
        if value is None and partial:
            break

        if template.is_custom:
            key = f"{key}{entry.label}"
        else:
            key = f"{key}#{entry.label}_"

        if value is None:
            break

        text = _stringify(value)
        attr = model.schema.get_attribute(entry.name)
        if attr is not None and attr.formatter is not None:
            text = attr.formatter(text)
        key = f"{key}{text}"

    return format_key_casing(key, template.casing)


def _coerce(value: str, attr_type: str) -> Any:
    if attr_type == "number":
        try:
            return int(value)
        except ValueError:
            return float(value)
    if attr_type == "boolean":
        return value == "true"
    return value


def _key_pattern(model: EntityModel, template: KeyTemplate) -> tuple[re.Pattern[str], tuple[str, ...]]:
    pattern = "^" + re.escape(template.prefix)
    names: list[str] = []
    for entry in template.labels:
        label = format_key_casing(entry.label, template.casing)
        if not entry.name:
            pattern += re.escape(label)
            continue
        if template.is_custom:
            pattern += re.escape(label) + "(.+)"
        else:
            pattern += "#" + re.escape(label) + "_(.+)"
        names.append(entry.name)
    return re.compile(pattern + "$", re.DOTALL), tuple(names)


def decode_key(
    model: EntityModel,
    template: KeyTemplate,
    key: Any,
    backup: Mapping[str, Any] | None = None,
) -> DecodedKey:
    if key is None or key == "":
        return DecodedKey(facets={})

    if not isinstance(key, str):
        if is_numeric_key(model, template) and isinstance(key, (int, float, Decimal)):
            return DecodedKey(facets={template.composite[0]: key})
        return _from_backup(template, key, backup)

    regex, names = _key_pattern(model, template)
    match = regex.match(key)
    if match is None:
        return _from_backup(template, key, backup)

    facets: dict[str, Any] = {}
    for i, name in enumerate(names):
        attr = model.schema.attributes[name]
        try:
            facets[name] = _coerce(match.group(i + 1), attr.type)
        except ValueError:
            return _from_backup(template, key, backup)
    return DecodedKey(facets=facets)


def _from_backup(template: KeyTemplate, key: Any, backup: Mapping[str, Any] | None) -> DecodedKey:
    if not backup:
        raise KeyOwnershipError(
            f"key {template.field}={key!r} does not belong to this entity; use the raw pager for foreign keys"
        )
    facets: dict[str, Any] = {}
    for name in template.composite:
        if backup.get(name) is None:
            raise KeyOwnershipError(
                f"key {template.field}={key!r} does not belong to this entity and "
                f"the last returned record has no {name!r}"
            )
        facets[name] = backup[name]
    return DecodedKey(facets=facets, parsed=False)


def index_keys(
    model: EntityModel,
    index: str,
    pk_values: Mapping[str, Any],
    sk_values: Mapping[str, Any] | None = None,
    *,
    partial: bool = False,
) -> IndexKeys:
    definition = model.index(index)
    pk = encode_key(model, definition.pk, pk_values, partial=partial)
    if definition.sk is None:
        return IndexKeys(pk=pk)
    sk = encode_key(model, definition.sk, pk_values if sk_values is None else sk_values, partial=partial)
    return IndexKeys(pk=pk, sk=sk)


def make_parameter_key(definition: IndexDefinition, keys: IndexKeys) -> dict[str, Any]:
    out: dict[str, Any] = {definition.pk.field: keys.pk}
    if definition.sk is not None and keys.sk is not None:
        out[definition.sk.field] = keys.sk
    return out


def decode_index(
    model: EntityModel,
    index: str,
    key: Mapping[str, Any],
    backup: Mapping[str, Any] | None = None,
) -> DecodedKey:
    definition = model.index(index)
    pk = decode_key(model, definition.pk, key.get(definition.pk.field), backup)
    facets = dict(pk.facets)
    parsed = pk.parsed
    if definition.sk is not None:
        sk = decode_key(model, definition.sk, key.get(definition.sk.field), backup)
        facets = {**sk.facets, **facets}
        parsed = parsed and sk.parsed
    return DecodedKey(facets=facets, parsed=parsed)


def keys_to_item(
    model: EntityModel,
    index: str,
    key: Mapping[str, Any] | None,
    backup: Mapping[str, Any] | None = None,
) -> DecodedKey | None:
    """Decode a last-evaluated or unprocessed key into logical attributes.

    Keys from secondary indexes carry the primary index fields too, so both
    are decoded. ``None`` means the key could not be fully reconstructed.
    """
    if not key:
        return None

    decoded = decode_index(model, index, key, backup)
    if index != PRIMARY_INDEX:
        primary = decode_index(model, PRIMARY_INDEX, key, backup)
        decoded = DecodedKey(
            facets={**decoded.facets, **primary.facets},
            parsed=decoded.parsed and primary.parsed,
        )

    if not decoded.facets:
        return None
    if any(name not in decoded.facets for name in model.primary.composite):
        return None
    return decoded


def item_to_keys(model: EntityModel, index: str, facets: Mapping[str, Any]) -> dict[str, Any]:
    def construct(definition: IndexDefinition) -> dict[str, Any]:
        missing = [name for name in definition.composite if facets.get(name) is None]
        if missing:
            raise MissingAttributeError(f"missing composite attributes for cursor: {', '.join(missing)}")
        return make_parameter_key(definition, index_keys(model, definition.name, facets))

    out = construct(model.index(index))
    if index != PRIMARY_INDEX:
        out.update(construct(model.primary))
    return out


def owns_key(model: EntityModel, key: Mapping[str, Any]) -> bool:
    definition = model.primary
    pk = key.get(definition.pk.field)
    if not isinstance(pk, str) or not pk.startswith(definition.pk.prefix):
        return False
    if definition.sk is None:
        return True
    sk = key.get(definition.sk.field)
    return isinstance(sk, str) and sk.startswith(definition.sk.prefix)
