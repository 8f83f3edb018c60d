from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, cast

from .attributes import Schema
from .errors import InvalidIndexError, ModelDefinitionError

type KeyType = Literal["pk", "sk"]
type Casing = Literal["default", "upper", "lower", "none"]
type SchemaVersion = Literal["beta", "v1"]

PRIMARY_INDEX = ""

_CASINGS = frozenset({"default", "upper", "lower", "none"})
_INDEX_OPTIONS = frozenset({"index", "collection", "pk", "sk"})
_KEY_OPTIONS = frozenset({"field", "composite", "facets", "template", "casing"})


def format_key_casing(key: str, casing: Casing = "default") -> str:
    if casing == "none":
        return key
    if casing == "upper":
        return key.upper()
    return key.lower()


@dataclass(frozen=True)
class Label:
    name: str
    label: str


@dataclass(frozen=True)
class KeyTemplate:
    field: str
    key_type: KeyType
    composite: tuple[str, ...]
    labels: tuple[Label, ...]
    prefix: str = ""
    casing: Casing = "default"
    is_custom: bool = False


@dataclass(frozen=True)
class IndexDefinition:
    access_pattern: str
    name: str
    pk: KeyTemplate
    sk: KeyTemplate | None = None
    collection: tuple[str, ...] = ()

    @property
    def is_primary(self) -> bool:
        return self.name == PRIMARY_INDEX

    @property
    def composite(self) -> tuple[str, ...]:
        if self.sk is None:
            return self.pk.composite
        return self.pk.composite + self.sk.composite


@dataclass(frozen=True)
class Facet:
    name: str
    index: str
    key_type: KeyType
    position: int
    field: str


@dataclass(frozen=True)
class EntityModel:
    service: str
    entity: str
    version: str
    schema_version: SchemaVersion
    schema: Schema
    indexes: Mapping[str, IndexDefinition]
    access_patterns: Mapping[str, str]
    collections: Mapping[str, str] = field(default_factory=dict)
    sub_collections: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    slots: Mapping[tuple[str, int], Facet] = field(default_factory=dict)
    by_attribute: Mapping[str, tuple[Facet, ...]] = field(default_factory=dict)
    table: str | None = None

    @property
    def primary(self) -> IndexDefinition:
        return self.indexes[PRIMARY_INDEX]

    def index(self, name: str) -> IndexDefinition:
        try:
            return self.indexes[name]
        except KeyError:
            raise InvalidIndexError(f"invalid index: {name!r}") from None

    def for_access_pattern(self, access_pattern: str) -> IndexDefinition:
        name = self.access_patterns.get(access_pattern)
        if name is None:
            raise InvalidIndexError(f"unknown access pattern: {access_pattern!r}")
        return self.indexes[name]

    def facets(self, index: str) -> tuple[Facet, ...]:
        out: list[Facet] = []
        position = 0
        while (index, position) in self.slots:
            out.append(self.slots[(index, position)])
            position += 1
        return tuple(out)

    def key_fields(self) -> frozenset[str]:
        fields: set[str] = set()
        for definition in self.indexes.values():
            fields.add(definition.pk.field)
            if definition.sk is not None:
                fields.add(definition.sk.field)
        return frozenset(fields)


def parse_template(template: str) -> tuple[Label, ...]:
    labels: list[Label] = []
    name = ""
    label = ""
    in_name = False
    i = 0
    while i < len(template):
        if not in_name and template.startswith("${", i):
            in_name = True
            i += 2
            continue
        char = template[i]
        if in_name and char == "}":
            if not name.strip():
                raise ModelDefinitionError(
                    f"invalid key composite attribute template: empty expression in {template!r}",
                    code="invalid_key_composite_attribute_template",
                )
            labels.append(Label(name=name, label=label))
            name = ""
            label = ""
            in_name = False
        elif in_name:
            name += char
        else:
            label += char
        i += 1

    if in_name:
        raise ModelDefinitionError(
            f"invalid key composite attribute template: unterminated expression in {template!r}",
            code="invalid_key_composite_attribute_template",
        )
    if label:
        labels.append(Label(name="", label=label))
    return tuple(labels)


@dataclass(frozen=True)
class _ParsedKey:
    field: str
    composite: tuple[str, ...]
    labels: tuple[Label, ...]
    casing: Casing
    is_custom: bool


def _string_list(value: Any, *, what: str) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, str) or not all(isinstance(v, str) for v in value):
        raise ModelDefinitionError(f"{what} must be a list of attribute names")
    return tuple(value)


def _parse_key(access_pattern: str, key_type: KeyType, raw: Any, schema: Schema) -> _ParsedKey:
    what = f"index {access_pattern!r} {key_type}"
    if not isinstance(raw, Mapping):
        raise ModelDefinitionError(f"{what} must be a map")

    unknown = set(raw).difference(_KEY_OPTIONS)
    if unknown:
        raise ModelDefinitionError(f"{what} has unknown options: {sorted(unknown)}")

    field_name = raw.get("field")
    if not isinstance(field_name, str) or not field_name:
        raise ModelDefinitionError(f"{what} requires a field name")

    casing = raw.get("casing")
    if casing is not None and casing not in _CASINGS:
        raise ModelDefinitionError(f"{what} has invalid casing: {casing!r}")

    composite: tuple[str, ...] | None = None
    template: str | None = None
    if raw.get("composite") is not None:
        composite = _string_list(raw["composite"], what=f"{what} composite")
    if raw.get("template") is not None:
        if not isinstance(raw["template"], str):
            raise ModelDefinitionError(f"{what} template must be a string")
        template = raw["template"]
    facets = raw.get("facets")
    if isinstance(facets, str) and template is None:
        template = facets
    elif facets is not None and not isinstance(facets, str) and composite is None:
        composite = _string_list(facets, what=f"{what} facets")

    if template is None and composite is None:
        raise ModelDefinitionError(
            f"{what} must declare composite attributes",
            code="missing_index_composite_attributes",
        )

    # A key stored directly in an attribute's own field keeps the raw value.
    if template is None and composite is not None and len(composite) == 1:
        attr = schema.get_attribute(composite[0])
        if attr is not None and attr.field == field_name:
            template = "${" + composite[0] + "}"
            if casing not in (None, "none"):
                raise ModelDefinitionError(
                    f"{what} is stored in attribute {composite[0]!r} and cannot change its casing",
                    code="invalid_key_casing",
                )
            casing = "none"

    if template is not None and template != "":
        labels = parse_template(template)
        parsed = tuple(label.name for label in labels if label.name)
        if composite is not None and composite != parsed:
            raise ModelDefinitionError(
                f"{what} template {template!r} does not match composite {list(composite)!r}",
                code="incompatible_key_composite_attribute_template",
            )
        composite = parsed
        is_custom = True
    else:
        if template == "" and composite:
            raise ModelDefinitionError(
                f"{what} template is empty but composite is {list(composite)!r}",
                code="incompatible_key_composite_attribute_template",
            )
        composite = composite or ()
        labels = ()
        is_custom = False

    for name in composite:
        attr = schema.get_attribute(name)
        if attr is None:
            raise ModelDefinitionError(
                f"{what} references unknown attribute {name!r}",
                code="missing_attribute",
            )

    if not is_custom:
        labels = tuple(Label(name=name, label=schema.attributes[name].label or name) for name in composite)

    if len(set(composite)) != len(composite):
        raise ModelDefinitionError(
            f"{what} repeats a composite attribute: {list(composite)!r}",
            code="duplicate_index_composite_attributes",
        )

    return _ParsedKey(
        field=field_name,
        composite=composite,
        labels=labels,
        casing=cast(Casing, casing or "default"),
        is_custom=is_custom,
    )


def _parse_collection(access_pattern: str, raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    chain = _string_list(raw, what=f"index {access_pattern!r} collection")
    if not all(chain):
        raise ModelDefinitionError(f"index {access_pattern!r} collection names must be non-empty")
    return chain


def _collection_prefix(collection: Sequence[str]) -> str:
    if not collection:
        return ""
    return "$" + "#".join(collection)


def _resolve_identity(raw: Mapping[str, Any]) -> tuple[str, str, str, SchemaVersion]:
    nested = raw.get("model")
    source: Mapping[str, Any]
    schema_version: SchemaVersion
    if isinstance(nested, Mapping):
        source, schema_version = nested, "v1"
    elif "entity" in raw and "service" in raw:
        source, schema_version = raw, "beta"
    else:
        raise ModelDefinitionError("model must declare an entity and a service", code="invalid_model")

    entity = source.get("entity")
    service = source.get("service")
    version = source.get("version", "1")
    if not isinstance(entity, str) or not entity:
        raise ModelDefinitionError("model entity must be a non-empty string", code="invalid_model")
    if not isinstance(service, str) or not service:
        raise ModelDefinitionError("model service must be a non-empty string", code="invalid_model")
    if isinstance(version, bool) or not isinstance(version, (str, int)) or str(version) == "":
        raise ModelDefinitionError("model version must be a non-empty string", code="invalid_model")
    return service, entity, str(version), schema_version


def normalize_model(raw: Mapping[str, Any]) -> EntityModel:
    if not isinstance(raw, Mapping):
        raise ModelDefinitionError("model must be a map", code="invalid_model")

    service, entity, version, schema_version = _resolve_identity(raw)
    schema = Schema(raw.get("attributes") or {})

    raw_indexes = raw.get("indexes")
    if not isinstance(raw_indexes, Mapping) or not raw_indexes:
        raise ModelDefinitionError("model indexes must be a non-empty map", code="invalid_model")

    table = raw.get("table")
    if table is not None and not isinstance(table, str):
        raise ModelDefinitionError("model table must be a string", code="invalid_model")

    indexes: dict[str, IndexDefinition] = {}
    access_patterns: dict[str, str] = {}
    collections: dict[str, str] = {}
    sub_collections: dict[str, tuple[str, ...]] = {}
    field_definitions: dict[str, tuple[str, KeyType, tuple[str, ...], bool]] = {}

    for access_pattern, declaration in raw_indexes.items():
        access_pattern = str(access_pattern)
        if not isinstance(declaration, Mapping):
            raise ModelDefinitionError(f"index {access_pattern!r} must be a map")
        unknown = set(declaration).difference(_INDEX_OPTIONS)
        if unknown:
            raise ModelDefinitionError(f"index {access_pattern!r} has unknown options: {sorted(unknown)}")

        name = declaration.get("index") or PRIMARY_INDEX
        if not isinstance(name, str):
            raise ModelDefinitionError(f"index {access_pattern!r} name must be a string")
        if name in indexes:
            label = "the primary index" if name == PRIMARY_INDEX else f"index {name!r}"
            raise ModelDefinitionError(
                f"access patterns {indexes[name].access_pattern!r} and {access_pattern!r} both define {label}",
                code="duplicate_indexes",
            )

        pk = _parse_key(access_pattern, "pk", declaration.get("pk"), schema)
        sk = None
        if declaration.get("sk") is not None:
            sk = _parse_key(access_pattern, "sk", declaration["sk"], schema)

        collection = _parse_collection(access_pattern, declaration.get("collection"))
        if collection and sk is None:
            raise ModelDefinitionError(
                f"index {access_pattern!r} defines a collection but has no sort key",
                code="collection_without_sk",
            )

        if sk is not None:
            if pk.field == sk.field:
                raise ModelDefinitionError(
                    f"index {access_pattern!r} uses field {pk.field!r} for both pk and sk",
                    code="duplicate_index_fields",
                )
            overlap = set(pk.composite).intersection(sk.composite)
            if overlap:
                raise ModelDefinitionError(
                    f"index {access_pattern!r} uses {sorted(overlap)} in both pk and sk",
                    code="duplicate_index_composite_attributes",
                )

        for key_type, parsed in (("pk", pk), ("sk", sk)):
            if parsed is None:
                continue
            signature = (access_pattern, cast(KeyType, key_type), parsed.composite, parsed.is_custom)
            existing = field_definitions.get(parsed.field)
            if existing is None:
                field_definitions[parsed.field] = signature
                continue
            if existing[1] != key_type:
                raise ModelDefinitionError(
                    f"field {parsed.field!r} is a {existing[1]} in {existing[0]!r} "
                    f"but a {key_type} in {access_pattern!r}",
                    code="inconsistent_index_definition",
                )
            if existing[2:] != signature[2:]:
                raise ModelDefinitionError(
                    f"field {parsed.field!r} has different composite attributes in "
                    f"{existing[0]!r} and {access_pattern!r}",
                    code="inconsistent_index_definition",
                )

        for depth, collection_name in enumerate(collection):
            if collection_name in collections:
                raise ModelDefinitionError(
                    f"collection {collection_name!r} is defined on more than one index",
                    code="duplicate_collections",
                )
            collections[collection_name] = name
            sub_collections[collection_name] = collection[: depth + 1]

        pk_prefix = f"${service}"
        collection_prefix = _collection_prefix(collection)
        sk_prefix = f"{collection_prefix}#{entity}" if collection_prefix else f"${entity}"
        if schema_version == "beta":
            pk_prefix = f"{pk_prefix}_{version}"
        else:
            sk_prefix = f"{sk_prefix}_{version}"
        if sk is None:
            pk_prefix += sk_prefix

        indexes[name] = IndexDefinition(
            access_pattern=access_pattern,
            name=name,
            pk=_key_template(pk, "pk", pk_prefix),
            sk=_key_template(sk, "sk", sk_prefix) if sk is not None else None,
            collection=collection,
        )
        access_patterns[access_pattern] = name

    if PRIMARY_INDEX not in indexes:
        raise ModelDefinitionError("model must define a primary index", code="missing_primary_index")

    slots: dict[tuple[str, int], Facet] = {}
    by_attribute: dict[str, list[Facet]] = {}
    for name, definition in indexes.items():
        position = 0
        for key in (definition.pk, definition.sk):
            if key is None:
                continue
            for attribute in key.composite:
                facet = Facet(
                    name=attribute,
                    index=name,
                    key_type=key.key_type,
                    position=position,
                    field=key.field,
                )
                slots[(name, position)] = facet
                by_attribute.setdefault(attribute, []).append(facet)
                position += 1

    return EntityModel(
        service=service,
        entity=entity,
        version=version,
        schema_version=schema_version,
        schema=schema,
        indexes=indexes,
        access_patterns=access_patterns,
        collections=collections,
        sub_collections=sub_collections,
        slots=slots,
        by_attribute={k: tuple(v) for k, v in by_attribute.items()},
        table=table,
    )


def _key_template(parsed: _ParsedKey, key_type: KeyType, prefix: str) -> KeyTemplate:
    return KeyTemplate(
        field=parsed.field,
        key_type=key_type,
        composite=parsed.composite,
        labels=parsed.labels,
        prefix="" if parsed.is_custom else format_key_casing(prefix, parsed.casing),
        casing=parsed.casing,
        is_custom=parsed.is_custom,
    )
