from __future__ import annotations

from typing import Any

import yaml

from .entity import Entity
from .errors import ValidationError


def parse_model_document(raw: str) -> dict[str, Any]:
    """Load an entity model written as YAML or JSON.

    Attribute hooks (``get``/``set``/``format``) cannot be expressed in a
    document; attach them to the returned mapping before building the entity.
    """
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError("invalid model YAML/JSON", code="invalid_model_document") from err

    if not isinstance(parsed, dict):
        raise ValidationError("model document must be a map/object", code="invalid_model_document")

    _assert_json_compatible(parsed, path="model")

    for section in ("attributes", "indexes"):
        if not isinstance(parsed.get(section), dict) or not parsed[section]:
            raise ValidationError(f"model document must include {section}", code="invalid_model_document")

    return parsed


def load_entity(raw: str, **config: Any) -> Entity:
    return Entity(parse_model_document(raw), **config)


def _assert_json_compatible(value: Any, *, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int, float)):
        if isinstance(value, float) and not (value == value and value not in (float("inf"), float("-inf"))):
            raise ValidationError(f"model document contains non-finite float at {path}", code="invalid_model_document")
        return

    if isinstance(value, list):
        for idx, elem in enumerate(value):
            _assert_json_compatible(elem, path=f"{path}[{idx}]")
        return

    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError(
                    f"model document contains non-string key at {path}: {k!r}", code="invalid_model_document"
                )
            _assert_json_compatible(v, path=f"{path}.{k}")
        return

    raise ValidationError(
        f"model document contains non-JSON value at {path}: {type(value).__name__}", code="invalid_model_document"
    )
