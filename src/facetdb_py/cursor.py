from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from typing import Any, Protocol

from .client import from_attribute_value, to_attribute_value
from .errors import InvalidOptionsError


class CursorFormatter(Protocol):
    def serialize(self, key: Mapping[str, Any] | None) -> str | None: ...

    def deserialize(self, cursor: str | None) -> dict[str, Any] | None: ...


def _ensure_single_key_map(value: Any) -> tuple[str, Any]:
    if not isinstance(value, dict) or len(value) != 1:
        raise ValueError("attribute value must be a single-key map")
    (key, inner), *_ = value.items()
    return str(key), inner


def _av_to_json(av: Any) -> dict[str, Any]:
    kind, value = _ensure_single_key_map(av)

    if kind in {"S", "N", "BOOL", "NULL", "SS", "NS"}:
        return {kind: value}
    if kind == "B":
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    if kind == "BS":
        return {"BS": [base64.b64encode(bytes(v)).decode("ascii") for v in value]}
    if kind == "L":
        return {"L": [_av_to_json(v) for v in value]}
    if kind == "M":
        return {"M": {str(k): _av_to_json(value[k]) for k in sorted(value)}}

    raise ValueError(f"unsupported attribute value type: {kind}")


def _av_from_json(enc: Any) -> dict[str, Any]:
    kind, value = _ensure_single_key_map(enc)

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "BOOL":
        if not isinstance(value, bool):
            raise ValueError("BOOL value must be a boolean")
        return {"BOOL": value}
    if kind == "NULL":
        if value is not True:
            raise ValueError("NULL value must be true")
        return {"NULL": True}
    if kind in {"SS", "NS"}:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"{kind} value must be a list of strings")
        return {kind: value}
    if kind == "B":
        if not isinstance(value, str):
            raise ValueError("B value must be a base64 string")
        return {"B": base64.b64decode(value)}
    if kind == "BS":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError("BS value must be a list of base64 strings")
        return {"BS": [base64.b64decode(v) for v in value]}
    if kind == "L":
        if not isinstance(value, list):
            raise ValueError("L value must be a list")
        return {"L": [_av_from_json(v) for v in value]}
    if kind == "M":
        if not isinstance(value, dict):
            raise ValueError("M value must be a map")
        return {"M": {str(k): _av_from_json(value[k]) for k in sorted(value)}}

    raise ValueError(f"unsupported attribute value type: {kind}")


def encode_cursor(last_key: Mapping[str, Any] | None) -> str:
    if not last_key:
        return ""
    payload = {str(k): _av_to_json(to_attribute_value(last_key[k])) for k in sorted(last_key)}
    data = json.dumps({"lastKey": payload}, separators=(",", ":"), ensure_ascii=False)
    return base64.urlsafe_b64encode(data.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> dict[str, Any]:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    data = base64.urlsafe_b64decode(raw + padding).decode("utf-8")
    parsed = json.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    return {str(k): from_attribute_value(_av_from_json(last_key_raw[k])) for k in sorted(last_key_raw)}


class DefaultCursorFormatter:
    """base64url JSON over the attribute-value form of the last evaluated key."""

    def serialize(self, key: Mapping[str, Any] | None) -> str | None:
        return encode_cursor(key) or None

    def deserialize(self, cursor: str | None) -> dict[str, Any] | None:
        if cursor is None or cursor == "":
            return None
        try:
            return decode_cursor(cursor)
        except (ValueError, UnicodeDecodeError) as err:
            raise InvalidOptionsError(f"invalid cursor: {cursor!r}", code="invalid_cursor") from err


def validate_cursor_formatter(formatter: Any) -> CursorFormatter:
    if not callable(getattr(formatter, "serialize", None)) or not callable(getattr(formatter, "deserialize", None)):
        raise InvalidOptionsError("cursor formatter must provide serialize and deserialize callables")
    return formatter
