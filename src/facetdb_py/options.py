from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .cursor import CursorFormatter, validate_cursor_formatter
from .errors import InvalidOptionsError

type PagerMode = Literal["cursor", "raw", "item"]
type UnprocessedMode = Literal["item", "raw"]
type ResponseMode = Literal["default", "none", "all_old", "updated_old", "all_new", "updated_new"]
type Order = Literal["asc", "desc"]

RETURN_VALUES: Mapping[str, str] = {
    "none": "NONE",
    "all_old": "ALL_OLD",
    "updated_old": "UPDATED_OLD",
    "all_new": "ALL_NEW",
    "updated_new": "UPDATED_NEW",
}

_PAGERS = frozenset({"cursor", "raw", "item"})
_UNPROCESSED = frozenset({"item", "raw"})
_RESPONSES = frozenset({"default", *RETURN_VALUES})
_ORDERS = frozenset({"asc", "desc"})


@dataclass(frozen=True)
class ExecutionOptions:
    raw: bool = False
    include_keys: bool = False
    original_err: bool = False
    ignore_ownership: bool = False
    pager: PagerMode = "cursor"
    unprocessed: UnprocessedMode = "item"
    response: ResponseMode = "default"
    cursor: Any = None
    limit: int | None = None
    pages: int | Literal["all"] = 1
    concurrency: int = 1
    preserve_batch_order: bool = False
    attributes: tuple[str, ...] = ()
    table: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)
    parse: Callable[[ExecutionOptions, Mapping[str, Any]], Any] | None = None
    order: Order | None = None
    cursor_formatter: CursorFormatter | None = None

    @property
    def all_pages(self) -> bool:
        return self.pages == "all"


_FIELDS = frozenset(ExecutionOptions.__dataclass_fields__)


def _positive_int(name: str, value: Any, *, code: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidOptionsError(f"{name} must be an integer greater than zero, got {value!r}", code=code)
    return value


def _choice(name: str, value: Any, allowed: frozenset[str]) -> str:
    if not isinstance(value, str) or value.lower() not in allowed:
        raise InvalidOptionsError(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return value.lower()


def resolve_options(*layers: Mapping[str, Any] | None) -> ExecutionOptions:
    """Merge option layers left to right and validate the result.

    ``None`` values never override an earlier layer.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        unknown = set(layer).difference(_FIELDS)
        if unknown:
            raise InvalidOptionsError(f"unknown options: {sorted(unknown)}")
        merged.update({k: v for k, v in layer.items() if v is not None})

    for flag in ("raw", "include_keys", "original_err", "ignore_ownership", "preserve_batch_order"):
        if flag in merged:
            merged[flag] = bool(merged[flag])

    if "pager" in merged:
        merged["pager"] = _choice("pager", merged["pager"], _PAGERS)
    if "unprocessed" in merged:
        merged["unprocessed"] = _choice("unprocessed", merged["unprocessed"], _UNPROCESSED)
    if "response" in merged:
        merged["response"] = _choice("response", merged["response"], _RESPONSES)
    if "order" in merged:
        merged["order"] = _choice("order", merged["order"], _ORDERS)

    if "limit" in merged:
        merged["limit"] = _positive_int("limit", merged["limit"], code="invalid_limit_option")
    if "pages" in merged and merged["pages"] != "all":
        merged["pages"] = _positive_int("pages", merged["pages"], code="invalid_pages_option")
    if "concurrency" in merged:
        merged["concurrency"] = _positive_int("concurrency", merged["concurrency"], code="invalid_concurrency_option")

    if "attributes" in merged:
        attributes = merged["attributes"]
        if isinstance(attributes, str) or not isinstance(attributes, Sequence):
            raise InvalidOptionsError("attributes must be a list of attribute names")
        merged["attributes"] = tuple(str(a) for a in attributes)

    if "table" in merged and (not isinstance(merged["table"], str) or not merged["table"]):
        raise InvalidOptionsError("table must be a non-empty string")
    if "params" in merged:
        if not isinstance(merged["params"], Mapping):
            raise InvalidOptionsError("params must be a map of request parameters")
        merged["params"] = dict(merged["params"])
    if "parse" in merged and not callable(merged["parse"]):
        raise InvalidOptionsError("parse must be callable")
    if "cursor_formatter" in merged:
        merged["cursor_formatter"] = validate_cursor_formatter(merged["cursor_formatter"])

    return ExecutionOptions(**merged)
