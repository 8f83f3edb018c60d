from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from .aws_errors import map_execution_error
from .client import DocumentClient
from .cursor import CursorFormatter
from .errors import FacetdbPyError, InvalidOptionsError
from .keys import item_to_keys, keys_to_item, owns_key
from .model import EntityModel
from .options import ExecutionOptions
from .results import ItemResult, QueryResult

logger = logging.getLogger(__name__)

OPERATIONS: Mapping[str, str] = {
    "get": "get_item",
    "put": "put_item",
    "create": "put_item",
    "delete": "delete_item",
    "remove": "delete_item",
    "update": "update_item",
    "patch": "update_item",
    "query": "query",
    "scan": "scan",
    "batch_get": "batch_get_item",
    "batch_put": "batch_write_item",
    "batch_delete": "batch_write_item",
}


def paginate(
    request: Callable[[dict[str, Any]], dict[str, Any]],
    params: Mapping[str, Any],
    options: ExecutionOptions,
    *,
    start_key: Mapping[str, Any] | None,
    on_page: Callable[[dict[str, Any]], int],
) -> dict[str, Any] | None:
    """Issue paged requests until the results run out or a cap is reached.

    ``on_page`` shapes one response and returns how many records it kept; the
    ``limit`` cap counts kept records, not scanned ones. Returns the last
    evaluated key, or ``None`` when iteration reached the end.
    """
    last_key = dict(start_key) if start_key else None
    pages = 0
    count = 0
    while True:
        req = dict(params)
        if last_key:
            req["ExclusiveStartKey"] = last_key
        if options.limit is not None:
            req["Limit"] = options.limit - count

        response = request(req)
        last_key = response.get("LastEvaluatedKey") or None
        count += on_page(response)
        pages += 1
        logger.debug("page %d: %d records kept so far, more=%s", pages, count, last_key is not None)

        if last_key is None:
            return None
        if not options.all_pages and pages >= options.pages:
            return last_key
        if options.limit is not None and count >= options.limit:
            return last_key


class Executor:
    """Runs compiled params through the client and shapes the responses."""

    def __init__(
        self,
        model: EntityModel,
        *,
        identifiers: Mapping[str, str],
        client: DocumentClient,
        cursor_formatter: CursorFormatter,
    ) -> None:
        self._model = model
        self._schema = model.schema
        self._identifiers = identifiers
        self._client = client
        self._cursor_formatter = cursor_formatter

    def call(self, operation: str, params: Mapping[str, Any], options: ExecutionOptions) -> dict[str, Any]:
        try:
            return self._client.execute(operation, params)
        except FacetdbPyError:
            raise
        except Exception as err:
            if options.original_err:
                raise
            raise map_execution_error(err) from err

    def owns_item(self, item: Mapping[str, Any]) -> bool:
        entity = item.get(self._identifiers["entity"])
        version = item.get(self._identifiers["version"])
        return (
            isinstance(entity, str)
            and isinstance(version, str)
            and entity != ""
            and version != ""
            and entity == self._model.entity
            and version == self._model.version
        )

    def owns_last_evaluated_key(self, key: Mapping[str, Any] | None) -> bool:
        return bool(key) and owns_key(self._model, key)

    def format_item(self, item: Mapping[str, Any], options: ExecutionOptions) -> dict[str, Any] | None:
        if not options.ignore_ownership and not self.owns_item(item):
            return None
        return self._schema.format_item_for_retrieval(item, include_keys=options.include_keys)

    def execute_operation(self, method: str, params: Mapping[str, Any], options: ExecutionOptions) -> ItemResult:
        response = self.call(OPERATIONS[method], params, options)
        if options.raw:
            return ItemResult(data=response)
        if options.parse is not None:
            return ItemResult(data=options.parse(options, response))
        response_mode = "default" if method == "get" else options.response
        if response_mode == "none":
            return ItemResult(data=None)

        if response_mode != "default":
            attributes = response.get("Attributes")
            if not attributes:
                return ItemResult(data=None)
            return ItemResult(
                data=self._schema.format_item_for_retrieval(attributes, include_keys=options.include_keys)
            )

        match method:
            case "get":
                item = response.get("Item")
                return ItemResult(data=self.format_item(item, options) if item else None)
            case "put" | "create":
                return ItemResult(
                    data=self._schema.format_item_for_retrieval(params["Item"], include_keys=options.include_keys)
                )
            case _:
                attributes = response.get("Attributes")
                if not attributes:
                    return ItemResult(data={})
                return ItemResult(
                    data=self._schema.format_item_for_retrieval(attributes, include_keys=options.include_keys)
                )

    def execute_query(
        self,
        method: str,
        params: Mapping[str, Any],
        options: ExecutionOptions,
        *,
        index: str,
    ) -> QueryResult:
        operation = OPERATIONS[method]
        start_key = self.exclusive_start_key(options, index)

        if options.raw:
            req = dict(params)
            if start_key:
                req["ExclusiveStartKey"] = start_key
            response = self.call(operation, req, options)
            return QueryResult(data=response, cursor=response.get("LastEvaluatedKey"))

        data: list[Any] = []
        last_item: dict[str, Any] | None = None

        def on_page(response: dict[str, Any]) -> int:
            nonlocal last_item
            if options.parse is not None:
                parsed = options.parse(options, response)
                if isinstance(parsed, list):
                    data.extend(parsed)
                    return len(parsed)
                data.append(parsed)
                return 1

            items = response.get("Items") or []
            if items:
                last_item = items[-1]
            kept = [record for record in (self.format_item(item, options) for item in items) if record is not None]
            data.extend(kept)
            return len(kept)

        last_key = paginate(
            lambda req: self.call(operation, req, options),
            params,
            options,
            start_key=start_key,
            on_page=on_page,
        )
        cursor = self.format_cursor(options, last_key, index=index, last_item=last_item)
        return QueryResult(data=data, cursor=cursor)

    def exclusive_start_key(self, options: ExecutionOptions, index: str) -> dict[str, Any] | None:
        cursor = options.cursor
        if cursor is None:
            return None
        if options.raw or options.pager == "raw":
            if not isinstance(cursor, Mapping):
                raise InvalidOptionsError("raw cursors must be a last evaluated key map", code="invalid_cursor")
            return dict(cursor)
        if options.pager == "item":
            if not isinstance(cursor, Mapping):
                raise InvalidOptionsError("item cursors must be a map of attributes", code="invalid_cursor")
            return item_to_keys(self._model, index, cursor)
        if not isinstance(cursor, str):
            raise InvalidOptionsError("cursor must be a string", code="invalid_cursor")
        return self.cursor_formatter(options).deserialize(cursor)

    def format_cursor(
        self,
        options: ExecutionOptions,
        last_key: Mapping[str, Any] | None,
        *,
        index: str,
        last_item: Mapping[str, Any] | None = None,
    ) -> Any:
        if not last_key:
            return None
        if options.raw or options.pager == "raw":
            return dict(last_key)
        if options.pager == "item":
            backup = self._schema.translate_from_fields(last_item) if last_item else None
            decoded = keys_to_item(self._model, index, last_key, backup)
            if decoded is None:
                return None
            if not decoded.parsed:
                logger.debug("cursor for %s rebuilt from the last returned record", self._model.entity)
            return decoded.facets
        return self.cursor_formatter(options).serialize(last_key)

    def cursor_formatter(self, options: ExecutionOptions) -> CursorFormatter:
        return options.cursor_formatter or self._cursor_formatter
