from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from .compiler import chunked
from .executor import OPERATIONS, Executor
from .keys import keys_to_item
from .model import PRIMARY_INDEX, EntityModel
from .options import ExecutionOptions
from .results import BatchGetResult, BatchWriteResult

logger = logging.getLogger(__name__)


def run_in_waves[B, R](batches: Sequence[B], work: Callable[[B], R], *, concurrency: int) -> list[R]:
    """Run ``work`` over ``batches`` with at most ``concurrency`` in flight.

    Each wave settles completely before the next one starts. The first
    failure of a wave is raised only after every batch in it has finished.
    """
    results: list[R] = []
    for number, wave in enumerate(chunked(batches, concurrency), start=1):
        logger.debug("batch wave %d: %d requests", number, len(wave))
        with ThreadPoolExecutor(max_workers=len(wave)) as pool:
            futures = [pool.submit(work, batch) for batch in wave]
            wait(futures)
        for future in futures:
            results.append(future.result())
    return results


class BatchOrder:
    """Pre-allocated result slots keyed by primary key fingerprint."""

    def __init__(self, model: EntityModel, keys: Sequence[Mapping[str, Any]]) -> None:
        primary = model.primary
        self._pk = primary.pk.field
        self._sk = primary.sk.field if primary.sk is not None else None
        self._slots: dict[str, int] = {}
        for i, key in enumerate(keys):
            self._slots.setdefault(self.fingerprint(key), i)
        self.size = len(keys)

    def fingerprint(self, record: Mapping[str, Any]) -> str:
        sk = record.get(self._sk, "") if self._sk is not None else ""
        return f"{record.get(self._pk, '')}{sk}"

    def slot(self, record: Mapping[str, Any]) -> int | None:
        return self._slots.get(self.fingerprint(record))


@dataclass
class _BatchOutcome:
    records: list[tuple[dict[str, Any], Any]] = field(default_factory=list)
    unprocessed: list[Any] = field(default_factory=list)


class BatchOrchestrator:
    def __init__(self, model: EntityModel, executor: Executor) -> None:
        self._model = model
        self._executor = executor

    def _unprocessed(self, key: Mapping[str, Any], options: ExecutionOptions) -> Any:
        if options.unprocessed == "raw":
            return dict(key)
        decoded = keys_to_item(self._model, PRIMARY_INDEX, key)
        return decoded.facets if decoded is not None else dict(key)

    def batch_get(
        self,
        batches: Sequence[Mapping[str, Any]],
        options: ExecutionOptions,
        *,
        table: str,
    ) -> BatchGetResult:
        def work(params: Mapping[str, Any]) -> _BatchOutcome:
            response = self._executor.call(OPERATIONS["batch_get"], params, options)
            outcome = _BatchOutcome()
            if options.parse is not None:
                outcome.records.append(({}, options.parse(options, response)))
                return outcome

            for item in (response.get("Responses") or {}).get(table) or []:
                record = item if options.raw else self._executor.format_item(item, options)
                if record is not None:
                    outcome.records.append((item, record))
            pending = (response.get("UnprocessedKeys") or {}).get(table) or {}
            for key in pending.get("Keys") or []:
                outcome.unprocessed.append(self._unprocessed(key, options))
            return outcome

        outcomes = run_in_waves(batches, work, concurrency=options.concurrency)

        data: list[Any] = []
        unprocessed: list[Any] = []
        order: BatchOrder | None = None
        if options.preserve_batch_order and options.parse is None:
            keys = [key for batch in batches for key in batch["RequestItems"][table]["Keys"]]
            order = BatchOrder(self._model, keys)
            data = [None] * order.size

        for outcome in outcomes:
            unprocessed.extend(outcome.unprocessed)
            for item, record in outcome.records:
                slot = order.slot(item) if order is not None else None
                if slot is None:
                    data.append(record)
                else:
                    data[slot] = record

        if unprocessed:
            logger.warning("batch get left %d unprocessed keys for %s", len(unprocessed), self._model.entity)
        return BatchGetResult(data=data, unprocessed=unprocessed)

    def batch_write(
        self,
        method: str,
        batches: Sequence[Mapping[str, Any]],
        options: ExecutionOptions,
        *,
        table: str,
    ) -> BatchWriteResult:
        def work(params: Mapping[str, Any]) -> list[Any]:
            response = self._executor.call(OPERATIONS[method], params, options)
            pending: list[Any] = []
            for request in (response.get("UnprocessedItems") or {}).get(table) or []:
                if "PutRequest" in request:
                    pending.append(self._unprocessed(request["PutRequest"]["Item"], options))
                elif "DeleteRequest" in request:
                    pending.append(self._unprocessed(request["DeleteRequest"]["Key"], options))
            return pending

        outcomes = run_in_waves(batches, work, concurrency=options.concurrency)
        unprocessed = [entry for pending in outcomes for entry in pending]
        if unprocessed:
            logger.warning("%s left %d unprocessed items for %s", method, len(unprocessed), self._model.entity)
        return BatchWriteResult(unprocessed=unprocessed)
