from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .executor import OPERATIONS


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()

OPERATION_NAMES = frozenset(OPERATIONS.values())

type Handler = Callable[[dict[str, Any]], Mapping[str, Any]]


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Stand-in for the boto3 low-level DynamoDB client.

    Calls are matched against ``expect`` entries in order, unless a handler was
    registered with ``on`` for that operation; handlers answer any number of
    calls and may be hit from several threads at once. ``max_in_flight``
    records the highest number of calls seen running concurrently.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def on(self, method: str, handler: Handler) -> None:
        self._handlers[method] = handler

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            self.calls.append((method, dict(req)))
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            handler = self._handlers.get(method)
            if handler is not None:
                return dict(handler(req))
            return self._next_expected(method, req)
        finally:
            with self._lock:
                self._in_flight -= 1

    def _next_expected(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        with self._lock:
            if not self._expected:
                raise AssertionError(f"unexpected call: {method}")
            call = self._expected.pop(0)

        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def __getattr__(self, name: str) -> Callable[..., Mapping[str, Any]]:
        if name not in OPERATION_NAMES:
            raise AttributeError(name)
        return lambda **kwargs: self._handle(name, kwargs)
