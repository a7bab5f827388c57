from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError

type Handler = Callable[[Mapping[str, Any]], Mapping[str, Any]]
type Matcher = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _check(expected: Any, actual: Any, path: str) -> None:
    """Partial structural match: dicts may carry extra keys, lists must match element-wise."""
    if expected is ANY:
        return

    match expected:
        case dict():
            if not isinstance(actual, dict):
                raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
            missing = [k for k in expected if k not in actual]
            if missing:
                raise AssertionError(f"{path}: missing key {missing[0]!r}")
            for k, v in expected.items():
                _check(v, actual[k], f"{path}.{k}")
        case list():
            if not isinstance(actual, list) or len(actual) != len(expected):
                got = f"{len(actual)} items" if isinstance(actual, list) else type(actual).__name__
                raise AssertionError(f"{path}: expected {len(expected)} items, got {got}")
            for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
                _check(e, a, f"{path}[{i}]")
        case _ if expected != actual:
            raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def client_error(code: str, message: str = "", *, operation: str = "Operation") -> ClientError:
    """Build the ``ClientError`` botocore raises for a service error ``code``."""
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    match: Matcher | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None

    def answer(self, method: str, req: Mapping[str, Any]) -> dict[str, Any]:
        if method != self.method:
            raise AssertionError(f"expected {self.method}, got {method}")
        if callable(self.match):
            self.match(req)
        elif self.match is not None:
            _check(dict(self.match), dict(req), method)
        if self.error is not None:
            raise self.error
        return dict(self.response or {})


def _operation(name: str) -> Callable[..., dict[str, Any]]:
    def call(self: FakeDynamoDBClient, **kwargs: Any) -> dict[str, Any]:
        return self._dispatch(name, kwargs)

    call.__name__ = name
    return call


class FakeDynamoDBClient:
    """In-memory stand-in for the boto3 DynamoDB client methods this package calls.

    Calls are answered from a queue of ``expect``-ed calls in order. A method
    registered with ``respond`` is answered by its handler instead, which suits
    batch calls fanned out over worker threads where the order is not fixed.
    """

    def __init__(self) -> None:
        self._queue: deque[ExpectedCall] = deque()
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        match: Matcher | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._queue.append(ExpectedCall(method=method, match=match, response=response, error=error))

    def respond(self, method: str, handler: Handler) -> None:
        self._handlers[method] = handler

    def assert_no_pending(self) -> None:
        if self._queue:
            raise AssertionError(f"pending expected calls: {list(self._queue)!r}")

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        with self._lock:
            return [req for name, req in self.calls if name == method]

    def _dispatch(self, method: str, req: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((method, dict(req)))
            handler = self._handlers.get(method)
            expected = None
            if handler is None:
                if not self._queue:
                    raise AssertionError(f"unexpected call: {method}")
                expected = self._queue.popleft()

        if expected is not None:
            return expected.answer(method, req)
        return dict(handler(req)) if handler is not None else {}

    get_item = _operation("get_item")
    put_item = _operation("put_item")
    delete_item = _operation("delete_item")
    query = _operation("query")
    batch_get_item = _operation("batch_get_item")
    batch_write_item = _operation("batch_write_item")
    create_table = _operation("create_table")
    describe_table = _operation("describe_table")
    delete_table = _operation("delete_table")
