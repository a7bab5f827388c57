from __future__ import annotations

import functools
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

type MetricSink = Callable[[StoreCallMetric], None]


@dataclass(frozen=True)
class StoreCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    """Short timeouts with adaptive client-side retries, suited to request/response services."""
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


@contextmanager
def _timed(sink: MetricSink, service: str, operation: str) -> Iterator[None]:
    start = time.monotonic()
    ok = False
    try:
        yield
        ok = True
    finally:
        sink(StoreCallMetric(service=service, operation=operation, seconds=time.monotonic() - start, ok=ok))


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, sink: MetricSink) -> None:
        self._client = client
        self._service = service
        self._sink = sink

    def __getattr__(self, name: str) -> Any:
        target = getattr(self._client, name)
        if name.startswith("_") or not callable(target):
            return target

        @functools.wraps(target)
        def call(*args: Any, **kwargs: Any) -> Any:
            with _timed(self._sink, self._service, name):
                return target(*args, **kwargs)

        return call


def instrument_client(client: Any, *, on_call: MetricSink, service: str = "dynamodb") -> Any:
    """Wrap ``client`` so every public method call reports a ``StoreCallMetric``."""
    return _InstrumentedClient(client, service, on_call)


_clients: dict[str | None, Any] = {}
_clients_lock = threading.Lock()


def get_dynamodb_client(
    *,
    region: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    metrics: MetricSink | None = None,
) -> Any:
    """Return the process-wide DynamoDB client for ``region``, creating it on first use.

    Options only apply to the call that creates the client; later calls for the same
    region get the cached one back unchanged.
    """
    with _clients_lock:
        if region in _clients:
            return _clients[region]

        session = session or boto3.session.Session(region_name=region)
        config = config or create_boto3_config()
        client = cast(Any, session).client("dynamodb", region_name=region, config=config)
        if metrics is not None:
            client = instrument_client(client, on_call=metrics)
        _clients[region] = client
        return client


def _reset_clients_for_tests() -> None:
    with _clients_lock:
        _clients.clear()
