"""Bulk put/delete/get against the store's per-request batch ceilings.

Chunks are dispatched in parallel and collected independently: a chunk whose
transport call fails turns into failure entries for its own records only.
Unprocessed items are retried sequentially inside their chunk with a capped
exponential backoff, and whatever is still outstanding after the last attempt
is reported with an ``ItemNotProcessedError``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from .aws_errors import map_store_error
from .errors import ItemNotProcessedError, ValidationError
from .keys import PK, SK

logger = logging.getLogger(__name__)

MAX_WRITE_BATCH_SIZE = 25
MAX_GET_BATCH_SIZE = 100

type WireKey = tuple[str, str]
type Sleep = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: float = 0.01
    max_delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValidationError("max_attempts must be >= 0")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValidationError("retry delays must be >= 0")

    def delay(self, attempt: int) -> float:
        return min(self.base_delay_seconds * (2.0**attempt), self.max_delay_seconds)


WRITE_RETRY_POLICY = RetryPolicy(max_attempts=5)
GET_RETRY_POLICY = RetryPolicy(max_attempts=10)


@dataclass(frozen=True)
class BatchFailure[T]:
    record: T
    error: Exception


@dataclass
class BatchResult[T]:
    succeeded: list[T] = field(default_factory=list)
    failed: list[BatchFailure[Any]] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return len(self.failed) > 0

    def merge(self, other: BatchResult[T]) -> None:
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)


@dataclass(frozen=True)
class WriteEntry[T]:
    record: T
    key: WireKey
    request: dict[str, Any]


@dataclass(frozen=True)
class GetEntry[R]:
    record: R
    key: WireKey


def chunked[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def wire_key(key: WireKey) -> dict[str, Any]:
    return {PK: {"S": key[0]}, SK: {"S": key[1]}}


def key_of(attributes: Mapping[str, Any]) -> WireKey:
    return (
        str(attributes.get(PK, {}).get("S", "")),
        str(attributes.get(SK, {}).get("S", "")),
    )


def _request_key(request: Mapping[str, Any]) -> WireKey:
    if "PutRequest" in request:
        return key_of(request["PutRequest"].get("Item", {}))
    return key_of(request.get("DeleteRequest", {}).get("Key", {}))


def _run_chunks[C, R](
    chunks: Sequence[C],
    worker: Callable[[C], BatchResult[R]],
    on_error: Callable[[C, Exception], BatchResult[R]],
    max_workers: int,
) -> BatchResult[R]:
    out: BatchResult[R] = BatchResult()
    if not chunks:
        return out

    if len(chunks) == 1 or max_workers <= 1:
        for chunk in chunks:
            try:
                out.merge(worker(chunk))
            except Exception as err:
                out.merge(on_error(chunk, err))
        return out

    with ThreadPoolExecutor(max_workers=min(max_workers, len(chunks))) as ex:
        futures = [ex.submit(worker, chunk) for chunk in chunks]
        for chunk, fut in zip(chunks, futures, strict=True):
            try:
                out.merge(fut.result())
            except Exception as err:
                out.merge(on_error(chunk, err))
    return out


def batch_write[T](
    client: Any,
    table_name: str,
    entries: Sequence[WriteEntry[T]],
    *,
    operation: str,
    policy: RetryPolicy = WRITE_RETRY_POLICY,
    sleep: Sleep | None = time.sleep,
    max_workers: int = 8,
) -> BatchResult[T]:
    chunks = chunked(entries, MAX_WRITE_BATCH_SIZE)
    logger.debug(
        "%s: dispatching %d record(s) in %d chunk(s) to %s", operation, len(entries), len(chunks), table_name
    )

    def worker(chunk: Sequence[WriteEntry[T]]) -> BatchResult[T]:
        return _write_chunk(client, table_name, chunk, operation=operation, policy=policy, sleep=sleep)

    def on_error(chunk: Sequence[WriteEntry[T]], err: Exception) -> BatchResult[T]:
        error = map_store_error(err)
        logger.warning("%s: chunk of %d record(s) failed: %s", operation, len(chunk), error)
        return BatchResult(failed=[BatchFailure(record=e.record, error=error) for e in chunk])

    return _run_chunks(chunks, worker, on_error, max_workers)


def _write_chunk[T](
    client: Any,
    table_name: str,
    chunk: Sequence[WriteEntry[T]],
    *,
    operation: str,
    policy: RetryPolicy,
    sleep: Sleep | None,
) -> BatchResult[T]:
    # The wire protocol rejects duplicate keys in one request: the last record wins
    # and earlier duplicates share its outcome.
    requests: dict[WireKey, dict[str, Any]] = {}
    records: dict[WireKey, list[T]] = {}
    for entry in chunk:
        requests[entry.key] = entry.request
        records.setdefault(entry.key, []).append(entry.record)

    resp = client.batch_write_item(RequestItems={table_name: list(requests.values())})
    pending = resp.get("UnprocessedItems", {}).get(table_name) or []

    errors: dict[WireKey, Exception] = {}
    attempts = 0
    while pending and attempts < policy.max_attempts:
        attempts += 1
        logger.debug("%s: retrying %d unprocessed item(s), attempt %d", operation, len(pending), attempts)
        if sleep is not None:
            sleep(policy.delay(attempts))
        try:
            resp = client.batch_write_item(RequestItems={table_name: list(pending)})
        except Exception as err:
            error = map_store_error(err)
            logger.warning("%s: retry attempt %d failed: %s", operation, attempts, error)
            errors.update({_request_key(req): error for req in pending})
            pending = []
            break
        pending = resp.get("UnprocessedItems", {}).get(table_name) or []

    if pending:
        logger.warning(
            "%s: %d item(s) still unprocessed after %d attempt(s)", operation, len(pending), attempts
        )
        errors.update({_request_key(req): ItemNotProcessedError(operation=operation) for req in pending})

    out: BatchResult[T] = BatchResult()
    for key, grouped in records.items():
        error = errors.get(key)
        if error is None:
            out.succeeded.extend(grouped)
        else:
            out.failed.extend(BatchFailure(record=r, error=error) for r in grouped)
    return out


def batch_get[R, T](
    client: Any,
    table_name: str,
    entries: Sequence[GetEntry[R]],
    decode: Callable[[Mapping[str, Any]], T],
    *,
    policy: RetryPolicy = GET_RETRY_POLICY,
    sleep: Sleep | None = time.sleep,
    max_workers: int = 8,
    consistent_read: bool = False,
) -> BatchResult[T]:
    chunks = chunked(entries, MAX_GET_BATCH_SIZE)
    logger.debug(
        "batch_get: dispatching %d key(s) in %d chunk(s) to %s", len(entries), len(chunks), table_name
    )

    def worker(chunk: Sequence[GetEntry[R]]) -> BatchResult[T]:
        return _get_chunk(
            client, table_name, chunk, decode, policy=policy, sleep=sleep, consistent_read=consistent_read
        )

    def on_error(chunk: Sequence[GetEntry[R]], err: Exception) -> BatchResult[T]:
        error = map_store_error(err)
        logger.warning("batch_get: chunk of %d key(s) failed: %s", len(chunk), error)
        return BatchResult(failed=[BatchFailure(record=e.record, error=error) for e in chunk])

    return _run_chunks(chunks, worker, on_error, max_workers)


def _get_chunk[R, T](
    client: Any,
    table_name: str,
    chunk: Sequence[GetEntry[R]],
    decode: Callable[[Mapping[str, Any]], T],
    *,
    policy: RetryPolicy,
    sleep: Sleep | None,
    consistent_read: bool,
) -> BatchResult[T]:
    identifiers: dict[WireKey, list[R]] = {}
    for entry in chunk:
        identifiers.setdefault(entry.key, []).append(entry.record)

    out: BatchResult[T] = BatchResult()

    def gather(resp: Mapping[str, Any]) -> list[dict[str, Any]]:
        for item in resp.get("Responses", {}).get(table_name, []):
            try:
                out.succeeded.append(decode(item))
            except Exception as err:
                out.failed.extend(
                    BatchFailure(record=r, error=err) for r in identifiers.get(key_of(item), [])
                )
        return list(resp.get("UnprocessedKeys", {}).get(table_name, {}).get("Keys") or [])

    def request(keys: list[dict[str, Any]]) -> Mapping[str, Any]:
        return client.batch_get_item(
            RequestItems={table_name: {"Keys": keys, "ConsistentRead": consistent_read}}
        )

    pending = gather(request([wire_key(k) for k in identifiers]))

    attempts = 0
    while pending and attempts < policy.max_attempts:
        attempts += 1
        logger.debug("batch_get: retrying %d unprocessed key(s), attempt %d", len(pending), attempts)
        if sleep is not None:
            sleep(policy.delay(attempts))
        try:
            pending = gather(request(pending))
        except Exception as err:
            error = map_store_error(err)
            logger.warning("batch_get: retry attempt %d failed: %s", attempts, error)
            for key in pending:
                out.failed.extend(
                    BatchFailure(record=r, error=error) for r in identifiers.get(key_of(key), [])
                )
            return out

    if pending:
        logger.warning("batch_get: %d key(s) still unprocessed after %d attempt(s)", len(pending), attempts)
        for key in pending:
            out.failed.extend(
                BatchFailure(record=r, error=ItemNotProcessedError(operation="batch_get"))
                for r in identifiers.get(key_of(key), [])
            )
    return out
