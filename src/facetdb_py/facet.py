from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import boto3

from .aws_errors import map_store_error
from .batch import (
    GET_RETRY_POLICY,
    WRITE_RETRY_POLICY,
    BatchFailure,
    BatchResult,
    GetEntry,
    RetryPolicy,
    WireKey,
    WriteEntry,
    batch_get,
    batch_write,
    wire_key,
)
from .codec import DateFormat, RecordCodec, Validator
from .errors import FacetDefinitionError, NoSuchIndexError
from .expressions import ConditionExpression, compile_condition
from .keys import (
    DEFAULT_DELIMITER,
    PK,
    SK,
    TTL,
    Index,
    IndexConfiguration,
    KeyConfiguration,
    build_key,
    index_key_names,
    unknown_fields,
)
from .query import PartitionQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleItemResult[T]:
    """Outcome of a single get/put/delete.

    Store-side failures are reported here instead of raised, so callers check
    ``was_successful``. A successful get with ``record is None`` means the item
    does not exist.
    """

    record: T | None
    was_successful: bool
    error: Exception | None = None


def _ttl_seconds(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    if isinstance(value, (int, float, Decimal)):
        try:
            return int(value)
        except (ValueError, OverflowError, InvalidOperation):
            return None
    if isinstance(value, str):
        try:
            return int(Decimal(value.strip()))
        except (ValueError, OverflowError, InvalidOperation):
            return None
    return None


class FacetIndex[T]:
    """Key builders and queries for one configured secondary-index slot."""

    def __init__(self, name: Index, facet: Facet[T], config: IndexConfiguration) -> None:
        self._name = name
        self._facet = facet
        self._config = config

    @property
    def name(self) -> Index:
        return self._name

    @property
    def alias(self) -> str | None:
        return self._config.alias

    def pk(self, record: Any, shard: int | None = None) -> str:
        return build_key(self._config.pk, self._facet.codec.values(record), self._facet.delimiter, shard)

    def sk(self, record: Any, shard: int | None = None) -> str:
        return build_key(self._config.sk, self._facet.codec.values(record), self._facet.delimiter, shard)

    def query(self, partition: Any, shard: int | None = None) -> PartitionQuery[T]:
        return PartitionQuery(self._facet, partition, index=self, shard=shard)


class Facet[T]:
    """One record type mapped onto the shared single table."""

    def __init__(
        self,
        model: type[T],
        *,
        pk: KeyConfiguration,
        sk: KeyConfiguration,
        table_name: str,
        client: Any | None = None,
        indexes: Mapping[Index, IndexConfiguration] | None = None,
        delimiter: str = DEFAULT_DELIMITER,
        ttl: str | None = None,
        validator: Validator[T] | None = None,
        date_format: DateFormat = "iso",
        validate_input: bool = False,
        write_retry: RetryPolicy = WRITE_RETRY_POLICY,
        get_retry: RetryPolicy = GET_RETRY_POLICY,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not table_name:
            raise FacetDefinitionError("table_name is required")
        if max_workers <= 0:
            raise FacetDefinitionError("max_workers must be > 0")

        self._codec: RecordCodec[T] = RecordCodec(model, validator=validator, date_format=date_format)
        known = self._codec.field_names

        if ttl is not None and ttl not in known:
            raise FacetDefinitionError(f"unknown ttl field: {ttl}")

        for label, config in (("PK", pk), ("SK", sk)):
            missing = unknown_fields(config, known)
            if missing:
                raise FacetDefinitionError(f"{label} references unknown fields: {missing}")

        self._pk = pk
        self._sk = sk
        self._table_name = table_name
        self._client: Any = client or boto3.client("dynamodb")
        self._delimiter = delimiter
        self._ttl = ttl
        self._validate_input = validate_input
        self._write_retry = write_retry
        self._get_retry = get_retry
        self._max_workers = max_workers
        self._sleep = sleep

        self._indexes: dict[Index, FacetIndex[T]] = {}
        self._aliases: dict[str, Index] = {}
        for slot, index_config in (indexes or {}).items():
            self._register_index(Index(slot), index_config)

    def _register_index(self, slot: Index, config: IndexConfiguration) -> None:
        for label, key_config in (("PK", config.pk), ("SK", config.sk)):
            missing = unknown_fields(key_config, self._codec.field_names)
            if missing:
                raise FacetDefinitionError(f"{slot} {label} references unknown fields: {missing}")

        alias = config.alias
        if alias is not None:
            if alias in Index.__members__ or alias in self._aliases:
                raise FacetDefinitionError(
                    f"The index alias {alias} already exists on this Facet. Pick another alias for {slot}."
                )
            self._aliases[alias] = slot

        self._indexes[slot] = FacetIndex(slot, self, config)

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def client(self) -> Any:
        return self._client

    @property
    def codec(self) -> RecordCodec[T]:
        return self._codec

    @property
    def delimiter(self) -> str:
        return self._delimiter

    @property
    def ttl(self) -> str | None:
        return self._ttl

    @property
    def indexes(self) -> tuple[Index, ...]:
        return tuple(self._indexes)

    def index(self, slot: Index | str) -> FacetIndex[T]:
        if isinstance(slot, str) and slot in self._aliases:
            return self._indexes[self._aliases[slot]]
        try:
            return self._indexes[Index(slot)]
        except (KeyError, ValueError):
            raise NoSuchIndexError(str(slot)) from None

    def pk(self, record: Any, shard: int | None = None) -> str:
        return build_key(self._pk, self._codec.values(record), self._delimiter, shard)

    def sk(self, record: Any, shard: int | None = None) -> str:
        return build_key(self._sk, self._codec.values(record), self._delimiter, shard)

    def key(self, record: Any) -> WireKey:
        return (self.pk(record), self.sk(record))

    def to_wire(self, record: T) -> dict[str, Any]:
        if self._validate_input:
            record = self._codec.validate(self._codec.values(record))

        values = self._codec.values(record)
        derived: dict[str, Any] = {PK: self.pk(values), SK: self.sk(values)}
        for slot, facet_index in self._indexes.items():
            names = index_key_names(slot)
            derived[names.pk] = facet_index.pk(values)
            derived[names.sk] = facet_index.sk(values)
        if self._ttl is not None:
            derived[TTL] = _ttl_seconds(values.get(self._ttl))

        return self._codec.to_wire(values, derived)

    def from_wire(self, item: Mapping[str, Any]) -> T:
        return self._codec.from_wire(item)

    def get(self, identifier: Any, *, consistent_read: bool = False) -> SingleItemResult[T]:
        try:
            resp = self._client.get_item(
                TableName=self._table_name,
                Key=wire_key(self.key(identifier)),
                ConsistentRead=consistent_read,
            )
            item = resp.get("Item")
            record = self.from_wire(item) if item else None
        except Exception as err:
            error = map_store_error(err)
            logger.debug("get failed on %s: %s", self._table_name, error)
            return SingleItemResult(record=None, was_successful=False, error=error)
        return SingleItemResult(record=record, was_successful=True)

    def put(self, record: T, *, condition: ConditionExpression | None = None) -> SingleItemResult[T]:
        try:
            req: dict[str, Any] = {"TableName": self._table_name, "Item": self.to_wire(record)}
            if condition is not None:
                req.update(compile_condition(condition, to_wire_value=self._codec.to_wire_value).to_request())
            self._client.put_item(**req)
        except Exception as err:
            error = map_store_error(err)
            logger.debug("put failed on %s: %s", self._table_name, error)
            return SingleItemResult(record=record, was_successful=False, error=error)
        return SingleItemResult(record=record, was_successful=True)

    def delete(
        self, identifier: Any, *, condition: ConditionExpression | None = None
    ) -> SingleItemResult[Any]:
        try:
            req: dict[str, Any] = {"TableName": self._table_name, "Key": wire_key(self.key(identifier))}
            if condition is not None:
                req.update(compile_condition(condition, to_wire_value=self._codec.to_wire_value).to_request())
            self._client.delete_item(**req)
        except Exception as err:
            error = map_store_error(err)
            logger.debug("delete failed on %s: %s", self._table_name, error)
            return SingleItemResult(record=identifier, was_successful=False, error=error)
        return SingleItemResult(record=identifier, was_successful=True)

    def batch_get(self, identifiers: Sequence[Any], *, consistent_read: bool = False) -> BatchResult[T]:
        if not identifiers:
            return BatchResult()
        entries = [GetEntry(record=i, key=self.key(i)) for i in identifiers]
        return batch_get(
            self._client,
            self._table_name,
            entries,
            self.from_wire,
            policy=self._get_retry,
            sleep=self._sleep,
            max_workers=self._max_workers,
            consistent_read=consistent_read,
        )

    def batch_put(self, records: Sequence[T]) -> BatchResult[T]:
        out: BatchResult[T] = BatchResult()
        entries: list[WriteEntry[T]] = []
        for record in records:
            try:
                item = self.to_wire(record)
            except Exception as err:
                out.failed.append(BatchFailure(record=record, error=map_store_error(err)))
                continue
            key = (item[PK]["S"], item[SK]["S"])
            entries.append(WriteEntry(record=record, key=key, request={"PutRequest": {"Item": item}}))

        out.merge(self._write(entries, operation="batch_put"))
        return out

    def batch_delete(self, identifiers: Sequence[Any]) -> BatchResult[Any]:
        out: BatchResult[Any] = BatchResult()
        entries: list[WriteEntry[Any]] = []
        for identifier in identifiers:
            try:
                key = self.key(identifier)
            except Exception as err:
                out.failed.append(BatchFailure(record=identifier, error=map_store_error(err)))
                continue
            entries.append(
                WriteEntry(record=identifier, key=key, request={"DeleteRequest": {"Key": wire_key(key)}})
            )

        out.merge(self._write(entries, operation="batch_delete"))
        return out

    def _write(self, entries: Sequence[WriteEntry[Any]], *, operation: str) -> BatchResult[Any]:
        return batch_write(
            self._client,
            self._table_name,
            entries,
            operation=operation,
            policy=self._write_retry,
            sleep=self._sleep,
            max_workers=self._max_workers,
        )

    def query(self, partition: Any, shard: int | None = None) -> PartitionQuery[T]:
        return PartitionQuery(self, partition, shard=shard)

    def table_request(self, **kwargs: Any) -> dict[str, Any]:
        from .schema import build_create_table_request

        return build_create_table_request(self._table_name, indexes=self.indexes, **kwargs)
