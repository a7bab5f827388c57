from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .cursor import decode_cursor, encode_cursor
from .errors import ValidationError
from .expressions import FilterExpression, compile_filter
from .keys import PK, SK, index_key_names

if TYPE_CHECKING:
    from .facet import Facet, FacetIndex

logger = logging.getLogger(__name__)


class QueryState(enum.StrEnum):
    BUILT = "BUILT"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class QueryResult[T]:
    records: list[T]
    cursor: str | None = None


class PartitionQuery[T]:
    """Range queries against a single partition of the table or of one index.

    Every method fetches exactly one page. A returned ``cursor`` means there
    may be more records, not that there are.
    """

    def __init__(
        self,
        facet: Facet[T],
        partition: Any,
        *,
        index: FacetIndex[T] | None = None,
        shard: int | None = None,
    ) -> None:
        self._facet = facet
        self._index = index
        self._state = QueryState.BUILT

        if index is not None:
            names = index_key_names(index.name)
            self._pk_attr, self._sk_attr = names.pk, names.sk
            self._partition = index.pk(partition, shard)
        else:
            self._pk_attr, self._sk_attr = PK, SK
            self._partition = facet.pk(partition, shard)

    @property
    def partition(self) -> str:
        return self._partition

    @property
    def index_name(self) -> str | None:
        return self._index.name.value if self._index is not None else None

    @property
    def state(self) -> QueryState:
        return self._state

    def equals(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._compare("=", sort, cursor, limit, scan_forward, shard, filter)

    def greater_than(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._compare(">", sort, cursor, limit, scan_forward, shard, filter)

    def greater_than_or_equal(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._compare(">=", sort, cursor, limit, scan_forward, shard, filter)

    def less_than(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._compare("<", sort, cursor, limit, scan_forward, shard, filter)

    def less_than_or_equal(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._compare("<=", sort, cursor, limit, scan_forward, shard, filter)

    def begins_with(
        self,
        sort: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._execute(
            "#PK = :partition AND begins_with(#SK, :sort)",
            {":sort": self._sort_key(sort, shard)},
            cursor=cursor,
            limit=limit,
            scan_forward=scan_forward,
            filter=filter,
        )

    def between(
        self,
        start: Any,
        end: Any,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        return self._execute(
            "#PK = :partition AND #SK BETWEEN :start AND :end",
            {":start": self._sort_key(start, shard), ":end": self._sort_key(end, shard)},
            cursor=cursor,
            limit=limit,
            scan_forward=scan_forward,
            filter=filter,
        )

    def list(
        self,
        *,
        cursor: str | None = None,
        limit: int | None = None,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> QueryResult[T]:
        """Everything in the partition whose sort key starts with the facet's sort prefix."""
        return self.begins_with(
            {}, cursor=cursor, limit=limit, scan_forward=scan_forward, shard=shard, filter=filter
        )

    def first(
        self,
        *,
        scan_forward: bool = True,
        shard: int | None = None,
        filter: FilterExpression | None = None,
    ) -> T | None:
        result = self.list(limit=1, scan_forward=scan_forward, shard=shard, filter=filter)
        return result.records[0] if result.records else None

    def _sort_key(self, sort: Any, shard: int | None) -> str:
        if isinstance(sort, str):
            return sort
        if self._index is not None:
            return self._index.sk(sort, shard)
        return self._facet.sk(sort, shard)

    def _compare(
        self,
        comparison: str,
        sort: Any,
        cursor: str | None,
        limit: int | None,
        scan_forward: bool,
        shard: int | None,
        filter: FilterExpression | None,
    ) -> QueryResult[T]:
        return self._execute(
            f"#PK = :partition AND #SK {comparison} :sort",
            {":sort": self._sort_key(sort, shard)},
            cursor=cursor,
            limit=limit,
            scan_forward=scan_forward,
            filter=filter,
        )

    def _build_request(
        self,
        key_condition: str,
        sort_values: dict[str, str],
        *,
        cursor: str | None,
        limit: int | None,
        scan_forward: bool,
        filter: FilterExpression | None,
    ) -> dict[str, Any]:
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0")

        names: dict[str, str] = {"#PK": self._pk_attr, "#SK": self._sk_attr}
        values: dict[str, Any] = {":partition": {"S": self._partition}}
        values.update({ref: {"S": v} for ref, v in sort_values.items()})

        req: dict[str, Any] = {
            "TableName": self._facet.table_name,
            "KeyConditionExpression": key_condition,
            "ScanIndexForward": scan_forward,
        }
        if self._index is not None:
            req["IndexName"] = self.index_name
        if limit is not None:
            req["Limit"] = limit

        if cursor:
            try:
                decoded = decode_cursor(cursor)
            except Exception as err:
                raise ValidationError("invalid cursor") from err
            if decoded.index != self.index_name:
                raise ValidationError("cursor index does not match query")
            req["ExclusiveStartKey"] = decoded.last_key

        if filter is not None:
            compiled = compile_filter(filter, to_wire_value=self._facet.codec.to_wire_value)
            for ref in compiled.names.keys() & names.keys():
                raise ValidationError(f"expression attribute name collision: {ref}")
            for ref in compiled.values.keys() & values.keys():
                raise ValidationError(f"expression attribute value collision: {ref}")
            names.update(compiled.names)
            values.update(compiled.values)
            req["FilterExpression"] = compiled.statement

        req["ExpressionAttributeNames"] = names
        req["ExpressionAttributeValues"] = values
        return req

    def _execute(
        self,
        key_condition: str,
        sort_values: dict[str, str],
        *,
        cursor: str | None,
        limit: int | None,
        scan_forward: bool,
        filter: FilterExpression | None,
    ) -> QueryResult[T]:
        req = self._build_request(
            key_condition, sort_values, cursor=cursor, limit=limit, scan_forward=scan_forward, filter=filter
        )

        self._state = QueryState.EXECUTING
        logger.debug("query %s partition=%s: %s", self.index_name or "table", self._partition, key_condition)
        try:
            resp = self._facet.client.query(**req)
            records = [self._facet.from_wire(item) for item in resp.get("Items", [])]
        except ClientError as err:
            self._state = QueryState.FAILED
            raise map_client_error(err) from err
        except Exception:
            self._state = QueryState.FAILED
            raise

        last = resp.get("LastEvaluatedKey")
        self._state = QueryState.COMPLETED
        return QueryResult(
            records=records,
            cursor=encode_cursor(last, index=self.index_name) if last else None,
        )
