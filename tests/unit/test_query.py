from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import pytest

from facetdb_py import (
    Facet,
    Index,
    IndexConfiguration,
    KeyConfiguration,
    QueryState,
    ShardConfiguration,
    ValidationError,
)
from facetdb_py.cursor import decode_cursor
from facetdb_py.errors import NotFoundError
from facetdb_py.mocks import FakeDynamoDBClient, client_error
from facetdb_py.testkit import no_sleep


@dataclass(frozen=True)
class Post:
    post_id: str
    user_id: str
    status: str = "draft"
    title: str = ""
    expires: datetime | None = None


@pytest.fixture()
def client() -> FakeDynamoDBClient:
    return FakeDynamoDBClient()


@pytest.fixture()
def posts(client: FakeDynamoDBClient) -> Facet[Post]:
    return Facet(
        Post,
        pk=KeyConfiguration(prefix="#USER", fields=("user_id",)),
        sk=KeyConfiguration(prefix="#POST", fields=("post_id",)),
        table_name="tbl",
        client=client,
        indexes={
            Index.GSI1: IndexConfiguration(
                KeyConfiguration(
                    prefix="#STATUS",
                    fields=("status",),
                    shard=ShardConfiguration(fields=("post_id",), count=4),
                ),
                KeyConfiguration(prefix="#POST", fields=("post_id",)),
                alias="by_status",
            ),
        },
        ttl="expires",
        sleep=no_sleep,
    )

def _items(posts: Facet[Post], *ids: str) -> list[dict]:
    return [posts.to_wire(Post(post_id=i, user_id="u1")) for i in ids]


def test_list_queries_the_facet_prefix(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    client.expect(
        "query",
        {
            "TableName": "tbl",
            "KeyConditionExpression": "#PK = :partition AND begins_with(#SK, :sort)",
            "ExpressionAttributeNames": {"#PK": "PK", "#SK": "SK"},
            "ExpressionAttributeValues": {":partition": {"S": "#USER_u1"}, ":sort": {"S": "#POST"}},
            "ScanIndexForward": True,
        },
        response={"Items": _items(posts, "p1", "p2")},
    )

    query = posts.query({"user_id": "u1"})
    assert query.state is QueryState.BUILT

    result = query.list()

    client.assert_no_pending()
    assert [p.post_id for p in result.records] == ["p1", "p2"]
    assert result.cursor is None
    assert query.state is QueryState.COMPLETED
    assert "IndexName" not in client.calls[0][1]
    assert "Limit" not in client.calls[0][1]


@pytest.mark.parametrize(
    ("method", "op"),
    [
        ("equals", "="),
        ("greater_than", ">"),
        ("greater_than_or_equal", ">="),
        ("less_than", "<"),
        ("less_than_or_equal", "<="),
    ],
)
def test_comparisons_build_the_sort_key(
    posts: Facet[Post], client: FakeDynamoDBClient, method: str, op: str
) -> None:
    client.expect(
        "query",
        {
            "KeyConditionExpression": f"#PK = :partition AND #SK {op} :sort",
            "ExpressionAttributeValues": {":partition": {"S": "#USER_u1"}, ":sort": {"S": "#POST_p5"}},
            "ScanIndexForward": False,
            "Limit": 10,
        },
        response={"Items": []},
    )

    result = getattr(posts.query({"user_id": "u1"}), method)({"post_id": "p5"}, limit=10, scan_forward=False)

    client.assert_no_pending()
    assert result.records == []


def test_between_and_raw_sort_strings(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    client.expect(
        "query",
        {
            "KeyConditionExpression": "#PK = :partition AND #SK BETWEEN :start AND :end",
            "ExpressionAttributeValues": {
                ":partition": {"S": "#USER_u1"},
                ":start": {"S": "#POST_a"},
                ":end": {"S": "#POST_m"},
            },
        },
        response={"Items": []},
    )

    posts.query({"user_id": "u1"}).between({"post_id": "a"}, "#POST_m")
    client.assert_no_pending()


def test_first_returns_single_record_or_none(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    client.expect("query", {"Limit": 1}, response={"Items": _items(posts, "p1")})
    client.expect("query", {"Limit": 1}, response={"Items": []})

    query = posts.query({"user_id": "u1"})
    first = query.first()
    assert first is not None and first.post_id == "p1"
    assert query.first() is None


def test_filter_is_compiled_next_to_key_condition(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    client.expect(
        "query",
        {
            "FilterExpression": "(#F_0_0 = :F_0_0) AND (begins_with (#F_1_0, :F_1_0))",
            "ExpressionAttributeNames": {"#PK": "PK", "#SK": "SK", "#F_0_0": "status", "#F_1_0": "title"},
            "ExpressionAttributeValues": {
                ":partition": {"S": "#USER_u1"},
                ":sort": {"S": "#POST"},
                ":F_0_0": {"S": "live"},
                ":F_1_0": {"S": "How"},
            },
        },
        response={"Items": []},
    )

    tree = (("status", "=", "live"), "AND", ("title", "begins_with", "How"))
    posts.query({"user_id": "u1"}).list(filter=tree)
    client.assert_no_pending()


def test_index_query_uses_index_key_names_and_shard(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    last_key = {
        "GSI1PK": {"S": "#STATUS_2_live"},
        "GSI1SK": {"S": "#POST_p1"},
        "PK": {"S": "x"},
        "SK": {"S": "y"},
    }
    client.expect(
        "query",
        {
            "IndexName": "GSI1",
            "KeyConditionExpression": "#PK = :partition AND #SK = :sort",
            "ExpressionAttributeNames": {"#PK": "GSI1PK", "#SK": "GSI1SK"},
            "ExpressionAttributeValues": {":partition": {"S": "#STATUS_2_live"}, ":sort": {"S": "#POST_p1"}},
        },
        response={"Items": _items(posts, "p1"), "LastEvaluatedKey": last_key},
    )

    query = posts.index("by_status").query({"status": "live"}, shard=2)
    assert query.partition == "#STATUS_2_live"
    assert query.index_name == "GSI1"

    result = query.equals({"post_id": "p1"})

    assert result.cursor
    decoded = decode_cursor(result.cursor)
    assert decoded.index == "GSI1"
    assert decoded.last_key == last_key

    client.expect("query", {"ExclusiveStartKey": last_key, "IndexName": "GSI1"}, response={"Items": []})
    query.list(cursor=result.cursor)
    client.assert_no_pending()

    with pytest.raises(ValidationError, match="cursor index does not match query"):
        posts.query({"user_id": "u1"}).list(cursor=result.cursor)


def test_invalid_cursor_and_limit_are_rejected(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    query = posts.query({"user_id": "u1"})
    with pytest.raises(ValidationError, match="invalid cursor"):
        query.list(cursor="not-a-cursor")
    with pytest.raises(ValidationError, match="limit"):
        query.list(limit=0)
    assert query.state is QueryState.BUILT
    assert client.calls == []


def test_store_errors_mark_query_failed(posts: Facet[Post], client: FakeDynamoDBClient) -> None:
    client.expect("query", error=client_error("ResourceNotFoundException", "no table"))

    query = posts.query({"user_id": "u1"})
    with pytest.raises(NotFoundError, match="no table"):
        query.list()
    assert query.state is QueryState.FAILED
