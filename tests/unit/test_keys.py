from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

from facetdb_py.keys import (
    RESERVED_ATTRIBUTES,
    Index,
    KeyConfiguration,
    ShardConfiguration,
    build_key,
    index_key_names,
    key_segment,
    unknown_fields,
)
from facetdb_py.sharding import crc_shard


def test_sharded_key_layout() -> None:
    cfg = KeyConfiguration(
        prefix="#STATUS",
        fields=["postId"],
        shard=ShardConfiguration(fields=["postId"], count=4),
    )

    key = build_key(cfg, {"postId": "abc"}, "_")
    assert re.fullmatch(r"#STATUS_[0-3]_abc", key)
    assert key == f"#STATUS_{crc_shard('abc', 4)}_abc"
    assert build_key(cfg, {"postId": "abc"}, "_") == key


def test_explicit_shard_zero_is_used_literally() -> None:
    cfg = KeyConfiguration(
        prefix="#STATUS",
        fields=("postId",),
        shard=ShardConfiguration(fields=("postId",), count=256),
    )
    assert build_key(cfg, {"postId": "abc"}, "_", 0) == "#STATUS_00_abc"
    assert build_key(cfg, {"postId": "abc"}, "_", 15) == "#STATUS_0f_abc"


def test_explicit_shard_is_ignored_without_shard_configuration() -> None:
    cfg = KeyConfiguration(prefix="#USER", fields=("id",))
    assert build_key(cfg, {"id": "u1"}, "_", 3) == "#USER_u1"


def test_missing_and_non_scalar_fields_are_dropped() -> None:
    cfg = KeyConfiguration(prefix="#POST", fields=("org", "tags", "id"))

    assert build_key(cfg, {"id": "p1"}) == "#POST_p1"
    assert build_key(cfg, {"org": None, "tags": ["a"], "id": "p1"}) == "#POST_p1"
    assert build_key(cfg, {"org": "acme", "id": "p1"}) == "#POST_acme_p1"


def test_prefix_only_key() -> None:
    assert build_key(KeyConfiguration(prefix="#META"), {"anything": 1}) == "#META"


def test_custom_delimiter() -> None:
    cfg = KeyConfiguration(prefix="#A", fields=("x", "y"))
    assert build_key(cfg, {"x": "1", "y": "2"}, "#") == "#A#1#2"


def test_key_segment_formats_scalars() -> None:
    assert key_segment("abc") == "abc"
    assert key_segment(42) == "42"
    assert key_segment(3.0) == "3"
    assert key_segment(2.5) == "2.5"
    assert key_segment(Decimal("10")) == "10"
    assert key_segment(True) == "true"
    assert key_segment(False) == "false"
    assert key_segment(date(2024, 1, 2)) == "2024-01-02"
    assert key_segment(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "2024-01-02T03:04:05.000Z"
    assert key_segment(None) is None
    assert key_segment({"a": 1}) is None
    assert key_segment([1]) is None


def test_key_segment_normalizes_datetimes_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    assert key_segment(datetime(2024, 1, 2, 5, 0, tzinfo=plus_two)) == "2024-01-02T03:00:00.000Z"
    assert key_segment(datetime(2024, 1, 2, 5, 0)) == "2024-01-02T05:00:00.000Z"


def test_index_key_names_and_reserved_attributes() -> None:
    names = index_key_names(Index.GSI3)
    assert (names.pk, names.sk) == ("GSI3PK", "GSI3SK")

    assert {"PK", "SK", "ttl", "GSI1PK", "GSI20SK"} <= RESERVED_ATTRIBUTES
    assert len(RESERVED_ATTRIBUTES) == 3 + 2 * len(Index)


def test_unknown_fields_includes_shard_fields() -> None:
    cfg = KeyConfiguration(prefix="#A", fields=("id",), shard=ShardConfiguration(fields=("org",), count=2))
    assert unknown_fields(cfg, ["id", "org"]) == []
    assert unknown_fields(cfg, ["id"]) == ["org"]


def test_explicit_shard_outside_the_bucket_range_is_not_clamped() -> None:
    cfg = KeyConfiguration(
        prefix="#STATUS",
        fields=("postId",),
        shard=ShardConfiguration(fields=("postId",), count=4),
    )
    assert build_key(cfg, {"postId": "abc"}, "_", 5) == "#STATUS_5_abc"
    assert build_key(cfg, {"postId": "abc"}, "_", -1) == "#STATUS_-1_abc"
