from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from facetdb_py.codec import RecordCodec, serialize_value
from facetdb_py.errors import FacetDefinitionError, ValidationError


@dataclass(frozen=True)
class Post:
    id: str
    title: str
    score: float = 0.0
    views: int = 0
    published: datetime | None = None
    day: date | None = None
    tags: set[str] = field(default_factory=set)
    meta: dict[str, int] = field(default_factory=dict)
    body: bytes | None = None


def test_to_wire_serializes_payload_and_merges_key_attributes() -> None:
    codec = RecordCodec(Post)
    post = Post(
        id="p1",
        title="hello",
        score=2.5,
        views=3,
        published=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        day=date(2024, 1, 2),
        tags={"a"},
        meta={"likes": 1},
    )

    item = codec.to_wire(post, {"PK": "#POST_p1", "SK": "#POST"})

    assert item["PK"] == {"S": "#POST_p1"}
    assert item["SK"] == {"S": "#POST"}
    assert item["title"] == {"S": "hello"}
    assert item["score"] == {"N": "2.5"}
    assert item["views"] == {"N": "3"}
    assert item["published"] == {"S": "2024-01-02T03:04:05.000Z"}
    assert item["day"] == {"S": "2024-01-02"}
    assert item["tags"] == {"SS": ["a"]}
    assert item["meta"] == {"M": {"likes": {"N": "1"}}}
    assert "body" not in item


def test_empty_sets_and_none_values_are_omitted() -> None:
    item = RecordCodec(Post).to_wire(Post(id="p1", title="t"))
    assert "tags" not in item
    assert "published" not in item


def test_unix_date_format_writes_epoch_seconds() -> None:
    codec = RecordCodec(Post, date_format="unix")
    item = codec.to_wire(Post(id="p1", title="t", published=datetime(2024, 1, 1, tzinfo=UTC)))
    assert item["published"] == {"N": "1704067200"}

    back = codec.from_wire(item)
    assert back.published == datetime(2024, 1, 1, tzinfo=UTC)


def test_from_wire_strips_key_attributes_and_restores_types() -> None:
    codec = RecordCodec(Post)
    post = Post(
        id="p1",
        title="hello",
        score=2.5,
        views=3,
        published=datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        day=date(2024, 1, 2),
        tags={"a", "b"},
        meta={"likes": 1},
        body=b"\x00\x01",
    )
    item = codec.to_wire(post, {"PK": "x", "SK": "y", "GSI1PK": "z", "ttl": 10})

    assert codec.from_wire(item) == post


def test_from_wire_uses_custom_validator() -> None:
    seen: list[dict] = []

    def validator(candidate):
        seen.append(dict(candidate))
        if not candidate.get("title"):
            raise ValidationError("title is required")
        return Post(id=candidate["id"], title=candidate["title"].upper())

    codec = RecordCodec(Post, validator=validator)
    assert codec.from_wire({"PK": {"S": "k"}, "id": {"S": "p1"}, "title": {"S": "t"}}).title == "T"
    assert "PK" not in seen[0]

    with pytest.raises(ValidationError, match="title is required"):
        codec.from_wire({"id": {"S": "p1"}})


def test_from_wire_reports_missing_fields_as_validation_error() -> None:
    with pytest.raises(ValidationError):
        RecordCodec(Post).from_wire({"title": {"S": "no id"}})


def test_values_accepts_mappings_and_dataclasses() -> None:
    codec = RecordCodec(Post)
    assert codec.values({"id": "p1"}) == {"id": "p1"}
    assert codec.values(Post(id="p1", title="t"))["title"] == "t"
    with pytest.raises(ValidationError):
        codec.values(42)


def test_codec_rejects_bad_definitions() -> None:
    with pytest.raises(FacetDefinitionError):
        RecordCodec(dict)  # type: ignore[arg-type]

    with pytest.raises(FacetDefinitionError):
        RecordCodec(Post, date_format="rfc")  # type: ignore[arg-type]

    @dataclass
    class Clashing:
        PK: str

    with pytest.raises(FacetDefinitionError, match="reserved"):
        RecordCodec(Clashing)


def test_serialize_value_rejects_non_finite_and_unknown_types() -> None:
    assert serialize_value(Decimal("1.50")) == {"N": "1.50"}
    with pytest.raises(ValidationError):
        serialize_value(float("nan"))
    with pytest.raises(ValidationError):
        serialize_value(object())
