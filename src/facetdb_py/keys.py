from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from .sharding import crc_shard, format_shard

PK = "PK"
SK = "SK"
TTL = "ttl"

DEFAULT_DELIMITER = "_"


class Index(enum.StrEnum):
    GSI1 = "GSI1"
    GSI2 = "GSI2"
    GSI3 = "GSI3"
    GSI4 = "GSI4"
    GSI5 = "GSI5"
    GSI6 = "GSI6"
    GSI7 = "GSI7"
    GSI8 = "GSI8"
    GSI9 = "GSI9"
    GSI10 = "GSI10"
    GSI11 = "GSI11"
    GSI12 = "GSI12"
    GSI13 = "GSI13"
    GSI14 = "GSI14"
    GSI15 = "GSI15"
    GSI16 = "GSI16"
    GSI17 = "GSI17"
    GSI18 = "GSI18"
    GSI19 = "GSI19"
    GSI20 = "GSI20"


@dataclass(frozen=True)
class IndexKeyNames:
    pk: str
    sk: str


def index_key_names(index: Index) -> IndexKeyNames:
    slot = Index(index)
    return IndexKeyNames(pk=f"{slot.value}PK", sk=f"{slot.value}SK")


RESERVED_ATTRIBUTES: frozenset[str] = frozenset(
    {PK, SK, TTL}
    | {index_key_names(slot).pk for slot in Index}
    | {index_key_names(slot).sk for slot in Index}
)


@dataclass(frozen=True)
class ShardConfiguration:
    """Which fields are hashed together, and into how many buckets."""

    fields: tuple[str, ...]
    count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class KeyConfiguration:
    """How to build a composite key from a record.

    ``fields`` is ordered: it is the concatenation order of the key segments.
    A field whose value is missing, ``None`` or not a scalar is left out of the
    key instead of raising, so records that differ only in such a field share
    the same key.
    """

    prefix: str
    fields: tuple[str, ...] = ()
    shard: ShardConfiguration | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))

    def referenced_fields(self) -> tuple[str, ...]:
        names = list(self.fields)
        if self.shard is not None:
            names.extend(f for f in self.shard.fields if f not in names)
        return tuple(names)


@dataclass(frozen=True)
class IndexConfiguration:
    pk: KeyConfiguration
    sk: KeyConfiguration
    alias: str | None = field(default=None, kw_only=True)


def _format_number(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        return repr(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def key_segment(value: Any) -> str | None:
    """Stringify a scalar for use in a composite key, or ``None`` to skip it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_number(value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f") if value.is_finite() else str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    return None


def _shard_source(shard: ShardConfiguration, values: Mapping[str, Any]) -> str:
    parts: list[str] = []
    for name in shard.fields:
        value = values.get(name)
        if value is None:
            continue
        segment = key_segment(value)
        parts.append(segment if segment is not None else str(value))
    return "".join(parts)


def build_key(
    config: KeyConfiguration,
    values: Mapping[str, Any],
    delimiter: str = DEFAULT_DELIMITER,
    shard: int | None = None,
) -> str:
    """Join the key prefix and its segments with ``delimiter``.

    A given ``shard`` is a literal bucket and is not re-hashed. It is hex formatted
    without clamping or range checks, so a value outside ``0..count-1`` produces a
    segment no computed shard would ever match.
    """
    segments: list[str] = [config.prefix]

    if config.shard is not None:
        if shard is not None:
            segments.append(format_shard(shard, config.shard.count))
        else:
            segments.append(crc_shard(_shard_source(config.shard, values), config.shard.count))

    for name in config.fields:
        segment = key_segment(values.get(name))
        if segment is not None:
            segments.append(segment)

    return delimiter.join(segments)


def unknown_fields(config: KeyConfiguration, known: Sequence[str]) -> list[str]:
    return [name for name in config.referenced_fields() if name not in known]
