"""Deterministic bucket assignment for spreading hot partition keys.

CRC-32 is not a cryptographic hash, it is only used because it is fast and
stable across processes: the same string and bucket count always produce the
same bucket.
"""

from __future__ import annotations

import zlib


def _normalize_bucket_count(bucket_count: float) -> int:
    if bucket_count < 1:
        return 1
    return int(bucket_count)


def shard_width(bucket_count: float) -> int:
    """Number of hex digits needed to print the largest bucket (``bucket_count - 1``)."""
    return len(format(_normalize_bucket_count(bucket_count) - 1, "x"))


def format_shard(bucket: int, bucket_count: float) -> str:
    return format(bucket, "x").zfill(shard_width(bucket_count))


def _checksum_bytes(key: str) -> bytes:
    # Low byte of each UTF-16 code unit, matching keys written by the JS client.
    return key.encode("utf-16-le", "surrogatepass")[::2]


def crc_shard(key: str, bucket_count: float) -> str:
    count = _normalize_bucket_count(bucket_count)
    bucket = (zlib.crc32(_checksum_bytes(key)) >> 1) % count
    return format_shard(bucket, count)
