"""Opaque pagination cursors.

A cursor is the store's ``LastEvaluatedKey`` rendered as canonical JSON and
wrapped in URL-safe base64, together with the name of the index that produced
it. Key attributes can only be strings, numbers or binary, so each one is
written as a ``[type, value]`` pair with binary values base64 encoded.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_KEY_TYPES = ("S", "N", "B")


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None


def _pack(name: str, av: Any) -> list[str]:
    if not isinstance(av, Mapping) or len(av) != 1:
        raise ValueError(f"key attribute {name} must be a single-type value")
    ((kind, value),) = av.items()
    if kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError(f"key attribute {name} must hold bytes")
        return ["B", base64.b64encode(bytes(value)).decode("ascii")]
    if kind in _KEY_TYPES and isinstance(value, str):
        return [kind, value]
    raise ValueError(f"key attribute {name} must be S, N or B")


def _unpack(name: str, packed: Any) -> dict[str, Any]:
    match packed:
        case ["B", str(encoded)]:
            try:
                return {"B": base64.b64decode(encoded, validate=True)}
            except binascii.Error as err:
                raise ValueError(f"key attribute {name} is not valid base64") from err
        case [("S" | "N") as kind, str(value)]:
            return {kind: value}
    raise ValueError("cursor lastKey is invalid")


def encode_cursor(last_key: Mapping[str, Any] | None, *, index: str | None = None) -> str:
    if not last_key:
        return ""

    payload: dict[str, Any] = {"lastKey": {str(name): _pack(name, av) for name, av in last_key.items()}}
    if index is not None:
        payload["index"] = index

    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
    return base64.urlsafe_b64encode(data.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str | None) -> Cursor:
    token = (cursor or "").strip()
    if not token:
        raise ValueError("cursor is empty")

    try:
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError("cursor is not valid") from err

    packed = payload.get("lastKey") if isinstance(payload, dict) else None
    if not isinstance(packed, dict) or not packed:
        raise ValueError("cursor lastKey is invalid")

    index = payload.get("index")
    return Cursor(
        last_key={name: _unpack(name, value) for name, value in packed.items()},
        index=index if isinstance(index, str) else None,
    )
