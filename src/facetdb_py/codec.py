from __future__ import annotations

import types
from collections.abc import Callable, Mapping
from dataclasses import fields, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Literal, Union, cast, get_args, get_origin, get_type_hints

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .errors import FacetDefinitionError, ValidationError
from .keys import RESERVED_ATTRIBUTES, format_datetime

type DateFormat = Literal["iso", "unix"]
type Validator[T] = Callable[[Mapping[str, Any]], T]

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _prepare(value: Any, date_format: DateFormat) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValidationError(f"cannot store non-finite number: {value!r}")
        return Decimal(repr(value))
    if isinstance(value, datetime):
        if date_format == "unix":
            if value.tzinfo is None:
                value = value.replace(tzinfo=UTC)
            return int(value.timestamp())
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _prepare(v, date_format) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_prepare(v, date_format) for v in value]
    if isinstance(value, (set, frozenset)):
        if not value:
            return None
        return {_prepare(v, date_format) for v in value}
    return value


def serialize_value(value: Any, *, date_format: DateFormat = "iso") -> dict[str, Any]:
    """Convert one native value into its typed wire representation."""
    try:
        return _serializer.serialize(_prepare(value, date_format))
    except TypeError as err:
        raise ValidationError(f"unsupported value: {err}") from err


def _unwrap_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is not Union and origin is not types.UnionType:
        return annotation
    non_none = [a for a in get_args(annotation) if a is not type(None)]  # noqa: E721
    if len(non_none) == 1:
        return non_none[0]
    return annotation


def _coerce_value(value: Any, annotation: Any) -> Any:
    if value is None:
        return None

    annotation = _unwrap_optional(annotation)

    if annotation is int and isinstance(value, Decimal):
        return int(value)
    if annotation is float and isinstance(value, Decimal):
        return float(value)
    if annotation is bytes and isinstance(value, Binary):
        return bytes(value.value)
    if annotation is datetime:
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        if isinstance(value, Decimal):
            return datetime.fromtimestamp(int(value), tz=UTC)
    if annotation is date and isinstance(value, str):
        return date.fromisoformat(value)

    origin = get_origin(annotation)
    args = get_args(annotation)
    if origin in (set, frozenset) and isinstance(value, set):
        (elem_type,) = args or (Any,)
        return origin(_coerce_value(v, elem_type) for v in value)
    if origin is list and isinstance(value, list):
        (elem_type,) = args or (Any,)
        return [_coerce_value(v, elem_type) for v in value]
    if origin is tuple and isinstance(value, list):
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_coerce_value(v, args[0]) for v in value)
        return tuple(value)
    if origin is dict and isinstance(value, dict) and len(args) == 2:
        return {k: _coerce_value(v, args[1]) for k, v in value.items()}

    return value


class RecordCodec[T]:
    """Moves records between dataclass instances and wire attribute maps."""

    def __init__(
        self,
        model_type: type[T],
        *,
        validator: Validator[T] | None = None,
        date_format: DateFormat = "iso",
    ) -> None:
        if not is_dataclass(model_type):
            raise FacetDefinitionError("model_type must be a dataclass")
        if date_format not in {"iso", "unix"}:
            raise FacetDefinitionError(f"unsupported date_format: {date_format}")

        self._model_type = model_type
        self._validator = validator
        self._date_format: DateFormat = date_format
        self._field_names = tuple(f.name for f in fields(cast(Any, model_type)))
        try:
            self._hints: dict[str, Any] = get_type_hints(model_type)
        except Exception:
            self._hints = dict(getattr(model_type, "__annotations__", {}))

        reserved = sorted(RESERVED_ATTRIBUTES.intersection(self._field_names))
        if reserved:
            raise FacetDefinitionError(f"field names collide with reserved attributes: {reserved}")

    @property
    def model_type(self) -> type[T]:
        return self._model_type

    @property
    def field_names(self) -> tuple[str, ...]:
        return self._field_names

    def values(self, record: Any) -> dict[str, Any]:
        if isinstance(record, Mapping):
            return dict(record)
        if is_dataclass(record) and not isinstance(record, type):
            return {name: getattr(record, name) for name in self._field_names}
        raise ValidationError("record must be a dataclass instance or a mapping")

    def to_wire_value(self, value: Any) -> dict[str, Any]:
        return serialize_value(value, date_format=self._date_format)

    def to_wire(self, record: Any, extra: Mapping[str, Any] | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in self.values(record).items():
            if name in RESERVED_ATTRIBUTES:
                continue
            if value is None or (isinstance(value, (set, frozenset)) and not value):
                continue
            out[name] = self.to_wire_value(value)

        for name, value in (extra or {}).items():
            if value is None:
                continue
            out[name] = self.to_wire_value(value)
        return out

    def from_wire(self, item: Mapping[str, Any]) -> T:
        native: dict[str, Any] = {}
        for name, av in item.items():
            if name in RESERVED_ATTRIBUTES:
                continue
            try:
                raw = _deserializer.deserialize(av)
            except (TypeError, ValueError) as err:
                raise ValidationError(f"invalid attribute value for {name}: {err}") from err
            native[name] = _coerce_value(raw, self._hints.get(name, Any))
        return self.validate(native)

    def validate(self, candidate: Mapping[str, Any]) -> T:
        if self._validator is not None:
            return self._validator(candidate)

        kwargs = {k: v for k, v in candidate.items() if k in self._field_names}
        try:
            return self._model_type(**kwargs)
        except (TypeError, ValueError) as err:
            raise ValidationError(str(err)) from err
