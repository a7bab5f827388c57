"""Compile condition and filter trees into parameterized DynamoDB expressions.

A tree is made of plain tuples (or lists) and ``{"NOT": ...}`` mappings::

    ("age", ">=", 21)
    (("age", ">=", 21), "OR", ("age", "<", 15))
    {"NOT": ("status", "exists")}

Every node draws placeholders from its own hex counter nested under its
parent's prefix (``C_0``, ``C_1``, then ``C_0_0`` ...), so two leaves never
share a placeholder even when they reference the same field.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .codec import serialize_value
from .errors import UnsupportedOperatorError, ValidationError

type ConditionExpression = Sequence[Any] | Mapping[str, Any]
type FilterExpression = Sequence[Any] | Mapping[str, Any]
type WireValueConverter = Callable[[Any], Any]

COMPARATORS = frozenset({"=", "<>", "<", "<=", ">", ">="})
LOGICAL_OPERATORS = frozenset({"AND", "OR"})

CONDITION_OPERATORS = COMPARATORS | {
    "between",
    "exists",
    "not_exists",
    "begins_with",
    "contains",
    "size",
    "in",
}
FILTER_OPERATORS = COMPARATORS | {"between", "begins_with"}

MAX_IN_VALUES = 100

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class CompiledExpression:
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    statement: str = ""

    def to_request(self, expression_key: str = "ConditionExpression") -> dict[str, Any]:
        req: dict[str, Any] = {expression_key: self.statement}
        if self.names:
            req["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            req["ExpressionAttributeValues"] = dict(self.values)
        return req


def _normalize_operator(token: Any) -> str | None:
    if not isinstance(token, str):
        return None
    if token.upper() in LOGICAL_OPERATORS:
        return token.upper()
    if token in COMPARATORS:
        return token
    return token.lower()


class _Compiler:
    def __init__(self, allowed: frozenset[str], to_wire_value: WireValueConverter) -> None:
        self._allowed = allowed
        self._to_wire_value = to_wire_value

    def compile(self, node: Any, prefix: str) -> CompiledExpression:
        counter = 0

        def next_prefix() -> str:
            nonlocal counter
            placeholder = f"{prefix}_{counter:x}"
            counter += 1
            return placeholder

        if isinstance(node, Mapping):
            if set(node.keys()) != {"NOT"}:
                raise ValidationError("a mapping node must have exactly one NOT key")
            inner = self.compile(node["NOT"], next_prefix())
            return CompiledExpression(
                names=inner.names, values=inner.values, statement=f"NOT ({inner.statement})"
            )

        if not isinstance(node, Sequence) or isinstance(node, (str, bytes, bytearray)) or len(node) < 2:
            raise ValidationError(f"invalid expression node: {node!r}")

        op = _normalize_operator(node[1])

        if op in LOGICAL_OPERATORS:
            if len(node) != 3:
                raise ValidationError(f"{op} requires a left and a right expression")
            left = self.compile(node[0], next_prefix())
            right = self.compile(node[2], next_prefix())
            return CompiledExpression(
                names={**left.names, **right.names},
                values={**left.values, **right.values},
                statement=f"({left.statement}) {op} ({right.statement})",
            )

        if op is None or op not in self._allowed:
            raise UnsupportedOperatorError(node[1])

        return self._leaf(node, op, next_prefix())

    def _leaf(self, node: Sequence[Any], op: str, placeholder: str) -> CompiledExpression:
        attr = node[0]
        if not isinstance(attr, str) or not attr:
            raise ValidationError(f"attribute name must be a non-empty string: {attr!r}")

        operands = tuple(node[2:])
        name_ref = f"#{placeholder}"
        value_ref = f":{placeholder}"
        names = {name_ref: attr}

        def require(count: int) -> None:
            if len(operands) != count:
                if count == 0:
                    raise ValidationError(f"{op} does not take a value")
                raise ValidationError(f"{op} requires {'one value' if count == 1 else f'{count} values'}")

        if op in COMPARATORS:
            require(1)
            return CompiledExpression(
                names=names,
                values={value_ref: self._to_wire_value(operands[0])},
                statement=f"{name_ref} {op} {value_ref}",
            )

        if op == "begins_with" or op == "contains":
            require(1)
            return CompiledExpression(
                names=names,
                values={value_ref: self._to_wire_value(operands[0])},
                statement=f"{op} ({name_ref}, {value_ref})",
            )

        if op == "between":
            require(2)
            start_ref = f"{value_ref}_L"
            end_ref = f"{value_ref}_R"
            return CompiledExpression(
                names=names,
                values={
                    start_ref: self._to_wire_value(operands[0]),
                    end_ref: self._to_wire_value(operands[1]),
                },
                statement=f"{name_ref} BETWEEN {start_ref} AND {end_ref}",
            )

        if op == "exists" or op == "not_exists":
            require(0)
            function = "attribute_exists" if op == "exists" else "attribute_not_exists"
            return CompiledExpression(names=names, statement=f"{function} ({name_ref})")

        if op == "size":
            require(2)
            comparator = operands[0]
            if comparator not in COMPARATORS:
                raise UnsupportedOperatorError(comparator)
            return CompiledExpression(
                names=names,
                values={value_ref: self._to_wire_value(operands[1])},
                statement=f"size ({name_ref}) {comparator} {value_ref}",
            )

        # op == "in"
        require(1)
        candidates = operands[0]
        if not isinstance(candidates, Sequence) or isinstance(candidates, (str, bytes, bytearray)):
            raise ValidationError("in requires a sequence of values")
        if not 1 <= len(candidates) <= MAX_IN_VALUES:
            raise ValidationError(f"in supports between 1 and {MAX_IN_VALUES} values")
        values = {f"{value_ref}_in{i:x}": self._to_wire_value(v) for i, v in enumerate(candidates)}
        return CompiledExpression(
            names=names,
            values=values,
            statement=f"{name_ref} IN ({', '.join(values)})",
        )


def _check_prefix(prefix: str) -> None:
    if not _PREFIX_RE.match(prefix):
        raise ValidationError(f"invalid placeholder prefix: {prefix!r}")


def compile_condition(
    expression: ConditionExpression,
    *,
    prefix: str = "C",
    to_wire_value: WireValueConverter = serialize_value,
) -> CompiledExpression:
    _check_prefix(prefix)
    return _Compiler(CONDITION_OPERATORS, to_wire_value).compile(expression, prefix)


def compile_filter(
    expression: FilterExpression,
    *,
    prefix: str = "F",
    to_wire_value: WireValueConverter = serialize_value,
) -> CompiledExpression:
    _check_prefix(prefix)
    return _Compiler(FILTER_OPERATORS, to_wire_value).compile(expression, prefix)
