"""
Condition trees over business-profile fields.

A condition tree decides whether a rule or deadline template applies to
a business. Trees arrive as JSON-like dicts:

    {}                                              -> always true
    {"field": "vatRegistered", "op": "eq", "value": true}
    {"and": [...]} / {"or": [...]}                  ({"all"}/{"any"} accepted)

They are parsed once into a closed set of node types (Leaf, AllOf, AnyOf,
Malformed) so evaluation never inspects untyped shapes. Evaluation fails
closed: a missing field, a type mismatch or a malformed node makes the
leaf false instead of raising.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Union

from compliance_engine.exceptions import RuleSetValidationError

logger = logging.getLogger(__name__)

OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "in", "exists")

_ORDERINGS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}

_AND_KEYS = ("and", "all")
_OR_KEYS = ("or", "any")

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


@dataclass(frozen=True)
class Leaf:
    """Compare one profile field against a literal value."""

    field: str
    op: str
    value: Any = None


@dataclass(frozen=True)
class AllOf:
    """True iff every child is true. Empty -> true."""

    children: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class AnyOf:
    """True iff any child is true. Empty -> false."""

    children: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class Malformed:
    """A node that could not be parsed. Always evaluates to false."""

    reason: str
    raw: Any = None


Condition = Union[Leaf, AllOf, AnyOf, Malformed]

ALWAYS = AllOf(())


# -----------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------


def parse_condition(raw: Any, strict: bool = False) -> Condition:
    """
    Parse a JSON-like condition into a typed tree.

    With ``strict=False`` (load time) bad nodes become ``Malformed`` and
    are logged. With ``strict=True`` (admin writes) they raise
    ``RuleSetValidationError``.
    """
    if isinstance(raw, (Leaf, AllOf, AnyOf, Malformed)):
        if strict and isinstance(raw, Malformed):
            raise RuleSetValidationError(raw.reason)
        return raw
    if raw is None:
        return ALWAYS
    if not isinstance(raw, Mapping):
        return _malformed("Condition must be an object", raw, strict)
    if len(raw) == 0:
        return ALWAYS

    for key in _AND_KEYS:
        if key in raw:
            return _parse_group(AllOf, key, raw[key], strict)
    for key in _OR_KEYS:
        if key in raw:
            return _parse_group(AnyOf, key, raw[key], strict)

    field = raw.get("field")
    op = raw.get("op")
    if not isinstance(field, str) or not field or op is None:
        return _malformed("Condition must have field and op", raw, strict)
    if op not in OPERATORS:
        return _malformed(
            f"Invalid op: {op}. Must be one of: {', '.join(OPERATORS)}",
            raw,
            strict,
        )
    if op != "exists" and "value" not in raw:
        return _malformed(
            f"Condition with op '{op}' must have a value", raw, strict
        )

    value = raw.get("value")
    if op == "in":
        if not isinstance(value, (list, tuple)):
            return _malformed("'in' requires a list value", raw, strict)
        value = tuple(value)
    return Leaf(field=field, op=op, value=value)


def _parse_group(kind: type, key: str, children: Any, strict: bool) -> Condition:
    if not isinstance(children, (list, tuple)):
        return _malformed(f"{key} must be an array", children, strict)
    return kind(tuple(parse_condition(c, strict) for c in children))


def _malformed(reason: str, raw: Any, strict: bool) -> Malformed:
    if strict:
        raise RuleSetValidationError(reason)
    logger.warning("Malformed condition (%s): %r", reason, raw)
    return Malformed(reason=reason, raw=raw)


def validate_condition(raw: Any) -> Condition:
    """Strictly parse ``raw``; raises ``RuleSetValidationError`` on bad shape."""
    return parse_condition(raw, strict=True)


def to_json(node: Condition) -> Any:
    """Render a parsed tree back to its JSON form."""
    if isinstance(node, AllOf):
        return {"and": [to_json(c) for c in node.children]} if node.children else {}
    if isinstance(node, AnyOf):
        return {"or": [to_json(c) for c in node.children]}
    if isinstance(node, Leaf):
        data = {"field": node.field, "op": node.op}
        if node.op != "exists" or node.value is not None:
            value = node.value
            data["value"] = list(value) if isinstance(value, tuple) else value
        return data
    return node.raw


# -----------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------


def evaluate(tree: Any, profile: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition tree against a flat business profile.

    Accepts either a parsed tree or a raw dict (parsed leniently first).
    Never raises.
    """
    node = parse_condition(tree)
    if isinstance(node, AllOf):
        return all(evaluate(c, profile) for c in node.children)
    if isinstance(node, AnyOf):
        return any(evaluate(c, profile) for c in node.children)
    if isinstance(node, Leaf):
        return _evaluate_leaf(node, profile)
    return False


def _evaluate_leaf(leaf: Leaf, profile: Mapping[str, Any]) -> bool:
    actual = profile.get(leaf.field)
    if actual is None:
        return False

    try:
        if leaf.op == "exists":
            return actual != ""
        if leaf.op in ("eq", "neq"):
            equal = _equals(actual, leaf.value)
            return equal if leaf.op == "eq" else not equal
        if leaf.op == "in":
            if not isinstance(leaf.value, (list, tuple)):
                return False
            return any(_equals_or_false(actual, v) for v in leaf.value)
        compare = _ORDERINGS.get(leaf.op)
        if compare is None or not _is_number(actual):
            return False
        return compare(_to_decimal(actual), _to_decimal(leaf.value))
    except (TypeError, ValueError, ArithmeticError):
        return False


def _equals(actual: Any, expected: Any) -> bool:
    """Equality after coercing ``expected`` to the type of ``actual``."""
    if isinstance(actual, bool):
        return actual is _to_bool(expected)
    if _is_number(actual):
        return _to_decimal(actual) == _to_decimal(expected)
    if isinstance(actual, str):
        if isinstance(expected, bool):
            return actual.lower() == str(expected).lower()
        return actual == str(expected)
    return actual == expected


def _equals_or_false(actual: Any, expected: Any) -> bool:
    try:
        return _equals(actual, expected)
    except (TypeError, ValueError, ArithmeticError):
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("bool is not numeric")
    if _is_number(value):
        return Decimal(str(value))
    if isinstance(value, str):
        return Decimal(value.strip().replace(",", ""))
    raise TypeError(f"not numeric: {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    if _is_number(value) and value in (0, 1):
        return bool(value)
    raise ValueError(f"not a boolean: {value!r}")
