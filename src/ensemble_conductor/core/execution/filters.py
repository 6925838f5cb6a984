"""Filters applied in interpolation expressions (``${input.x | upper}``)."""

import ast
import json
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_FILTER_CALL = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*(?:\((?P<args>.*)\))?$")


def _parse_args(raw: str | None) -> tuple[Any, ...]:
    if raw is None or not raw.strip():
        return ()
    try:
        parsed = ast.literal_eval(f"({raw},)")
    except (ValueError, SyntaxError):
        return (raw.strip(),)
    return tuple(parsed)


def _length(value: Any) -> Any:
    try:
        return len(value)
    except TypeError:
        return 0


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)) and value:
        return value[0]
    return None


def _last(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)) and value:
        return value[-1]
    return None


def _default(value: Any, fallback: Any = None) -> Any:
    return fallback if value is None or value == "" else value


def _join(value: Any, separator: str = ",") -> Any:
    if isinstance(value, (list, tuple)):
        return separator.join(str(v) for v in value)
    return value


def _split(value: Any, separator: str | None = None) -> Any:
    if isinstance(value, str):
        return value.split(separator)
    return value


def _json(value: Any) -> str:
    return json.dumps(value, default=str)


def _keys(value: Any) -> Any:
    return list(value.keys()) if isinstance(value, Mapping) else []


def _values(value: Any) -> Any:
    return list(value.values()) if isinstance(value, Mapping) else []


def _round(value: Any, digits: int = 0) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return round(value, digits)
    return value


def _reverse(value: Any) -> Any:
    if isinstance(value, (list, tuple, str)):
        return value[::-1]
    return value


def _string_op(op: Callable[[str], str]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        return op(value) if isinstance(value, str) else value

    return apply


FILTERS: dict[str, Callable[..., Any]] = {
    "upper": _string_op(str.upper),
    "lower": _string_op(str.lower),
    "trim": _string_op(str.strip),
    "length": _length,
    "first": _first,
    "last": _last,
    "default": _default,
    "join": _join,
    "split": _split,
    "json": _json,
    "keys": _keys,
    "values": _values,
    "round": _round,
    "reverse": _reverse,
}


def apply_filters(value: Any, filter_chain: list[str]) -> Any:
    """Apply each filter expression in order.

    Unknown or malformed filters leave the value unchanged.
    """
    for expression in filter_chain:
        match = _FILTER_CALL.match(expression.strip())
        if not match or match.group("name") not in FILTERS:
            logger.debug("Ignoring unknown filter: %s", expression)
            continue
        fn = FILTERS[match.group("name")]
        try:
            value = fn(value, *_parse_args(match.group("args")))
        except (TypeError, ValueError) as e:
            logger.debug("Filter %s failed: %s", expression, e)
    return value
