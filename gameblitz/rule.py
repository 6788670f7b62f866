"""JsonLogic rules: evaluation, validation and boolean application."""

from __future__ import annotations

import json
import math
from collections.abc import Callable
from typing import Any


class RuleError(Exception):
    """Raised when a rule cannot be evaluated."""


class RuleNotBooleanError(RuleError):
    def __init__(self, message: str = "rule does not return a boolean value") -> None:
        super().__init__(message)


class BrokenRuleDataError(RuleError):
    def __init__(self, message: str = "broken rule data") -> None:
        super().__init__(message)


def _truthy(value: Any) -> bool:
    if isinstance(value, list):
        return len(value) > 0
    if isinstance(value, dict):
        return True
    return bool(value)


def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(_to_str(item) for item in value)
    return str(value)


def _loose_eq(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return _to_number(a) == _to_number(b)


def _strict_eq(a: Any, b: Any) -> bool:
    numeric = (int, float)
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, numeric) and isinstance(b, numeric):
        return a == b
    return type(a) is type(b) and a == b


def _less(a: Any, b: Any, inclusive: bool) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a <= b if inclusive else a < b
    x, y = _to_number(a), _to_number(b)
    return x <= y if inclusive else x < y


def _chain(args: list[Any], inclusive: bool) -> bool:
    return all(_less(a, b, inclusive) for a, b in zip(args, args[1:]))


def _var(args: list[Any], data: Any) -> Any:
    path = args[0] if args else None
    default = args[1] if len(args) > 1 else None
    if path is None or path == "":
        return data
    if isinstance(path, float) and path.is_integer():
        path = int(path)
    current = data
    for part in (p for p in str(path).split(".") if p):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return default
            if not 0 <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def _missing_keys(keys: list[Any], data: Any) -> list[Any]:
    return [key for key in keys if _var([key], data) in (None, "")]


def _missing(args: list[Any], data: Any) -> list[Any]:
    keys = args[0] if args and isinstance(args[0], list) else args
    return _missing_keys(keys, data)


def _missing_some(args: list[Any], data: Any) -> list[Any]:
    need = int(_to_number(args[0])) if args else 0
    keys = args[1] if len(args) > 1 and isinstance(args[1], list) else []
    absent = _missing_keys(keys, data)
    return [] if len(keys) - len(absent) >= need else absent


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a)
    return a / b


def _minus(args: list[Any], data: Any) -> float:
    if len(args) == 1:
        return -_to_number(args[0])
    return _to_number(args[0]) - _to_number(args[1])


def _product(args: list[Any], data: Any) -> float:
    return math.prod(_to_number(a) for a in args)


def _modulo(args: list[Any], data: Any) -> float:
    a, b = _to_number(args[0]), _to_number(args[1])
    return math.nan if b == 0 else math.fmod(a, b)


def _extreme(pick: Callable[..., float]) -> Callable[[list[Any], Any], Any]:
    def operation(args: list[Any], data: Any) -> Any:
        return pick(_to_number(a) for a in args) if args else None

    return operation


def _substr(args: list[Any], data: Any) -> str:
    text = _to_str(args[0]) if args else ""
    start = int(_to_number(args[1])) if len(args) > 1 else 0
    if start < 0:
        start = max(len(text) + start, 0)
    sub = text[start:]
    if len(args) > 2:
        length = int(_to_number(args[2]))
        sub = sub[: max(len(sub) + length, 0)] if length < 0 else sub[:length]
    return sub


def _in(args: list[Any], data: Any) -> bool:
    needle = args[0] if args else None
    haystack = args[1] if len(args) > 1 else None
    if isinstance(haystack, str):
        return _to_str(needle) in haystack
    if isinstance(haystack, list):
        return any(_loose_eq(needle, item) for item in haystack)
    return False


def _merge(args: list[Any], data: Any) -> list[Any]:
    merged: list[Any] = []
    for arg in args:
        if isinstance(arg, list):
            merged.extend(arg)
        else:
            merged.append(arg)
    return merged


_EAGER: dict[str, Callable[[list[Any], Any], Any]] = {
    "var": _var,
    "missing": _missing,
    "missing_some": _missing_some,
    "==": lambda args, data: _loose_eq(*args[:2]),
    "===": lambda args, data: _strict_eq(*args[:2]),
    "!=": lambda args, data: not _loose_eq(*args[:2]),
    "!==": lambda args, data: not _strict_eq(*args[:2]),
    "!": lambda args, data: not _truthy(args[0] if args else None),
    "!!": lambda args, data: _truthy(args[0] if args else None),
    ">": lambda args, data: _less(args[1], args[0], False),
    ">=": lambda args, data: _less(args[1], args[0], True),
    "<": lambda args, data: _chain(args, False),
    "<=": lambda args, data: _chain(args, True),
    "+": lambda args, data: sum(_to_number(a) for a in args),
    "-": _minus,
    "*": _product,
    "/": lambda args, data: _divide(_to_number(args[0]), _to_number(args[1])),
    "%": _modulo,
    "min": _extreme(min),
    "max": _extreme(max),
    "cat": lambda args, data: "".join(_to_str(a) for a in args),
    "substr": _substr,
    "in": _in,
    "merge": _merge,
    "log": lambda args, data: args[0] if args else None,
}


def _if(args: list[Any], data: Any) -> Any:
    for condition, outcome in zip(args[::2], args[1::2]):
        if _truthy(apply_logic(condition, data)):
            return apply_logic(outcome, data)
    if len(args) % 2 == 1:
        return apply_logic(args[-1], data)
    return None


def _and(args: list[Any], data: Any) -> Any:
    value = None
    for arg in args:
        value = apply_logic(arg, data)
        if not _truthy(value):
            return value
    return value


def _or(args: list[Any], data: Any) -> Any:
    value = None
    for arg in args:
        value = apply_logic(arg, data)
        if _truthy(value):
            return value
    return value


def _items_and_logic(args: list[Any], data: Any) -> tuple[list[Any], Any]:
    items = apply_logic(args[0], data) if args else []
    if not isinstance(items, list):
        items = []
    return items, (args[1] if len(args) > 1 else None)


def _map(args: list[Any], data: Any) -> list[Any]:
    items, logic = _items_and_logic(args, data)
    return [apply_logic(logic, item) for item in items]


def _filter(args: list[Any], data: Any) -> list[Any]:
    items, logic = _items_and_logic(args, data)
    return [item for item in items if _truthy(apply_logic(logic, item))]


def _all(args: list[Any], data: Any) -> bool:
    items, logic = _items_and_logic(args, data)
    return bool(items) and all(_truthy(apply_logic(logic, item)) for item in items)


def _some(args: list[Any], data: Any) -> bool:
    items, logic = _items_and_logic(args, data)
    return any(_truthy(apply_logic(logic, item)) for item in items)


def _none(args: list[Any], data: Any) -> bool:
    return not _some(args, data)


def _reduce(args: list[Any], data: Any) -> Any:
    items, logic = _items_and_logic(args, data)
    accumulator = apply_logic(args[2], data) if len(args) > 2 else None
    for item in items:
        accumulator = apply_logic(logic, {"current": item, "accumulator": accumulator})
    return accumulator


_LAZY: dict[str, Callable[[list[Any], Any], Any]] = {
    "if": _if,
    "?:": _if,
    "and": _and,
    "or": _or,
    "map": _map,
    "filter": _filter,
    "reduce": _reduce,
    "all": _all,
    "some": _some,
    "none": _none,
}

_OPERATORS = frozenset(_EAGER) | frozenset(_LAZY)


def apply_logic(logic: Any, data: Any) -> Any:
    """Evaluate a decoded JsonLogic expression against decoded data."""
    if isinstance(logic, list):
        return [apply_logic(item, data) for item in logic]
    if not isinstance(logic, dict) or len(logic) != 1:
        return logic

    (operator, raw_args), = logic.items()
    args = raw_args if isinstance(raw_args, list) else [raw_args]

    if operator in _LAZY:
        return _LAZY[operator](args, data)
    if operator in _EAGER:
        return _EAGER[operator]([apply_logic(arg, data) for arg in args], data)
    raise RuleError(f"the operator {operator!r} is not supported")


def _is_valid_logic(logic: Any) -> bool:
    if isinstance(logic, list):
        return all(_is_valid_logic(item) for item in logic)
    if isinstance(logic, dict):
        if len(logic) != 1:
            return False
        (operator, value), = logic.items()
        return operator in _OPERATORS and _is_valid_logic(value)
    return True


def rule_is_valid(rule: str) -> bool:
    """Whether the text is a well-formed JsonLogic rule."""
    try:
        decoded = json.loads(rule)
    except json.JSONDecodeError:
        return False
    return _is_valid_logic(decoded)


def _load(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        if exc.pos >= len(text.rstrip()):
            raise BrokenRuleDataError() from exc
        raise RuleError(f"malformed json: {exc.msg}") from exc


def _as_bool(result: Any) -> bool:
    if isinstance(result, bool):
        return result
    if isinstance(result, (int, float)) and result in (0, 1):
        return result == 1
    raise RuleNotBooleanError()


def rule_apply(rule: str, data: str) -> bool:
    """Apply a JSON rule to JSON data; the outcome must be boolean."""
    decoded_rule = _load(rule)
    decoded_data = _load(data)
    return _as_bool(apply_logic(decoded_rule, decoded_data))