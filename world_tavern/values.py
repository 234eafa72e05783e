"""Tagged scalar values and the one coercion table shared by every call site.

Variables, effect operands and condition targets are all `Scalar`s: a bool,
an int, a float or a str. Which one a value *should* be is decided by the
variable's declared type, and every conversion goes through this module so the
parser, the rules evaluator, the state manager and macro expansion can never
disagree about what "5", 5.0 or "true" mean.

Coercion table (target type ← source):

    number  ← number   itself; integral floats collapse to int (3.0 → 3)
            ← string   parsed int/float ("12", " 2.5 "); anything else invalid
            ← bool     1 / 0
    string  ← number   decimal text (3.0 → "3")
            ← string   itself
            ← bool     "true" / "false"
    boolean ← number   value != 0
            ← string   "true"/"yes"/"on"/"1" → True,
                       "false"/"no"/"off"/"0"/"" → False, anything else invalid
            ← bool     itself

Condition operators:

    eq / neq             target coerced to the current value's type, then ==.
                         An invalid coercion is simply "not equal".
    gt / gte / lt / lte  numeric when both sides coerce to numbers, otherwise
                         ordinal comparison of the text forms.
    contains             substring test on the text forms.
"""

from __future__ import annotations

import math
from typing import Literal

Scalar = bool | int | float | str

VariableType = Literal["number", "string", "boolean"]

Operator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "contains"]

_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", ""})


class CoercionError(ValueError):
    """Raised when a value cannot be represented in the requested type."""


def normalize_number(value: int | float) -> int | float:
    """Collapse integral floats to int so 3.0 and 3 render and compare alike."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_number(value: Scalar) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise CoercionError(f"{value!r} is not a finite number")
        return normalize_number(value)
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise CoercionError(f"{value!r} is not a number") from None
    if not math.isfinite(number):
        raise CoercionError(f"{value!r} is not a finite number")
    return normalize_number(number)


def to_boolean(value: Scalar) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise CoercionError(f"{value!r} is not a boolean")


def to_text(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(normalize_number(value))
    return str(value)


def type_of(value: Scalar) -> VariableType:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def coerce(value: Scalar, var_type: VariableType) -> Scalar:
    """Convert `value` to `var_type` following the table above."""
    if var_type == "number":
        return to_number(value)
    if var_type == "boolean":
        return to_boolean(value)
    return to_text(value)


def format_value(value: Scalar) -> str:
    """Text form used in prompts and macro expansion."""
    return to_text(value)


def compare(operator: str, current: Scalar, target: Scalar) -> bool:
    """Evaluate `current <operator> target`. Unknown operators never hold."""
    if operator in ("eq", "neq"):
        try:
            equal = current == coerce(target, type_of(current))
        except CoercionError:
            equal = False
        return equal if operator == "eq" else not equal

    if operator in ("gt", "gte", "lt", "lte"):
        try:
            left: int | float | str = to_number(current)
            right: int | float | str = to_number(target)
        except CoercionError:
            left, right = to_text(current), to_text(target)
        if operator == "gt":
            return left > right
        if operator == "gte":
            return left >= right
        if operator == "lt":
            return left < right
        return left <= right

    if operator == "contains":
        return to_text(target) in to_text(current)

    return False
