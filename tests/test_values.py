"""Tests for world_tavern.values: coercion and comparison."""

import pytest

from world_tavern.values import CoercionError, coerce, compare, format_value, to_boolean, to_number


class TestCoerce:
    def test_number_from_string(self) -> None:
        assert coerce("12", "number") == 12
        assert coerce(" 2.5 ", "number") == 2.5

    def test_integral_float_collapses(self) -> None:
        value = coerce(3.0, "number")
        assert value == 3
        assert isinstance(value, int)

    def test_number_from_bool(self) -> None:
        assert coerce(True, "number") == 1
        assert coerce(False, "number") == 0

    def test_invalid_number(self) -> None:
        with pytest.raises(CoercionError):
            coerce("many", "number")

    def test_boolean_words(self) -> None:
        assert coerce("yes", "boolean") is True
        assert coerce("OFF", "boolean") is False
        assert coerce("", "boolean") is False

    def test_invalid_boolean(self) -> None:
        with pytest.raises(CoercionError):
            to_boolean("maybe")

    def test_string_from_scalars(self) -> None:
        assert coerce(3.0, "string") == "3"
        assert coerce(True, "string") == "true"

    def test_non_finite_is_rejected(self) -> None:
        with pytest.raises(CoercionError):
            to_number("inf")


class TestCompare:
    def test_eq_coerces_target(self) -> None:
        assert compare("eq", 5, "5")
        assert compare("eq", True, "true")
        assert compare("neq", 5, "6")

    def test_eq_with_uncoercible_target_is_not_equal(self) -> None:
        assert not compare("eq", 5, "five")
        assert compare("neq", 5, "five")

    def test_ordering_is_numeric(self) -> None:
        assert compare("gt", "10", 9)
        assert compare("lte", 0, 0)
        assert not compare("lt", 3, 2)

    def test_ordering_falls_back_to_text(self) -> None:
        assert compare("lt", "apple", "banana")

    def test_contains(self) -> None:
        assert compare("contains", "silver key, rope", "rope")
        assert not compare("contains", "rope", "key")

    def test_unknown_operator(self) -> None:
        assert not compare("approx", 1, 1)


def test_format_value() -> None:
    assert format_value(False) == "false"
    assert format_value(7.0) == "7"
    assert format_value("inn") == "inn"
