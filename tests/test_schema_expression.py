"""
Tests for the expression evaluator.

Expressions are compiled through a one-field schema so the terms are
exactly what the compiler produces, then evaluated against a hand-built
scope and stream state.
"""

import pytest
import sys
from datetime import datetime, timezone
from ipaddress import IPv4Address
from pathlib import Path

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from schema_compiler import compile_schema
from schema_errors import ExpressionError, UnknownTypeError
from schema_expression import (
    EvalContext, evaluate, evaluate_condition, evaluate_length, result_as_integer,
)
from schema_model import FieldKind
from schema_result import Result, ResultScope

TYPES = compile_schema("""
    enum Color : byte { Red, Green = 5, Blue }
    enum Signed : sbyte { Minus = -3 }
""").types


def expr(text):
    """Compile ``text`` as an array length expression."""
    return compile_schema(f"schema {{ x : byte[{text}]; }}").root[0].length


def scope_of(**values):
    scope = ResultScope()
    for offset, (name, value) in enumerate(values.items()):
        scope.add(Result(FieldKind.PRIMITIVE, name, offset, 1, 'byte', value))
    return scope


def context(scope=None, position=0, size=0):
    return EvalContext(position, size, scope if scope is not None else ResultScope(), TYPES)


def value(text, **kwargs):
    return evaluate(expr(text), context(**kwargs))


class TestArithmetic:

    def test_literal(self):
        assert value("7") == 7

    def test_hex_literal(self):
        assert value("0x10") == 16

    def test_multiplication_binds_tighter(self):
        assert value("2 + 3 * 4") == 14
        assert value("2 * 3 + 4") == 10

    def test_left_to_right_within_level(self):
        assert value("10 - 4 - 3") == 3
        assert value("100 / 10 / 5") == 2

    def test_division_truncates_toward_zero(self):
        assert value("7 / 2") == 3
        assert value("-7 / 2") == -3

    def test_division_by_zero(self):
        with pytest.raises(ExpressionError, match="division by zero"):
            value("1 / 0")

    def test_unary_minus(self):
        assert value("-2 * 3") == -6
        assert value("5 - -2") == 7


class TestRelational:

    @pytest.mark.parametrize("text,expected", [
        ("1 = 1", True), ("1 = 2", False),
        ("1 != 2", True), ("2 != 2", False),
        ("1 < 2", True), ("2 < 1", False),
        ("2 > 1", True), ("1 > 2", False),
        ("2 <= 2", True), ("3 <= 2", False),
        ("2 >= 2", True), ("1 >= 2", False),
    ])
    def test_operators(self, text, expected):
        assert value(text) is expected

    def test_arithmetic_binds_tighter_than_relational(self):
        assert value("1 + 1 = 2") is True
        assert value("2 * 3 > 5") is True

    def test_negation(self):
        assert value("!0") is True
        assert value("!1") is False

    def test_negation_binds_tightest(self):
        # (!0) + 1
        assert value("!0 + 1") == 2


class TestMacros:

    def test_pos_and_size(self):
        assert value("@size - @pos", position=3, size=10) == 7

    def test_eof(self):
        assert evaluate_condition(expr("@eof"), context(position=4, size=4)) is True
        assert evaluate_condition(expr("@eof"), context(position=3, size=4)) is False

    def test_pos_compared_to_size(self):
        assert value("@pos < @size", position=0, size=0) is False


class TestIdentifiers:

    def test_field_value(self):
        assert value("count * 2", scope=scope_of(count=3)) == 6

    def test_missing_field(self):
        with pytest.raises(ExpressionError, match="'count' is not a decoded field"):
            value("count", scope=scope_of(other=1))

    def test_enclosing_scope_is_visible(self):
        outer = scope_of(flag=1)
        inner = ResultScope(parent=outer)
        assert evaluate(expr("flag = 1"), context(scope=inner)) is True

    def test_enum_field_uses_integer(self):
        scope = ResultScope()
        scope.add(Result(FieldKind.ENUM, 'color', 0, 1, 'Color', 'Green', raw=5))
        assert value("color = Color.Green", scope=scope) is True

    def test_enum_constant(self):
        assert value("Color.Blue") == 6
        assert value("Signed.Minus") == -3

    def test_unknown_enum_member(self):
        with pytest.raises(UnknownTypeError, match="enum Color has no member Purple"):
            value("Color.Purple")

    def test_struct_member_reference(self):
        header = scope_of(length=4)
        scope = ResultScope()
        scope.add(Result(FieldKind.STRUCT, 'header', 0, 1, 'Header', header))
        assert value("header.length + 1", scope=scope) == 5

    def test_unresolvable_constant(self):
        with pytest.raises(UnknownTypeError, match="cannot resolve constant"):
            value("nothing.here")


class TestMalformed:

    def test_operand_missing(self):
        with pytest.raises(ExpressionError, match="unexpected end of expression"):
            value("1 +")

    def test_two_operands_in_a_row(self):
        with pytest.raises(ExpressionError, match=r"expected binary operator, got \[2\]"):
            value("1 2")

    def test_unary_only_operator_between_operands(self):
        with pytest.raises(ExpressionError, match="expected binary operator"):
            value("1 ! 2")

    def test_operator_where_operand_expected(self):
        with pytest.raises(ExpressionError, match="expected operand"):
            value("* 2")

    def test_error_has_location(self):
        with pytest.raises(ExpressionError) as exc_info:
            value("missing")
        assert exc_info.value.line == 1
        assert exc_info.value.column == 19


class TestLengthAndCondition:

    def test_length_truncates_negative_to_zero(self):
        assert evaluate_length(expr("1 - 5"), context()) == 0

    def test_length_of_boolean(self):
        assert evaluate_length(expr("1 = 1"), context()) == 1

    def test_condition_of_integer(self):
        assert evaluate_condition(expr("3"), context()) is True
        assert evaluate_condition(expr("0"), context()) is False


class TestResultAsInteger:
    """The integer a decoded field contributes to an expression."""

    def make(self, value, type_name='byte', raw=None):
        return Result(FieldKind.PRIMITIVE, 'f', 0, 1, type_name, value, raw=raw)

    def test_raw_wins(self):
        when = datetime(1970, 1, 1, 0, 1, tzinfo=timezone.utc)
        assert result_as_integer(self.make(when, 'epoch', raw=60)) == 60

    def test_bool(self):
        assert result_as_integer(self.make(True, 'bool')) == 1

    def test_float_rounds(self):
        assert result_as_integer(self.make(2.6, 'float')) == 3

    def test_ip_address(self):
        assert result_as_integer(self.make(IPv4Address('0.0.1.0'), 'ipaddress')) == 256

    def test_char(self):
        assert result_as_integer(self.make('A', 'char')) == 65

    def test_numeric_string(self):
        assert result_as_integer(self.make('0x20', 'string')) == 32

    def test_text_string_fails(self):
        with pytest.raises(ExpressionError, match="has no integer value"):
            result_as_integer(self.make('hello', 'string'))

    def test_container_fails(self):
        result = Result(FieldKind.STRUCT, 's', 0, 0, 'S', ResultScope())
        with pytest.raises(ExpressionError):
            result_as_integer(result)
