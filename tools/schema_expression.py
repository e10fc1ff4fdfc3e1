#!/usr/bin/env python3
"""
schema_expression.py - Decode-time evaluation of length and condition expressions

Expressions are flat term lists built by the compiler (numbers, operators,
@macros, field names, Enum.Member constants). They are evaluated against the
live stream position/length and the fields decoded so far, so evaluation
always happens during decoding.

Precedence, highest first (left-to-right within a level):
    unary ! and -
    * /
    + -
    = != < > <= >=

All arithmetic is integer arithmetic; division truncates toward zero.
"""

import ipaddress
import math
from dataclasses import dataclass
from typing import Mapping, Union

from schema_errors import ExpressionError, UnknownTypeError
from schema_model import EnumDef, ExprTerm, Expression, PrimitiveKind, TermKind, TypeDef
from schema_result import Result, ResultScope

Number = Union[int, bool]

PRECEDENCE = {
    '*': 3, '/': 3,
    '+': 2, '-': 2,
    '=': 1, '!=': 1, '<': 1, '>': 1, '<=': 1, '>=': 1,
}


@dataclass
class EvalContext:
    """Stream state and visible fields for one evaluation."""
    position: int
    size: int
    scope: ResultScope
    types: Mapping[str, TypeDef]


def evaluate(expression: Expression, context: EvalContext) -> Number:
    """Evaluate ``expression``; raises ExpressionError if it is malformed."""
    if not expression.terms:
        raise ExpressionError("empty expression", expression.line, expression.column)
    return _Evaluator(expression, context).parse_binary(0)


def evaluate_length(expression: Expression, context: EvalContext) -> int:
    """Array length: truncated to a non-negative count."""
    return max(0, int(evaluate(expression, context)))


def evaluate_condition(expression: Expression, context: EvalContext) -> bool:
    return bool(evaluate(expression, context))


def result_as_integer(result: Result) -> int:
    """Integer a decoded field contributes to an expression."""
    if result.raw is not None:
        return result.raw
    value = result.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return round(value)
    if isinstance(value, ipaddress.IPv4Address):
        return int(value)
    if isinstance(value, str):
        if result.type_name == PrimitiveKind.CHAR.value and len(value) == 1:
            return ord(value)
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise ExpressionError(
        f"field '{result.name}' of type {result.type_name} has no integer value")


class _Evaluator:
    """Precedence-climbing evaluator over an expression's terms."""

    def __init__(self, expression: Expression, context: EvalContext):
        self.expression = expression
        self.terms = expression.terms
        self.context = context
        self.index = 0

    def _peek(self) -> ExprTerm:
        if self.index >= len(self.terms):
            raise ExpressionError(f"unexpected end of expression '{self.expression}'",
                                  self.expression.line, self.expression.column)
        return self.terms[self.index]

    def parse_binary(self, min_prec: int) -> Number:
        left = self.parse_unary()
        while self.index < len(self.terms):
            term = self.terms[self.index]
            if term.kind != TermKind.OPERATOR or term.text not in PRECEDENCE:
                raise ExpressionError(f"expected binary operator, got [{term.text}]",
                                      term.line, term.column)
            prec = PRECEDENCE[term.text]
            if prec < min_prec:
                break
            self.index += 1
            right = self.parse_binary(prec + 1)
            left = self._apply(term, left, right)
        return left

    def parse_unary(self) -> Number:
        term = self._peek()
        if term.kind == TermKind.OPERATOR and term.text == '!':
            self.index += 1
            return not self.parse_unary()
        if term.kind == TermKind.OPERATOR and term.text == '-':
            self.index += 1
            return -self.parse_unary()
        return self.parse_operand()

    def parse_operand(self) -> Number:
        term = self._peek()
        self.index += 1

        if term.kind == TermKind.NUMBER:
            return term.value

        if term.kind == TermKind.MACRO:
            if term.text == '@eof':
                return self.context.position >= self.context.size
            if term.text == '@pos':
                return self.context.position
            if term.text == '@size':
                return self.context.size
            raise ExpressionError(f"unknown macro {term.text}", term.line, term.column)

        if term.kind == TermKind.NAME:
            result = self.context.scope.resolve(term.text)
            if result is None:
                raise ExpressionError(f"'{term.text}' is not a decoded field in this scope",
                                      term.line, term.column)
            return self._as_integer(result, term)

        if term.kind == TermKind.CONSTANT:
            return self._constant(term)

        raise ExpressionError(f"expected operand, got [{term.text}]", term.line, term.column)

    def _as_integer(self, result: Result, term: ExprTerm) -> int:
        try:
            return result_as_integer(result)
        except ExpressionError as e:
            raise ExpressionError(e.reason, term.line, term.column)

    def _constant(self, term: ExprTerm) -> int:
        """Enum.Member constant, else member of a decoded struct/bitfield."""
        prefix, _, member = term.text.partition('.')
        typedef = self.context.types.get(prefix)
        if isinstance(typedef, EnumDef):
            value = typedef.value_of(member)
            if value is None:
                raise UnknownTypeError(term.text, term.line, term.column,
                                       f"({term.line}:{term.column}) enum {prefix} has no member {member}")
            return value

        result = self.context.scope.resolve(prefix)
        for part in member.split('.'):
            if result is None or not isinstance(result.value, ResultScope):
                result = None
                break
            result = result.value.get(part)
        if result is not None:
            return self._as_integer(result, term)

        raise UnknownTypeError(term.text, term.line, term.column,
                               f"({term.line}:{term.column}) cannot resolve constant {term.text}")

    def _apply(self, op: ExprTerm, left: Number, right: Number) -> Number:
        text = op.text
        if text == '+':
            return left + right
        if text == '-':
            return left - right
        if text == '*':
            return left * right
        if text == '/':
            if right == 0:
                raise ExpressionError(f"division by zero in '{self.expression}'",
                                      op.line, op.column)
            quotient = abs(left) // abs(right)
            return quotient if (left < 0) == (right < 0) else -quotient
        if text == '=':
            return left == right
        if text == '!=':
            return left != right
        if text == '<':
            return left < right
        if text == '>':
            return left > right
        if text == '<=':
            return left <= right
        if text == '>=':
            return left >= right
        raise ExpressionError(f"unknown operator {text}", op.line, op.column)
