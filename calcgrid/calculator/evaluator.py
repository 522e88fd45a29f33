"""Stack evaluation of RPN token sequences."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Callable, Sequence, TypeVar

from calcgrid.calculator.compiler import Token, TokenType, compile_expression
from calcgrid.calculator.errors import (
    DivisionByZero,
    InsufficientOperands,
    InvalidCharacter,
    MalformedExpression,
    NumberFormatError,
)

T = TypeVar("T")


def parse_number(text: str) -> float:
    """Parse a numeral token as a float.

    Raises:
        NumberFormatError: If the numeral is not a valid decimal literal.
    """
    try:
        return float(text)
    except ValueError:
        raise NumberFormatError(text) from None


def apply_operator(operation: str, a: float, b: float) -> float:
    """Compute ``a <operation> b``.

    Shared by the synchronous evaluator and the worker so both paths
    fail the same way.

    Raises:
        DivisionByZero: For '/' with a zero right operand.
        InvalidCharacter: For an unsupported operation.
    """
    if operation == "+":
        return a + b
    if operation == "-":
        return a - b
    if operation == "*":
        return a * b
    if operation == "/":
        if b == 0:
            raise DivisionByZero()
        return a / b
    raise InvalidCharacter(operation)


def reduce_rpn(
    rpn: Sequence[Token],
    operand: Callable[[float], T],
    combine: Callable[[str, T, T], T],
) -> T:
    """Walk an RPN sequence with a value stack.

    ``operand`` turns each parsed numeral into a stack entry and
    ``combine`` folds ``(operation, a, b)`` into one. The evaluator passes
    plain arithmetic; the job scheduler passes callbacks that build jobs.

    Raises:
        NumberFormatError: If a numeral does not parse.
        InsufficientOperands: If an operator finds fewer than two entries.
        MalformedExpression: If the stack does not end with exactly one entry.
    """
    stack: list[T] = []
    for token in rpn:
        if token.type is TokenType.OPERATOR:
            if len(stack) < 2:
                raise InsufficientOperands()
            b = stack.pop()
            a = stack.pop()
            stack.append(combine(token.text, a, b))
        else:
            stack.append(operand(parse_number(token.text)))

    if len(stack) != 1:
        raise MalformedExpression(
            f"malformed expression: {len(stack)} values left on the stack"
        )
    return stack[0]


def evaluate_rpn(rpn: Sequence[Token]) -> float:
    """Evaluate an RPN sequence to a float."""
    return reduce_rpn(rpn, lambda value: value, apply_operator)


def calc(expression: str) -> float:
    """Compile and evaluate an infix expression, e.g. ``calc("3 + 5") == 8``."""
    return evaluate_rpn(compile_expression(expression))


def format_result(value: float) -> str:
    """Render a value in plain decimal notation without trailing zeros."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return format(Decimal(repr(value)).normalize(), "f")
