"""Arithmetic expression compiler and evaluator."""

from calcgrid.calculator.compiler import Token, TokenType, compile_expression, to_rpn, tokenize
from calcgrid.calculator.errors import (
    CalculationError,
    DivisionByZero,
    InsufficientOperands,
    InvalidCharacter,
    MalformedExpression,
    MismatchedParentheses,
    NumberFormatError,
)
from calcgrid.calculator.evaluator import (
    apply_operator,
    calc,
    evaluate_rpn,
    format_result,
    parse_number,
)

__all__ = [
    "Token",
    "TokenType",
    "compile_expression",
    "to_rpn",
    "tokenize",
    "CalculationError",
    "DivisionByZero",
    "InsufficientOperands",
    "InvalidCharacter",
    "MalformedExpression",
    "MismatchedParentheses",
    "NumberFormatError",
    "apply_operator",
    "calc",
    "evaluate_rpn",
    "format_result",
    "parse_number",
]
