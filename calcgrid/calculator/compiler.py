"""Infix expression compiler: tokenizer and shunting-yard conversion to RPN."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from calcgrid.calculator.errors import InvalidCharacter, MismatchedParentheses

OPERATORS = frozenset("+-*/")

# All binary operators are left-associative.
PRECEDENCE: dict[str, int] = {"+": 1, "-": 1, "*": 2, "/": 2}


class TokenType(str, Enum):
    """Kinds of lexical token."""

    NUMBER = "number"
    OPERATOR = "operator"
    LEFT_PAREN = "left_paren"
    RIGHT_PAREN = "right_paren"


@dataclass(frozen=True)
class Token:
    """A single lexical token.

    Attributes:
        type: Token kind.
        text: Source text (numeral digits or the symbol itself).
    """

    type: TokenType
    text: str

    @classmethod
    def number(cls, text: str) -> Token:
        return cls(TokenType.NUMBER, text)

    @classmethod
    def symbol(cls, char: str) -> Token:
        if char == "(":
            return cls(TokenType.LEFT_PAREN, char)
        if char == ")":
            return cls(TokenType.RIGHT_PAREN, char)
        return cls(TokenType.OPERATOR, char)

    def __str__(self) -> str:
        return self.text


def tokenize(expression: str) -> list[Token]:
    """Split an expression into tokens, left to right.

    Digits and '.' accumulate into a numeral; an operator or parenthesis
    flushes the pending numeral before being emitted itself.

    Raises:
        InvalidCharacter: On any other character.
    """
    tokens: list[Token] = []
    numeral: list[str] = []

    for position, char in enumerate(expression):
        if (char.isascii() and char.isdigit()) or char == ".":
            numeral.append(char)
        elif char in OPERATORS or char in "()":
            if numeral:
                tokens.append(Token.number("".join(numeral)))
                numeral.clear()
            tokens.append(Token.symbol(char))
        else:
            raise InvalidCharacter(char, position)

    if numeral:
        tokens.append(Token.number("".join(numeral)))
    return tokens


def to_rpn(tokens: list[Token]) -> list[Token]:
    """Reorder infix tokens into Reverse Polish Notation (shunting-yard).

    Raises:
        MismatchedParentheses: On an unmatched '(' or ')'.
    """
    output: list[Token] = []
    stack: list[Token] = []

    for token in tokens:
        if token.type is TokenType.OPERATOR:
            while stack:
                top = stack[-1]
                if top.type is TokenType.LEFT_PAREN or PRECEDENCE[top.text] < PRECEDENCE[token.text]:
                    break
                output.append(stack.pop())
            stack.append(token)
        elif token.type is TokenType.LEFT_PAREN:
            stack.append(token)
        elif token.type is TokenType.RIGHT_PAREN:
            while stack and stack[-1].type is not TokenType.LEFT_PAREN:
                output.append(stack.pop())
            if not stack:
                raise MismatchedParentheses()
            stack.pop()
        else:
            output.append(token)

    while stack:
        top = stack.pop()
        if top.type is TokenType.LEFT_PAREN:
            raise MismatchedParentheses()
        output.append(top)

    return output


def compile_expression(expression: str) -> list[Token]:
    """Strip whitespace, tokenize and convert to RPN."""
    return to_rpn(tokenize("".join(expression.split())))
