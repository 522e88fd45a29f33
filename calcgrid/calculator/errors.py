"""Error taxonomy for expression compilation and evaluation."""

from typing import Optional


class CalculationError(Exception):
    """Base class for every domain error raised while computing an expression.

    Attributes:
        kind: Stable machine-readable error name (e.g. "DivisionByZero").
        message: Human-readable description.
    """

    kind: str = "CalculationError"
    default_message: str = "calculation error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serialise to JSON-safe dictionary."""
        return {"error": self.message, "kind": self.kind}


class InvalidCharacter(CalculationError):
    """A character outside digits, '.', operators and parentheses."""

    kind = "InvalidCharacter"
    default_message = "invalid character in expression"

    def __init__(self, char: str = "", position: int = -1) -> None:
        self.char = char
        self.position = position
        if char and position >= 0:
            super().__init__(f"invalid character {char!r} at position {position}")
        elif char:
            super().__init__(f"unsupported operation {char!r}")
        else:
            super().__init__()


class MismatchedParentheses(CalculationError):
    kind = "MismatchedParentheses"
    default_message = "mismatched parentheses"


class InsufficientOperands(CalculationError):
    kind = "InsufficientOperands"
    default_message = "insufficient operands"


class NumberFormatError(CalculationError):
    kind = "NumberFormatError"
    default_message = "number format error"

    def __init__(self, text: str = "") -> None:
        self.text = text
        super().__init__(f"cannot parse number {text!r}" if text else None)


class DivisionByZero(CalculationError):
    kind = "DivisionByZero"
    default_message = "division by zero"


class MalformedExpression(CalculationError):
    """Evaluation finished with a stack size other than one."""

    kind = "MalformedExpression"
    default_message = "malformed expression"
