"""
Exception classes for dynvars variable mutation.

This module defines specific exception types for the error conditions that
can occur while addressing, guarding, and executing operations against a
variable document. The executor converts every one of them into a failed
operation result; none of them is expected to reach a host.
"""

from typing import Any


class DynVarsError(Exception):
    """Base exception for all dynvars errors."""

    pass


class AddressError(DynVarsError):
    """Raised when a path cannot address the container an operation needs."""

    def __init__(self, path: str, reason: str):
        """
        Initialize the exception.

        Params:
            path: The path (as written) that could not be addressed
            reason: Why the path is unusable
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot address '{path}': {reason}")


class OperationTypeError(DynVarsError):
    """Raised when a target or argument has the wrong shape for an operation."""

    def __init__(self, op: str, path: str, reason: str):
        """
        Initialize the exception.

        Params:
            op: Operation kind that rejected the value
            path: Target path of the operation
            reason: Description of the type mismatch
        """
        self.op = op
        self.path = path
        self.reason = reason
        super().__init__(f"{op} on '{path}': {reason}")


class OperationTestFailure(DynVarsError):
    """Raised when a test operation does not hold against the document."""

    def __init__(self, path: str, expected: Any = None, actual: Any = None):
        """
        Initialize the exception.

        Params:
            path: Path that was tested
            expected: Expected value or condition description
            actual: Value found at the path
        """
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Test failed at '{path}': expected {expected!r}, found {actual!r}"
        )


class SchemaViolationError(DynVarsError):
    """Raised when the schema guard rejects a structural change."""

    def __init__(self, path: str, reason: str):
        """
        Initialize the exception.

        Params:
            path: Path of the rejected change
            reason: Which schema constraint was violated
        """
        self.path = path
        self.reason = reason
        super().__init__(f"Schema violation at '{path}': {reason}")


class ExpressionError(DynVarsError):
    """Raised when an arithmetic expression cannot be evaluated safely."""

    def __init__(self, expression: str, reason: str = "evaluation failed"):
        """
        Initialize the exception.

        Params:
            expression: The expression as written
            reason: Why evaluation was refused
        """
        self.expression = expression
        self.reason = reason
        super().__init__(f"Expression '{expression}': {reason}")


class CommandParseError(DynVarsError):
    """Raised when a command in generated text cannot be turned into operations."""

    pass
