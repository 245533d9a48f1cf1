"""
dynvars exception classes.

This package provides all exception types used throughout dynvars for
consistent error handling and reporting.
"""

from dynvars.exceptions.core import (
    AddressError,
    CommandParseError,
    DynVarsError,
    ExpressionError,
    OperationTestFailure,
    OperationTypeError,
    SchemaViolationError,
)

__all__ = [
    "DynVarsError",
    "AddressError",
    "CommandParseError",
    "ExpressionError",
    "OperationTestFailure",
    "OperationTypeError",
    "SchemaViolationError",
]
