"""
Core type definitions for dynvars.

This module contains the type aliases shared by the document store, the
evaluators and the executor.
"""

from typing import Any, Union


class AppendMarker:
    """Path segment addressing one past the end of a sequence."""

    _instance: "AppendMarker | None" = None

    def __new__(cls) -> "AppendMarker":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "APPEND"

    def __reduce__(self):
        return (AppendMarker, ())


APPEND = AppendMarker()

APPEND_TOKEN = "-"

Segment = Union[str, int, AppendMarker]

JSONValue = str | int | float | bool | list | dict | None

Condition = dict[str, Any]

DocumentData = dict[str, Any]
