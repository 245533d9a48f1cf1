"""
Text utilities for command ingestion.

Generated text quotes strings with either quote character and nests JSON
literals inside arguments, so splitting is done by scanning rather than with
str.split: separators inside quotes or brackets never split.
"""

import json
import re
from typing import Any

from dynvars.exceptions import CommandParseError

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}
_NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")


def _scan(text: str, separator: str | None, stop_at_comment: bool = False) -> tuple[list[str], str | None]:
    """
    Split text at top-level separators.

    Params:
        text: Text to split
        separator: Separator character; None splits on whitespace runs
        stop_at_comment: Stop at a top-level " #" and return the rest

    Returns:
        Tuple of (parts, comment) where comment is the text after "#"
    """
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    escaped = False

    def flush() -> None:
        part = "".join(current).strip()
        if part or separator is not None:
            parts.append(part)
        current.clear()

    for position, char in enumerate(text):
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            quote = char
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            depth = max(depth - 1, 0)
        elif depth == 0:
            if stop_at_comment and char == "#" and (position == 0 or text[position - 1].isspace()):
                flush()
                return [part for part in parts if part], text[position + 1 :].strip()
            if separator is None and char.isspace():
                flush()
                continue
            if char == separator:
                flush()
                continue
        current.append(char)

    if quote:
        raise CommandParseError(f"Unterminated string in: {text}")
    flush()
    if separator is None:
        parts = [part for part in parts if part]
    return parts, None


def split_arguments(text: str) -> list[str]:
    """
    Split a call argument list at top-level commas.

    Raises:
        CommandParseError: On an unterminated string or an empty argument
    """
    if not text.strip():
        return []
    parts, _ = _scan(text, ",")
    if any(not part for part in parts):
        raise CommandParseError(f"Empty argument in: {text}")
    return parts


def split_words(text: str) -> tuple[list[str], str | None]:
    """
    Split a line command into words and a trailing "# comment".

    Returns:
        Tuple of (words, comment or None)

    Raises:
        CommandParseError: On an unterminated string
    """
    return _scan(text, None, stop_at_comment=True)


def find_closing(text: str, open_index: int) -> int:
    """
    Find the bracket closing the one at open_index.

    Returns:
        Index of the matching closer, or -1 if the text ends first
    """
    stack: list[str] = []
    quote: str | None = None
    escaped = False
    for position in range(open_index, len(text)):
        char = text[position]
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            quote = char
        elif char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in _CLOSERS:
            if not stack or stack[-1] != char:
                return -1
            stack.pop()
            if not stack:
                return position
    return -1


def _unquote(value_str: str) -> str:
    quote_char = value_str[0]
    unquoted = value_str[1:-1]
    return (
        unquoted.replace("\\n", "\n")
        .replace("\\t", "\t")
        .replace(f"\\{quote_char}", quote_char)
        .replace("\\\\", "\\")
    )


def parse_literal(value_str: str) -> Any:
    """
    Parse one argument into a value.

    Quoted strings are unquoted (with escape handling), true/false/null,
    numbers and JSON arrays/objects become their values, and anything else
    is kept as a bare string.

    Params:
        value_str: The argument text

    Returns:
        The parsed value

    Raises:
        CommandParseError: If the argument is empty or a bracketed literal
            is not valid JSON
    """
    value_str = value_str.strip()
    if not value_str:
        raise CommandParseError("Empty argument in command")

    if len(value_str) >= 2 and value_str[0] == value_str[-1] and value_str[0] in ('"', "'"):
        if value_str[0] == '"':
            try:
                return json.loads(value_str)
            except json.JSONDecodeError:
                pass
        return _unquote(value_str)

    if value_str == "true":
        return True
    if value_str == "false":
        return False
    if value_str in ("null", "None", "undefined"):
        return None

    if _NUMBER_PATTERN.match(value_str):
        if re.match(r"^[+-]?\d+$", value_str):
            return int(value_str)
        return float(value_str)

    if value_str[0] in "[{":
        try:
            return json.loads(value_str)
        except json.JSONDecodeError as e:
            raise CommandParseError(f"Invalid JSON literal {value_str!r}: {e.msg}")

    return value_str


def is_numeric_literal(value: Any) -> bool:
    """Check for a parsed int or float (not bool)."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
