"""
Path addressing utilities for dynvars.

Paths arrive in two spellings: slash-delimited ("/a/b/0", as in JSON Patch)
and dot/bracket-delimited ("a.b[0]" or "a.b.0"). Both parse into the same
ordered segment list. Parsing is total: any input yields a segment list and
anything that is not an integer or the append marker stays a string key.

No RFC 6901 escaping is applied, so keys containing "/", "." or "[" cannot
be addressed.
"""

import re
from dataclasses import dataclass

from dynvars.core.types import APPEND, APPEND_TOKEN, AppendMarker, Segment

_BRACKET_PATTERN = re.compile(r"\[\s*(?P<inner>[^\]]*?)\s*\]")
_INTEGER_PATTERN = re.compile(r"^-?\d+$")
_QUOTED_PATTERN = re.compile(r"""^(?P<quote>["'])(?P<body>.*)(?P=quote)$""")


def _convert_token(token: str) -> Segment:
    """Turn one raw token into a segment."""
    if token == APPEND_TOKEN:
        return APPEND
    if _INTEGER_PATTERN.match(token):
        return int(token)
    return token


def _split_dotted(path: str) -> list[str]:
    """Split a dot/bracket path, keeping quoted bracket keys intact."""
    tokens: list[str] = []
    position = 0
    for match in _BRACKET_PATTERN.finditer(path):
        tokens.extend(path[position : match.start()].split("."))
        inner = match.group("inner")
        quoted = _QUOTED_PATTERN.match(inner)
        # Quoted bracket keys are always string keys, even when numeric.
        tokens.append(("\0" + quoted.group("body")) if quoted else inner)
        position = match.end()
    tokens.extend(path[position:].split("."))
    return tokens


class PathResolver:
    """
    Parsing and rendering of document paths.

    All methods are static; paths carry no state beyond their segments.
    """

    @staticmethod
    def parse(path) -> list[Segment]:
        """
        Parse a path string into its ordered segments.

        Params:
            path: Slash-delimited or dot/bracket-delimited path. Non-string
                input is converted with str(); None and "" address the root.

        Returns:
            List of segments: str keys, int indices, or APPEND

        Examples:
            "/a/b/0" -> ["a", "b", 0]
            "a.b[0]" -> ["a", "b", 0]
            "bag/-" -> ["bag", APPEND]
            "a.b.-1" -> ["a", "b", -1]
        """
        if path is None:
            return []
        if isinstance(path, (list, tuple)):
            return list(path)
        text = str(path).strip()
        if not text:
            return []

        if text.startswith("/") or ("/" in text and "." not in text and "[" not in text):
            raw_tokens = text.split("/")
        else:
            raw_tokens = _split_dotted(text)

        segments: list[Segment] = []
        for token in raw_tokens:
            token = token.strip()
            if not token:
                continue
            if token.startswith("\0"):
                segments.append(token[1:])
            else:
                segments.append(_convert_token(token))
        return segments

    @staticmethod
    def normalize(path) -> str:
        """
        Render a path (or segment list) in canonical dot/bracket form.

        Params:
            path: Path string or already-parsed segment list

        Returns:
            Canonical path, e.g. "a.b[0]" or "bag[-]"
        """
        segments = PathResolver.parse(path)
        rendered = ""
        for segment in segments:
            if segment is APPEND:
                rendered += f"[{APPEND_TOKEN}]"
            elif isinstance(segment, int):
                rendered += f"[{segment}]"
            elif _INTEGER_PATTERN.match(segment) or segment == APPEND_TOKEN:
                rendered += f'["{segment}"]'
            else:
                rendered += f".{segment}" if rendered else segment
        return rendered

    @staticmethod
    def join(*parts) -> str:
        """Join path fragments into one canonical path."""
        segments: list[Segment] = []
        for part in parts:
            if isinstance(part, (int, AppendMarker)):
                segments.append(part)
            else:
                segments.extend(PathResolver.parse(part))
        return PathResolver.normalize(segments)


@dataclass
class PathComponents:
    """Result of splitting a path into its parent and final segment."""

    parent: list[Segment]
    key: Segment | None

    @classmethod
    def split_path(cls, path) -> "PathComponents":
        """
        Split a path at its last segment.

        Params:
            path: Path string or segment list

        Returns:
            PathComponents with the parent segments and the final key
            (None when the path addresses the root)

        Examples:
            "a.b[0]" -> PathComponents(["a", "b"], 0)
            "" -> PathComponents([], None)
        """
        segments = PathResolver.parse(path)
        if not segments:
            return cls(parent=[], key=None)
        return cls(parent=segments[:-1], key=segments[-1])


def parse_path(path) -> list[Segment]:
    """Parse a path into segments (see PathResolver.parse)."""
    return PathResolver.parse(path)


def normalize_path(path) -> str:
    """Render a path in canonical form (see PathResolver.normalize)."""
    return PathResolver.normalize(path)
