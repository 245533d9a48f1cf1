"""
Core dynvars components.

This package provides path addressing, the shared type aliases and the
document store that every other component reads and writes through.
"""

from dynvars.core.document import (
    META_KEY,
    MISSING,
    DocumentStore,
    Source,
    unwrap_value,
)
from dynvars.core.path_utils import (
    PathComponents,
    PathResolver,
    normalize_path,
    parse_path,
)
from dynvars.core.types import APPEND, AppendMarker, Condition, JSONValue, Segment

__all__ = [
    "APPEND",
    "AppendMarker",
    "Condition",
    "DocumentStore",
    "JSONValue",
    "META_KEY",
    "MISSING",
    "PathComponents",
    "PathResolver",
    "Segment",
    "Source",
    "normalize_path",
    "parse_path",
    "unwrap_value",
]
