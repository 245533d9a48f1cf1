"""
Document store for dynvars.

The store owns the live variable tree (`stat`) and two projections that hold
human-readable change annotations: `display` (every change so far) and
`delta` (changes since the host last called clear_delta). Reads unwrap
`[value, description]` leaves; writes create missing containers on the way,
choosing a list or a mapping from the kind of the following segment.
"""

import copy
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from dynvars.core.path_utils import PathResolver
from dynvars.core.types import APPEND, AppendMarker, DocumentData, Segment
from dynvars.exceptions import AddressError
from dynvars.models import ChangeRecord

logger = logging.getLogger(__name__)

META_KEY = "$meta"


class Source(Enum):
    """Projection a read is resolved against."""

    STAT = "stat"
    DISPLAY = "display"
    DELTA = "delta"


class _Missing:
    """Marker for a path that does not resolve to anything."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()

ChangeObserver = Callable[[ChangeRecord], None]


def is_described_leaf(value: Any) -> bool:
    """Check for the `[value, description]` leaf form."""
    return isinstance(value, list) and len(value) == 2 and isinstance(value[1], str)


def unwrap_value(value: Any) -> Any:
    """Return the value part of a `[value, description]` leaf."""
    if is_described_leaf(value):
        return value[0]
    return value


def step(container: Any, segment: Segment) -> Any:
    """
    Resolve one segment against a container.

    Negative integers are never counted from the end; they simply do not
    resolve. The append marker never resolves on read.

    Returns:
        The child value, or MISSING
    """
    if segment is APPEND:
        return MISSING
    if isinstance(container, dict):
        return container.get(str(segment), MISSING)
    if isinstance(container, list):
        if isinstance(segment, int) and 0 <= segment < len(container):
            return container[segment]
        return MISSING
    return MISSING


def resolve(root: Any, segments: list[Segment]) -> Any:
    """Walk segments from root, stopping at the first null or missing step."""
    current = root
    for segment in segments:
        if current is None or current is MISSING:
            return MISSING
        current = step(current, segment)
    return current


def _new_container(next_segment: Segment) -> list | dict:
    if isinstance(next_segment, (int, AppendMarker)):
        return []
    return {}


def _put(container: Any, segment: Segment, value: Any, path: str) -> None:
    """Store value under segment in container."""
    if isinstance(container, dict):
        if segment is APPEND:
            raise AddressError(path, "append marker used on a mapping")
        container[str(segment)] = value
        return
    if isinstance(container, list):
        if segment is APPEND:
            container.append(value)
        elif not isinstance(segment, int):
            raise AddressError(path, f"sequence index must be an integer, got '{segment}'")
        elif segment < 0:
            raise AddressError(path, f"index {segment} is out of range")
        elif segment < len(container):
            container[segment] = value
        else:
            container.extend([None] * (segment - len(container)))
            container.append(value)
        return
    raise AddressError(path, f"parent holds a {type(container).__name__}, not a container")


def write(root: Any, segments: list[Segment], value: Any, path: str, force: bool = False) -> None:
    """
    Write value at segments, creating intermediate containers as needed.

    Params:
        root: Root container
        segments: Parsed target path
        value: Value to store
        path: Path as written, for error messages
        force: Replace intermediates of the wrong kind instead of failing

    Raises:
        AddressError: If the path cannot be written
    """
    if not segments:
        raise AddressError(path, "cannot replace the document root")
    current = root
    for position, segment in enumerate(segments[:-1]):
        following = segments[position + 1]
        child = step(current, segment)
        wrong_kind = not isinstance(child, (dict, list)) or (
            isinstance(child, list) and isinstance(following, str)
        ) or (isinstance(child, dict) and following is APPEND)
        if child is MISSING or child is None or (force and wrong_kind):
            child = _new_container(following)
            _put(current, segment, child, path)
        elif not isinstance(child, (dict, list)):
            raise AddressError(
                path, f"'{segment}' holds a {type(child).__name__}, not a container"
            )
        current = child
    _put(current, segments[-1], value, path)


def remove(root: Any, segments: list[Segment]) -> bool:
    """Remove the value at segments; False when nothing was there."""
    if not segments:
        return False
    parent = resolve(root, segments[:-1])
    key = segments[-1]
    if isinstance(parent, dict):
        if str(key) in parent:
            del parent[str(key)]
            return True
        return False
    if isinstance(parent, list) and isinstance(key, int) and 0 <= key < len(parent):
        del parent[key]
        return True
    return False


class DocumentStore:
    """
    Mutable variable document with change projections.

    The store itself never validates operations; it is written to by the
    operation executor and read by everything else through get().
    """

    def __init__(self, data: DocumentData | None = None):
        """
        Initialize the store.

        Params:
            data: Optional initial live data (used as is, not copied)
        """
        self.stat_data: DocumentData = data if data is not None else {}
        self.display_data: DocumentData = {}
        self.delta_data: DocumentData = {}
        self._observers: list[ChangeObserver] = []

    def projection(self, source: Source | str = Source.STAT) -> DocumentData:
        """Return the root mapping of a projection."""
        source = Source(source)
        if source is Source.DISPLAY:
            return self.display_data
        if source is Source.DELTA:
            return self.delta_data
        return self.stat_data

    def lookup(self, path, source: Source | str = Source.STAT) -> Any:
        """
        Resolve a path without unwrapping described leaves.

        Returns:
            The stored value, or MISSING
        """
        return resolve(self.projection(source), PathResolver.parse(path))

    def get(self, path=None, source: Source | str = Source.STAT, default: Any = None) -> Any:
        """
        Read a value for templates, conditions and expressions.

        Params:
            path: Path to read; empty reads the whole projection
            source: Projection to read from ("stat", "display" or "delta")
            default: Returned when the path does not resolve

        Returns:
            The value with any `[value, description]` wrapper removed
        """
        value = self.lookup(path, source)
        if value is MISSING:
            return default
        return unwrap_value(value)

    def exists(self, path, source: Source | str = Source.STAT) -> bool:
        return self.lookup(path, source) is not MISSING

    def set(self, path, value: Any, source: Source | str = Source.STAT) -> None:
        """
        Write a value, creating intermediate containers.

        A trailing append marker pushes onto the addressed sequence.

        Raises:
            AddressError: If an intermediate is a scalar or the key does not
                fit the container
        """
        write(self.projection(source), PathResolver.parse(path), value, str(path))

    def assign(self, path, value: Any) -> None:
        """Write a live value, keeping the description of a described leaf."""
        current = self.lookup(path)
        if is_described_leaf(current) and not isinstance(value, list):
            value = [value, current[1]]
        self.set(path, value)

    def delete(self, path, source: Source | str = Source.STAT) -> bool:
        """
        Delete a mapping key or splice a sequence index.

        Returns:
            True if something was removed; False if any segment was missing
        """
        return remove(self.projection(source), PathResolver.parse(path))

    def record_change(self, record: ChangeRecord) -> None:
        """Annotate both projections with a change and notify observers."""
        segments = PathResolver.parse(record.path)
        text = record.display_text
        write(self.display_data, segments, text, record.path, force=True)
        write(self.delta_data, segments, text, record.path, force=True)
        logger.debug("Variable changed: %s = %s", record.path, text)
        for observer in list(self._observers):
            try:
                observer(record)
            except Exception:
                logger.exception("Change observer %r failed for %s", observer, record.path)

    def subscribe(self, observer: ChangeObserver) -> Callable[[], None]:
        """
        Register a change observer.

        Returns:
            Callable that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def clear_delta(self) -> None:
        """Forget the annotations of the current ingestion cycle."""
        self.delta_data.clear()

    def export(self) -> dict[str, DocumentData]:
        """Deep-copied snapshot of all three projections."""
        return {
            "stat_data": copy.deepcopy(self.stat_data),
            "display_data": copy.deepcopy(self.display_data),
            "delta_data": copy.deepcopy(self.delta_data),
        }

    def import_data(self, snapshot: dict[str, DocumentData]) -> None:
        """Replace every projection present in an exported snapshot."""
        for key, target in (
            ("stat_data", self.stat_data),
            ("display_data", self.display_data),
            ("delta_data", self.delta_data),
        ):
            if snapshot.get(key) is not None:
                replacement = copy.deepcopy(snapshot[key])
                target.clear()
                target.update(replacement)

    def restore(self, snapshot: dict[str, DocumentData]) -> None:
        """Restore an export() snapshot exactly, in place."""
        for key, target in (
            ("stat_data", self.stat_data),
            ("display_data", self.display_data),
            ("delta_data", self.delta_data),
        ):
            target.clear()
            target.update(snapshot[key])
