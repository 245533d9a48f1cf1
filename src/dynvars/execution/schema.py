"""
Optional schema guard for the variable document.

Constraints live in the document itself, under the reserved "$meta" key of
any mapping:

    {"$meta": {"extensible": false, "required": ["name"], "template": {...},
               "recursiveExtensible": false}}

To validate a change, the guard walks from the root toward the parent of the
target and keeps the most specific metadata it meets. Metadata found at
different levels is never merged; the nearest one governs alone.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dynvars.core.document import META_KEY, MISSING, DocumentStore, step
from dynvars.core.path_utils import PathResolver
from dynvars.core.types import Segment
from dynvars.exceptions import SchemaViolationError
from dynvars.models import BaseOperation, ModifyAction, ModifyOperation, OperationKind, RemoveOperation

logger = logging.getLogger(__name__)


class SchemaMeta(BaseModel):
    """
    Constraints attached to one mapping.

    Params:
        extensible: Whether keys that do not exist yet may be added
        required: Keys that may not be removed
        template: Defaults filled into mapping values added to the container
        recursive_extensible: Whether descendants further down accept new
            keys when this metadata is the nearest one
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    extensible: bool = True
    required: list[str] = Field(default_factory=list)
    template: dict[str, Any] | None = None
    recursive_extensible: bool = Field(default=False, alias="recursiveExtensible")


@dataclass
class GoverningMeta:
    """The metadata that governs a target and where it was found."""

    meta: SchemaMeta
    owner: list[Segment]
    direct: bool

    @property
    def allows_new_keys(self) -> bool:
        if self.direct:
            return self.meta.extensible
        return self.meta.extensible or self.meta.recursive_extensible


class SchemaGuard:
    """Validates structural changes against `$meta` constraints."""

    WRITING_KINDS = (
        OperationKind.ADD,
        OperationKind.REPLACE,
        OperationKind.INCREMENT,
        OperationKind.CALC,
    )

    def __init__(self, store: DocumentStore):
        self.store = store

    def governing_meta(self, parent: list[Segment]) -> GoverningMeta | None:
        """
        Find the nearest metadata on the way from the root to a container.

        Params:
            parent: Segments of the container that holds the target key

        Returns:
            The governing metadata, or None when no container declares any
        """
        found: GoverningMeta | None = None
        current: Any = self.store.stat_data
        for depth in range(len(parent) + 1):
            if isinstance(current, dict) and isinstance(current.get(META_KEY), dict):
                try:
                    meta = SchemaMeta.model_validate(current[META_KEY])
                except ValidationError as e:
                    logger.debug("Ignoring invalid %s at %s: %s", META_KEY, parent[:depth], e)
                else:
                    found = GoverningMeta(meta, list(parent[:depth]), depth == len(parent))
            if depth == len(parent):
                break
            current = step(current, parent[depth])
            if current is MISSING or current is None:
                break
        return found

    def check_extensible(self, path: str) -> None:
        """
        Reject adding a key the governing metadata does not allow.

        Raises:
            SchemaViolationError: If the key is new and the container is
                not extensible
        """
        segments = PathResolver.parse(path)
        if not segments:
            return
        parent = segments[:-1]
        governing = self.governing_meta(parent)
        if governing is None or governing.allows_new_keys:
            return
        container = self.store.lookup(parent)
        if step(container, segments[-1]) is not MISSING:
            return
        raise SchemaViolationError(path, "container is not extensible")

    def check_required(self, path: str) -> None:
        """
        Reject removing a key the governing metadata lists as required.

        Raises:
            SchemaViolationError: If the key is required
        """
        segments = PathResolver.parse(path)
        if not segments:
            return
        governing = self.governing_meta(segments[:-1])
        if governing is not None and str(segments[-1]) in governing.meta.required:
            raise SchemaViolationError(path, f"'{segments[-1]}' is required")

    def check_merge(self, operation: ModifyOperation) -> None:
        """
        Reject a mapping merge that would add keys to a closed container.

        Raises:
            SchemaViolationError: If any merged key is new and the mapping is
                not extensible
        """
        if operation.action is not ModifyAction.MERGE or not isinstance(operation.value, dict):
            return
        if not isinstance(self.store.lookup(operation.path), dict):
            return
        for key in operation.value:
            self.check_extensible(PathResolver.join(operation.path, [str(key)]))

    def _removed_path(self, operation: RemoveOperation) -> str:
        """Path of the mapping key a removal deletes; required keys only live in mappings."""
        if operation.key is not None and isinstance(self.store.lookup(operation.path), dict):
            return PathResolver.join(operation.path, [str(operation.key)])
        return operation.path

    def validate(self, operation: BaseOperation) -> None:
        """
        Validate one operation before it is dispatched.

        Move is checked as a removal at its source and an addition at its
        destination; copy only as an addition. A mapping merge is checked as
        one addition per merged key.

        Raises:
            SchemaViolationError: If any constraint rejects the change
        """
        kind = operation.kind
        if kind in self.WRITING_KINDS:
            self.check_extensible(operation.path)
        elif kind is OperationKind.REMOVE:
            self.check_required(self._removed_path(operation))
        elif kind is OperationKind.MOVE:
            self.check_required(operation.from_)
            self.check_extensible(operation.path)
        elif kind is OperationKind.COPY:
            self.check_extensible(operation.path)
        elif kind is OperationKind.MODIFY:
            self.check_merge(operation)

    def apply_template(self, path: str, value: Any) -> Any:
        """Fill keys missing from a mapping value with the governing template."""
        if not isinstance(value, dict):
            return value
        segments = PathResolver.parse(path)
        governing = self.governing_meta(segments[:-1])
        if governing is None or not governing.meta.template:
            return value
        filled = copy.deepcopy(governing.meta.template)
        filled.update(value)
        return filled
