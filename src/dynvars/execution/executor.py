"""
Operation executor for dynvars.

The executor is the only component that mutates the live document. Each
operation passes through three steps: its `if` guard (a false guard skips the
operation without error), the optional schema guard, and a handler chosen by
operation kind. A successful mutation produces exactly one ChangeRecord.

No exception leaves execute(); every failure becomes an OperationResult with
success=False and a message.
"""

import copy
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from dynvars.core.document import MISSING, DocumentStore, unwrap_value
from dynvars.core.path_utils import PathResolver
from dynvars.core.types import APPEND, AppendMarker, Segment
from dynvars.exceptions import (
    AddressError,
    DynVarsError,
    ExpressionError,
    OperationTestFailure,
    OperationTypeError,
)
from dynvars.execution.conditions import ConditionEvaluator, is_number, values_equal
from dynvars.execution.expressions import ExpressionEngine, normalize_result
from dynvars.execution.schema import SchemaGuard
from dynvars.models import (
    AddOperation,
    BaseOperation,
    CalcOperation,
    ChangeRecord,
    CopyOperation,
    IncrementOperation,
    ModifyAction,
    ModifyOperation,
    MoveOperation,
    OperationKind,
    OperationResult,
    RemoveOperation,
    ReplaceOperation,
    TestOperation,
    format_value,
    parse_operation,
)

logger = logging.getLogger(__name__)


def _recorded(value: Any) -> Any:
    """Value as it appears in a change record."""
    if value is MISSING:
        return None
    return copy.deepcopy(unwrap_value(value))


def signed_delta(delta: int | float) -> str:
    """Render an increment as "+5" or "-3"."""
    sign = "-" if delta < 0 else "+"
    return f"{sign}{format_value(abs(delta))}"


def describe_validation_error(error: ValidationError) -> str:
    """Compact one-line summary of a pydantic validation error."""
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "operation"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


class OperationExecutor:
    """Applies canonical operations to a document store."""

    def __init__(
        self,
        store: DocumentStore,
        conditions: ConditionEvaluator | None = None,
        expressions: ExpressionEngine | None = None,
        schema_guard: SchemaGuard | None = None,
        schema_validation: bool = False,
    ):
        """
        Initialize the executor.

        Params:
            store: Document to mutate
            conditions: Evaluator for `if` guards and test comparators
            expressions: Engine for calc operations
            schema_guard: Guard consulted when schema_validation is on
            schema_validation: Enforce `$meta` constraints
        """
        self.store = store
        self.conditions = conditions or ConditionEvaluator(store)
        self.expressions = expressions or ExpressionEngine(store)
        self.schema_guard = schema_guard or SchemaGuard(store)
        self.schema_validation = schema_validation
        self._handlers: dict[OperationKind, Callable[[Any], ChangeRecord | None]] = {
            OperationKind.ADD: self._add,
            OperationKind.REMOVE: self._remove,
            OperationKind.REPLACE: self._replace,
            OperationKind.MOVE: self._move,
            OperationKind.COPY: self._copy,
            OperationKind.TEST: self._test,
            OperationKind.INCREMENT: self._increment,
            OperationKind.CALC: self._calc,
            OperationKind.MODIFY: self._modify,
        }

    @property
    def handled_kinds(self) -> set[OperationKind]:
        return set(self._handlers)

    def execute(self, operation: BaseOperation | dict[str, Any]) -> OperationResult:
        """
        Execute one operation.

        Params:
            operation: Operation model or wire-format mapping

        Returns:
            OperationResult; skipped=True when the guard was false
        """
        try:
            operation = parse_operation(operation)
        except ValidationError as e:
            return OperationResult(
                success=False, error=f"Invalid operation: {describe_validation_error(e)}"
            )

        try:
            if operation.if_ is not None and not self.conditions.evaluate(operation.if_):
                logger.debug("Skipping %s on %s: guard is false", operation.op, operation.path)
                return OperationResult(success=True, skipped=True)
            if self.schema_validation:
                self.schema_guard.validate(operation)
            change = self._handlers[operation.kind](operation)
            if change is not None:
                self.store.record_change(change)
        except DynVarsError as e:
            logger.debug("Operation %s failed: %s", operation, e)
            return OperationResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error while executing %s", operation)
            return OperationResult(success=False, error=f"Unexpected error: {e}")

        logger.debug("Executed %s on %s", operation.op, operation.path)
        return OperationResult(success=True, change=change)

    # Shared write helpers

    def _insert(self, path: str, segments: list[Segment], value: Any) -> str:
        """
        Add a value the way the add operation does.

        An index or append marker at the end of the path needs a sequence
        parent; an index inserts before the element currently there.

        Returns:
            Canonical path the value ended up at
        """
        if not segments:
            raise AddressError(path, "cannot replace the document root")
        key = segments[-1]
        if key is APPEND or isinstance(key, int):
            parent = self.store.lookup(segments[:-1])
            if not isinstance(parent, list):
                raise AddressError(path, "indexed add requires a sequence parent")
            if key is APPEND:
                parent.append(value)
                key = len(parent) - 1
            elif 0 <= key <= len(parent):
                parent.insert(key, value)
            else:
                raise AddressError(path, f"index {key} is out of range")
            return PathResolver.normalize(segments[:-1] + [key])
        self.store.set(path, value)
        return PathResolver.normalize(segments)

    def _overwrite(self, path: str, segments: list[Segment], value: Any) -> str:
        """Write a value in place, keeping any leaf description."""
        if not segments:
            raise AddressError(path, "cannot replace the document root")
        self.store.assign(path, value)
        if segments[-1] is APPEND:
            parent = self.store.lookup(segments[:-1])
            return PathResolver.normalize(segments[:-1] + [len(parent) - 1])
        return PathResolver.normalize(segments)

    def _reinsert(self, segments: list[Segment], value: Any) -> None:
        """Put a removed value back where it was."""
        parent = self.store.lookup(segments[:-1])
        key = segments[-1]
        if isinstance(parent, list) and isinstance(key, int):
            parent.insert(key, value)
        else:
            self.store.set(segments, value)

    def _displaced(self, segments: list[Segment]) -> Any:
        """Value an add at segments overwrites; indexed adds overwrite nothing."""
        if not segments or isinstance(segments[-1], (int, AppendMarker)):
            return MISSING
        return self.store.lookup(segments)

    def _source_value(self, operation: MoveOperation | CopyOperation) -> Any:
        value = self.store.lookup(operation.from_)
        if value is MISSING:
            raise AddressError(operation.from_, "source does not exist")
        return value

    # Handlers

    def _add(self, operation: AddOperation) -> ChangeRecord:
        segments = PathResolver.parse(operation.path)
        old = self._displaced(segments)
        value = copy.deepcopy(operation.value)
        if self.schema_validation:
            value = self.schema_guard.apply_template(operation.path, value)
        concrete = self._insert(operation.path, segments, value)
        return ChangeRecord(concrete, _recorded(old), _recorded(value), operation.reason or "add")

    def _removal_segments(self, operation: RemoveOperation) -> list[Segment]:
        """Resolve a keyed removal against its container."""
        segments = PathResolver.parse(operation.path)
        key = operation.key
        if key is None:
            return segments
        container = self.store.lookup(segments)
        if isinstance(container, dict):
            return segments + [str(key)]
        if not isinstance(container, list):
            if container is MISSING:
                raise AddressError(operation.path, "nothing to remove")
            raise OperationTypeError("remove", operation.path, "target is neither a sequence nor a mapping")
        if isinstance(key, int):
            return segments + [key]
        for index, item in enumerate(container):
            if values_equal(item, key):
                return segments + [index]
        raise AddressError(operation.path, f"no element equal to {key!r}")

    def _remove(self, operation: RemoveOperation) -> ChangeRecord:
        segments = self._removal_segments(operation)
        old = self.store.lookup(segments)
        if not segments or old is MISSING:
            raise AddressError(PathResolver.normalize(segments), "nothing to remove")
        self.store.delete(segments)
        return ChangeRecord(
            PathResolver.normalize(segments), _recorded(old), None, operation.reason or "remove"
        )

    def _replace(self, operation: ReplaceOperation) -> ChangeRecord:
        segments = PathResolver.parse(operation.path)
        old = self.store.lookup(segments)
        value = copy.deepcopy(operation.value)
        concrete = self._overwrite(operation.path, segments, value)
        return ChangeRecord(concrete, _recorded(old), _recorded(value), operation.reason or "replace")

    def _move(self, operation: MoveOperation) -> ChangeRecord:
        source = PathResolver.parse(operation.from_)
        target = PathResolver.parse(operation.path)
        value = self._source_value(operation)
        if len(target) > len(source) and target[: len(source)] == source:
            raise AddressError(operation.path, "cannot move a value into its own child")
        self.store.delete(source)
        try:
            old = self._displaced(target)
            concrete = self._insert(operation.path, target, value)
        except DynVarsError:
            self._reinsert(source, value)
            raise
        return ChangeRecord(concrete, _recorded(old), _recorded(value), operation.reason or "move")

    def _copy(self, operation: CopyOperation) -> ChangeRecord:
        target = PathResolver.parse(operation.path)
        value = copy.deepcopy(self._source_value(operation))
        old = self._displaced(target)
        concrete = self._insert(operation.path, target, value)
        return ChangeRecord(concrete, _recorded(old), _recorded(value), operation.reason or "copy")

    def _test(self, operation: TestOperation) -> None:
        stored = self.store.lookup(operation.path)
        actual = None if stored is MISSING else unwrap_value(stored)
        if operation.has_literal_value:
            if stored is MISSING or not values_equal(actual, operation.value):
                raise OperationTestFailure(operation.path, operation.value, actual)
            return None
        condition = operation.as_condition()
        if not self.conditions.evaluate(condition):
            expected = {key: value for key, value in condition.items() if key != "path"}
            raise OperationTestFailure(operation.path, expected or "a truthy value", actual)
        return None

    def _increment(self, operation: IncrementOperation) -> ChangeRecord:
        segments = PathResolver.parse(operation.path)
        stored = self.store.lookup(segments)
        current = None if stored is MISSING else unwrap_value(stored)
        if current is not None and not is_number(current):
            raise OperationTypeError("increment", operation.path, f"{current!r} is not a number")
        if not is_number(operation.delta):
            raise OperationTypeError("increment", operation.path, f"delta {operation.delta!r} is not a number")
        new_value = normalize_result((current or 0) + operation.delta)
        concrete = self._overwrite(operation.path, segments, new_value)
        return ChangeRecord(
            concrete, current, new_value, operation.reason or signed_delta(operation.delta)
        )

    def _calc(self, operation: CalcOperation) -> ChangeRecord:
        result = self.expressions.evaluate(operation.expr)
        if result is None:
            raise ExpressionError(operation.expr, "rejected or not evaluable")
        segments = PathResolver.parse(operation.path)
        old = self.store.lookup(segments)
        concrete = self._overwrite(operation.path, segments, result)
        return ChangeRecord(
            concrete, _recorded(old), result, operation.reason or f"calc: {operation.expr}"
        )

    def _modify(self, operation: ModifyOperation) -> ChangeRecord:
        target = self.store.lookup(operation.path)
        if target is MISSING:
            raise AddressError(operation.path, "nothing to modify")
        action = operation.action
        before = copy.deepcopy(target)
        value = copy.deepcopy(operation.value)

        if isinstance(target, list):
            if action is ModifyAction.APPEND:
                target.append(value)
            elif action is ModifyAction.PREPEND:
                target.insert(0, value)
            elif action is ModifyAction.INSERT:
                if operation.index is None:
                    raise OperationTypeError("modify", operation.path, "insert requires a numeric index")
                target.insert(operation.index, value)
            elif action is ModifyAction.MERGE:
                if not isinstance(value, list):
                    raise OperationTypeError("modify", operation.path, "merge into a sequence requires an array value")
                target.extend(value)
        elif isinstance(target, dict):
            if action is not ModifyAction.MERGE:
                raise OperationTypeError("modify", operation.path, f"'{action.value}' is not valid on a mapping")
            if not isinstance(value, dict):
                raise OperationTypeError("modify", operation.path, "merge into a mapping requires an object value")
            target.update(value)
        else:
            raise OperationTypeError("modify", operation.path, "target is neither a sequence nor a mapping")

        return ChangeRecord(
            PathResolver.normalize(operation.path),
            before,
            copy.deepcopy(target),
            operation.reason or f"modify:{action.value}",
        )
