"""
Batch coordination for dynvars.

A batch runs operations in order through the executor. Non-atomic batches
apply every operation and collect the failures. Atomic batches snapshot the
whole document first; the first failure restores that snapshot exactly and
stops the batch, so later operations are never attempted. Skipped operations
(false guards) are never failures.
"""

import logging
from collections.abc import Sequence
from typing import Any

from dynvars.execution.executor import OperationExecutor
from dynvars.models import BaseOperation, BatchError, BatchResult, parse_operation

logger = logging.getLogger(__name__)


def _describe(operation: Any) -> BaseOperation | None:
    try:
        return parse_operation(operation)
    except ValueError:
        return None


class BatchCoordinator:
    """Runs sequences of operations atomically or independently."""

    def __init__(self, executor: OperationExecutor):
        """
        Initialize the coordinator.

        Params:
            executor: Executor the operations are dispatched to
        """
        self.executor = executor

    @property
    def store(self):
        return self.executor.store

    def execute(
        self, operations: Sequence[BaseOperation | dict[str, Any]], atomic: bool = False
    ) -> BatchResult:
        """
        Execute a batch.

        Params:
            operations: Operations in execution order
            atomic: Roll the whole document back on the first failure

        Returns:
            BatchResult; rollback=True when an atomic batch was undone
        """
        # The snapshot is a full deep copy, O(document size) per atomic batch.
        snapshot = self.store.export() if atomic else None
        result = BatchResult(success=True)

        for index, operation in enumerate(operations):
            outcome = self.executor.execute(operation)
            result.results.append(outcome)
            if outcome.success:
                continue

            result.errors.append(BatchError(index, _describe(operation), outcome.error or ""))
            result.success = False
            if atomic:
                self.store.restore(snapshot)
                result.rollback = True
                logger.info(
                    "Atomic batch rolled back at operation %d of %d: %s",
                    index,
                    len(operations),
                    outcome.error,
                )
                return result

        if result.errors:
            logger.info("Batch finished with %d failed operation(s)", len(result.errors))
        return result
