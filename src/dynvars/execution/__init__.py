"""
dynvars execution components.

This package evaluates conditions and expressions, enforces the optional
schema, and applies single operations and batches to the document.
"""

from dynvars.execution.batch import BatchCoordinator
from dynvars.execution.conditions import ConditionEvaluator, values_equal
from dynvars.execution.executor import OperationExecutor
from dynvars.execution.expressions import ExpressionEngine
from dynvars.execution.schema import SchemaGuard, SchemaMeta

__all__ = [
    "BatchCoordinator",
    "ConditionEvaluator",
    "ExpressionEngine",
    "OperationExecutor",
    "SchemaGuard",
    "SchemaMeta",
    "values_equal",
]
