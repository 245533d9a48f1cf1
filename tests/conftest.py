"""
Shared test fixtures for the dynvars test suite.
"""

import pytest

from dynvars.core.document import DocumentStore
from dynvars.execution.executor import OperationExecutor


@pytest.fixture
def store():
    """Document store holding a small game-state document."""
    return DocumentStore(
        {
            "hp": 100,
            "gold": 50,
            "name": ["Alice", "player name"],
            "bag": ["sword"],
            "stats": {"str": 5, "dex": 3},
        }
    )


@pytest.fixture
def executor(store):
    """Executor over the shared store with schema validation off."""
    return OperationExecutor(store)

