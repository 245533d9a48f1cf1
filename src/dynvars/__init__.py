"""
dynvars - guarded, auditable variable mutations driven by generated text

dynvars lets a text generator request changes to a shared structured
document through a small, fail-closed operation language, without ever
executing code taken from that text.
"""

from importlib.metadata import version

from dynvars.core.document import DocumentStore
from dynvars.models import BatchResult, ChangeRecord, OperationResult, parse_operation
from dynvars.session import VariableSession
from dynvars.settings import EngineSettings

__version__ = version("dynvars")

__all__ = [
    "__version__",
    "BatchResult",
    "ChangeRecord",
    "DocumentStore",
    "EngineSettings",
    "OperationResult",
    "VariableSession",
    "parse_operation",
]
