"""
Canonical operation model for dynvars.

Every input grammar converges on the operation types defined here. The wire
format is a JSON object whose "op" field selects the kind; `from` and `if`
are accepted under their wire names through field aliases.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from attrs import frozen
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class OperationKind(Enum):
    """Discriminant values of the canonical operations."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"
    INCREMENT = "increment"
    CALC = "calc"
    MODIFY = "modify"


class ModifyAction(Enum):
    """Actions accepted by the modify operation."""

    APPEND = "append"
    PREPEND = "prepend"
    INSERT = "insert"
    MERGE = "merge"


COMPARATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "nin", "match", "exists")


class BaseOperation(BaseModel):
    """Fields shared by every operation kind."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str
    if_: dict[str, Any] | None = Field(default=None, alias="if")
    reason: str | None = None

    @property
    def kind(self) -> OperationKind:
        return OperationKind(self.op)

    def to_wire(self) -> dict[str, Any]:
        """Dump the operation with wire field names, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_unset=True) | {"op": self.op}

    def __str__(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, default=str)


class AddOperation(BaseOperation):
    op: Literal["add"] = "add"
    value: Any = None


class RemoveOperation(BaseOperation):
    """
    Remove the value at path.

    When key is given, path names a container instead: a mapping loses that
    key, and a sequence loses the element at that index or, for a
    non-numeric key, the first element equal to it.
    """

    op: Literal["remove"] = "remove"
    key: str | int | None = None


class ReplaceOperation(BaseOperation):
    op: Literal["replace"] = "replace"
    value: Any = None


class MoveOperation(BaseOperation):
    op: Literal["move"] = "move"
    from_: str = Field(alias="from")


class CopyOperation(BaseOperation):
    op: Literal["copy"] = "copy"
    from_: str = Field(alias="from")


class TestOperation(BaseOperation):
    """
    Assertion against the current document.

    With a literal `value` the current value must be deeply equal to it;
    otherwise the comparator fields are evaluated as a condition leaf.
    """

    __test__ = False

    op: Literal["test"] = "test"
    value: Any = None
    eq: Any = None
    neq: Any = None
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None
    in_: Any = Field(default=None, alias="in")
    nin: Any = None
    match: str | None = None
    exists: bool | None = None

    @property
    def has_literal_value(self) -> bool:
        return "value" in self.model_fields_set

    def as_condition(self) -> dict[str, Any]:
        """Build the condition leaf formed by this operation's comparators."""
        wire = self.model_dump(by_alias=True, exclude_unset=True)
        condition: dict[str, Any] = {"path": self.path}
        for comparator in COMPARATORS:
            if comparator in wire:
                condition[comparator] = wire[comparator]
        return condition


class IncrementOperation(BaseOperation):
    op: Literal["increment"] = "increment"
    delta: int | float


class CalcOperation(BaseOperation):
    op: Literal["calc"] = "calc"
    expr: str


class ModifyOperation(BaseOperation):
    op: Literal["modify"] = "modify"
    action: ModifyAction
    value: Any = None
    index: int | None = None

    def to_wire(self) -> dict[str, Any]:
        return super().to_wire() | {"action": self.action.value}


Operation = Annotated[
    Union[
        AddOperation,
        RemoveOperation,
        ReplaceOperation,
        MoveOperation,
        CopyOperation,
        TestOperation,
        IncrementOperation,
        CalcOperation,
        ModifyOperation,
    ],
    Field(discriminator="op"),
]

_operation_adapter = TypeAdapter(Operation)


def parse_operation(data: Any) -> BaseOperation:
    """
    Validate one wire-format operation.

    Params:
        data: Mapping in the canonical wire format, or an operation model

    Returns:
        The matching operation model

    Raises:
        pydantic.ValidationError: If the mapping is not a valid operation
    """
    if isinstance(data, BaseOperation):
        return data
    return _operation_adapter.validate_python(data)


@frozen
class ChangeRecord:
    """Audit entry for one successful mutation."""

    path: str
    old_value: Any
    new_value: Any
    reason: str = ""

    @property
    def display_text(self) -> str:
        """Human-readable annotation stored in the display projections."""
        text = f"{format_value(self.old_value)} → {format_value(self.new_value)}"
        if self.reason:
            text += f" ({self.reason})"
        return text


def format_value(value: Any) -> str:
    """Render a document value for change annotations."""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return json.dumps(value, ensure_ascii=False, default=str)


@dataclass
class OperationResult:
    """Outcome of executing one operation."""

    success: bool
    error: str | None = None
    skipped: bool = False
    change: ChangeRecord | None = None


@dataclass
class BatchError:
    """A failed operation inside a batch."""

    index: int
    operation: BaseOperation | None
    error: str


@dataclass
class BatchResult:
    """Outcome of executing a batch of operations."""

    success: bool
    results: list[OperationResult] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    rollback: bool = False

    @property
    def changes(self) -> list[ChangeRecord]:
        return [result.change for result in self.results if result.change is not None]
