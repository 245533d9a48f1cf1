"""
Command ingestion for dynvars.

Generated text can carry variable updates in three independent surfaces:

(a) Blocks: a JSON array or object of canonical operations between the
    configured block markers, e.g.

        <VariablePatch>[{"op": "increment", "path": "hp", "delta": -30}]</VariablePatch>

(b) Line commands, one per line: `<verb> <path> <args...>` with the verbs
    set, add, push, insert, remove, move, copy, calc, modify and test.

(c) Legacy calls: `_.set('hp', 100, 70, 'hit')`, `_.batch([...], {...})`
    and friends, with quoted, numeric or JSON literal arguments.

All block matches come first, then all line commands, then all calls,
whatever their position in the text. Within one surface, commands keep
their textual order. Malformed input is dropped with a diagnostic.
"""

import itertools
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from dynvars.core.path_utils import PathResolver
from dynvars.core.types import APPEND, AppendMarker
from dynvars.exceptions import CommandParseError
from dynvars.models import (
    AddOperation,
    BaseOperation,
    CalcOperation,
    CopyOperation,
    IncrementOperation,
    ModifyOperation,
    MoveOperation,
    RemoveOperation,
    ReplaceOperation,
    TestOperation,
    parse_operation,
)
from dynvars.parsing.utils import (
    find_closing,
    is_numeric_literal,
    parse_literal,
    split_arguments,
    split_words,
)
from dynvars.settings import EngineSettings

logger = logging.getLogger(__name__)


class Grammar(Enum):
    """Surface a command was recognized in."""

    BLOCK = "block"
    LINE = "line"
    CALL = "call"


@dataclass(frozen=True)
class BatchTag:
    """Marks commands that must run together as one batch."""

    group_id: int
    atomic: bool = False


@dataclass
class ParsedCommand:
    """
    One canonical operation recognized in text.

    Params:
        operation: The canonical operation
        grammar: Surface it came from
        batch: Batch membership, if the operation belongs to a batch
        source: Text of the command it was produced from
    """

    operation: BaseOperation
    grammar: Grammar
    batch: BatchTag | None = None
    source: str = ""


@dataclass
class ParseDiagnostic:
    """Input that was recognized but dropped."""

    grammar: Grammar
    text: str
    message: str

    def __str__(self) -> str:
        return f"[{self.grammar.value}] {self.message}: {self.text}"


@dataclass
class CommandGroup:
    """A run of commands executed by one executor or coordinator call."""

    commands: list[ParsedCommand] = field(default_factory=list)
    batched: bool = False
    atomic: bool = False

    @property
    def operations(self) -> list[BaseOperation]:
        return [command.operation for command in self.commands]


def group_commands(commands: list[ParsedCommand]) -> list[CommandGroup]:
    """
    Fold consecutive commands sharing a batch tag into one group.

    Untagged commands each form their own single-operation group.
    """
    groups: list[CommandGroup] = []
    current_id: int | None = None
    for command in commands:
        tag = command.batch
        if tag is not None and tag.group_id == current_id:
            groups[-1].commands.append(command)
            continue
        groups.append(
            CommandGroup(
                commands=[command],
                batched=tag is not None,
                atomic=tag.atomic if tag else False,
            )
        )
        current_id = tag.group_id if tag else None
    return groups


COMPARATOR_ALIASES = {
    "==": "eq",
    "!=": "neq",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}
TEST_COMPARATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "in", "nin", "match", "exists"}

_FENCE_PATTERN = re.compile(r"^```[\w-]*\s*\n?(?P<body>.*?)\n?```$", re.DOTALL)


def _append_path(path: str) -> str:
    return PathResolver.join(path, APPEND)


def _is_indexed(path: str) -> bool:
    segments = PathResolver.parse(path)
    return bool(segments) and isinstance(segments[-1], (int, AppendMarker))


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _child_segment(key: Any) -> int | list[str]:
    """A call argument naming a child: an index stays an index, anything else is a literal key."""
    if _is_index(key):
        return key
    if isinstance(key, str):
        return [key]
    raise CommandParseError("key must be a string or an index")


def _addition(path: str, value: Any, reason: str | None = None) -> BaseOperation:
    """Build `add`: a number on a plain key increments, anything else adds."""
    if is_numeric_literal(value) and not _is_indexed(path):
        return IncrementOperation(path=path, delta=value, reason=reason)
    return AddOperation(path=path, value=value, reason=reason)


def _checked_replace(path: str, expected: Any, value: Any, reason: str | None = None) -> list[BaseOperation]:
    return [
        TestOperation(path=path, value=expected),
        ReplaceOperation(path=path, value=value, reason=reason),
    ]


class CommandParser:
    """Recognizes update commands in generated text."""

    LINE_VERBS = ("set", "add", "push", "insert", "remove", "move", "copy", "calc", "modify", "test")
    CALL_METHODS = ("set", "add", "assign", "push", "insert", "remove", "move", "copy", "calc", "modify", "op", "batch")

    def __init__(self, settings: EngineSettings | None = None):
        """
        Initialize the parser.

        Params:
            settings: Engine settings providing markers and prefixes
        """
        self.settings = settings or EngineSettings()
        self.diagnostics: list[ParseDiagnostic] = []
        self._group_ids = itertools.count(1)

    # Patterns depend on settings, so they are built on use

    @property
    def block_pattern(self) -> re.Pattern:
        return re.compile(
            re.escape(self.settings.block_start) + r"(?P<body>.*?)" + re.escape(self.settings.block_end),
            re.DOTALL,
        )

    @property
    def line_pattern(self) -> re.Pattern:
        verbs = "|".join(self.LINE_VERBS)
        return re.compile(
            r"^\s*" + re.escape(self.settings.line_prefix) + r"\s*(?P<verb>" + verbs + r")\s+(?P<rest>\S.*?)\s*$"
        )

    @property
    def call_pattern(self) -> re.Pattern:
        methods = "|".join(self.CALL_METHODS)
        return re.compile(re.escape(self.settings.call_prefix) + r"(?P<method>" + methods + r")\s*\(")

    def _new_tag(self, atomic: bool) -> BatchTag:
        return BatchTag(next(self._group_ids), atomic)

    def _diagnose(self, grammar: Grammar, text: str, message: str) -> None:
        diagnostic = ParseDiagnostic(grammar, text.strip(), message)
        self.diagnostics.append(diagnostic)
        logger.warning("Dropped update command %s", diagnostic)

    def _commands(
        self, operations: list[BaseOperation], grammar: Grammar, source: str, tag: BatchTag | None = None
    ) -> list[ParsedCommand]:
        if tag is None and len(operations) > 1:
            # Expansions only make sense together.
            tag = self._new_tag(atomic=True)
        return [ParsedCommand(operation, grammar, tag, source) for operation in operations]

    # Entry points

    def parse(self, text: str) -> list[BaseOperation]:
        """
        Parse text into canonical operations in execution order.

        Params:
            text: Complete generated text

        Returns:
            Operations ordered blocks first, then line commands, then calls
        """
        return [command.operation for command in self.parse_commands(text)]

    def parse_commands(self, text: str, flush: bool = True) -> list[ParsedCommand]:
        """
        Parse text into commands carrying grammar and batch information.

        Params:
            text: Generated text
            flush: Treat an unterminated block as running to the end of text

        Returns:
            Parsed commands, grammar-major
        """
        if not text:
            return []
        bodies, remainder = self.extract_blocks(text, flush=flush)
        commands: list[ParsedCommand] = []
        for body in bodies:
            commands.extend(self.parse_block(body))
        commands.extend(self.parse_lines(remainder))
        commands.extend(self.parse_calls(remainder))
        logger.debug("Parsed %d command(s) from %d characters", len(commands), len(text))
        return commands

    def extract_blocks(self, text: str, flush: bool = True) -> tuple[list[str], str]:
        """
        Cut delimited blocks out of text.

        Params:
            text: Generated text
            flush: Also take an unterminated trailing block

        Returns:
            Tuple of (block bodies, text with the blocks removed)
        """
        bodies: list[str] = []
        pieces: list[str] = []
        position = 0
        for match in self.block_pattern.finditer(text):
            pieces.append(text[position : match.start()])
            bodies.append(match.group("body"))
            position = match.end()
        tail = text[position:]
        start = tail.find(self.settings.block_start)
        if start != -1:
            pieces.append(tail[:start])
            if flush:
                bodies.append(tail[start + len(self.settings.block_start) :])
        else:
            pieces.append(tail)
        return bodies, "\n".join(pieces)

    # (a) JSON blocks

    def parse_block(self, body: str) -> list[ParsedCommand]:
        """Parse the JSON body of one block."""
        content = body.strip()
        fenced = _FENCE_PATTERN.match(content)
        if fenced:
            content = fenced.group("body").strip()
        if not content:
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            self._diagnose(Grammar.BLOCK, content, f"malformed JSON ({e.msg})")
            return []

        if isinstance(data, dict) and "op" in data:
            return self._block_operations([data], content, None)
        if isinstance(data, dict) and isinstance(data.get("operations"), list):
            tag = self._new_tag(bool(data.get("atomic", False)))
            return self._block_operations(data["operations"], content, tag)
        if isinstance(data, list):
            tag = self._new_tag(self.settings.atomic_blocks)
            return self._block_operations(data, content, tag)
        self._diagnose(Grammar.BLOCK, content, "expected an operation, a list of operations or an operations object")
        return []

    def _block_operations(self, items: list[Any], source: str, tag: BatchTag | None) -> list[ParsedCommand]:
        operations: list[BaseOperation] = []
        for index, item in enumerate(items):
            try:
                operations.append(parse_operation(item))
            except ValidationError as e:
                self._diagnose(Grammar.BLOCK, json.dumps(item, ensure_ascii=False, default=str), f"invalid operation #{index} ({e.error_count()} error(s))")
                if tag is not None and tag.atomic:
                    # Dropping one member would change what the batch means.
                    self._diagnose(Grammar.BLOCK, source, "atomic batch dropped")
                    return []
        return [ParsedCommand(operation, Grammar.BLOCK, tag, source) for operation in operations]

    # (b) Line commands

    def parse_lines(self, text: str) -> list[ParsedCommand]:
        """Parse every line command in text."""
        commands: list[ParsedCommand] = []
        pattern = self.line_pattern
        for line in text.splitlines():
            match = pattern.match(line)
            if not match:
                continue
            try:
                operations = self._parse_line(match.group("verb"), match.group("rest"))
            except (CommandParseError, ValidationError) as e:
                self._diagnose(Grammar.LINE, line, str(e).splitlines()[0])
                continue
            commands.extend(self._commands(operations, Grammar.LINE, line.strip()))
        return commands

    def _parse_line(self, verb: str, rest: str) -> list[BaseOperation]:
        if verb == "calc":
            return [self._line_calc(rest)]

        words, comment = split_words(rest)
        if not words:
            raise CommandParseError(f"{verb} needs a path")
        if len(words) > 1 and words[1] in ("=", "to"):
            words = [words[0]] + words[2:]
        path, *args = words
        values = [parse_literal(arg) for arg in args]

        if verb == "set":
            if len(values) == 1:
                return [ReplaceOperation(path=path, value=values[0], reason=comment)]
            if len(values) == 3 and args[1] == "expect":
                return _checked_replace(path, values[2], values[0], comment)
            raise CommandParseError("set takes '<path> <value> [expect <old>]'")
        if verb == "add":
            self._arity(verb, values, 1)
            return [_addition(path, values[0], comment)]
        if verb == "push":
            self._arity(verb, values, 1)
            return [AddOperation(path=_append_path(path), value=values[0], reason=comment)]
        if verb == "insert":
            self._arity(verb, values, 2)
            return [ModifyOperation(path=path, action="insert", index=values[0], value=values[1], reason=comment)]
        if verb == "remove":
            self._arity(verb, values, 0)
            return [RemoveOperation(path=path, reason=comment)]
        if verb in ("move", "copy"):
            self._arity(verb, values, 1)
            model = MoveOperation if verb == "move" else CopyOperation
            return [model(from_=path, path=str(values[0]), reason=comment)]
        if verb == "modify":
            return [self._modify(path, values, comment)]
        return [self._line_test(path, args, values)]

    @staticmethod
    def _arity(verb: str, values: list[Any], expected: int) -> None:
        if len(values) != expected:
            raise CommandParseError(f"{verb} takes {expected} argument(s) after the path, got {len(values)}")

    def _line_calc(self, rest: str) -> CalcOperation:
        parts = rest.split(None, 1)
        if len(parts) != 2:
            raise CommandParseError("calc takes '<path> <expression>'")
        path, expression = parts
        expression = expression.strip()
        if expression.startswith("="):
            expression = expression[1:].strip()
        return CalcOperation(path=path, expr=expression)

    def _modify(self, path: str, values: list[Any], reason: str | None) -> ModifyOperation:
        if not values:
            raise CommandParseError("modify takes '<path> <action> [<index>] <value>'")
        action, *rest = values
        if action == "insert":
            if len(rest) != 2:
                raise CommandParseError("modify insert takes '<index> <value>'")
            index, value = rest
            return ModifyOperation(path=path, action=action, index=index, value=value, reason=reason)
        if len(rest) != 1:
            raise CommandParseError(f"modify {action} takes one value")
        return ModifyOperation(path=path, action=action, value=rest[0], reason=reason)

    def _line_test(self, path: str, args: list[str], values: list[Any]) -> TestOperation:
        if not values:
            return TestOperation(path=path)
        comparator = COMPARATOR_ALIASES.get(args[0], args[0])
        if comparator == "exists" and len(values) == 1:
            return TestOperation(path=path, exists=True)
        if comparator in TEST_COMPARATORS and len(values) == 2:
            return TestOperation.model_validate({"path": path, comparator: values[1]})
        if len(values) == 1:
            return TestOperation(path=path, value=values[0])
        raise CommandParseError("test takes '<path> [<comparator>] <value>'")

    # (c) Legacy calls

    def parse_calls(self, text: str) -> list[ParsedCommand]:
        """Parse every legacy call in text."""
        commands: list[ParsedCommand] = []
        position = 0
        pattern = self.call_pattern
        while True:
            match = pattern.search(text, position)
            if not match:
                break
            open_index = match.end() - 1
            close_index = find_closing(text, open_index)
            if close_index == -1:
                self._diagnose(Grammar.CALL, text[match.start() : match.start() + 80], "unterminated call")
                position = match.end()
                continue
            source = text[match.start() : close_index + 1]
            position = close_index + 1
            try:
                arguments = [parse_literal(arg) for arg in split_arguments(text[open_index + 1 : close_index])]
                commands.extend(self._parse_call(match.group("method"), arguments, source))
            except (CommandParseError, ValidationError) as e:
                self._diagnose(Grammar.CALL, source, str(e).splitlines()[0])
        return commands

    def _parse_call(self, method: str, args: list[Any], source: str) -> list[ParsedCommand]:
        if method == "batch":
            return self._call_batch(args, source)
        if method == "op":
            if len(args) != 1:
                raise CommandParseError("op takes one operation object")
            return self._commands([parse_operation(args[0])], Grammar.CALL, source)

        if not args:
            raise CommandParseError(f"{method} needs a path")
        path = str(args[0])
        values = args[1:]
        if method == "set":
            if len(values) == 1:
                operations = [ReplaceOperation(path=path, value=values[0])]
            elif len(values) in (2, 3):
                reason = str(values[2]) if len(values) == 3 else None
                operations = _checked_replace(path, values[0], values[1], reason)
            else:
                raise CommandParseError("set takes (path, value), (path, old, new) or (path, old, new, reason)")
        elif method == "add":
            if len(values) not in (1, 2):
                raise CommandParseError("add takes (path, value[, reason])")
            operations = [_addition(path, values[0], str(values[1]) if len(values) == 2 else None)]
        elif method == "push":
            self._arity(method, values, 1)
            operations = [AddOperation(path=_append_path(path), value=values[0])]
        elif method == "insert":
            self._arity(method, values, 2)
            operations = [ModifyOperation(path=path, action="insert", index=values[0], value=values[1])]
        elif method == "assign":
            if len(values) == 1:
                operations = [AddOperation(path=_append_path(path), value=values[0])]
            elif len(values) == 2:
                key, value = values
                operations = [AddOperation(path=PathResolver.join(path, _child_segment(key)), value=value)]
            else:
                raise CommandParseError("assign takes (path, value) or (path, key_or_index, value)")
        elif method == "remove":
            if len(values) > 1:
                raise CommandParseError("remove takes (path[, key_or_index])")
            if not values:
                operations = [RemoveOperation(path=path)]
            elif _is_index(values[0]):
                operations = [RemoveOperation(path=PathResolver.join(path, values[0]))]
            elif isinstance(values[0], str):
                # A mapping key or a sequence element, decided when it runs.
                operations = [RemoveOperation(path=path, key=values[0])]
            else:
                raise CommandParseError("remove key must be a string or an index")
        elif method in ("move", "copy"):
            self._arity(method, values, 1)
            model = MoveOperation if method == "move" else CopyOperation
            operations = [model(from_=path, path=str(values[0]))]
        elif method == "calc":
            self._arity(method, values, 1)
            operations = [CalcOperation(path=path, expr=str(values[0]))]
        else:
            if len(values) not in (2, 3):
                raise CommandParseError("modify takes (path, action, value[, index])")
            action, value, *index = values
            operations = [ModifyOperation(path=path, action=action, value=value, index=index[0] if index else None)]
        return self._commands(operations, Grammar.CALL, source)

    def _call_batch(self, args: list[Any], source: str) -> list[ParsedCommand]:
        if not args or not isinstance(args[0], list):
            raise CommandParseError("batch takes a list of operations")
        options = args[1] if len(args) > 1 else {}
        if not isinstance(options, dict):
            raise CommandParseError("batch options must be an object")
        operations = [parse_operation(item) for item in args[0]]
        tag = self._new_tag(bool(options.get("atomic", False)))
        return self._commands(operations, Grammar.CALL, source, tag)


def parse_text(text: str, settings: EngineSettings | None = None) -> list[BaseOperation]:
    """
    Convenience function to parse generated text.

    Params:
        text: Generated text
        settings: Optional settings for markers and prefixes

    Returns:
        Canonical operations in execution order
    """
    return CommandParser(settings).parse(text)
