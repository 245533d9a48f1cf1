"""
Per-session context object.

A VariableSession is built once per host session and owns every component:
the document store, both evaluators, the schema guard, the executor, the
batch coordinator and the command parser. Hosts (template renderers, UIs)
read through get() and listen through subscribe(); generated text goes in
through process_text() or a stream opened with open_stream().
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from dynvars.core.document import DocumentStore, Source
from dynvars.core.types import DocumentData
from dynvars.execution.batch import BatchCoordinator
from dynvars.execution.conditions import ConditionEvaluator
from dynvars.execution.executor import OperationExecutor
from dynvars.execution.expressions import ExpressionEngine
from dynvars.execution.schema import SchemaGuard
from dynvars.models import BaseOperation, BatchResult, ChangeRecord, OperationResult
from dynvars.parsing.parser import (
    CommandParser,
    ParseDiagnostic,
    ParsedCommand,
    group_commands,
)
from dynvars.parsing.stream import StreamBuffer
from dynvars.settings import EngineSettings

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    """Everything one ingestion step recognized and did."""

    commands: list[ParsedCommand] = field(default_factory=list)
    results: list[OperationResult | BatchResult] = field(default_factory=list)
    diagnostics: list[ParseDiagnostic] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    @property
    def changes(self) -> list[ChangeRecord]:
        changes: list[ChangeRecord] = []
        for result in self.results:
            if isinstance(result, BatchResult):
                if not result.rollback:
                    changes.extend(result.changes)
            elif result.change is not None:
                changes.append(result.change)
        return changes


@dataclass
class StreamProgress:
    """Display text and ingestion report for one stream delivery."""

    display_text: str
    report: IngestionReport


class VariableSession:
    """Wires the dynvars components together for one host session."""

    def __init__(
        self,
        settings: EngineSettings | dict[str, Any] | None = None,
        data: DocumentData | None = None,
    ):
        """
        Initialize the session.

        Params:
            settings: EngineSettings or a plain settings mapping
            data: Optional initial live document
        """
        if not isinstance(settings, EngineSettings):
            settings = EngineSettings.model_validate(settings or {})
        self.settings = settings
        self.settings.apply_logging()

        self.store = DocumentStore(data)
        self.conditions = ConditionEvaluator(self.store)
        self.expressions = ExpressionEngine(
            self.store,
            max_length=settings.max_expression_length,
            max_depth=settings.max_expression_depth,
        )
        self.schema_guard = SchemaGuard(self.store)
        self.executor = OperationExecutor(
            self.store,
            self.conditions,
            self.expressions,
            self.schema_guard,
            schema_validation=settings.schema_validation,
        )
        self.coordinator = BatchCoordinator(self.executor)
        self.parser = CommandParser(settings)

    def update_settings(self, **changes: Any) -> None:
        """Apply setting changes and propagate them to the components."""
        for name, value in changes.items():
            setattr(self.settings, name, value)
        self.settings.apply_logging()
        self.executor.schema_validation = self.settings.schema_validation
        self.expressions.max_length = self.settings.max_expression_length
        self.expressions.max_depth = self.settings.max_expression_depth

    # Read contract

    def get(self, path=None, source: Source | str = Source.STAT, default: Any = None) -> Any:
        """Read a value (see DocumentStore.get)."""
        return self.store.get(path, source=source, default=default)

    def subscribe(self, observer):
        """Register a change observer; returns the unsubscribe callable."""
        return self.store.subscribe(observer)

    # Execution

    def execute(self, operation: BaseOperation | dict[str, Any]) -> OperationResult:
        return self.executor.execute(operation)

    def execute_batch(
        self, operations: list[BaseOperation | dict[str, Any]], atomic: bool = False
    ) -> BatchResult:
        return self.coordinator.execute(operations, atomic=atomic)

    def run_commands(self, commands: list[ParsedCommand]) -> IngestionReport:
        """
        Execute parsed commands group by group.

        Batched groups go through the coordinator with their captured
        atomicity; every other command goes straight to the executor.
        """
        report = IngestionReport(commands=list(commands))
        if not self.settings.enabled or not self.settings.auto_update:
            return report
        for group in group_commands(commands):
            if group.batched:
                report.results.append(self.coordinator.execute(group.operations, atomic=group.atomic))
            else:
                report.results.append(self.executor.execute(group.operations[0]))
        return report

    def process_text(self, text: str) -> IngestionReport:
        """
        Parse a complete piece of generated text and apply its commands.

        Returns:
            IngestionReport with commands, results and new diagnostics
        """
        if not self.settings.enabled:
            return IngestionReport()
        seen = len(self.parser.diagnostics)
        report = self.run_commands(self.parser.parse_commands(text))
        report.diagnostics = self.parser.diagnostics[seen:]
        if report.commands:
            logger.info(
                "Applied %d command(s) with %d change(s)", len(report.commands), len(report.changes)
            )
        return report

    def open_stream(self) -> "StreamingIngestor":
        """Start ingesting a streamed response."""
        return StreamingIngestor(self)

    # Checkpoints

    def export(self) -> dict[str, DocumentData]:
        return self.store.export()

    def import_data(self, snapshot: dict[str, DocumentData]) -> None:
        self.store.import_data(snapshot)

    def clear_delta(self) -> None:
        self.store.clear_delta()


class StreamingIngestor:
    """Feeds a streamed response through a session."""

    def __init__(self, session: VariableSession):
        self.session = session
        self.buffer = StreamBuffer(
            session.parser, apply_blocks=session.settings.update_mode == "streaming"
        )

    def _run(self, commands: list[ParsedCommand], seen: int) -> IngestionReport:
        report = self.session.run_commands(commands)
        report.diagnostics = self.session.parser.diagnostics[seen:]
        return report

    def feed(self, chunk: str) -> StreamProgress:
        """Buffer a chunk and apply any block it completed."""
        seen = len(self.session.parser.diagnostics)
        update = self.buffer.feed(chunk)
        if not self.session.settings.enabled:
            return StreamProgress(update.display_text, IngestionReport())
        return StreamProgress(update.display_text, self._run(update.commands, seen))

    def finish(self) -> StreamProgress:
        """Flush the stream and apply everything still buffered."""
        seen = len(self.session.parser.diagnostics)
        update = self.buffer.finish()
        if not self.session.settings.enabled:
            return StreamProgress(update.display_text, IngestionReport())
        return StreamProgress(update.display_text, self._run(update.commands, seen))
