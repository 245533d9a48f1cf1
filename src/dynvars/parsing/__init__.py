"""
dynvars command ingestion.

This package recognizes update commands in generated text (JSON blocks,
line commands and legacy calls), groups batch members, and buffers
streamed text until blocks are complete.
"""

from dynvars.parsing.parser import (
    BatchTag,
    CommandGroup,
    CommandParser,
    Grammar,
    ParseDiagnostic,
    ParsedCommand,
    group_commands,
    parse_text,
)
from dynvars.parsing.stream import StreamBuffer, StreamUpdate

__all__ = [
    "BatchTag",
    "CommandGroup",
    "CommandParser",
    "Grammar",
    "ParseDiagnostic",
    "ParsedCommand",
    "StreamBuffer",
    "StreamUpdate",
    "group_commands",
    "parse_text",
]
