"""
Streaming ingestion buffer.

Generated text arrives in chunks. A block becomes actionable only once both
of its markers are in the buffer; until then its content is withheld from
execution, and everything after an open start marker is withheld from the
interim display text. Line commands and calls are only parsed when the
stream finishes, since a line may still be growing.
"""

import logging
from dataclasses import dataclass, field

from dynvars.parsing.parser import CommandParser, ParsedCommand

logger = logging.getLogger(__name__)


@dataclass
class StreamUpdate:
    """What a host should show and run after one delivery."""

    display_text: str
    commands: list[ParsedCommand] = field(default_factory=list)


class StreamBuffer:
    """Buffers streamed text and releases closed blocks as they complete."""

    def __init__(self, parser: CommandParser, apply_blocks: bool = True):
        """
        Initialize the buffer.

        Params:
            parser: Parser providing markers and grammars
            apply_blocks: Release closed blocks while streaming; when False
                every command waits for finish()
        """
        self.parser = parser
        self.apply_blocks = apply_blocks
        self.buffer = ""
        self.finished = False
        self._scan_from = 0
        self._released: list[tuple[int, int]] = []

    def feed(self, chunk: str) -> StreamUpdate:
        """
        Append a chunk of text.

        Returns:
            StreamUpdate with the current display text and the commands of
            blocks that closed with this chunk
        """
        if self.finished:
            raise RuntimeError("stream already finished")
        self.buffer += chunk
        commands: list[ParsedCommand] = []
        if self.apply_blocks:
            for match in self.parser.block_pattern.finditer(self.buffer, self._scan_from):
                commands.extend(self.parser.parse_block(match.group("body")))
                self._released.append((match.start(), match.end()))
                self._scan_from = match.end()
        return StreamUpdate(self.display_text(), commands)

    def finish(self) -> StreamUpdate:
        """
        Flush the buffer at end of stream.

        Everything not released yet is parsed, including an unterminated
        trailing block.
        """
        self.finished = True
        remaining = self._unreleased_text()
        commands = self.parser.parse_commands(remaining, flush=True)
        logger.debug("Stream finished with %d buffered command(s)", len(commands))
        return StreamUpdate(self._visible(self.buffer, partial_marker=False), commands)

    def display_text(self) -> str:
        """Text safe to show while the stream is still running."""
        return self._visible(self.buffer, partial_marker=True)

    def _unreleased_text(self) -> str:
        pieces = []
        position = 0
        for start, end in self._released:
            pieces.append(self.buffer[position:start])
            position = end
        pieces.append(self.buffer[position:])
        return "\n".join(pieces)

    def _visible(self, text: str, partial_marker: bool) -> str:
        marker = self.parser.settings.block_start
        text = self.parser.block_pattern.sub("", text)
        cut = text.find(marker)
        if cut != -1:
            return text[:cut]
        if partial_marker:
            # The start marker may be split across chunks.
            for size in range(min(len(marker) - 1, len(text)), 0, -1):
                if text.endswith(marker[:size]):
                    return text[:-size]
        return text
