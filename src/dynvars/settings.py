"""
Engine settings for dynvars.

Hosts persist settings in their own key-value store and hand them over as a
plain mapping; EngineSettings validates that mapping and fills in defaults.
"""

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EngineSettings(BaseModel):
    """
    Validated configuration for one variable session.

    Params:
        enabled: Master switch; a disabled session ingests nothing
        auto_update: Apply commands found in generated text automatically
        update_mode: "streaming" applies closed blocks while text arrives,
            "background" applies everything when the stream finishes
        debug_mode: Raise the dynvars logger to DEBUG
        schema_validation: Enforce `$meta` schema constraints
        block_start: Opening marker of a JSON operation block
        block_end: Closing marker of a JSON operation block
        line_prefix: Text every line command must start with ("" for none)
        call_prefix: Receiver prefix of legacy call commands
        atomic_blocks: Run bare JSON arrays as atomic batches
        max_expression_length: Longest calc expression accepted
        max_expression_depth: Deepest parenthesis nesting accepted
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    enabled: bool = True
    auto_update: bool = True
    update_mode: Literal["streaming", "background"] = "streaming"
    debug_mode: bool = False
    schema_validation: bool = False
    block_start: str = Field(default="<VariablePatch>", min_length=1)
    block_end: str = Field(default="</VariablePatch>", min_length=1)
    line_prefix: str = ""
    call_prefix: str = "_."
    atomic_blocks: bool = False
    max_expression_length: int = Field(default=512, gt=0)
    max_expression_depth: int = Field(default=64, gt=0)

    @model_validator(mode="after")
    def _check_markers(self) -> "EngineSettings":
        if self.block_start == self.block_end:
            raise ValueError("block_start and block_end must differ")
        return self

    def apply_logging(self) -> None:
        """Set the package log level according to debug_mode."""
        level = logging.DEBUG if self.debug_mode else logging.NOTSET
        logging.getLogger("dynvars").setLevel(level)
