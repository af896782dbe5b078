"""
Tool model and quarantine resolution variants.

This module defines the Tool model (a trackable instrument in a facility's
roster) and the two variants the quarantine engine produces when it
resolves a tool id referenced by a cycle:

- ResolvedTool: the id was found in the roster
- PlaceholderTool: the id was not in the roster; the tool is inferred

Cycles reference tools by id, and a missing roster entry must never drop a
tool from the quarantine set. Keeping the two cases as distinct types lets
compliance reports tell confidently-known tools from inferred ones.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator

from .bi_test_result import ensure_aware

# Category reported for tools with no category and for placeholders
UNKNOWN_CATEGORY = "Unknown"


class Tool(BaseModel):
    """
    Trackable instrument.

    cycle_count counts completed sterilizations; max_cycles, when set, is
    the manufacturer's limit before the tool must be retired.
    """

    id: str
    facility_id: str
    name: str
    barcode: str = ""
    category: Optional[str] = None
    cycle_count: int = Field(default=0, ge=0)
    max_cycles: Optional[int] = Field(default=None, gt=0)
    status: str = "available"
    last_sterilized: Optional[datetime] = None

    @field_validator("last_sterilized")
    @classmethod
    def validate_last_sterilized(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)


class ResolvedTool(BaseModel):
    """Affected tool found in the facility's roster."""

    kind: Literal["resolved"] = "resolved"
    tool: Tool

    @property
    def id(self) -> str:
        return self.tool.id

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def category(self) -> str:
        return self.tool.category or UNKNOWN_CATEGORY

    @property
    def is_placeholder(self) -> bool:
        return False


class PlaceholderTool(BaseModel):
    """Affected tool referenced by a cycle but missing from the roster."""

    kind: Literal["placeholder"] = "placeholder"
    tool_id: str

    @property
    def id(self) -> str:
        return self.tool_id

    @property
    def name(self) -> str:
        return f"Tool {self.tool_id}"

    @property
    def category(self) -> str:
        return UNKNOWN_CATEGORY

    @property
    def is_placeholder(self) -> bool:
        return True


# Discriminated on "kind" so serialized quarantine data round-trips
AffectedTool = Annotated[Union[ResolvedTool, PlaceholderTool], Field(discriminator="kind")]
