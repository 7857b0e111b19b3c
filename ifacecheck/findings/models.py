# Pydantic data models for findings: Finding, Location, Origin.

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class Location(BaseModel):
    """Where in the source a finding was reported (file, line, column)."""

    path: Path
    line: int = Field(..., ge=1, description="1-based line number")
    column: int = Field(..., ge=1, description="1-based column number")
    snippet: Optional[str] = None

    model_config = {"arbitrary_types_allowed": True}


class Origin(BaseModel):
    """The concrete type found behind an interface value, and the package declaring it."""

    type_name: str
    package_path: str

    model_config = {"frozen": True}


class Finding(BaseModel):
    """A single issue reported by a rule (e.g. a leaked interface call at line 42)."""

    rule_id: str
    message: str
    location: Location
    severity: str = Field(default="warning", description="e.g. error, warning, info")
    method: Optional[str] = Field(None, description="Interface method invoked at the call site")
    origin: Optional[Origin] = None

    model_config = {"arbitrary_types_allowed": True}
