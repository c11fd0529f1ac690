"""
List Models

Resolved list contents and the list summaries served to the UI.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from pydantic import BaseModel, Field


@dataclass
class ResolvedList:
    """Normalized entries of one list for one action run."""
    name: str
    entries: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class ListInfo(BaseModel):
    """Summary of a list as shown by GET /api/lists."""
    name: str
    type: str = Field(description="inline, file or url")
    url: Optional[str] = None
    file: Optional[str] = None
    entries: Optional[List[str]] = None


class SaveListRequest(BaseModel):
    entries: List[str] = Field(default_factory=list)


class CreateListRequest(BaseModel):
    name: str = ""
    url: str = ""
