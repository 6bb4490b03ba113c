"""
Draft data models.

Source material a script is written from.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ReferenceText(BaseModel):
    """User-provided reference material attached to a draft."""

    id: str
    title: str = ""
    content: str
    source: Optional[str] = None


class Draft(BaseModel):
    """Written story the scenes are derived from."""

    id: str
    user_id: str
    title: str = ""
    content: str
    category: str = ""
    reference_text_ids: List[str] = Field(default_factory=list)
