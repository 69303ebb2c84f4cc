"""
Pydantic schema for registry entries.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AddrDbEntry(BaseModel):
    """User-facing metadata stored for one known sensor address."""
    label: Optional[str] = Field(None, max_length=100, description="Human-readable sensor label")

    @field_validator('label')
    @classmethod
    def blank_label_is_none(cls, v):
        """Treat an empty or whitespace label as no label."""
        if v is None:
            return None
        v = v.strip()
        return v or None
