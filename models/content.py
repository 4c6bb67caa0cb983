"""
Data models exchanged with the content generator.
"""

from pydantic import BaseModel, Field


class ContentDraft(BaseModel):
    """Rewritten listing copy."""

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)


class VariantBatch(BaseModel):
    """Parallel lists of candidate titles and descriptions for an A/B test."""

    titles: list[str] = Field(default_factory=list)
    descriptions: list[str] = Field(default_factory=list)

    def pairs(self) -> list[tuple[str, str]]:
        """Title/description pairs, truncated to the shorter list."""
        return list(zip(self.titles, self.descriptions))
