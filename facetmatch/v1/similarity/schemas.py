"""
Similarity request and response schemas.
"""

from pydantic import BaseModel, Field


class SimilarRequest(BaseModel):
    """Schema for similarity queries."""

    weights: str | dict[str, float] | None = Field(
        default=None, description="Preset id or facet -> weight mapping"
    )
    limit: int = Field(default=10, ge=1, le=100, description="Maximum results")
    threshold: float = Field(
        default=0.0, ge=-1.0, le=1.0, description="Minimum weighted similarity"
    )


class RankedItem(BaseModel):
    item_id: int
    title: str | None = None
    per_facet_similarity: dict[str, float]
    weighted_similarity: float


class SimilarResponse(BaseModel):
    source_item_id: int
    weights: dict[str, float]
    results: list[RankedItem]
