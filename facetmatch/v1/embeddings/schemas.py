from typing import Any

from pydantic import BaseModel, Field

from facetmatch.v1.facets.config import FacetType, SourceType


class FacetEmbedding(BaseModel):
    """One unit-norm vector for one facet of one item, with provenance."""

    item_id: int
    facet: FacetType
    vector: list[float]
    source_type: SourceType
    provenance: dict[str, Any] = Field(default_factory=dict)
    model: str
    version: int = 1
