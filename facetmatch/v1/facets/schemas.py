from typing import Any

from pydantic import BaseModel, Field

from facetmatch.v1.facets.config import ExtractionStrategy, FacetType


class FacetDocument(BaseModel):
    """Natural-language description chosen for one facet of one item."""

    facet: FacetType
    text: str = ""
    strategy: ExtractionStrategy = ExtractionStrategy.NONE
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class FacetPresetResponse(BaseModel):
    id: str
    label: str
    description: str
    weights: dict[str, float]
