"""
Similarity and facet preset endpoints.
"""

from typing import Any

from fastapi import APIRouter, Request

from facetmatch.infra.services import Services, ServicesDep
from facetmatch.v1.core.exceptions import create_success_response
from facetmatch.v1.facets.config import DEFAULT_PRESET, FACET_PRESETS
from facetmatch.v1.facets.schemas import FacetPresetResponse
from facetmatch.v1.similarity.retriever import resolve_weights
from facetmatch.v1.similarity.schemas import SimilarRequest, SimilarResponse

router = APIRouter()


@router.post("/items/{item_id}/similar", response_model=dict)
async def similar_items(
    item_id: int,
    query: SimilarRequest,
    request: Request,
    services: Services = ServicesDep,
) -> dict[str, Any]:
    """Rank stored items by weighted facet similarity to ``item_id``."""
    results = await services.retriever.rank(
        item_id, query.weights, limit=query.limit, threshold=query.threshold
    )

    # Titles are display sugar; items without stored metadata keep None
    for ranked in results:
        item = await services.repository.get_item(ranked.item_id)
        if item is not None:
            ranked.title = item.title

    response = SimilarResponse(
        source_item_id=item_id,
        weights={f.value: w for f, w in resolve_weights(query.weights).items()},
        results=results,
    )
    return create_success_response(
        data=response.model_dump(mode="json"),
        request_id=getattr(request.state, "request_id", None),
    )


@router.get("/facets/presets", response_model=dict)
async def list_presets(request: Request) -> dict[str, Any]:
    """List the built-in weight presets."""
    presets = [
        FacetPresetResponse(
            id=preset.id,
            label=preset.label,
            description=preset.description,
            weights={facet.value: w for facet, w in preset.weights.items()},
        ).model_dump()
        for preset in FACET_PRESETS.values()
    ]
    return create_success_response(
        data={"default": DEFAULT_PRESET, "presets": presets},
        request_id=getattr(request.state, "request_id", None),
    )
