"""
Weighted multi-facet similarity ranking.
"""

import math
from collections.abc import Mapping

from facetmatch.config.logging import get_logger
from facetmatch.v1.core.exceptions import NotFoundError, ValidationError
from facetmatch.v1.core.vectors import cosine_similarity
from facetmatch.v1.facets.config import DEFAULT_PRESET, FACET_PRESETS, FacetType
from facetmatch.v1.similarity.schemas import RankedItem
from facetmatch.v1.storage.repository import Repository

logger = get_logger(__name__)

Weights = str | Mapping[str, float] | None


def resolve_weights(weights: Weights) -> dict[FacetType, float]:
    """
    Turn a preset id or a facet -> weight mapping into positive facet weights.

    Raises:
        ValidationError: unknown preset or facet, negative or non-finite
            weight, or no positive weight at all
    """
    if weights is None:
        weights = DEFAULT_PRESET

    if isinstance(weights, str):
        preset = FACET_PRESETS.get(weights)
        if preset is None:
            raise ValidationError(
                f"Unknown preset '{weights}'",
                details={"available": sorted(FACET_PRESETS)},
            )
        return {facet: w for facet, w in preset.weights.items() if w > 0}

    resolved: dict[FacetType, float] = {}
    for key, value in weights.items():
        try:
            facet = FacetType(key)
        except ValueError:
            raise ValidationError(
                f"Unknown facet '{key}'",
                details={"available": [f.value for f in FacetType]},
            ) from None
        if not math.isfinite(value) or value < 0:
            raise ValidationError(f"Weight for '{key}' must be a non-negative number")
        if value > 0:
            resolved[facet] = float(value)

    if not resolved:
        raise ValidationError("At least one facet weight must be positive")
    return resolved


class SimilarityRetriever:
    """Ranks stored items against a source item by weighted facet similarity."""

    def __init__(self, repository: Repository, candidate_pool_size: int = 200):
        self.repository = repository
        self.candidate_pool_size = candidate_pool_size

    async def rank(
        self,
        source_item_id: int,
        weights: Weights = None,
        limit: int = 10,
        threshold: float = 0.0,
    ) -> list[RankedItem]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        facet_weights = resolve_weights(weights)

        source = await self.repository.get_embeddings(source_item_id)
        if not source:
            raise NotFoundError(
                f"Item {source_item_id} has no facet embeddings",
                details={"item_id": source_item_id},
            )

        facets = [facet for facet in facet_weights if facet in source]
        if not facets:
            logger.info(
                "Source shares no weighted facet",
                item_id=source_item_id,
                weighted=[f.value for f in facet_weights],
            )
            return []

        # Index-backed stores narrow the field per facet; others are scanned
        pool = self.candidate_pool_size if self.repository.prefilters else None
        candidate_ids: set[int] = set()
        for facet in facets:
            candidate_ids.update(
                await self.repository.nearest_item_ids(
                    facet, source[facet].vector, pool, exclude_item_id=source_item_id
                )
            )
        candidate_ids.discard(source_item_id)

        vectors = await self.repository.get_facet_vectors(sorted(candidate_ids), facets)

        ranked: list[RankedItem] = []
        for item_id, item_vectors in vectors.items():
            if item_id == source_item_id:
                continue
            per_facet = {
                facet: cosine_similarity(source[facet].vector, item_vectors[facet])
                for facet in facets
                if facet in item_vectors
            }
            if not per_facet:
                continue

            # Renormalize over the facets both items carry
            total = sum(facet_weights[facet] for facet in per_facet)
            score = sum(facet_weights[f] * s for f, s in per_facet.items()) / total
            ranked.append(
                RankedItem(
                    item_id=item_id,
                    per_facet_similarity={f.value: s for f, s in per_facet.items()},
                    weighted_similarity=score,
                )
            )

        ranked.sort(key=lambda r: (-r.weighted_similarity, r.item_id))
        results = [r for r in ranked[:limit] if r.weighted_similarity >= threshold]

        logger.info(
            "Similarity ranked",
            item_id=source_item_id,
            candidates=len(vectors),
            returned=len(results),
        )
        return results
