import math

import numpy as np
import pytest

from facetmatch.v1.core.exceptions import NotFoundError, ValidationError
from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.config import FACET_PRESETS, FacetType, SourceType
from facetmatch.v1.similarity.retriever import SimilarityRetriever, resolve_weights

MECH = FacetType.MECHANICS
NARR = FacetType.NARRATIVE


def unit(angle: float) -> list[float]:
    """2-d unit vector at ``angle`` radians from the x axis."""
    return [math.cos(angle), math.sin(angle)]


async def store(repository, item_id: int, **facets: list[float]) -> None:
    await repository.upsert_embeddings(
        [
            FacetEmbedding(
                item_id=item_id,
                facet=FacetType(name),
                vector=vector,
                source_type=SourceType.TEXT,
                model="test",
            )
            for name, vector in facets.items()
        ]
    )


@pytest.fixture
def retriever(repository) -> SimilarityRetriever:
    return SimilarityRetriever(repository)


@pytest.fixture
async def corpus(repository):
    await store(repository, 1, mechanics=unit(0), narrative=unit(0))
    await store(repository, 2, mechanics=unit(0.1), narrative=unit(1.0))
    await store(repository, 3, mechanics=unit(1.0), narrative=unit(0.1))
    await store(repository, 4, mechanics=unit(0.5))
    await store(repository, 5, narrative=unit(0.5))
    return repository


@pytest.mark.asyncio
async def test_rank_excludes_source_and_sorts_descending(corpus, retriever):
    results = await retriever.rank(1, {"mechanics": 1.0, "narrative": 1.0}, limit=10, threshold=-1.0)

    ids = [r.item_id for r in results]
    assert 1 not in ids
    assert set(ids) == {2, 3, 4, 5}
    scores = [r.weighted_similarity for r in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_scores_renormalize_over_shared_facets(corpus, retriever):
    results = await retriever.rank(1, {"mechanics": 3.0, "narrative": 1.0}, threshold=-1.0)
    by_id = {r.item_id: r for r in results}

    expected_two = (3 * math.cos(0.1) + 1 * math.cos(1.0)) / 4
    assert by_id[2].weighted_similarity == pytest.approx(expected_two)
    assert by_id[2].per_facet_similarity == {
        "mechanics": pytest.approx(math.cos(0.1)),
        "narrative": pytest.approx(math.cos(1.0)),
    }
    # Item 4 only has mechanics, so its score is the plain mechanics cosine
    assert by_id[4].weighted_similarity == pytest.approx(math.cos(0.5))
    assert set(by_id[4].per_facet_similarity) == {"mechanics"}


@pytest.mark.asyncio
async def test_zero_weight_facets_are_ignored(corpus, retriever):
    results = await retriever.rank(1, {"mechanics": 1.0, "narrative": 0.0})

    assert {r.item_id for r in results} == {2, 3, 4}
    assert results[0].item_id == 2
    assert all(set(r.per_facet_similarity) == {"mechanics"} for r in results)


@pytest.mark.asyncio
async def test_ties_are_broken_by_item_id(repository, retriever):
    await store(repository, 10, mechanics=unit(0))
    await store(repository, 30, mechanics=unit(0.2))
    await store(repository, 20, mechanics=unit(-0.2))

    results = await retriever.rank(10, {"mechanics": 1.0})

    assert [r.item_id for r in results] == [20, 30]


@pytest.mark.asyncio
async def test_limit_and_threshold(corpus, retriever):
    limited = await retriever.rank(1, {"mechanics": 1.0}, limit=1)
    assert [r.item_id for r in limited] == [2]

    strict = await retriever.rank(1, {"mechanics": 1.0}, threshold=0.9)
    assert [r.item_id for r in strict] == [2]
    assert all(r.weighted_similarity >= 0.9 for r in strict)


@pytest.mark.asyncio
async def test_opposed_vectors_fall_below_default_threshold(repository, retriever):
    await store(repository, 1, mechanics=[1.0, 0.0])
    await store(repository, 2, mechanics=[-1.0, 0.0])

    assert await retriever.rank(1, {"mechanics": 1.0}) == []
    [opposed] = await retriever.rank(1, {"mechanics": 1.0}, threshold=-1.0)
    assert opposed.weighted_similarity == pytest.approx(-1.0)


@pytest.mark.asyncio
async def test_source_without_weighted_facets_returns_nothing(corpus, retriever):
    assert await retriever.rank(4, {"narrative": 1.0}) == []


@pytest.mark.asyncio
async def test_unknown_source_is_not_found(corpus, retriever):
    with pytest.raises(NotFoundError):
        await retriever.rank(404)


@pytest.mark.asyncio
async def test_invalid_limit(corpus, retriever):
    with pytest.raises(ValidationError):
        await retriever.rank(1, limit=0)


@pytest.mark.asyncio
async def test_ingested_items_rank_by_shared_tags(services):
    for ref in ("620", "400", "105600"):
        assert (await services.orchestrator.ingest(ref)).ok

    results = await services.retriever.rank(620, "gameplay", threshold=-1.0)

    # Portal shares Portal 2's tags exactly; Terraria does not
    assert [r.item_id for r in results] == [400, 105600]
    assert results[0].per_facet_similarity["mechanics"] == pytest.approx(1.0)
    for ranked in results:
        assert -1.0 <= ranked.weighted_similarity <= 1.0 + 1e-9


def test_resolve_weights_default_and_presets():
    assert resolve_weights(None) == resolve_weights("balanced")
    assert resolve_weights("gameplay") == FACET_PRESETS["gameplay"].weights
    assert resolve_weights({"mechanics": 2, "dynamics": 0}) == {MECH: 2.0}


@pytest.mark.parametrize(
    "weights",
    [
        "nonexistent",
        {"graphics": 1.0},
        {"mechanics": -0.5},
        {"mechanics": float("nan")},
        {"mechanics": float("inf")},
        {"mechanics": 0.0, "narrative": 0.0},
        {},
    ],
)
def test_resolve_weights_rejects(weights):
    with pytest.raises(ValidationError):
        resolve_weights(weights)


def test_unit_helper_is_normalized():
    assert np.linalg.norm(unit(0.7)) == pytest.approx(1.0)
