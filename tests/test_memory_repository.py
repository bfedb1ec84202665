import numpy as np
import pytest

from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.config import FacetType, SourceType
from facetmatch.v1.storage.models import JobStatus


def unit(*components: float) -> list[float]:
    vector = np.array(components, dtype=float)
    return (vector / np.linalg.norm(vector)).tolist()


def embedding(item_id: int, facet: FacetType, vector: list[float], model: str = "m1") -> FacetEmbedding:
    return FacetEmbedding(
        item_id=item_id,
        facet=facet,
        vector=vector,
        source_type=SourceType.TEXT,
        model=model,
    )


@pytest.mark.asyncio
async def test_upsert_keeps_one_embedding_per_item_and_facet(repository):
    await repository.upsert_embeddings([embedding(1, FacetType.MECHANICS, unit(1, 0), "old")])
    await repository.upsert_embeddings(
        [
            embedding(1, FacetType.MECHANICS, unit(0, 1), "new"),
            embedding(1, FacetType.NARRATIVE, unit(1, 1)),
        ]
    )

    stored = await repository.get_embeddings(1)

    assert set(stored) == {FacetType.MECHANICS, FacetType.NARRATIVE}
    assert stored[FacetType.MECHANICS].model == "new"
    assert stored[FacetType.MECHANICS].vector == unit(0, 1)


@pytest.mark.asyncio
async def test_upsert_item_overwrites_metadata(repository, item_factory):
    await repository.upsert_item(item_factory(7, "Old Title"))
    await repository.upsert_item(item_factory(7, "New Title"))

    item = await repository.get_item(7)

    assert item.title == "New Title"
    assert await repository.get_item(8) is None


@pytest.mark.asyncio
async def test_nearest_orders_by_similarity_and_excludes_source(repository):
    await repository.upsert_embeddings(
        [
            embedding(1, FacetType.MECHANICS, unit(1, 0)),
            embedding(2, FacetType.MECHANICS, unit(1, 0.1)),
            embedding(3, FacetType.MECHANICS, unit(0, 1)),
            embedding(4, FacetType.MECHANICS, unit(1, 0.1)),
            embedding(5, FacetType.NARRATIVE, unit(1, 0)),
        ]
    )

    ids = await repository.nearest_item_ids(
        FacetType.MECHANICS, unit(1, 0), limit=None, exclude_item_id=1
    )

    # Equal scores are ordered by item id; other facets are ignored
    assert ids == [2, 4, 3]
    assert await repository.nearest_item_ids(FacetType.MECHANICS, unit(1, 0), limit=1) == [1]


@pytest.mark.asyncio
async def test_get_facet_vectors_filters_items_and_facets(repository):
    await repository.upsert_embeddings(
        [
            embedding(1, FacetType.MECHANICS, unit(1, 0)),
            embedding(1, FacetType.NARRATIVE, unit(0, 1)),
            embedding(2, FacetType.MECHANICS, unit(1, 1)),
            embedding(3, FacetType.MECHANICS, unit(1, 1)),
        ]
    )

    vectors = await repository.get_facet_vectors([1, 2, 99], [FacetType.MECHANICS])

    assert vectors == {1: {FacetType.MECHANICS: unit(1, 0)}, 2: {FacetType.MECHANICS: unit(1, 1)}}


@pytest.mark.asyncio
async def test_only_one_active_job_per_source(repository):
    first, created = await repository.create_job_or_get_active("620", JobStatus.RUNNING)
    again, created_again = await repository.create_job_or_get_active("620", JobStatus.QUEUED)
    other, created_other = await repository.create_job_or_get_active("400", JobStatus.QUEUED)

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert created_other is True
    assert other.status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_finished_job_frees_the_source(repository):
    first, _ = await repository.create_job_or_get_active("620", JobStatus.RUNNING)
    assert await repository.transition_job(first.id, JobStatus.SUCCEEDED, item_id=620)

    second, created = await repository.create_job_or_get_active("620", JobStatus.RUNNING)

    assert created is True
    assert second.id != first.id
    latest = await repository.latest_job("620")
    assert latest.id == second.id


@pytest.mark.asyncio
async def test_transitions_only_move_forward(repository):
    job, _ = await repository.create_job_or_get_active("620", JobStatus.QUEUED)

    assert await repository.transition_job(job.id, JobStatus.SUCCEEDED) is False
    assert await repository.transition_job(job.id, JobStatus.RUNNING) is True
    assert await repository.transition_job(job.id, JobStatus.FAILED, error="boom") is True
    assert await repository.transition_job(job.id, JobStatus.SUCCEEDED) is False
    assert await repository.transition_job(job.id, JobStatus.RUNNING) is False

    stored = await repository.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "boom"
    assert stored.finished_at is not None
    assert stored.updated_at >= stored.created_at


@pytest.mark.asyncio
async def test_unknown_job(repository):
    from uuid import uuid4

    assert await repository.get_job(uuid4()) is None
    assert await repository.transition_job(uuid4(), JobStatus.RUNNING) is False
    assert await repository.latest_job("nothing") is None
