"""
Embedding fusion.

Turns facet descriptions and item images into one unit-norm vector per facet:

- image facets: cover + up to N screenshots, cover weighted 2x
- text facets: the description through the text embedder
- multimodal facets: cover image 0.6, description 0.4

Failed components are dropped and the remaining weights renormalized. A facet
only fails when nothing at all could be embedded.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np

from facetmatch.config.logging import get_logger
from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.core.exceptions import EmptyResponseError, InferenceError
from facetmatch.v1.core.registries import ImageEmbedder, TextEmbedder
from facetmatch.v1.core.retry import RetryPolicy, retry_async
from facetmatch.v1.core.vectors import fuse, project_dimensions
from facetmatch.v1.embeddings.schemas import FacetEmbedding
from facetmatch.v1.facets.config import FACET_CONFIGS, FacetType, SourceType
from facetmatch.v1.facets.schemas import FacetDocument

logger = get_logger(__name__)

COVER_WEIGHT = 2.0
SCREENSHOT_WEIGHT = 1.0
VISUAL_WEIGHT = 0.6
TEXT_WEIGHT = 0.4

ImageCache = dict[str, asyncio.Future]


class EmbeddingFuser:
    def __init__(
        self,
        text_embedder: TextEmbedder,
        image_embedder: ImageEmbedder,
        dimensions: int = 768,
        version: int = 1,
        max_screenshots: int = 3,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.text_embedder = text_embedder
        self.image_embedder = image_embedder
        self.dimensions = dimensions
        self.version = version
        self.max_screenshots = max_screenshots
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def _model_id(self, source_type: SourceType) -> str:
        image_model = self.image_embedder.get_model_version()
        text_model = self.text_embedder.get_model_version()
        if source_type == SourceType.IMAGE:
            return image_model
        if source_type == SourceType.MULTIMODAL:
            return f"{image_model}+{text_model}"
        return text_model

    async def _embed_image_uncached(self, url: str) -> np.ndarray | None:
        try:
            vector = await retry_async(
                lambda: self.image_embedder.embed(url),
                self.retry_policy,
                operation="image_embedding",
                sleep=self._sleep,
            )
        except InferenceError as e:
            logger.warning("Image embedding dropped", image_url=url, kind=e.kind, error=e.message)
            return None
        return project_dimensions(vector, self.dimensions)

    async def embed_image(self, url: str, cache: ImageCache | None = None) -> np.ndarray | None:
        """Embed one image; ``cache`` shares in-flight and finished calls within a run."""
        if cache is None:
            return await self._embed_image_uncached(url)
        if url not in cache:
            cache[url] = asyncio.ensure_future(self._embed_image_uncached(url))
        return await cache[url]

    async def embed_text(self, text: str | None) -> np.ndarray | None:
        if not text or not text.strip():
            return None
        try:
            vector = await retry_async(
                lambda: self.text_embedder.embed(text, dimensions=self.dimensions),
                self.retry_policy,
                operation="text_embedding",
                sleep=self._sleep,
            )
        except InferenceError as e:
            logger.warning("Text embedding dropped", kind=e.kind, error=e.message)
            return None
        return project_dimensions(vector, self.dimensions)

    def select_images(self, images: list[str]) -> list[tuple[str, float]]:
        """Cover plus up to ``max_screenshots`` screenshots, with fusion weights."""
        if not images:
            return []
        selected = [(images[0], COVER_WEIGHT)]
        selected += [(url, SCREENSHOT_WEIGHT) for url in images[1 : 1 + self.max_screenshots]]
        return selected

    async def embed_facet(
        self,
        facet: FacetType,
        item_id: int,
        text: str | None = None,
        images: list[str] | None = None,
        *,
        strategy: str | None = None,
        image_cache: ImageCache | None = None,
    ) -> FacetEmbedding:
        """
        Produce the fused embedding for one facet.

        Raises:
            EmptyResponseError: if no component could be embedded
        """
        config = FACET_CONFIGS[facet]
        images = images or []
        provenance: dict[str, Any] = {"text": text or "", "strategy": strategy}

        vectors: list[np.ndarray] = []
        weights: list[float] = []
        source_type = config.source_type

        if config.source_type == SourceType.IMAGE:
            selected = self.select_images(images)
            results = await asyncio.gather(
                *(self.embed_image(url, image_cache) for url, _ in selected)
            )
            survivors = [
                (url, weight, vec)
                for (url, weight), vec in zip(selected, results, strict=True)
                if vec is not None
            ]
            vectors = [vec for _, _, vec in survivors]
            weights = [weight for _, weight, _ in survivors]
            provenance["images"] = [url for url, _, _ in survivors]
            provenance["images_requested"] = len(selected)

            if vectors:
                # The description is only used when no image survives
                del provenance["text"]
            else:
                text_vector = await self.embed_text(text)
                if text_vector is not None:
                    vectors, weights = [text_vector], [1.0]
                    source_type = SourceType.TEXT
                    provenance["fallback"] = "text"

        elif config.source_type == SourceType.MULTIMODAL:
            cover = images[0] if images else None
            image_vector, text_vector = await asyncio.gather(
                self.embed_image(cover, image_cache) if cover else _none(),
                self.embed_text(text),
            )
            if image_vector is not None:
                vectors.append(image_vector)
                weights.append(VISUAL_WEIGHT)
                provenance["images"] = [cover]
            if text_vector is not None:
                vectors.append(text_vector)
                weights.append(TEXT_WEIGHT)

            if image_vector is None and text_vector is not None:
                source_type = SourceType.TEXT
            elif text_vector is None and image_vector is not None:
                source_type = SourceType.IMAGE

        else:
            text_vector = await self.embed_text(text)
            if text_vector is not None:
                vectors, weights = [text_vector], [1.0]

        if not vectors:
            raise EmptyResponseError(
                f"No embeddings produced for facet {facet.value}",
                details={"item_id": item_id, "facet": facet.value},
            )

        total = sum(weights)
        provenance["weights"] = [round(w / total, 6) for w in weights]
        provenance["components"] = len(vectors)

        fused = fuse(vectors, weights, self.dimensions)
        return FacetEmbedding(
            item_id=item_id,
            facet=facet,
            vector=fused.tolist(),
            source_type=source_type,
            provenance=provenance,
            model=self._model_id(source_type),
            version=self.version,
        )

    async def _embed_isolated(
        self, item: CatalogItem, document: FacetDocument, cache: ImageCache
    ) -> FacetEmbedding | None:
        config = FACET_CONFIGS[document.facet]
        uses_images = config.source_type in (SourceType.IMAGE, SourceType.MULTIMODAL)
        try:
            return await self.embed_facet(
                document.facet,
                item.id,
                text=document.text,
                images=item.images if uses_images else None,
                strategy=document.strategy.value,
                image_cache=cache,
            )
        except Exception as e:
            logger.error(
                "Facet embedding failed",
                item_id=item.id,
                facet=document.facet.value,
                error=f"{e.__class__.__name__}: {e}",
            )
            return None

    async def embed_all(
        self, item: CatalogItem, documents: dict[FacetType, FacetDocument]
    ) -> list[FacetEmbedding]:
        """Embed every facet concurrently; failed facets are left out."""
        cache: ImageCache = {}
        results = await asyncio.gather(
            *(self._embed_isolated(item, doc, cache) for doc in documents.values())
        )
        embeddings = [r for r in results if r is not None]
        logger.info(
            "Facets embedded",
            item_id=item.id,
            produced=len(embeddings),
            requested=len(documents),
        )
        return embeddings


async def _none() -> None:
    return None
