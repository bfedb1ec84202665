"""
Facet description extraction.

For each facet, strategies run lazily in priority order and the first
non-empty result wins:

1. web-grounded search (community language, refined to descriptor phrases)
2. vision captioning over a diversity-sampled image subset
3. deterministic tag templates

A strategy that raises counts as empty and the next one runs. Image-sourced
facets of items that have images only get the tag template, since their text
is used solely when every image embedding fails.

Facets are extracted concurrently and each one is isolated: a failure yields
an empty ``strategy=none`` document instead of aborting the batch.
"""

import asyncio
from collections.abc import Awaitable, Callable

from facetmatch.config.logging import get_logger
from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.core.exceptions import InferenceError
from facetmatch.v1.core.registries import Captioner, WebSearcher
from facetmatch.v1.core.retry import RetryPolicy, retry_async
from facetmatch.v1.facets.config import (
    FACET_CONFIGS,
    FACET_TYPES,
    REFINE_PROMPT,
    ExtractionStrategy,
    FacetConfig,
    FacetType,
    SourceType,
)
from facetmatch.v1.facets.schemas import FacetDocument
from facetmatch.v1.facets.tags import build_tag_document

logger = get_logger(__name__)

UNHELPFUL_PHRASES = (
    "don't have live access",
    "i'm not finding",
    "i cannot",
    "i couldn't find",
    "no information available",
    "unable to find",
)


def is_unhelpful_response(text: str | None) -> bool:
    """True when a search answer says it found nothing useful."""
    if not text or not text.strip():
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in UNHELPFUL_PHRASES)


def select_representative_images(images: list[str], max_images: int) -> list[str]:
    """
    Pick up to ``max_images`` spread across the list.

    Keeps the first and last image and evenly spaced ones in between
    (first, n//3, 2n//3, last for four images).
    """
    if max_images <= 0 or not images:
        return []
    if len(images) <= max_images:
        return list(images)
    if max_images == 1:
        return [images[0]]

    n = len(images)
    indices = [(i * n) // (max_images - 1) for i in range(max_images - 1)] + [n - 1]
    selected: list[str] = []
    for index in indices:
        if images[index] not in selected:
            selected.append(images[index])
    return selected


def combine_captions(captions: list[str], header: str) -> str:
    if not captions:
        return ""
    if len(captions) == 1:
        return captions[0]
    lines = [f"Scene {i}: {caption}" for i, caption in enumerate(captions, start=1)]
    return f"{header}:\n" + "\n".join(lines)


class FacetExtractor:
    """Derives one description per facet for a catalog item."""

    def __init__(
        self,
        captioner: Captioner | None = None,
        web_searcher: WebSearcher | None = None,
        retry_policy: RetryPolicy | None = None,
        max_images: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.captioner = captioner
        self.web_searcher = web_searcher
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_images = max_images
        self._sleep = sleep

    async def extract(
        self, item: CatalogItem, facets: list[FacetType] | None = None
    ) -> dict[FacetType, FacetDocument]:
        """Extract every requested facet concurrently."""
        facets = facets or FACET_TYPES
        documents = await asyncio.gather(
            *(self._extract_isolated(item, facet) for facet in facets)
        )
        return {doc.facet: doc for doc in documents}

    async def _extract_isolated(self, item: CatalogItem, facet: FacetType) -> FacetDocument:
        try:
            return await self.extract_facet(item, facet)
        except Exception as e:
            logger.error(
                "Facet extraction failed",
                item_id=item.id,
                facet=facet.value,
                error=f"{e.__class__.__name__}: {e}",
            )
            return FacetDocument(
                facet=facet,
                strategy=ExtractionStrategy.NONE,
                details={"error": str(e)},
            )

    async def extract_facet(self, item: CatalogItem, facet: FacetType) -> FacetDocument:
        config = FACET_CONFIGS[facet]

        if config.source_type == SourceType.IMAGE and item.images:
            # Images carry this facet; the description is only a fallback
            text = build_tag_document(facet, item)
            strategy = ExtractionStrategy.TAGS if text else ExtractionStrategy.NONE
            return self._document(item, facet, text, strategy, fallback_only=True)

        if self.web_searcher is not None and config.web_prompt:
            text = await self._attempt(
                item, facet, ExtractionStrategy.WEB, self.describe_from_web(item, config)
            )
            if text:
                return self._document(item, facet, text, ExtractionStrategy.WEB)

        if self.captioner is not None and config.vision_prompt and item.images:
            images = select_representative_images(item.images, self.max_images)
            text = await self._attempt(
                item,
                facet,
                ExtractionStrategy.VISION,
                self.describe_from_images(item, config, images),
            )
            if text:
                return self._document(
                    item, facet, text, ExtractionStrategy.VISION, images=images
                )

        text = build_tag_document(facet, item)
        if text:
            return self._document(item, facet, text, ExtractionStrategy.TAGS)

        return self._document(item, facet, "", ExtractionStrategy.NONE)

    async def _attempt(
        self,
        item: CatalogItem,
        facet: FacetType,
        strategy: ExtractionStrategy,
        description: Awaitable[str | None],
    ) -> str | None:
        """Await one strategy; a failure counts as no result."""
        try:
            return await description
        except Exception as e:
            logger.warning(
                "Extraction strategy failed",
                item_id=item.id,
                facet=facet.value,
                strategy=strategy.value,
                error=f"{e.__class__.__name__}: {e}",
            )
            return None

    def _document(
        self,
        item: CatalogItem,
        facet: FacetType,
        text: str,
        strategy: ExtractionStrategy,
        **details,
    ) -> FacetDocument:
        logger.info(
            "Facet described",
            item_id=item.id,
            facet=facet.value,
            strategy=strategy.value,
            chars=len(text),
        )
        return FacetDocument(facet=facet, text=text, strategy=strategy, details=details)

    async def _generate(self, prompt: str, operation: str) -> str:
        return await retry_async(
            lambda: self.web_searcher.generate(prompt),
            self.retry_policy,
            operation=operation,
            sleep=self._sleep,
        )

    async def describe_from_web(self, item: CatalogItem, config: FacetConfig) -> str | None:
        """Community description for ``config.facet``, refined to descriptor phrases."""
        prompt = config.web_prompt.replace("{title}", item.title)
        try:
            raw = await self._generate(prompt, f"web_search.{config.facet.value}")
        except InferenceError as e:
            logger.warning(
                "Web search failed",
                item_id=item.id,
                facet=config.facet.value,
                kind=e.kind,
                error=e.message,
            )
            return None

        if is_unhelpful_response(raw):
            logger.info("Web search unhelpful", item_id=item.id, facet=config.facet.value)
            return None

        return await self.refine(raw)

    async def refine(self, raw: str) -> str:
        """Strip narrative filler; fall back to ``raw`` if refinement fails."""
        try:
            refined = await self._generate(
                REFINE_PROMPT.replace("{text}", raw), "web_search.refine"
            )
        except InferenceError as e:
            logger.warning("Refinement failed, using raw answer", kind=e.kind, error=e.message)
            return raw.strip()
        return refined.strip() or raw.strip()

    async def _caption(self, url: str, prompt: str) -> str | None:
        try:
            return await retry_async(
                lambda: self.captioner.caption(url, prompt),
                self.retry_policy,
                operation="vision.caption",
                sleep=self._sleep,
            )
        except InferenceError as e:
            logger.warning("Caption dropped", image_url=url, kind=e.kind, error=e.message)
            return None

    async def describe_from_images(
        self, item: CatalogItem, config: FacetConfig, images: list[str]
    ) -> str:
        captions = await asyncio.gather(
            *(self._caption(url, config.vision_prompt) for url in images)
        )
        return combine_captions([c for c in captions if c], config.caption_header)
