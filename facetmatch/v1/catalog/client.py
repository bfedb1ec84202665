"""
Catalog API client.

Fetches item details, community tags and review summaries from the store and
normalizes them into one ``CatalogItem``. Every upstream request waits on the
shared rate limiter and runs under the retry policy.
"""

import asyncio
import html
import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from facetmatch.config.logging import get_logger
from facetmatch.config.settings import Settings
from facetmatch.v1.catalog.schemas import (
    CatalogItem,
    ReviewSummary,
    UpstreamCommunityTags,
    UpstreamDetailsEnvelope,
    UpstreamItemDetails,
    UpstreamReviewsEnvelope,
    UpstreamSearchResults,
)
from facetmatch.v1.catalog.source_ref import parse_source_ref
from facetmatch.v1.core.exceptions import (
    FetchError,
    FetchMalformed,
    FetchNetworkError,
    FetchNotFound,
    FetchRateLimited,
    FetchTimeout,
    SecondaryListingError,
)
from facetmatch.v1.core.rate_limit import RateLimiter
from facetmatch.v1.core.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

PRIMARY_ITEM_TYPE = "game"
MAX_VIDEOS = 3
GENRE_TAG_WEIGHT = 1.0
CATEGORY_TAG_WEIGHT = 0.5

_HTML_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def strip_html(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", html.unescape(_HTML_TAG.sub(" ", text))).strip()


def tags_from_labels(genres: list[str], categories: list[str]) -> dict[str, float]:
    """Fallback tag weights when community tags are unavailable."""
    tags: dict[str, float] = {}
    for genre in genres:
        tags[genre] = tags.get(genre, 0.0) + GENRE_TAG_WEIGHT
    for category in categories:
        tags[category] = tags.get(category, 0.0) + CATEGORY_TAG_WEIGHT
    return tags


def normalize_item(
    details: UpstreamItemDetails,
    tags: dict[str, float],
    review_summary: ReviewSummary | None,
) -> CatalogItem:
    """Map a validated upstream payload onto the canonical record."""
    images: list[str] = []
    for url in [details.header_image, *(s.url for s in details.screenshots)]:
        if url and url not in images:
            images.append(url)

    # Highlight trailers first, then by id
    movies = sorted(details.movies, key=lambda m: (not m.highlight, m.id))
    videos = [m.url for m in movies if m.url][:MAX_VIDEOS]

    genres = [g.description for g in details.genres]
    categories = [c.description for c in details.categories]

    long_text = strip_html(details.detailed_description) or strip_html(
        details.about_the_game
    )

    return CatalogItem(
        id=details.steam_appid,
        title=details.name.strip(),
        item_type=details.type,
        short_text=strip_html(details.short_description),
        long_text=long_text,
        images=images,
        videos=videos,
        tags=tags or tags_from_labels(genres, categories),
        genres=genres,
        categories=categories,
        developers=details.developers,
        publishers=details.publishers,
        review_summary=review_summary,
    )


class CatalogClient:
    """Async client for the store catalog and community tag APIs."""

    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.limiter = limiter
        self.base_url = settings.catalog_base_url.rstrip("/")
        self.community_tags_url = settings.community_tags_url
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_s,
            headers={"Accept-Language": "en-US,en;q=0.9"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get_json_once(self, url: str, params: dict[str, Any]) -> Any:
        await self.limiter.acquire()
        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Catalog request timed out: {url}") from e
        except httpx.TransportError as e:
            raise FetchNetworkError(f"Catalog request failed: {e}") from e

        if response.status_code == 404:
            raise FetchNotFound(f"Catalog resource not found: {url}")
        if response.status_code == 429:
            raise FetchRateLimited("Catalog API rate limit exceeded")
        if response.status_code >= 500:
            raise FetchNetworkError(
                f"Catalog API error: {response.status_code}",
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            raise FetchMalformed(
                f"Catalog API rejected request: {response.status_code}",
                details={"status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchMalformed(f"Catalog API returned invalid JSON: {url}") from e

    async def _get_json(self, url: str, params: dict[str, Any], operation: str) -> Any:
        return await retry_async(
            lambda: self._get_json_once(url, params),
            self.retry_policy,
            operation=operation,
            sleep=self._sleep,
        )

    async def fetch_details(self, item_id: int) -> UpstreamItemDetails:
        """Fetch and validate the item-details payload; rejects secondary listings."""
        payload = await self._get_json(
            f"{self.base_url}/api/appdetails",
            {"appids": item_id, "l": self.settings.catalog_language},
            "catalog.item_details",
        )
        if payload is None:
            # The store answers a throttled appdetails call with a JSON null
            raise FetchRateLimited("Catalog API returned an empty body")

        try:
            entry = payload[str(item_id)]
        except (KeyError, TypeError) as e:
            raise FetchMalformed(
                f"Item details missing for {item_id}", details={"item_id": item_id}
            ) from e

        try:
            envelope = UpstreamDetailsEnvelope.model_validate(entry)
        except PydanticValidationError as e:
            logger.warning(
                "Malformed item details payload", item_id=item_id, errors=e.error_count()
            )
            raise FetchMalformed(
                f"Malformed item details for {item_id}", details={"item_id": item_id}
            ) from e

        if not envelope.success or envelope.data is None:
            raise FetchNotFound(
                f"Item {item_id} not found or not available",
                details={"item_id": item_id},
            )

        details = envelope.data
        if details.type.lower() != PRIMARY_ITEM_TYPE:
            raise SecondaryListingError(
                f"Item {item_id} is a {details.type}, not a {PRIMARY_ITEM_TYPE}",
                details={"item_id": item_id, "type": details.type},
            )
        return details

    async def fetch_community_tags(self, item_id: int) -> dict[str, float]:
        payload = await self._get_json(
            self.community_tags_url,
            {"request": "appdetails", "appid": item_id},
            "catalog.community_tags",
        )
        try:
            return UpstreamCommunityTags.model_validate(payload or {}).tags
        except PydanticValidationError as e:
            raise FetchMalformed(
                f"Malformed community tags for {item_id}", details={"item_id": item_id}
            ) from e

    async def fetch_review_summary(self, item_id: int) -> ReviewSummary | None:
        payload = await self._get_json(
            f"{self.base_url}/appreviews/{item_id}",
            {
                "json": 1,
                "language": "all",
                "purchase_type": "all",
                "num_per_page": 0,
            },
            "catalog.review_summary",
        )
        try:
            envelope = UpstreamReviewsEnvelope.model_validate(payload or {})
        except PydanticValidationError as e:
            raise FetchMalformed(
                f"Malformed review summary for {item_id}", details={"item_id": item_id}
            ) from e

        summary = envelope.query_summary
        if not envelope.success or summary is None:
            return None
        return ReviewSummary(
            score=summary.review_score,
            description=summary.review_score_desc,
            positive=summary.total_positive,
            negative=summary.total_negative,
            total=summary.total_reviews,
        )

    async def fetch(self, item_id: int) -> CatalogItem:
        """
        Fetch one item and normalize it.

        Item details are mandatory. Community tags and the review summary are
        best-effort: their failures are logged and replaced by fallbacks.
        """
        details = await self.fetch_details(item_id)

        try:
            tags = await self.fetch_community_tags(item_id)
        except FetchError as e:
            logger.warning(
                "Community tags unavailable, deriving from genres",
                item_id=item_id,
                kind=e.kind,
                error=e.message,
            )
            tags = {}

        try:
            review_summary = await self.fetch_review_summary(item_id)
        except FetchError as e:
            logger.warning(
                "Review summary unavailable", item_id=item_id, kind=e.kind, error=e.message
            )
            review_summary = None

        item = normalize_item(details, tags, review_summary)
        logger.info(
            "Catalog item fetched",
            item_id=item.id,
            title=item.title,
            images=len(item.images),
            tags=len(item.tags),
        )
        return item

    async def search_by_title(self, title: str) -> int | None:
        """Return the id of the best primary-listing hit for ``title``."""
        payload = await self._get_json(
            f"{self.base_url}/api/storesearch/",
            {"term": title, "cc": self.settings.catalog_country, "l": "en"},
            "catalog.search",
        )
        try:
            results = UpstreamSearchResults.model_validate(payload or {})
        except PydanticValidationError as e:
            raise FetchMalformed(f"Malformed search results for {title!r}") from e

        for hit in results.items:
            if hit.type != "app" or "dlc" in hit.name.lower():
                continue
            logger.info("Title resolved", title=title, item_id=hit.id, name=hit.name)
            return hit.id

        logger.info("No catalog match for title", title=title)
        return None

    async def resolve(self, source_ref: str) -> int:
        """Turn an id, store URL or title into a catalog id."""
        item_id = parse_source_ref(source_ref)
        if item_id is not None:
            return item_id

        title = source_ref.strip()
        if not title:
            raise FetchNotFound("Empty source reference")

        item_id = await self.search_by_title(title)
        if item_id is None:
            raise FetchNotFound(
                f"No catalog item matches {title!r}", details={"source_ref": source_ref}
            )
        return item_id
