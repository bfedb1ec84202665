"""
Catalog schemas.

Upstream payload models validate the loosely-typed store JSON at ingress;
``CatalogItem`` is the canonical record the rest of the pipeline consumes.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Upstream payloads


class UpstreamScreenshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    path_thumbnail: str | None = None
    path_full: str | None = None

    @property
    def url(self) -> str | None:
        return self.path_full or self.path_thumbnail


class UpstreamLabel(BaseModel):
    """Genre or category entry; ids arrive as strings or integers."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    description: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:
        return None if v is None else str(v)


class UpstreamMovieFormats(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    p480: str | None = Field(default=None, alias="480")
    max: str | None = None


class UpstreamMovie(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int = 0
    name: str | None = None
    highlight: bool = False
    # Current format
    hls_h264: str | None = None
    dash_h264: str | None = None
    dash_av1: str | None = None
    # Legacy format
    mp4: UpstreamMovieFormats | None = None
    webm: UpstreamMovieFormats | None = None

    @property
    def url(self) -> str | None:
        candidates = [self.hls_h264, self.dash_h264, self.dash_av1]
        for legacy in (self.mp4, self.webm):
            if legacy is not None:
                candidates.extend([legacy.max, legacy.p480])
        return next((c for c in candidates if c), None)


class UpstreamItemDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = "game"
    name: str
    steam_appid: int
    short_description: str | None = None
    detailed_description: str | None = None
    about_the_game: str | None = None
    header_image: str | None = None
    screenshots: list[UpstreamScreenshot] = Field(default_factory=list)
    movies: list[UpstreamMovie] = Field(default_factory=list)
    developers: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    genres: list[UpstreamLabel] = Field(default_factory=list)
    categories: list[UpstreamLabel] = Field(default_factory=list)

    @field_validator(
        "screenshots", "movies", "developers", "publishers", "genres", "categories",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class UpstreamDetailsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    data: UpstreamItemDetails | None = None


class UpstreamCommunityTags(BaseModel):
    model_config = ConfigDict(extra="ignore")

    appid: int | None = None
    tags: dict[str, float] = Field(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def empty_list_to_dict(cls, v: Any) -> Any:
        # An app with no tags comes back as [] rather than {}
        if v is None or v == []:
            return {}
        return v


class UpstreamReviewSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    review_score: int = 0
    review_score_desc: str | None = None
    total_positive: int = 0
    total_negative: int = 0
    total_reviews: int = 0


class UpstreamReviewsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: int | bool
    query_summary: UpstreamReviewSummary | None = None


class UpstreamSearchHit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    type: str = "app"


class UpstreamSearchResults(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    items: list[UpstreamSearchHit] = Field(default_factory=list)


# Canonical record


class ReviewSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    description: str | None = None
    positive: int = 0
    negative: int = 0
    total: int = 0


class CatalogItem(BaseModel):
    """Normalized catalog item. ``images[0]`` is the cover image when present."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    item_type: str = "game"
    short_text: str = ""
    long_text: str = ""
    images: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)
    tags: dict[str, float] = Field(default_factory=dict)
    genres: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    developers: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    review_summary: ReviewSummary | None = None

    @property
    def cover_image(self) -> str | None:
        return self.images[0] if self.images else None
