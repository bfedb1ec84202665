from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from facetmatch.config.settings import Settings, StorageType
from facetmatch.infra.services import Services, build_services
from facetmatch.main import create_app
from facetmatch.v1.catalog.schemas import CatalogItem
from facetmatch.v1.catalog.source_ref import parse_source_ref
from facetmatch.v1.core.exceptions import FetchNotFound
from facetmatch.v1.core.retry import RetryPolicy
from facetmatch.v1.inference.registry_init import init_inference_registries
from facetmatch.v1.storage.memory import InMemoryRepository


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeCatalog:
    """In-memory catalog with per-id error injection."""

    def __init__(self, items: list[CatalogItem] | None = None):
        self.items = {item.id: item for item in items or []}
        self.errors: dict[int | str, Exception] = {}
        self.fetch_calls: list[int] = []

    def add(self, item: CatalogItem) -> None:
        self.items[item.id] = item

    async def resolve(self, source_ref: str) -> int:
        if source_ref in self.errors:
            raise self.errors[source_ref]
        item_id = parse_source_ref(source_ref)
        if item_id is not None:
            return item_id
        for item in self.items.values():
            if item.title.lower() == source_ref.strip().lower():
                return item.id
        raise FetchNotFound(f"No catalog item matches {source_ref!r}")

    async def fetch(self, item_id: int) -> CatalogItem:
        self.fetch_calls.append(item_id)
        if item_id in self.errors:
            raise self.errors[item_id]
        if item_id not in self.items:
            raise FetchNotFound(f"Item {item_id} not found or not available")
        return self.items[item_id]

    async def aclose(self) -> None:
        return None


def build_item(
    item_id: int = 620,
    title: str = "Portal 2",
    tags: dict[str, float] | None = None,
    images: list[str] | None = None,
    **fields,
) -> CatalogItem:
    return CatalogItem(
        id=item_id,
        title=title,
        short_text=fields.pop("short_text", f"{title} is a puzzle game."),
        tags=tags
        if tags is not None
        else {"Puzzle": 900, "Co-op": 700, "First-Person": 500, "Sci-fi": 400},
        images=images
        if images is not None
        else [
            f"https://cdn.example.com/{item_id}/header.jpg",
            f"https://cdn.example.com/{item_id}/ss_1.jpg",
            f"https://cdn.example.com/{item_id}/ss_2.jpg",
        ],
        genres=fields.pop("genres", ["Action", "Adventure"]),
        **fields,
    )


@pytest.fixture
def item_factory() -> Callable[..., CatalogItem]:
    return build_item


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay_s=1.0, max_delay_s=10.0, multiplier=2.0)


@pytest.fixture
def test_settings() -> Settings:
    """Memory storage, stub providers, no catalog spacing or retry delays."""
    return Settings(
        storage=StorageType.MEMORY,
        catalog_min_interval_s=0.0,
        retry_initial_delay_s=0.0,
        retry_max_delay_s=0.0,
        background_drain_timeout_s=5.0,
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def catalog(item_factory) -> FakeCatalog:
    return FakeCatalog(
        [
            item_factory(620, "Portal 2"),
            item_factory(400, "Portal"),
            item_factory(
                105600,
                "Terraria",
                tags={"Sandbox": 900, "Crafting": 800, "2D": 600, "Pixel Graphics": 500},
            ),
        ]
    )


@pytest.fixture
def services(test_settings, repository, catalog) -> Services:
    init_inference_registries(test_settings)
    return build_services(test_settings, repository=repository, catalog=catalog)


@pytest.fixture
def app(test_settings, services):
    """Create a test FastAPI application backed by in-memory services."""
    return create_app(test_settings, services)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client
