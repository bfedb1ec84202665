from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Text Embedder Registry
class TextEmbedder(Protocol):
    """Protocol for text embedding providers."""

    async def embed(self, text: str, dimensions: int | None = None) -> list[float]:
        """Embed text, asking the model for ``dimensions`` when it supports it."""
        ...

    def get_model_version(self) -> str:
        """Get the model version identifier."""
        ...


# Image Embedder Registry
class ImageEmbedder(Protocol):
    """Protocol for image embedding providers."""

    async def embed(self, image_url: str) -> list[float]:
        """Embed the image at ``image_url``."""
        ...

    def get_model_version(self) -> str:
        ...


# Captioner Registry - vision image-to-text
class Captioner(Protocol):
    """Protocol for vision captioning providers."""

    async def caption(self, image_url: str, prompt: str) -> str:
        """Describe an image following the facet-specific prompt."""
        ...


# Web Search Registry - search-augmented generation
class WebSearcher(Protocol):
    """Protocol for web-grounded text generation providers."""

    async def generate(self, prompt: str, system: str | None = None) -> str:
        """Answer ``prompt`` with a search-augmented model."""
        ...


# Providers are registered as factories taking the Settings object so that
# API keys and model ids are bound at service build time.
ProviderFactory = Any


class TextEmbedderRegistry(Registry[ProviderFactory]):
    """Registry for text embedders (stub, sbert, openai)."""

    def __init__(self):
        super().__init__("TextEmbedder")


class ImageEmbedderRegistry(Registry[ProviderFactory]):
    """Registry for image embedders (stub, replicate)."""

    def __init__(self):
        super().__init__("ImageEmbedder")


class CaptionerRegistry(Registry[ProviderFactory]):
    """Registry for captioners (stub, replicate)."""

    def __init__(self):
        super().__init__("Captioner")


class WebSearchRegistry(Registry[ProviderFactory]):
    """Registry for web searchers (stub, perplexity)."""

    def __init__(self):
        super().__init__("WebSearch")


# Global registry instances (singletons)
text_embedder_registry = TextEmbedderRegistry()
image_embedder_registry = ImageEmbedderRegistry()
captioner_registry = CaptionerRegistry()
web_search_registry = WebSearchRegistry()
