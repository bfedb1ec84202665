"""
Initialize inference provider registries.

Registers every provider factory and validates that the configured provider
for each concern is available.
"""

from facetmatch.config.settings import Settings, settings as default_settings
from facetmatch.v1.core.registries import (
    Registry,
    captioner_registry,
    image_embedder_registry,
    text_embedder_registry,
    web_search_registry,
)
from facetmatch.v1.inference.providers import (
    build_openai_text_embedder,
    build_perplexity_web_searcher,
    build_replicate_captioner,
    build_replicate_image_embedder,
    build_sbert_text_embedder,
    build_stub_captioner,
    build_stub_image_embedder,
    build_stub_text_embedder,
    build_stub_web_searcher,
)


def _register_once(registry: Registry, name: str, factory) -> None:
    if name not in registry.list():
        registry.register(name, factory)


def init_inference_registries(settings: Settings | None = None) -> None:
    """Initialize inference registries with available implementations."""
    settings = settings or default_settings

    # Stubs have no dependencies
    _register_once(text_embedder_registry, "stub", build_stub_text_embedder)
    _register_once(image_embedder_registry, "stub", build_stub_image_embedder)
    _register_once(captioner_registry, "stub", build_stub_captioner)
    _register_once(web_search_registry, "stub", build_stub_web_searcher)

    # HTTP and OpenAI-SDK backed providers
    _register_once(text_embedder_registry, "openai", build_openai_text_embedder)
    _register_once(image_embedder_registry, "replicate", build_replicate_image_embedder)
    _register_once(captioner_registry, "replicate", build_replicate_captioner)
    _register_once(web_search_registry, "perplexity", build_perplexity_web_searcher)

    # Register sentence-BERT if available
    try:
        import sentence_transformers  # noqa: F401

        _register_once(text_embedder_registry, "sbert", build_sbert_text_embedder)
    except ImportError as e:
        if settings.embeddings.value == "sbert":
            raise RuntimeError(
                "sentence-transformers not installed but EMBEDDINGS=sbert. "
                "Run: pip install 'facetmatch[sbert]'"
            ) from e

    # Validate configured providers are available
    selections = [
        (text_embedder_registry, settings.embeddings.value),
        (image_embedder_registry, settings.image_embeddings.value),
        (captioner_registry, settings.vision.value),
        (web_search_registry, settings.web_search.value),
    ]
    for registry, selected in selections:
        if selected == "none":
            continue
        try:
            registry.get(selected)
        except KeyError as e:
            raise RuntimeError(
                f"Configured {registry.name.lower()} provider '{selected}' not available. "
                f"Available providers: {registry.list()}"
            ) from e
