"""
Inference provider implementations.

Supports multiple backends per concern:
- text embeddings: stub (deterministic), sbert (sentence-transformers), openai
- image embeddings: stub, replicate (SigLIP)
- vision captioning: stub, replicate (moondream2)
- web-grounded generation: stub, perplexity (sonar-pro)

Providers translate transport and SDK failures into the inference error
taxonomy; retrying is left to the caller.
"""

import asyncio
import hashlib
import re
from typing import Any

import httpx
import numpy as np
import openai

from facetmatch.config.logging import get_logger
from facetmatch.config.settings import Settings
from facetmatch.v1.core.exceptions import (
    EmptyResponseError,
    InferenceError,
    InferenceRateLimited,
    InferenceServerError,
    InferenceTimeout,
)

logger = get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+(?:[-'][a-z0-9]+)*")


def _seeded_unit_vector(seed_text: str, dimensions: int) -> list[float]:
    digest = hashlib.sha256(seed_text.encode("utf-8")).digest()
    rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
    vector = rng.standard_normal(dimensions)
    return (vector / np.linalg.norm(vector)).tolist()


class StubTextEmbedder:
    """
    Deterministic feature-hashing text embedder for development and testing.

    Each token is hashed to a signed dimension, so texts sharing vocabulary
    land near each other. No external dependencies or API calls required.
    """

    def __init__(self, dimensions: int = 768):
        self.dimensions = dimensions

    async def embed(self, text: str, dimensions: int | None = None) -> list[float]:
        dims = dimensions or self.dimensions
        normalized_text = text.strip().lower()
        if not normalized_text:
            raise EmptyResponseError("Cannot embed empty text")

        vector = np.zeros(dims)
        for token in _TOKEN.findall(normalized_text):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % dims
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm == 0:
            return _seeded_unit_vector(normalized_text, dims)
        return (vector / norm).tolist()

    def get_model_version(self) -> str:
        return "stub-text-v1.0"


class StubImageEmbedder:
    """Deterministic per-URL unit vectors."""

    def __init__(self, dimensions: int = 768):
        self.dimensions = dimensions

    async def embed(self, image_url: str) -> list[float]:
        return _seeded_unit_vector(image_url, self.dimensions)

    def get_model_version(self) -> str:
        return "stub-image-v1.0"


class StubCaptioner:
    async def caption(self, image_url: str, prompt: str) -> str:
        name = image_url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]
        return f"A moody, softly lit scene with a muted palette ({name})."


class StubWebSearcher:
    """Echoes the quoted item title back as a short descriptor list."""

    async def generate(self, prompt: str, system: str | None = None) -> str:
        match = re.search(r'"([^"]+)"', prompt)
        subject = match.group(1) if match else "game"
        return f"{subject}, distinctive, atmospheric, stylized"


class SentenceBERTTextEmbedder:
    """
    Sentence-BERT text embedder.

    The model loads lazily on first use; output is projected to the target
    dimensionality by the caller.
    """

    def __init__(self, model_name: str = "all-mpnet-base-v2"):
        self._model = None
        self._model_name = model_name

    def _get_model(self):
        """Lazy load the sentence-transformers model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer

                self._model = SentenceTransformer(self._model_name)
            except ImportError as e:
                raise RuntimeError(
                    "sentence-transformers not installed. "
                    "Run: pip install 'facetmatch[sbert]'"
                ) from e
        return self._model

    async def embed(self, text: str, dimensions: int | None = None) -> list[float]:
        model = self._get_model()
        embedding = await asyncio.to_thread(
            model.encode, text, convert_to_tensor=False, normalize_embeddings=True
        )
        return embedding.tolist()

    def get_model_version(self) -> str:
        return f"sbert-{self._model_name}"


def _translate_openai_error(e: openai.OpenAIError, provider: str) -> InferenceError:
    if isinstance(e, openai.RateLimitError):
        return InferenceRateLimited(f"{provider} rate limit exceeded")
    if isinstance(e, openai.APITimeoutError):
        return InferenceTimeout(f"{provider} request timed out")
    if isinstance(e, (openai.APIConnectionError, openai.InternalServerError)):
        return InferenceServerError(f"{provider} unavailable: {e}")
    if isinstance(e, openai.APIStatusError):
        return InferenceError(
            f"{provider} API error: {e.status_code}",
            details={"status": e.status_code},
        )
    return InferenceError(f"{provider} error: {e}")


class OpenAITextEmbedder:
    """
    OpenAI embeddings using text-embedding-3-small.

    Always requests the target dimensionality natively via ``dimensions``.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "text-embedding-3-small",
        timeout_s: float = 60.0,
        client: openai.AsyncOpenAI | None = None,
    ):
        self._client = client or openai.AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
        self._model_name = model_name

    async def embed(self, text: str, dimensions: int | None = None) -> list[float]:
        kwargs: dict[str, Any] = {"model": self._model_name, "input": text, "encoding_format": "float"}
        if dimensions:
            kwargs["dimensions"] = dimensions
        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            raise _translate_openai_error(e, "OpenAI") from e

        if not response.data:
            raise EmptyResponseError("OpenAI returned no embedding")
        return response.data[0].embedding

    def get_model_version(self) -> str:
        return f"openai-{self._model_name}"

    async def aclose(self) -> None:
        await self._client.close()


class ReplicateClient:
    """Minimal Replicate predictions client over httpx."""

    POLL_INTERVAL_S = 1.0

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.replicate.com/v1",
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=timeout_s,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @staticmethod
    def _check(response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 429:
            raise InferenceRateLimited("Replicate rate limit exceeded")
        if response.status_code >= 500:
            raise InferenceServerError(
                f"Replicate error: {response.status_code}",
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            raise InferenceError(
                f"Replicate rejected request: {response.status_code}",
                details={"status": response.status_code, "body": response.text[:500]},
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise InferenceServerError(
                f"Replicate returned an unexpected body: {response.status_code}",
                details={"status": response.status_code, "body": response.text[:500]},
            )
        return body

    @staticmethod
    def _poll_url(prediction: dict[str, Any]) -> str:
        url = (prediction.get("urls") or {}).get("get")
        if not url:
            raise InferenceServerError(
                "Replicate prediction has no polling URL",
                details={"prediction_id": prediction.get("id")},
            )
        return url

    async def run(self, model_version: str, inputs: dict[str, Any]) -> Any:
        """Create a prediction and wait for its output."""
        version = model_version.split(":", 1)[-1]
        try:
            prediction = self._check(
                await self.client.post(
                    f"{self.base_url}/predictions",
                    json={"version": version, "input": inputs},
                    headers={"Prefer": f"wait={int(min(self.timeout_s, 60))}"},
                )
            )
            async with asyncio.timeout(self.timeout_s):
                while prediction.get("status") in ("starting", "processing"):
                    await asyncio.sleep(self.POLL_INTERVAL_S)
                    prediction = self._check(await self.client.get(self._poll_url(prediction)))
        except (httpx.TimeoutException, TimeoutError) as e:
            raise InferenceTimeout(f"Replicate prediction timed out ({model_version})") from e
        except httpx.TransportError as e:
            raise InferenceServerError(f"Replicate unreachable: {e}") from e

        status = prediction.get("status")
        if status != "succeeded":
            raise InferenceServerError(
                f"Replicate prediction {status}: {prediction.get('error')}",
                details={"model": model_version},
            )
        return prediction.get("output")


class ReplicateImageEmbedder:
    """SigLIP image embeddings via Replicate."""

    def __init__(self, client: ReplicateClient, model_version: str):
        self.client = client
        self.model_version = model_version

    async def embed(self, image_url: str) -> list[float]:
        output = await self.client.run(self.model_version, {"image": image_url})

        if isinstance(output, dict):
            output = output.get("embedding")
        if isinstance(output, list) and output and isinstance(output[0], list):
            output = output[0]
        if not isinstance(output, list) or not output:
            raise EmptyResponseError(
                f"Unexpected image embedding output for {image_url}"
            )
        return [float(x) for x in output]

    def get_model_version(self) -> str:
        return self.model_version.split(":", 1)[0]

    async def aclose(self) -> None:
        await self.client.aclose()


class ReplicateCaptioner:
    """moondream2 captioning via Replicate."""

    def __init__(self, client: ReplicateClient, model_version: str):
        self.client = client
        self.model_version = model_version

    async def caption(self, image_url: str, prompt: str) -> str:
        output = await self.client.run(
            self.model_version, {"image": image_url, "prompt": prompt}
        )
        # Streaming models return a list of tokens
        if isinstance(output, list):
            output = "".join(str(part) for part in output)
        if not isinstance(output, str) or not output.strip():
            raise EmptyResponseError(f"Empty caption for {image_url}")
        return output.strip()

    async def aclose(self) -> None:
        await self.client.aclose()


class PerplexityWebSearcher:
    """Search-augmented generation via Perplexity's OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.perplexity.ai",
        model_name: str = "sonar-pro",
        timeout_s: float = 60.0,
        client: openai.AsyncOpenAI | None = None,
    ):
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0
        )
        self._model_name = model_name

    async def generate(self, prompt: str, system: str | None = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=self._model_name, messages=messages
            )
        except openai.OpenAIError as e:
            raise _translate_openai_error(e, "Perplexity") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise EmptyResponseError("Perplexity returned an empty answer")
        return content.strip()

    async def aclose(self) -> None:
        await self._client.close()


# Provider factories for registries


def build_stub_text_embedder(settings: Settings) -> StubTextEmbedder:
    return StubTextEmbedder(settings.embedding_dimensions)


def build_sbert_text_embedder(settings: Settings) -> SentenceBERTTextEmbedder:
    return SentenceBERTTextEmbedder(settings.sbert_model)


def build_openai_text_embedder(settings: Settings) -> OpenAITextEmbedder:
    return OpenAITextEmbedder(
        api_key=settings.openai_api_key or "",
        model_name=settings.text_embedding_model,
        timeout_s=settings.inference_timeout_s,
    )


def build_stub_image_embedder(settings: Settings) -> StubImageEmbedder:
    return StubImageEmbedder(settings.embedding_dimensions)


def _replicate_client(settings: Settings) -> ReplicateClient:
    return ReplicateClient(
        api_token=settings.replicate_api_token or "",
        base_url=settings.replicate_base_url,
        timeout_s=settings.inference_timeout_s,
    )


def build_replicate_image_embedder(settings: Settings) -> ReplicateImageEmbedder:
    return ReplicateImageEmbedder(_replicate_client(settings), settings.image_embedding_model)


def build_stub_captioner(settings: Settings) -> StubCaptioner:
    return StubCaptioner()


def build_replicate_captioner(settings: Settings) -> ReplicateCaptioner:
    return ReplicateCaptioner(_replicate_client(settings), settings.vision_model)


def build_stub_web_searcher(settings: Settings) -> StubWebSearcher:
    return StubWebSearcher()


def build_perplexity_web_searcher(settings: Settings) -> PerplexityWebSearcher:
    return PerplexityWebSearcher(
        api_key=settings.perplexity_api_key or "",
        base_url=settings.perplexity_base_url,
        model_name=settings.web_search_model,
        timeout_s=settings.inference_timeout_s,
    )
