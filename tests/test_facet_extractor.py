import httpx
import pytest

from facetmatch.v1.core.exceptions import InferenceError, InferenceServerError
from facetmatch.v1.core.retry import RetryPolicy
from facetmatch.v1.facets import extractor as extractor_module
from facetmatch.v1.facets.config import FACET_CONFIGS, ExtractionStrategy, FacetType
from facetmatch.v1.facets.extractor import (
    FacetExtractor,
    combine_captions,
    is_unhelpful_response,
    select_representative_images,
)
from facetmatch.v1.inference.providers import ReplicateCaptioner, ReplicateClient

SEARCH_TOPICS = {
    "visual aesthetic": FacetType.AESTHETIC,
    "gameplay mechanics": FacetType.MECHANICS,
    "narrative structure": FacetType.NARRATIVE,
    "pacing": FacetType.DYNAMICS,
}


def topic_of(prompt: str) -> FacetType:
    return next(facet for key, facet in SEARCH_TOPICS.items() if key in prompt)


class ScriptedSearcher:
    """Answers search prompts per facet and refine prompts by echoing keywords."""

    def __init__(self, answers=None, refine_error: Exception | None = None):
        self.answers = answers or {}
        self.refine_error = refine_error
        self.prompts: list[str] = []

    async def generate(self, prompt: str, system: str | None = None) -> str:
        self.prompts.append(prompt)
        if prompt.startswith("You are a keyword extractor"):
            if self.refine_error is not None:
                raise self.refine_error
            return "refined, descriptors"
        answer = self.answers.get(topic_of(prompt), "community says: great")
        if isinstance(answer, Exception):
            raise answer
        return answer


class RecordingCaptioner:
    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    async def caption(self, image_url: str, prompt: str) -> str:
        self.calls.append((image_url, prompt))
        if image_url in self.failing:
            raise InferenceError("caption rejected")
        return f"moody frame {image_url.rsplit('/', 1)[-1]}"


@pytest.mark.asyncio
async def test_without_providers_every_facet_uses_tags(item_factory):
    extractor = FacetExtractor()

    documents = await extractor.extract(item_factory())

    assert set(documents) == set(FacetType)
    for document in documents.values():
        assert document.strategy == ExtractionStrategy.TAGS
        assert document.text


@pytest.mark.asyncio
async def test_web_search_wins_and_is_refined(item_factory, recording_sleep):
    searcher = ScriptedSearcher()
    extractor = FacetExtractor(web_searcher=searcher, sleep=recording_sleep)

    documents = await extractor.extract(item_factory(images=[]))

    for facet in (FacetType.AESTHETIC, FacetType.MECHANICS, FacetType.NARRATIVE, FacetType.DYNAMICS):
        assert documents[facet].strategy == ExtractionStrategy.WEB
        assert documents[facet].text == "refined, descriptors"
    # Atmosphere has no search prompt
    assert documents[FacetType.ATMOSPHERE].strategy == ExtractionStrategy.TAGS
    assert any('"Portal 2"' in p for p in searcher.prompts)


@pytest.mark.asyncio
async def test_image_facet_with_images_skips_paid_strategies(item_factory):
    searcher = ScriptedSearcher()
    captioner = RecordingCaptioner()
    extractor = FacetExtractor(captioner=captioner, web_searcher=searcher)

    documents = await extractor.extract(item_factory())

    aesthetic = documents[FacetType.AESTHETIC]
    assert aesthetic.strategy == ExtractionStrategy.TAGS
    assert aesthetic.details == {"fallback_only": True}
    # One search and one refine call per text facet, none for aesthetic
    assert len(searcher.prompts) == 6
    assert not any("visual aesthetic" in p for p in searcher.prompts)
    # Only atmosphere is captioned
    assert {prompt for _, prompt in captioner.calls} == {
        FACET_CONFIGS[FacetType.ATMOSPHERE].vision_prompt
    }


@pytest.mark.asyncio
async def test_unhelpful_answer_falls_through_to_tags(item_factory):
    searcher = ScriptedSearcher(
        {FacetType.MECHANICS: "I couldn't find any discussion of this game."}
    )
    extractor = FacetExtractor(web_searcher=searcher)

    document = await extractor.extract_facet(item_factory(), FacetType.MECHANICS)

    assert document.strategy == ExtractionStrategy.TAGS
    assert "Core mechanics" in document.text


@pytest.mark.asyncio
async def test_refine_failure_keeps_raw_answer(item_factory):
    searcher = ScriptedSearcher(
        {FacetType.NARRATIVE: "  branching narrative, dark comedy  "},
        refine_error=InferenceError("bad request"),
    )
    extractor = FacetExtractor(web_searcher=searcher)

    document = await extractor.extract_facet(item_factory(), FacetType.NARRATIVE)

    assert document.strategy == ExtractionStrategy.WEB
    assert document.text == "branching narrative, dark comedy"


@pytest.mark.asyncio
async def test_transient_search_failures_are_retried_then_degrade(item_factory, recording_sleep, fast_retry):
    searcher = ScriptedSearcher({FacetType.DYNAMICS: InferenceServerError("503")})
    extractor = FacetExtractor(
        web_searcher=searcher, retry_policy=fast_retry, sleep=recording_sleep
    )

    document = await extractor.extract_facet(item_factory(), FacetType.DYNAMICS)

    assert document.strategy == ExtractionStrategy.TAGS
    assert len(searcher.prompts) == fast_retry.max_attempts
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_vision_describes_atmosphere_from_sampled_images(item_factory):
    images = [f"https://cdn.example.com/ss_{i}.jpg" for i in range(10)]
    captioner = RecordingCaptioner()
    extractor = FacetExtractor(captioner=captioner, max_images=4)

    document = await extractor.extract_facet(item_factory(images=images), FacetType.ATMOSPHERE)

    assert document.strategy == ExtractionStrategy.VISION
    assert document.details["images"] == [images[0], images[3], images[6], images[9]]
    assert document.text.startswith("Game atmosphere based on multiple screenshots:\n")
    assert "Scene 4: moody frame ss_9.jpg" in document.text


@pytest.mark.asyncio
async def test_failed_captions_are_dropped(item_factory):
    images = ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]
    captioner = RecordingCaptioner(failing={images[0]})
    extractor = FacetExtractor(captioner=captioner)

    document = await extractor.extract_facet(item_factory(images=images), FacetType.ATMOSPHERE)

    assert document.strategy == ExtractionStrategy.VISION
    assert document.text == "moody frame b.jpg"


@pytest.mark.asyncio
async def test_vision_is_skipped_without_images(item_factory):
    captioner = RecordingCaptioner()
    extractor = FacetExtractor(captioner=captioner)

    document = await extractor.extract_facet(item_factory(images=[]), FacetType.ATMOSPHERE)

    assert document.strategy == ExtractionStrategy.TAGS
    assert captioner.calls == []


@pytest.mark.asyncio
async def test_failing_strategy_falls_through_to_tags(item_factory):
    searcher = ScriptedSearcher({FacetType.MECHANICS: RuntimeError("provider bug")})
    extractor = FacetExtractor(web_searcher=searcher)

    document = await extractor.extract_facet(item_factory(), FacetType.MECHANICS)

    assert document.strategy == ExtractionStrategy.TAGS
    assert "Core mechanics" in document.text


@pytest.mark.asyncio
async def test_malformed_caption_response_falls_through_to_tags(item_factory):
    captioner = ReplicateCaptioner(
        ReplicateClient(
            "token",
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(200, text="<html>gateway</html>")
                )
            ),
        ),
        "lucataco/moondream2:abc",
    )
    extractor = FacetExtractor(
        captioner=captioner, retry_policy=RetryPolicy(max_attempts=1)
    )

    document = await extractor.extract_facet(item_factory(), FacetType.ATMOSPHERE)

    assert document.strategy == ExtractionStrategy.TAGS
    assert document.text


@pytest.mark.asyncio
async def test_one_failing_facet_does_not_block_the_others(item_factory, monkeypatch):
    build_tag_document = extractor_module.build_tag_document

    def failing_for_mechanics(facet, item):
        if facet == FacetType.MECHANICS:
            raise RuntimeError("template bug")
        return build_tag_document(facet, item)

    monkeypatch.setattr(extractor_module, "build_tag_document", failing_for_mechanics)
    extractor = FacetExtractor()

    documents = await extractor.extract(item_factory())

    failed = documents[FacetType.MECHANICS]
    assert failed.strategy == ExtractionStrategy.NONE
    assert failed.is_empty
    assert "template bug" in failed.details["error"]
    others = [d for f, d in documents.items() if f != FacetType.MECHANICS]
    assert all(not d.is_empty for d in others)


@pytest.mark.parametrize(
    "text, unhelpful",
    [
        ("I don't have live access to Reddit.", True),
        ("Unable to find community discussion.", True),
        ("", True),
        (None, True),
        ("gritty, hand-drawn, noir", False),
    ],
)
def test_is_unhelpful_response(text, unhelpful):
    assert is_unhelpful_response(text) is unhelpful


def test_select_representative_images():
    images = [str(i) for i in range(10)]

    assert select_representative_images(images, 4) == ["0", "3", "6", "9"]
    assert select_representative_images(images[:3], 4) == ["0", "1", "2"]
    assert select_representative_images(images, 1) == ["0"]
    assert select_representative_images([], 4) == []


def test_combine_captions():
    assert combine_captions([], "Header") == ""
    assert combine_captions(["only one"], "Header") == "only one"
    assert combine_captions(["a", "b"], "Header") == "Header:\nScene 1: a\nScene 2: b"
