import httpx
import pytest

from facetmatch.v1.core.exceptions import InferenceServerError
from facetmatch.v1.core.retry import is_retryable
from facetmatch.v1.inference.providers import ReplicateClient


def replicate_client(*responses: httpx.Response) -> ReplicateClient:
    queue = list(responses)
    transport = httpx.MockTransport(lambda request: queue.pop(0))
    return ReplicateClient("token", http_client=httpx.AsyncClient(transport=transport))


@pytest.mark.asyncio
async def test_non_json_body_is_a_server_error():
    client = replicate_client(httpx.Response(200, text="<html>gateway</html>"))

    with pytest.raises(InferenceServerError) as exc_info:
        await client.run("owner/model:abc", {"image": "https://cdn/cover.jpg"})

    assert exc_info.value.details["body"] == "<html>gateway</html>"
    assert is_retryable(exc_info.value)


@pytest.mark.asyncio
async def test_pending_prediction_without_poll_url_is_a_server_error():
    client = replicate_client(httpx.Response(201, json={"id": "p1", "status": "starting"}))

    with pytest.raises(InferenceServerError, match="no polling URL"):
        await client.run("owner/model:abc", {"image": "https://cdn/cover.jpg"})


@pytest.mark.asyncio
async def test_finished_prediction_returns_output():
    client = replicate_client(
        httpx.Response(201, json={"id": "p1", "status": "succeeded", "output": "a caption"})
    )

    assert await client.run("owner/model:abc", {"image": "https://cdn/cover.jpg"}) == "a caption"
