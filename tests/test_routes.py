from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from facetmatch.v1.facets.config import FACET_PRESETS, FacetType
from facetmatch.v1.storage.models import JobStatus


def ingest(client: TestClient, source_ref: str, **params) -> dict:
    response = client.post("/v1/ingest", json={"source_ref": source_ref}, params=params)
    assert response.status_code == 200
    return response.json()


class TestIngest:
    def test_ingest_succeeds(self, client):
        body = ingest(client, "620")

        assert body["ok"] is True
        assert body["request_id"]
        data = body["data"]
        assert data["status"] == "succeeded"
        assert data["item_id"] == 620
        assert data["error"] is None
        UUID(data["job_id"])

    def test_ingest_failure_is_reported_on_the_job(self, client):
        data = ingest(client, "Half-Life 3")["data"]

        assert data["status"] == "failed"
        assert data["error_kind"] == "NOT_FOUND"

        job = client.get(f"/v1/jobs/{data['job_id']}").json()["data"]
        assert job["status"] == "failed"
        assert job["source_ref"] == "half-life 3"
        assert job["error"] == data["error"]

    def test_empty_source_ref_is_rejected(self, client):
        response = client.post("/v1/ingest", json={"source_ref": ""})

        assert response.status_code == 422

    def test_detached_ingest_finishes_before_shutdown(self, app, services):
        with TestClient(app) as client:
            data = ingest(client, "400", detached=True)["data"]
            assert data["status"] == "queued"
            assert data["item_id"] == 400

            polled = client.get(f"/v1/jobs/{data['job_id']}").json()["data"]
            assert polled["status"] in {"queued", "running", "succeeded"}

        # Shutdown drains detached work
        job = services.repository.jobs[UUID(data["job_id"])]
        assert job.status == JobStatus.SUCCEEDED
        assert set(services.repository.embeddings) >= {(400, facet) for facet in FacetType}


class TestQuickIngest:
    def test_quick_ingest_stores_metadata(self, client, services):
        response = client.post("/v1/ingest/quick", json={"source_ref": "Terraria"})

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == {"item_id": 105600, "error": None, "error_kind": None}
        assert services.repository.items[105600].title == "Terraria"

    def test_quick_ingest_error_envelope(self, client):
        response = client.post("/v1/ingest/quick", json={"source_ref": "999"})

        assert response.status_code == 404
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["kind"] == "NOT_FOUND"
        assert body["error"]["code"] == 404


class TestJobs:
    def test_unknown_job_is_404(self, client):
        response = client.get(f"/v1/jobs/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "NOT_FOUND"

    def test_malformed_job_id_is_422(self, client):
        response = client.get("/v1/jobs/not-a-uuid")

        assert response.status_code == 422


class TestSimilar:
    def test_similar_items_with_titles(self, client):
        for ref in ("620", "400", "105600"):
            ingest(client, ref)

        response = client.post(
            "/v1/items/620/similar",
            json={"weights": "gameplay", "limit": 5, "threshold": -1.0},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["source_item_id"] == 620
        assert data["weights"] == {"mechanics": 0.6, "atmosphere": 0.4}
        ids = [r["item_id"] for r in data["results"]]
        assert ids == [400, 105600]
        assert data["results"][0]["title"] == "Portal"
        assert set(data["results"][0]["per_facet_similarity"]) == {"mechanics", "atmosphere"}

    def test_custom_weights(self, client):
        ingest(client, "620")
        ingest(client, "400")

        response = client.post(
            "/v1/items/620/similar", json={"weights": {"mechanics": 1.0}}
        )

        data = response.json()["data"]
        assert data["weights"] == {"mechanics": 1.0}
        assert [r["item_id"] for r in data["results"]] == [400]

    def test_unknown_source_item_is_404(self, client):
        response = client.post("/v1/items/12345/similar", json={})

        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "NOT_FOUND"

    def test_unknown_preset_is_422(self, client):
        ingest(client, "620")

        response = client.post("/v1/items/620/similar", json={"weights": "cinematic"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["kind"] == "VALIDATION"
        assert "balanced" in error["details"]["available"]

    def test_limit_out_of_range_is_422(self, client):
        response = client.post("/v1/items/620/similar", json={"limit": 0})

        assert response.status_code == 422

    def test_list_presets(self, client):
        response = client.get("/v1/facets/presets")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["default"] == "balanced"
        assert {p["id"] for p in data["presets"]} == set(FACET_PRESETS)
