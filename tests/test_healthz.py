from datetime import datetime


def test_healthz_endpoint(client):
    """Test health check endpoint returns correct response."""
    response = client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True
    assert "data" in data
    assert "timestamp" in data

    health_data = data["data"]
    assert health_data["ok"] is True
    assert "version" in health_data
    assert "environment" in health_data
    datetime.fromisoformat(health_data["timestamp"])

    db_data = health_data["database"]
    assert db_data["backend"] == "memory"
    assert db_data["connected"] is True

    background = health_data["background"]
    assert background == {"pending_tasks": 0, "accepting": True}

    assert set(health_data["providers"]) == {
        "embeddings",
        "image_embeddings",
        "vision",
        "web_search",
    }


def test_healthz_has_request_id_header(client):
    """Test that health check response carries a request ID header."""
    response = client.get("/v1/healthz")

    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
