from fastapi.testclient import TestClient

from src.api.main import app


def test_health_root():
    client = TestClient(app)
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_webhook_info_endpoints(client):
    response = client.get("/api/calls/incoming")
    assert response.status_code == 200
    body = response.json()
    assert body["method"] == "POST"
    assert body["configured"] == {"livekitSipEndpoint": True, "livekitSipAuth": True}

    for path in (
        "/api/calls/incoming/callback",
        "/api/calls/incoming/refer",
        "/api/calls/incoming/transfer-no-answer",
    ):
        assert client.get(path).json()["method"] == "POST"


def test_lifespan_creates_tables(test_settings, session_factory, seeded):
    from src.api.main import create_app

    with TestClient(create_app(test_settings, session_factory)) as client:
        assert client.get("/").status_code == 200
