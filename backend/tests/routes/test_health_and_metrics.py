# backend/tests/routes/test_health_and_metrics.py
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from app.api.dependencies import get_db
from app.main import fastapi_app


def test_health_ok(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["checks"] == {"database": "ok"}
    assert body["idempotency_backend"] == "memory"
    assert response.headers["Cache-Control"] == "no-store"


def test_health_degraded_when_database_fails(client):
    broken = MagicMock()
    broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

    def override_get_db():
        yield broken

    fastapi_app.dependency_overrides[get_db] = override_get_db
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["checks"]["database"] == "error"


def test_metrics_endpoint(client, tutor_headers):
    client.get("/api/v1/appointments", headers=tutor_headers)

    response = client.get("/metrics", params={"refresh": "true"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "service_operation" in response.text
