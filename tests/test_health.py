from __future__ import annotations

import pytest


@pytest.mark.integration
def test_healthz_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok"}


@pytest.mark.integration
def test_health_endpoint_reports_service(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.headers.get("x-request-id")


@pytest.mark.integration
def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"x-request-id": "req-123"})
    assert response.headers["x-request-id"] == "req-123"


@pytest.mark.integration
def test_metrics_endpoint(client):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


@pytest.mark.integration
def test_protected_routes_require_auth(client):
    for path in ("/documents", "/folders", "/notifications", "/audit-logs", "/groups"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"
