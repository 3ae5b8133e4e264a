from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agency_core.core.auth import AuthUser
from agency_core.core.config import get_settings


@pytest.fixture()
def metrics_enabled(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_health_reports_service(api_app: FastAPI) -> None:
    response = TestClient(api_app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_hidden_when_disabled(api_app: FastAPI) -> None:
    assert TestClient(api_app).get("/metrics").status_code == 404


def test_metrics_endpoint_exposes_http_and_authz_metrics(api_app: FastAPI, metrics_enabled: None) -> None:
    client = TestClient(api_app)

    assert client.get("/health").status_code == 200
    assert client.get("/api/authz/users/u1/tenants").status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "tenant_switches_total" in body
    assert "mutex_acquisitions_total" in body
    assert 'path="/health"' in body


def test_metrics_require_read_role(
    api_app: FastAPI,
    api_actor: dict[str, AuthUser],
    metrics_enabled: None,
) -> None:
    api_actor["user"] = AuthUser(sub="u1", roles=[])
    client = TestClient(api_app)

    assert client.get("/metrics").status_code == 403

    api_actor["user"] = AuthUser(sub="metrics-admin", roles=["system.metrics.read"])
    assert client.get("/metrics").status_code == 200
