from __future__ import annotations

import json
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agency_core.core.auth import Identity
from agency_core.logging import JsonLogFormatter


def test_logs_include_correlation_id_for_http(api_app: FastAPI, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    client = TestClient(api_app)

    response = client.get("/api/authz/tenants/t2/subscription", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers["x-correlation-id"] == "abc-123"

    records = [
        record
        for record in caplog.records
        if record.name == "agency_core.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


@pytest.mark.asyncio
async def test_session_logs_carry_execution_context_id(
    fake_client,
    make_session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    fake_client.add_tenant("t1", "Alpha")
    fake_client.add_membership("u1", "t1", role="owner")

    async with make_session("tab-logs") as session:
        await session.on_auth_changed(True, Identity(user_id="u1"))

    selected = [record for record in caplog.records if record.getMessage() == "tenant.selected"]
    assert selected
    assert getattr(selected[-1], "context_id", None) == "tab-logs"
    assert getattr(selected[-1], "tenant_id", None) == "t1"
    assert getattr(selected[-1], "source", None) == "bypass"


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "agency_core.tenancy.session",
            "levelname": "INFO",
            "msg": "tenant.switch.denied",
            "tenant_id": "t9",
            "reason": "not_a_member",
            "password": "hunter2",
            "error": "x" * 600,
        }
    )
    record.correlation_id = "corr-1"
    record.context_id = "tab-a"

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "tenant.switch.denied"
    assert payload["correlation_id"] == "corr-1"
    assert payload["context_id"] == "tab-a"
    assert payload["fields"]["tenant_id"] == "t9"
    assert payload["fields"]["reason"] == "not_a_member"
    assert "password" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500
