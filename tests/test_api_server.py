from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.server import APIServerConfig, create_app
from api.service import PatientService


def _client(service: PatientService, api_key: str | None = None) -> TestClient:
    config = APIServerConfig(service=service, api_key=api_key, cors_origins=[], app_version="test")
    return TestClient(create_app(config))


def test_health_reports_storage_state(service: PatientService) -> None:
    response = _client(service).get("/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["version"] == "test"
    assert body["storage_roots"] == 1
    assert body["active_root_available"] is True


def test_rpc_round_trip(service: PatientService) -> None:
    client = _client(service)

    created = client.post("/v1/rpc/patient:new", json={"args": ["Doe_John_1970-01-01", "2024-05-06"]})
    projects = client.post("/v1/rpc/getProjects")

    assert created.json() == {"ok": True, "result": None}
    assert [item["folder"] for item in projects.json()["result"]] == ["Doe_John_1970-01-01"]


def test_rpc_failure_envelope_is_http_200(service: PatientService) -> None:
    response = _client(service).post("/v1/rpc/patient:getMeta", json={"args": ["Nobody"]})

    assert response.status_code == 200
    assert response.json()["ok"] is False
    assert response.json()["error"]["code"] == "NotFound"


def test_unknown_channel_is_404(service: PatientService) -> None:
    response = _client(service).post("/v1/rpc/patient:explode", json={"args": []})

    assert response.status_code == 404
    assert "unknown channel" in response.json()["error"]


def test_malformed_body_is_400(service: PatientService) -> None:
    response = _client(service).post("/v1/rpc/getProjects", json={"args": "not-a-list"})

    assert response.status_code == 400


def test_channels_listing(service: PatientService) -> None:
    channels = _client(service).get("/v1/rpc/channels").json()["channels"]

    assert "patient:clipsDetailed" in channels
    assert channels == sorted(channels)


@pytest.mark.parametrize("header, expected", [(None, 401), ("wrong", 401), ("s3cret", 200)])
def test_api_key_enforced_when_configured(service: PatientService, header, expected) -> None:
    headers = {"X-API-Key": header} if header else {}

    response = _client(service, api_key="s3cret").get("/v1/health", headers=headers)

    assert response.status_code == expected
