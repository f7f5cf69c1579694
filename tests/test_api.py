"""Tests for the FastAPI surface."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from leadmatch.api import create_app
from leadmatch.errors import StorageError


@pytest.fixture
def client(matcher):
    with TestClient(create_app(matcher=matcher, version="9.9.9")) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": "9.9.9"}


def test_match_by_query(client, repo):
    response = client.get("/lead-student-matching", params={"leadId": "lead_1", "limit": "3"})

    assert response.status_code == 200
    body = response.json()
    assert body["recordId"] == "lead_1"
    assert [m["matchedId"] for m in body["matches"]] == ["student_0", "student_3"]
    assert len(repo.rows) == 2


def test_match_by_body(client):
    response = client.post("/lead-student-matching", json={"leadId": "lead_1", "limit": 2})
    assert response.status_code == 200
    assert len(response.json()["matches"]) == 2


@pytest.mark.parametrize("payload", [{}, {"leadId": ""}, {"leadId": 42}, {"leadId": "x" * 101}])
def test_invalid_body(client, payload):
    response = client.post("/lead-student-matching", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Validation error"


@pytest.mark.parametrize("content", [b"leadId=lead_1", b'["lead_1"]', b""])
def test_malformed_body_follows_error_contract(client, connections, content):
    response = client.post(
        "/lead-student-matching",
        content=content,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["details"].startswith("Invalid request")
    assert isinstance(body["processingTimeMs"], int)
    assert connections == []


def test_missing_query_param(client, connections):
    response = client.get("/lead-student-matching")
    assert response.status_code == 400
    assert connections == []


def test_storage_failure_maps_to_503(client, repo):
    repo.fail_on["nearest_neighbors"] = StorageError("Failed to find similar students")

    response = client.get("/lead-student-matching", params={"leadId": "lead_1"})

    assert response.status_code == 503
    assert response.json()["error"] == "Database error"


def test_stored_matches(client):
    client.post("/lead-student-matching", json={"leadId": "lead_1"})

    response = client.get("/leads/lead_1/matches")

    assert response.status_code == 200
    assert [m["matchedId"] for m in response.json()["matches"]] == ["student_0", "student_3"]


def test_cors_headers(client):
    response = client.get(
        "/lead-student-matching",
        params={"leadId": "lead_1"},
        headers={"Origin": "https://crm.example.com"},
    )
    assert "access-control-allow-origin" in response.headers


def test_escaped_pipeline_error_is_classified():
    broken = MagicMock()
    broken.run = AsyncMock(side_effect=StorageError("Failed to connect to database"))

    with TestClient(create_app(matcher=broken)) as test_client:
        response = test_client.get("/lead-student-matching", params={"leadId": "lead_1"})

    assert response.status_code == 503
    assert response.json()["details"] == "Failed to connect to database"
    assert isinstance(response.json()["processingTimeMs"], int)


def test_escaped_pipeline_error_reports_measured_time():
    async def slow_failure(*args):
        await asyncio.sleep(0.05)
        raise StorageError("Failed to connect to database")

    broken = MagicMock()
    broken.run = slow_failure

    with TestClient(create_app(matcher=broken)) as test_client:
        response = test_client.get("/lead-student-matching", params={"leadId": "lead_1"})

    assert response.status_code == 503
    assert response.json()["processingTimeMs"] >= 40
