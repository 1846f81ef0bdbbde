"""HTTP surface tests: auth, pre-stream errors, SSE framing and the JSON endpoints."""

import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from conftest import TEST_TOKEN
from knowledge_base.api.api import app, get_extraction_client

AUTH = {"Authorization": f"Bearer {TEST_TOKEN}"}

RESUME_OUTPUT = (
    '{"name": "Ada Lovelace", "skills": ["Python"], '
    '"experience": [{"job_title": "Analyst", "company": "Engine Co", "start_date": "2019"}]}'
)


def parse_sse(body: str):
    """Split an SSE body into (event, data) pairs."""
    events = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def client(scripted_client):
    app.dependency_overrides[get_extraction_client] = lambda: scripted_client(
        RESUME_OUTPUT[:40], RESUME_OUTPUT[40:]
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_preflight_is_answered_with_cors_headers(client):
    response = client.options("/knowledge-sources/resume/stream")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "authorization" in response.headers["access-control-allow-headers"]


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic abc"}],
)
def test_missing_or_invalid_credentials_are_rejected(client, user_id, headers):
    response = client.post("/knowledge-sources/aggregate/stream", headers=headers)
    assert response.status_code == 500
    assert response.json() == {"error": "Unauthorized"}


def test_resume_stream_emits_sse_frames_and_persists(client, user_id, build_pdf):
    pdf = build_pdf(["Ada Lovelace", "Analyst"])
    response = client.post(
        "/knowledge-sources/resume/stream",
        headers=AUTH,
        data={"sourceId": "src-1"},
        files={"file": ("ada.pdf", pdf, "application/pdf")},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = parse_sse(response.text)
    kinds = [kind for kind, _ in events]
    assert kinds[0] == "status"
    assert kinds[-1] == "complete"
    assert kinds.count("complete") + kinds.count("error") == 1

    tokens = "".join(data["token"] for kind, data in events if kind == "token")
    assert tokens == RESUME_OUTPUT

    _, complete = events[-1]
    assert complete["profile"]["name"] == "Ada Lovelace"
    assert complete["metadata"]["sourceId"] == "src-1"

    listed = client.get("/knowledge-sources", headers=AUTH).json()["sources"]
    assert [s["id"] for s in listed] == ["src-1"]
    assert listed[0]["source_type"] == "resume"


def test_resume_stream_without_file_fails_before_streaming(client, user_id):
    response = client.post(
        "/knowledge-sources/resume/stream", headers=AUTH, data={"sourceId": "src-1"}
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Missing file or sourceId"}


def test_linkedin_stream_without_url_fails_before_streaming(client, user_id):
    response = client.post(
        "/knowledge-sources/linkedin/stream", headers=AUTH, json={"sourceId": "src-2"}
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Missing LinkedIn URL or sourceId"}


def test_github_stream_without_username_fails_before_streaming(client, user_id):
    response = client.post("/knowledge-sources/github/stream", headers=AUTH, json={})
    assert response.status_code == 500
    assert response.json() == {"error": "Missing GitHub username or sourceId"}


def test_aggregate_stream_without_sources_reports_error_event(client, user_id):
    response = client.post("/knowledge-sources/aggregate/stream", headers=AUTH)

    assert response.status_code == 200
    events = parse_sse(response.text)
    assert events[-1][0] == "error"
    assert events[-1][1]["error"].startswith("No knowledge sources found")


def test_manual_text_then_aggregate(client, user_id):
    assert client.get("/knowledge-sources/aggregate", headers=AUTH).json() == {
        "aggregated_profile": None,
        "skills": [],
    }

    response = client.post(
        "/knowledge-sources/text", headers=AUTH, json={"content": "  I mentor junior developers.  "}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Manual context added successfully"
    assert body["source"]["source_type"] == "manual_text"
    assert body["source"]["source_identifier"] == "Manual Context"
    assert body["source"]["parsed_data"]["about"] == "I mentor junior developers."
    assert body["source"]["metadata"] == {"length": len("I mentor junior developers.")}

    events = parse_sse(client.post("/knowledge-sources/aggregate/stream", headers=AUTH).text)
    assert events[-1][0] == "complete"
    assert events[-1][1]["metadata"]["sourcesCount"] == 1

    stored = client.get("/knowledge-sources/aggregate", headers=AUTH).json()
    assert stored["aggregated_profile"]["about"] == "I mentor junior developers."
    assert [s["type"] for s in stored["aggregated_profile"]["sources"]] == ["manual_text"]


def test_manual_text_requires_content(client, user_id):
    response = client.post("/knowledge-sources/text", headers=AUTH, json={"content": "   "})
    assert response.status_code == 500
    assert response.json() == {"error": "Missing content"}


def _aggregate_manual_text(client, content="I mentor junior developers."):
    client.post("/knowledge-sources/text", headers=AUTH, json={"content": content})
    events = parse_sse(client.post("/knowledge-sources/aggregate/stream", headers=AUTH).text)
    assert events[-1][0] == "complete"
    return events[-1][1]["profile"]


def test_profile_edit_before_aggregation_is_not_found(client, user_id):
    response = client.patch("/knowledge-sources/aggregate", headers=AUTH, json={"summary": "x"})
    assert response.status_code == 404
    assert response.json() == {"detail": "No aggregated profile found"}


def test_profile_edit_replaces_fields_and_keeps_sources(client, user_id):
    before = _aggregate_manual_text(client)

    response = client.patch(
        "/knowledge-sources/aggregate",
        headers=AUTH,
        json={
            "summary": "Mentor and engineer",
            "skills": ["Go", "go"],
            "experience": [{"job_title": "Mentor", "company": "Guild"}],
            "sources": [],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Profile updated successfully"
    profile = body["aggregated_profile"]
    assert profile["summary"] == "Mentor and engineer"
    assert profile["about"] == before["about"]
    assert profile["sources"] == before["sources"]
    assert profile["experience"][0]["source"] == "manual_edit"
    edited_at = datetime.fromisoformat(profile["updated_at"])
    assert edited_at >= datetime.fromisoformat(before["updated_at"])
    assert body["skills"] == ["Go"]

    stored = client.get("/knowledge-sources/aggregate", headers=AUTH).json()
    assert stored["aggregated_profile"] == profile
    assert stored["skills"] == ["Go"]


@pytest.mark.parametrize("payload", [[{"summary": "x"}], {}, {"experience": "x"}])
def test_profile_edit_rejects_invalid_data(client, user_id, payload):
    before = _aggregate_manual_text(client)

    response = client.patch("/knowledge-sources/aggregate", headers=AUTH, json=payload)

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid update data"}
    stored = client.get("/knowledge-sources/aggregate", headers=AUTH).json()
    assert stored["aggregated_profile"] == before


def test_delete_source_removes_it_from_the_listing(client, user_id):
    client.post("/knowledge-sources/text", headers=AUTH, json={"content": "Enjoys poetry"})
    source_id = client.get("/knowledge-sources", headers=AUTH).json()["sources"][0]["id"]

    response = client.delete(f"/knowledge-sources/{source_id}", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"message": "Knowledge source deleted successfully"}
    assert client.get("/knowledge-sources", headers=AUTH).json() == {"sources": []}

    again = client.delete(f"/knowledge-sources/{source_id}", headers=AUTH)
    assert again.status_code == 404
    assert again.json() == {"detail": f"Knowledge source {source_id} not found"}
