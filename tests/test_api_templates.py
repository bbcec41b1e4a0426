from __future__ import annotations

from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.services.auth import MOCK_AUTH_COOKIE, AuthClient
from src.services.datastore import DataStore
from src.session.activity import SESSION_TIMESTAMP_COOKIE
from src.session.scheduler import system_clock
from src.utils.config import get_settings

CT_CHEST_ID = "11111111-1111-4111-8111-111111111111"
DRAFT_TEMPLATE_ID = "33333333-3333-4333-8333-333333333333"


def _form(**overrides: Any) -> Dict[str, Any]:
    form = {
        "name": "Knee MRI Routine",
        "modality": "MRI",
        "bodyPart": "Knee",
        "description": "Routine knee MRI for internal derangement.",
        "content": "FINDINGS:\n[findings]",
        "sections": [{"id": "section-1", "name": "FINDINGS", "content": "[findings]"}],
    }
    form.update(overrides)
    return form


def test_listing_requires_a_session_timestamp(client: TestClient) -> None:
    client.cookies.set(MOCK_AUTH_COOKIE, "radiologist")

    response = client.get("/api/templates")

    assert response.status_code == 401
    assert response.json()["code"] == "SESSION_EXPIRED"


def test_listing_rejects_a_stale_session(client: TestClient) -> None:
    client.cookies.set(MOCK_AUTH_COOKIE, "radiologist")
    client.cookies.set(SESSION_TIMESTAMP_COOKIE, str(system_clock() - 31 * 60 * 1000))

    response = client.get("/api/templates")

    assert response.status_code == 401
    assert response.json()["error"] == "Session Expired"


def test_session_window_follows_configured_timeout(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SESSION_TIMEOUT_MINUTES", "5")
    get_settings.cache_clear()
    client.cookies.set(MOCK_AUTH_COOKIE, "radiologist")
    client.cookies.set(SESSION_TIMESTAMP_COOKIE, str(system_clock() - 6 * 60 * 1000))

    response = client.get("/api/templates")

    assert response.status_code == 401
    assert response.json()["code"] == "SESSION_EXPIRED"


def test_listing_returns_personal_then_published_global(radiologist: TestClient) -> None:
    radiologist.post("/api/templates", json=_form())

    body = radiologist.get("/api/templates").json()

    names = [(row["name"], row["isGlobal"]) for row in body["data"]]
    assert names[0] == ("Knee MRI Routine", False)
    assert ("CT Chest", True) in names
    assert all(name != "US Abdomen" for name, _ in names)
    assert body["user"] == {"id": "mock-user-radiologist-123", "role": "radiologist"}


def test_create_reports_first_failure_per_field(radiologist: TestClient) -> None:
    response = radiologist.post("/api/templates", json=_form(name="ab", description="short"))

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Template data failed validation"
    assert body["validationErrors"]["name"] == "Template name must be at least 3 characters"
    assert body["validationErrors"]["description"] == "Description must be at least 10 characters"


def test_validate_endpoint(radiologist: TestClient) -> None:
    ok = radiologist.post("/api/templates/validate", json=_form())
    bad = radiologist.post("/api/templates/validate", json=_form(name="Bad/Name"))

    assert ok.status_code == 200
    assert ok.json()["message"] == "Template data is valid"
    assert bad.status_code == 400
    assert "hyphens" in bad.json()["validationErrors"]["name"]


def test_personal_template_lifecycle(radiologist: TestClient) -> None:
    created = radiologist.post("/api/templates", json=_form())
    assert created.status_code == 201
    template = created.json()["data"]
    assert template["content"]["rawContent"] == "FINDINGS:\n[findings]"

    fetched = radiologist.get(f"/api/templates/{template['id']}")
    assert fetched.json()["data"]["name"] == "Knee MRI Routine"

    updated = radiologist.put(f"/api/templates/{template['id']}", json=_form(name="Knee MRI Sports"))
    assert updated.status_code == 200
    assert updated.json()["data"]["name"] == "Knee MRI Sports"

    assert radiologist.delete(f"/api/templates/{template['id']}").status_code == 204
    assert radiologist.get(f"/api/templates/{template['id']}").status_code == 404


def test_other_users_templates_are_forbidden(radiologist: TestClient, datastore: DataStore) -> None:
    foreign = datastore.insert(
        "templates_personal",
        {"user_id": "someone-else", "name": "Theirs", "modality": "CT", "body_part": "Head", "content": {}},
    )

    update = radiologist.put(f"/api/templates/{foreign['id']}", json=_form())
    delete = radiologist.delete(f"/api/templates/{foreign['id']}")
    missing = radiologist.delete("/api/templates/not-a-template")

    assert update.status_code == 403
    assert delete.status_code == 403
    assert delete.json()["message"] == "You do not have permission to delete this template"
    assert missing.status_code == 404


def test_clone_published_global_template(radiologist: TestClient) -> None:
    response = radiologist.post("/api/templates/clone", json={"globalTemplateId": CT_CHEST_ID})

    assert response.status_code == 201
    clone = response.json()["data"]
    assert clone["name"] == "CT Chest (Copy)"
    assert clone["originGlobalId"] == CT_CHEST_ID
    assert clone["isGlobal"] is False


def test_clone_rejects_bad_ids_and_drafts(radiologist: TestClient) -> None:
    invalid = radiologist.post("/api/templates/clone", json={"globalTemplateId": "not-a-uuid"})
    draft = radiologist.post("/api/templates/clone", json={"globalTemplateId": DRAFT_TEMPLATE_ID})

    assert invalid.status_code == 400
    assert invalid.json()["message"] == "Invalid clone request"
    assert draft.status_code == 404
    assert draft.json()["message"] == "Global template not found or not published"


def test_generate_template_returns_model_output(radiologist: TestClient, ai_client) -> None:
    ai_client.json_output = {"name": "Knee MRI", "sections": []}

    response = radiologist.post(
        "/api/templates/generate", json={"description": "knee mri for sports injuries", "modality": "MRI"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"name": "Knee MRI", "sections": []}}
    assert ai_client.calls[0]["temperature"] == 0.3
    assert "schema" in ai_client.calls[0]


def test_generate_template_failure(radiologist: TestClient, ai_client) -> None:
    ai_client.fail = True

    response = radiologist.post("/api/templates/generate", json={"description": "knee"})

    assert response.status_code == 500
    assert response.json()["message"] == "An error occurred while generating the template. Please try again."


def test_suggest_streams_plain_text(radiologist: TestClient, ai_client) -> None:
    ai_client.stream_chunks = ["## FINDINGS\n", "Describe the menisci."]

    response = radiologist.post(
        "/api/templates/suggest",
        json={"modality": "MRI", "bodyPart": "Knee", "requestType": "sections"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "## FINDINGS\nDescribe the menisci."
    assert "MRI" in ai_client.calls[0]["system_prompt"]


def test_ai_routes_report_missing_configuration(datastore: DataStore) -> None:
    app = create_app(datastore=datastore, auth=AuthClient(use_mock=True), ai_client=None)
    with TestClient(app) as client:
        client.cookies.set(MOCK_AUTH_COOKIE, "radiologist")
        response = client.post("/api/templates/generate", json={"description": "knee"})

    assert response.status_code == 500
    assert response.json()["error"] == "Configuration Error"
