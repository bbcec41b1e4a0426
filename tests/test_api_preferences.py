from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.services.datastore import DataStore


def test_preferences_require_sign_in(client: TestClient) -> None:
    response = client.get("/api/preferences")

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


def test_defaults_when_no_row_exists(radiologist: TestClient) -> None:
    response = radiologist.get("/api/preferences")

    assert response.status_code == 200
    assert response.json()["data"] == {
        "theme": "system",
        "defaultTemplate": None,
        "autoSave": True,
        "yoloMode": False,
        "onboardingCompleted": False,
    }


def test_partial_update_writes_only_sent_fields(radiologist: TestClient, datastore: DataStore) -> None:
    response = radiologist.put("/api/preferences", json={"theme": "dark"})

    assert response.status_code == 200
    assert response.json()["data"]["theme"] == "dark"
    row = datastore.select_one("user_preferences", {"user_id": "mock-user-radiologist-123"})
    assert row is not None
    assert "yolo_mode_enabled" not in row

    radiologist.put("/api/preferences", json={"yoloMode": True, "autoSave": False})
    data = radiologist.get("/api/preferences").json()["data"]
    assert data["theme"] == "dark"
    assert data["yoloMode"] is True
    assert data["autoSave"] is False
    row = datastore.select_one("user_preferences", {"user_id": "mock-user-radiologist-123"})
    assert row["keyboard_shortcuts_enabled"] is False


def test_invalid_theme_is_rejected(radiologist: TestClient) -> None:
    response = radiologist.put("/api/preferences", json={"theme": "sepia"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["validationErrors"]["theme"] == "Invalid theme value. Must be light, dark, or system."


def test_null_theme_is_rejected(radiologist: TestClient) -> None:
    response = radiologist.put("/api/preferences", json={"theme": None})

    assert response.status_code == 400
    assert "theme" in response.json()["validationErrors"]


@pytest.mark.parametrize("field", ["autoSave", "yoloMode", "onboardingCompleted"])
def test_null_flags_are_rejected_and_not_stored(radiologist: TestClient, datastore: DataStore, field: str) -> None:
    response = radiologist.put("/api/preferences", json={field: None})

    assert response.status_code == 400
    assert field in response.json()["validationErrors"]
    assert datastore.select_one("user_preferences", {"user_id": "mock-user-radiologist-123"}) is None
    assert radiologist.get("/api/preferences").status_code == 200


def test_null_columns_read_as_defaults(radiologist: TestClient, datastore: DataStore) -> None:
    datastore.upsert(
        "user_preferences",
        {
            "user_id": "mock-user-radiologist-123",
            "theme": "dark",
            "keyboard_shortcuts_enabled": None,
            "yolo_mode_enabled": None,
            "onboarding_completed": None,
        },
        on_conflict="user_id",
    )

    response = radiologist.get("/api/preferences")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["theme"] == "dark"
    assert data["autoSave"] is True
    assert data["yoloMode"] is False
    assert data["onboardingCompleted"] is False


def test_malformed_json_is_an_invalid_request(radiologist: TestClient) -> None:
    response = radiologist.put(
        "/api/preferences", content=b"{not json", headers={"content-type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid Request"
