"""
HTTP-level tests for the FastAPI routes.

Tests cover:
- Identity header handling (401 without X-Clerk-User-Id)
- Error rendering (403, 404, 409, 422 bodies)
- Observer denial on every task mutation
- End-to-end flows: project creation, invitation, board, move, timer, upload
"""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
import settings
import suggestions
from tests.conftest import MANAGER_ID, MEMBER_ID, OBSERVER_ID, create_team_member, headers

logger = logging.getLogger(__name__)


# ============== Health & identity ==============


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/api/tasks"),
        ("post", "/api/tasks/move"),
        ("post", "/api/tasks/1/toggle-timer"),
        ("get", "/api/projects/1"),
        ("get", "/api/notifications"),
        ("post", "/api/projects/invitation/abc"),
    ],
)
def test_missing_identity_header_is_401(client: TestClient, method, path):
    """The identity header is checked before the request body is validated."""
    response = getattr(client, method)(path, **({"json": {}} if method == "post" else {}))
    assert response.status_code == 401, f"Expected 401, got {response.status_code}: {response.json()}"
    assert response.json()["detail"] == "Not authenticated"


def test_toggle_timer_without_identity(client: TestClient, member_task: models.Task):
    response = client.post(f"/api/tasks/{member_task.id}/toggle-timer")
    assert response.status_code == 401, f"Expected 401, got {response.status_code}: {response.json()}"
    logger.info("✓ Missing identity rejected, not treated as observer")


# ============== Users ==============


def test_sync_and_get_user(client: TestClient):
    payload = {"name": "Alice", "email": "alice@test.com", "clerk_user_id": "user_alice"}
    response = client.post("/api/users", json=payload, headers=headers("user_alice"))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"

    response = client.get("/api/users/clerk/user_alice")
    assert response.status_code == 200
    assert response.json()["email"] == "alice@test.com"

    assert client.get("/api/users/clerk/user_nobody").status_code == 404


def test_sync_other_identity_forbidden(client: TestClient):
    payload = {"name": "Eve", "email": "eve@test.com", "clerk_user_id": "user_alice"}
    response = client.post("/api/users", json=payload, headers=headers("user_eve"))
    assert response.status_code == 403, f"Expected 403, got {response.status_code}: {response.json()}"


# ============== Projects ==============


def test_create_project_flow(client: TestClient, test_db: Session, manager, member):
    payload = {
        "name": "Launch",
        "description": "Website launch",
        "start_date": "2024-06-01",
        "end_date": "2024-07-01",
        "invited_members": ["member@test.com", "newcomer@test.com"],
    }
    response = client.post("/api/projects", json=payload, headers=headers(MANAGER_ID))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"

    body = response.json()
    assert [c["title"] for c in body["columns"]] == ["À faire", "En cours", "En révision", "Terminé"]
    assert test_db.query(models.InvitedMember).filter_by(email="newcomer@test.com").count() == 1

    response = client.get(f"/api/projects/user/{MEMBER_ID}")
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["invited_projects"]] == [body["id"]]
    logger.info("✓ Project created via API with default columns and invitations")


def test_get_board_as_observer(client: TestClient, project, member_task):
    response = client.get(f"/api/projects/{project.id}", headers=headers(OBSERVER_ID))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"

    body = response.json()
    assert body["columns"][0]["tasks"][0]["id"] == member_task.id
    assert {m["role"] for m in body["memberships"]} == {"manager", "member", "observer"}


def test_get_board_outsider_forbidden(client: TestClient, project, outsider):
    response = client.get(f"/api/projects/{project.id}", headers=headers(outsider.clerk_user_id))
    assert response.status_code == 403
    assert response.json()["required_role"] == "observer"


def test_get_board_unknown_project(client: TestClient, manager):
    response = client.get("/api/projects/99999", headers=headers(MANAGER_ID))
    assert response.status_code == 404
    assert response.json()["detail"] == "Project not found"


def test_project_stats(client: TestClient, project, member_task):
    response = client.get(f"/api/projects/{project.id}/stats", headers=headers(MEMBER_ID))
    assert response.status_code == 200
    assert response.json()["total_tasks"] == 1
    assert response.json()["tasks_by_status"]["à_faire"] == 1


def test_invite_and_accept(client: TestClient, test_db: Session, project):
    response = client.post(
        f"/api/projects/{project.id}/invitations",
        json={"invitations": [{"email": "newcomer@test.com", "role": "observer"}]},
        headers=headers(MANAGER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["count"] == 1

    token = test_db.query(models.InvitedMember).one().invitation_token
    create_team_member(test_db, "user_newcomer", "Nina", "newcomer@test.com")

    response = client.post(f"/api/projects/invitation/{token}", headers=headers("user_newcomer"))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["role"] == "observer"
    assert response.json()["project"]["id"] == project.id

    response = client.post(f"/api/projects/invitation/{token}", headers=headers("user_newcomer"))
    assert response.status_code == 409, f"Expected 409, got {response.status_code}: {response.json()}"
    assert response.json()["detail"] == "Invitation already processed"
    logger.info("✓ Invitation accepted once, rejected the second time")


def test_invite_as_member_forbidden(client: TestClient, project):
    response = client.post(
        f"/api/projects/{project.id}/invitations",
        json={"invitations": [{"email": "x@test.com"}]},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 403


def test_invite_requires_at_least_one(client: TestClient, project):
    response = client.post(
        f"/api/projects/{project.id}/invitations", json={"invitations": []}, headers=headers(MANAGER_ID)
    )
    assert response.status_code == 422


# ============== Tasks ==============


def test_create_move_and_time_task(client: TestClient, columns):
    response = client.post(
        "/api/tasks",
        json={"column_id": columns[0].id, "title": "API task", "priority": "haute", "tags": ["api"]},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    task = response.json()
    assert task["timer_active"] is True
    assert task["status"] == "à_faire"

    response = client.post(
        "/api/tasks/move",
        json={"task_id": task["id"], "source_column_id": columns[0].id, "target_column_id": columns[3].id},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["status"] == "terminé"
    assert response.json()["column_id"] == columns[3].id

    response = client.post(
        "/api/tasks/move",
        json={"task_id": task["id"], "source_column_id": columns[0].id, "target_column_id": columns[1].id},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 409

    response = client.post(f"/api/tasks/{task['id']}/toggle-timer", headers=headers(MEMBER_ID))
    assert response.status_code == 200
    assert response.json()["timer_active"] is False
    logger.info("✓ Create, move and timer flow")


def test_update_and_delete_task(client: TestClient, member_task):
    response = client.put(
        f"/api/tasks/{member_task.id}", json={"description": "Plus de détails"}, headers=headers(MEMBER_ID)
    )
    assert response.status_code == 200
    assert response.json()["description"] == "Plus de détails"
    assert response.json()["title"] == member_task.title

    response = client.put(f"/api/tasks/{member_task.id}", json={"title": None}, headers=headers(MEMBER_ID))
    assert response.status_code == 422
    assert response.json()["field"] == "title"

    response = client.delete(f"/api/tasks/{member_task.id}", headers=headers(MEMBER_ID))
    assert response.status_code == 200
    response = client.delete(f"/api/tasks/{member_task.id}", headers=headers(MEMBER_ID))
    assert response.status_code == 404


def test_observer_denied_every_task_mutation(client: TestClient, columns, manager_task, upload_dir):
    observer_headers = headers(OBSERVER_ID)
    task_id = manager_task.id

    responses = {
        "create": client.post(
            "/api/tasks", json={"column_id": columns[0].id, "title": "x"}, headers=observer_headers
        ),
        "update": client.put(f"/api/tasks/{task_id}", json={"title": "x"}, headers=observer_headers),
        "move": client.post(
            "/api/tasks/move",
            json={"task_id": task_id, "source_column_id": columns[0].id, "target_column_id": columns[1].id},
            headers=observer_headers,
        ),
        "timer": client.post(f"/api/tasks/{task_id}/toggle-timer", headers=observer_headers),
        "comment": client.post(f"/api/tasks/{task_id}/comments", json={"text": "hi"}, headers=observer_headers),
        "attachment": client.post(
            f"/api/tasks/{task_id}/attachments",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=observer_headers,
        ),
        "delete": client.delete(f"/api/tasks/{task_id}", headers=observer_headers),
    }

    for action, response in responses.items():
        assert response.status_code == 403, f"{action}: expected 403, got {response.status_code}: {response.json()}"
    logger.info("✓ Observer denied on every task mutation")


def test_member_cannot_touch_others_task(client: TestClient, manager_task):
    response = client.put(f"/api/tasks/{manager_task.id}", json={"title": "x"}, headers=headers(MEMBER_ID))
    assert response.status_code == 403


def test_comment_and_attachment(client: TestClient, member_task, upload_dir):
    response = client.post(
        f"/api/tasks/{member_task.id}/comments", json={"text": "Premier commentaire"}, headers=headers(MEMBER_ID)
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["text"] == "Premier commentaire"

    response = client.post(
        f"/api/tasks/{member_task.id}/attachments",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    body = response.json()
    assert body["name"] == "notes.txt"
    assert body["size"] == 5
    assert body["type"] == "text/plain"


def test_attachment_too_large(client: TestClient, member_task, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "MAX_ATTACHMENT_SIZE", 4)
    response = client.post(
        f"/api/tasks/{member_task.id}/attachments",
        files={"file": ("big.txt", b"123456789", "text/plain")},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 422
    assert response.json()["field"] == "file"


# ============== AI generation ==============


def test_generate_task_local(client: TestClient, columns, monkeypatch):
    monkeypatch.setattr(settings, "HUGGINGFACE_API_KEY", None)
    response = client.post(
        "/api/ai/generate-task",
        json={"description": "Créer une page de connexion urgente", "column_id": columns[0].id},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    body = response.json()
    assert body["priority"] == "urgente"
    assert "généré_par_ia" in body["tags"]


def test_generate_task_falls_back_when_model_fails(client: TestClient, columns, monkeypatch):
    class DownRemote:
        def __init__(self, *args, **kwargs):
            pass

        def suggest(self, description):
            raise suggestions.ExternalServiceError("model down")

    monkeypatch.setattr(settings, "HUGGINGFACE_API_KEY", "hf_key")
    monkeypatch.setattr(suggestions, "RemoteSuggestionSource", DownRemote)

    response = client.post(
        "/api/ai/generate-task",
        json={"description": "Créer une page de connexion urgente", "column_id": columns[0].id},
        headers=headers(MEMBER_ID),
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["title"].startswith("Créer")


def test_generate_task_short_description(client: TestClient, columns):
    response = client.post(
        "/api/ai/generate-task", json={"description": "court", "column_id": columns[0].id}, headers=headers(MEMBER_ID)
    )
    assert response.status_code == 422


# ============== Notifications ==============


def test_notifications_endpoints(client: TestClient, test_db: Session, member):
    for title in ("a", "b"):
        test_db.add(models.Notification(user_id=member.id, type="info", title=title, data={}))
    test_db.commit()

    response = client.get("/api/notifications", headers=headers(MEMBER_ID))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    body = response.json()
    assert body["unread_count"] == 2

    first_id = body["notifications"][0]["id"]
    response = client.put(f"/api/notifications/{first_id}/read", headers=headers(MEMBER_ID))
    assert response.status_code == 200
    assert response.json()["read"] is True

    response = client.put("/api/notifications/read-all", headers=headers(MEMBER_ID))
    assert response.status_code == 200
    assert response.json()["count"] == 1


def test_delete_notification_endpoint(client: TestClient, test_db: Session, member):
    notification = models.Notification(user_id=member.id, type="info", title="old", data={})
    test_db.add(notification)
    test_db.commit()

    response = client.delete(f"/api/notifications/{notification.id}", headers=headers(MEMBER_ID))
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json() == {"message": "Notification deleted"}

    response = client.delete(f"/api/notifications/{notification.id}", headers=headers(MEMBER_ID))
    assert response.status_code == 404


def test_notifications_unknown_team_member(client: TestClient):
    response = client.get("/api/notifications", headers=headers("user_nobody"))
    assert response.status_code == 404
