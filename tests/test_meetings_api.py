import asyncio

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.schemas.meeting import SummarizedActionItem, SummarizerResult, TeamMember
from app.schemas.sync import Team
from app.services.meeting_data_store import clear_meeting_data_store_cache, create_meeting_data_store

_TRANSCRIPT = "Launch Review\nSarah: I will fix the login bug.\nMike: sounds good.\n"


class _FakeSummarizer:
    async def summarize(self, transcript: str, roster: list[TeamMember]) -> SummarizerResult:
        return SummarizerResult(
            summary="Launch blockers were reviewed.",
            action_items=[
                SummarizedActionItem(description="Fix the login bug", owner="Sarah"),
                SummarizedActionItem(description="Update the docs"),
            ],
        )


@pytest.fixture(autouse=True)
def reset_meeting_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEETING_DATA_STORE", "memory")
    monkeypatch.setattr(
        "app.services.team_aware_processor.create_transcript_summarizer",
        lambda settings: _FakeSummarizer(),
    )
    clear_meeting_data_store_cache()
    get_settings.cache_clear()
    app.state.sync_coordinator = None
    yield
    clear_meeting_data_store_cache()
    get_settings.cache_clear()
    app.state.sync_coordinator = None


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _seed_team() -> None:
    store = create_meeting_data_store(get_settings())
    team = Team(
        id="team-1",
        name="Launch",
        created_by="u1",
        members=[
            TeamMember(user_id="u1", display_name="Sarah Lee", email="sarah@example.com"),
            TeamMember(user_id="u2", display_name="Mike Chen", email="mike@example.com"),
        ],
    )
    asyncio.run(store.save_team(team))


def test_process_and_assign_flow(client: TestClient) -> None:
    _seed_team()

    process_response = client.post(
        "/api/meetings/process",
        json={"transcript": _TRANSCRIPT, "user_id": "u2", "team_id": "team-1"},
    )
    assert process_response.status_code == 201
    payload = process_response.json()
    meeting = payload["meeting"]
    assert meeting["title"] == "Launch Review"
    assert [item["assignee_id"] for item in meeting["action_items"]] == ["u1", None]
    assert payload["assignment_summary"]["auto_assigned"] == 1
    assert payload["assignment_summary"]["speaker_matches"]["Sarah"]["user_id"] == "u1"
    assert len(payload["suggestions"]) == 1
    assert [member["user_id"] for member in payload["suggestions"][0]["suggestions"]] == ["u2", "u1"]

    task_id = payload["unassigned_tasks"][0]["id"]
    assign_response = client.post(
        f"/api/v1/meetings/{meeting['id']}/action-items/{task_id}/assignment",
        json={"assignee_id": "u2", "assigned_by": "u1"},
    )
    assert assign_response.status_code == 200
    assert assign_response.json()["assignee_name"] == "Mike Chen"

    snapshot_response = client.get("/api/sync/users/u2/snapshot")
    assert snapshot_response.status_code == 200
    snapshot = snapshot_response.json()
    assert snapshot["meetings"][0]["id"] == meeting["id"]
    assert [task["id"] for task in snapshot["tasks"]] == [task_id]
    assert [notification["type"] for notification in snapshot["notifications"]] == ["task_assignment"]


def test_process_rejects_blank_transcript(client: TestClient) -> None:
    response = client.post("/api/meetings/process", json={"transcript": "  ", "user_id": "u1"})

    assert response.status_code == 422
    assert response.json()["detail"] == "Transcript content is required."


def test_process_reports_unknown_team(client: TestClient) -> None:
    response = client.post(
        "/api/meetings/process",
        json={"transcript": _TRANSCRIPT, "user_id": "u1", "team_id": "missing"},
    )

    assert response.status_code == 404


def test_assignment_reports_unknown_meeting(client: TestClient) -> None:
    response = client.post(
        "/api/meetings/unknown/action-items/task-1/assignment",
        json={"assignee_id": "u2", "assigned_by": "u1"},
    )

    assert response.status_code == 404
    assert "unknown" in response.json()["detail"]


def test_connection_state_round_trip(client: TestClient) -> None:
    offline_response = client.post("/api/sync/connection", json={"is_online": False})
    assert offline_response.status_code == 200
    assert offline_response.json() == {"is_online": False, "pending_updates": 0}

    online_response = client.post("/api/v1/sync/connection", json={"is_online": True})
    assert online_response.status_code == 200
    assert online_response.json() == {"is_online": True, "pending_updates": 0}


def test_update_action_item_status(client: TestClient) -> None:
    _seed_team()
    process_response = client.post(
        "/api/meetings/process",
        json={"transcript": _TRANSCRIPT, "user_id": "u2", "team_id": "team-1"},
    )
    meeting = process_response.json()["meeting"]
    task_id = meeting["action_items"][0]["id"]

    status_response = client.patch(
        f"/api/meetings/{meeting['id']}/action-items/{task_id}/status",
        json={"status": "completed"},
    )
    assert status_response.status_code == 200
    assert status_response.json()["status"] == "completed"

    snapshot = client.get("/api/v1/sync/users/u1/snapshot").json()
    assert [(task["id"], task["status"]) for task in snapshot["tasks"]] == [(task_id, "completed")]

    invalid_response = client.patch(
        f"/api/meetings/{meeting['id']}/action-items/{task_id}/status",
        json={"status": "archived"},
    )
    assert invalid_response.status_code == 422

    missing_response = client.patch(
        f"/api/meetings/{meeting['id']}/action-items/missing/status",
        json={"status": "completed"},
    )
    assert missing_response.status_code == 404
