import io
import logging
from datetime import date

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from fieldtrack.main import _log_sync_status, create_app
from fieldtrack.schemas import TaskCreate
from fieldtrack.sync.errors import AuthorizationError, NetworkError
from fieldtrack.sync.models import AchievementRow, SyncState, SyncStatus

TASK = {
    "id": "task-1",
    "title": "Lay fibre cable",
    "start_date": "2025-03-01",
    "end_date": "2025-03-31",
    "total_target": 100,
}
DAY_URL = "/api/tasks/task-1/achievements/2025-03-10"


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


@pytest.fixture
def started(client):
    client.post("/api/tasks", json=TASK)
    client.post("/api/tasks/task-1/start")
    return client


def test_root_and_status(client):
    assert client.get("/").json()["version"] == "1.0.0"

    status = client.get("/status").json()
    assert status["status"] == "running"
    assert status["online"] is True
    assert status["pending_offline"] == 0


def test_create_and_start_task(client):
    response = client.post("/api/tasks", json=TASK)
    assert response.status_code == 201
    body = response.json()
    assert body["display_status"] == "Pending (Overdue)"
    assert body["progress"] == 0
    assert body["remaining_target"] == 100

    body = client.post("/api/tasks/task-1/start").json()
    assert body["status"] == "in-progress"
    assert body["display_status"] == "In Progress"

    assert client.post("/api/tasks/task-1/start").status_code == 409


def test_unknown_task(client):
    response = client.get("/api/tasks/nope")
    assert response.status_code == 404
    assert response.json()["error"] == "UnknownTaskError"


def test_record_value(started):
    response = started.put(DAY_URL, json={"value": 40, "notes": "north trench"})

    assert response.status_code == 200
    body = response.json()
    assert body["sync"]["outcome"] == "saved"
    assert body["task"]["total_achieved"] == 40
    assert body["task"]["progress"] == 40
    (achievement,) = body["task"]["achievements"]
    assert achievement["notes"] == "north trench"
    assert achievement["id"] == "1"


def test_record_value_needs_confirmation(started):
    started.put("/api/tasks/task-1/achievements/2025-03-09", json={"value": 80})

    response = started.put(DAY_URL, json={"value": 50})

    assert response.status_code == 409
    assert response.json()["headroom"] == 20
    assert started.get("/api/tasks/task-1").json()["total_achieved"] == 80

    response = started.put(DAY_URL, json={"value": 50, "override": True})
    assert response.status_code == 200
    assert response.json()["task"]["mission_complete"] is True


def test_record_invalid_value(started):
    response = started.put(DAY_URL, json={"value": -5})
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_record_value_before_start(client):
    client.post("/api/tasks", json=TASK)
    assert client.put(DAY_URL, json={"value": 5}).status_code == 409


def test_offline_save_is_queued_then_flushed(started, remote):
    remote.fail("find", *[NetworkError("unreachable") for _ in range(3)])

    body = started.put(DAY_URL, json={"value": 10}).json()
    assert body["sync"] == {"outcome": "queued", "message": "Saved locally, will sync later", "attempts": 3}

    pending = started.get("/api/sync/pending").json()
    assert pending["pending"] == 1
    assert pending["entries"][0]["value"] == 10
    (status,) = pending["statuses"]
    assert status["key"] == "task-1:2025-03-10"
    assert status["state"] == "queued"

    flushed = started.post("/api/sync/flush").json()
    assert flushed == {"synced": ["task-1:2025-03-10"], "failed": [], "pending": 0}
    assert started.get("/api/sync/pending").json() == {"pending": 0, "entries": [], "statuses": []}


def test_connectivity_restored_flushes(started, remote):
    started.post("/api/sync/connectivity", json={"online": False})
    remote.fail("find", *[NetworkError("unreachable") for _ in range(3)])
    started.put(DAY_URL, json={"value": 10})

    body = started.post("/api/sync/connectivity", json={"online": True}).json()

    assert body == {"online": True, "pending_offline": 0}


def test_auth_failure_surfaces(started, remote):
    remote.fail("find", AuthorizationError("401: JWT expired", 401))

    response = started.put(DAY_URL, json={"value": 10})

    assert response.status_code == 403
    assert "JWT expired" in response.json()["detail"]


def test_delete_achievement_requires_confirmation(started, remote):
    started.put(DAY_URL, json={"value": 40})

    assert started.delete(DAY_URL).status_code == 409

    response = started.delete(DAY_URL, params={"confirm": "true"})
    assert response.status_code == 200
    assert response.json()["achievements"] == []
    assert remote.rows == {}


def test_check_in_and_out(started, clock):
    response = started.post(f"{DAY_URL}/check-in", json={"latitude": -36.85, "longitude": 174.76, "members": ["ana"]})
    assert response.status_code == 200
    assert response.json()["task"]["achievements"][0]["session"] == "checked_in"

    clock.advance(hours=9)
    response = started.post(f"{DAY_URL}/check-out", json={"latitude": -36.85, "longitude": 174.76})

    achievement = response.json()["task"]["achievements"][0]
    assert achievement["session"] == "checked_out"
    assert achievement["work_hours"] == 9
    assert achievement["overtime_hours"] == 1


def test_check_in_without_location(started):
    response = started.post(f"{DAY_URL}/check-in", json={"members": ["ana"]})
    assert response.status_code == 424


def test_check_in_other_day(started):
    response = started.post(
        "/api/tasks/task-1/achievements/2025-03-09/check-in",
        json={"latitude": 1.0, "longitude": 1.0, "members": ["ana"]},
    )
    assert response.status_code == 409


def test_attach_and_detach_media(started, storage):
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64)).save(buffer, "PNG")

    response = started.post(f"{DAY_URL}/media", files={"file": ("site.png", buffer.getvalue(), "image/png")})

    assert response.status_code == 200
    (media,) = response.json()["task"]["achievements"][0]["media"]
    assert media["uploaded"] is True
    assert media["name"] == "site.png"
    assert len(storage.uploads) == 1

    response = started.delete(f"{DAY_URL}/media/{media['timestamp']}")
    assert response.status_code == 200
    assert response.json()["task"]["achievements"][0]["media"] == []


def test_attach_unsupported_file(started):
    response = started.post(f"{DAY_URL}/media", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 422


def test_voice_recording(started, clock):
    assert started.post(f"{DAY_URL}/recording").status_code == 201
    assert started.post(f"{DAY_URL}/recording").status_code == 409

    assert started.put(f"{DAY_URL}/recording", content=b"abc").json() == {"size": 3, "chunks": 1}
    assert started.put(f"{DAY_URL}/recording", content=b"de").json() == {"size": 5, "chunks": 2}
    clock.advance(seconds=4)

    response = started.post(f"{DAY_URL}/recording/stop")

    (note,) = response.json()["task"]["achievements"][0]["voice_notes"]
    assert note["duration"] == 4
    assert note["size"] == 5

    response = started.delete(f"{DAY_URL}/voice-notes/{note['timestamp']}")
    assert response.json()["task"]["achievements"][0]["voice_notes"] == []


def test_cancel_recording(started):
    started.post(f"{DAY_URL}/recording")
    assert started.delete(f"{DAY_URL}/recording").json() == {"status": "cancelled"}
    assert started.post(f"{DAY_URL}/recording/stop").status_code == 409


def test_hydrate(started, remote):
    remote.seed(AchievementRow(task_id="task-1", date=date(2025, 3, 4), value=6))

    body = started.post("/api/tasks/task-1/hydrate").json()

    assert [a["date"] for a in body["achievements"]] == ["2025-03-04"]
    assert body["total_achieved"] == 6


def test_upload_voice_note(started, storage):
    response = started.post(
        f"{DAY_URL}/voice-notes",
        params={"duration": 2.5},
        files={"file": ("memo.webm", b"\x1aE\xdf\xa3audio", "audio/webm")},
    )

    assert response.status_code == 200
    (note,) = response.json()["task"]["achievements"][0]["voice_notes"]
    assert note["duration"] == 2.5
    assert note["uploaded"] is True
    assert storage.uploads[0][0].startswith("task-1/2025-03-10/audio_")


def test_upload_voice_note_rejects_non_audio(started):
    response = started.post(f"{DAY_URL}/voice-notes", files={"file": ("a.png", b"png", "image/png")})
    assert response.status_code == 422


def test_zero_planned_effort_is_kept(client):
    body = client.post("/api/tasks", json={**TASK, "planned_effort_hours": 0}).json()
    assert body["planned_effort_hours"] == 0

    assert TaskCreate(**TASK).to_task(6.0).planned_effort_hours == 6.0
    assert TaskCreate(**TASK, planned_effort_hours=0).to_task(6.0).planned_effort_hours == 0


def test_sync_status_is_logged(caplog):
    with caplog.at_level(logging.INFO, logger="fieldtrack.main"):
        _log_sync_status(SyncStatus(state=SyncState.QUEUED, key="task-1:2025-03-10", message="Saved locally"))
        _log_sync_status(SyncStatus(state=SyncState.RETRYING, key="task-1:2025-03-10", message="Retrying (1/3)"))

    queued, retrying = caplog.records
    assert queued.levelname == "WARNING"
    assert "task-1:2025-03-10: Saved locally" in queued.getMessage()
    assert retrying.getMessage() == "Sync task-1:2025-03-10: retrying Retrying (1/3)"
