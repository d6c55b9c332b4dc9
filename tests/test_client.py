import json
from datetime import date

import httpx
import pytest

from fieldtrack.sync.client import AchievementStoreClient, classify_response
from fieldtrack.sync.errors import (
    AuthorizationError,
    ConflictError,
    MediaUploadError,
    NetworkError,
    RemoteStoreError,
    ValidationError,
)
from fieldtrack.sync.models import AchievementRow
from fieldtrack.sync.storage import SupabaseStorage

DAY = date(2025, 3, 10)


def make_client(handler):
    return AchievementStoreClient(
        "https://demo.supabase.co/", "anon-key", transport=httpx.MockTransport(handler)
    )


@pytest.mark.parametrize(
    "status,body,expected",
    [
        (409, {"code": "23505", "message": "duplicate key value"}, ConflictError),
        (401, {"message": "JWT expired"}, AuthorizationError),
        (403, {"code": "42501", "message": "permission denied"}, AuthorizationError),
        (400, {"code": "22P02", "message": "invalid input syntax"}, ValidationError),
        (422, None, ValidationError),
        (503, None, NetworkError),
        (429, None, NetworkError),
        (404, None, RemoteStoreError),
    ],
)
def test_classify_response(status, body, expected):
    response = httpx.Response(status, json=body) if body else httpx.Response(status)
    error = classify_response(response)
    assert type(error) is expected


def test_classify_success():
    assert classify_response(httpx.Response(201, json=[])) is None


async def test_insert_sends_payload_without_id():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=[{**seen["body"], "id": 7}])

    client = make_client(handler)
    row = await client.insert(AchievementRow(id="stale", task_id="task-1", date=DAY, value=12))
    await client.disconnect()

    assert seen["method"] == "POST"
    assert seen["path"] == "/rest/v1/daily_achievements"
    assert seen["headers"]["apikey"] == "anon-key"
    assert seen["headers"]["authorization"] == "Bearer anon-key"
    assert "id" not in seen["body"]
    assert seen["body"]["date"] == "2025-03-10"
    assert row.id == "7"
    assert row.value == 12


async def test_find_by_task_and_date_filters():
    def handler(request):
        assert request.url.params["task_id"] == "eq.task-1"
        assert request.url.params["date"] == "eq.2025-03-10"
        return httpx.Response(200, json=[{"id": "a1", "task_id": "task-1", "date": "2025-03-10", "value": 3}])

    client = make_client(handler)
    row = await client.find_by_task_and_date("task-1", DAY)

    assert row.id == "a1"
    assert row.key == "task-1:2025-03-10"


async def test_find_missing_row():
    client = make_client(lambda request: httpx.Response(200, json=[]))
    assert await client.find_by_task_and_date("task-1", DAY) is None


async def test_duplicate_insert_raises_conflict():
    client = make_client(lambda request: httpx.Response(409, json={"code": "23505", "message": "duplicate key"}))

    with pytest.raises(ConflictError) as exc_info:
        await client.insert(AchievementRow(task_id="task-1", date=DAY))

    assert exc_info.value.code == "23505"


async def test_transport_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(NetworkError):
        await client.list_for_task("task-1")


async def test_update_of_missing_row():
    client = make_client(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(RemoteStoreError):
        await client.update("gone", AchievementRow(task_id="task-1", date=DAY))


async def test_delete_by_id():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.params["id"]))
        return httpx.Response(204)

    client = make_client(handler)
    await client.delete("a1")

    assert seen == [("DELETE", "eq.a1")]


async def test_storage_upload_returns_public_url():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(200, json={"Key": "task-files/task-1/a.png"})

    storage = SupabaseStorage("https://demo.supabase.co", "anon-key", transport=httpx.MockTransport(handler))
    url = await storage.upload(b"png", "task-1/2025-03-10/1.png", "image/png")

    assert seen["url"] == "https://demo.supabase.co/storage/v1/object/task-files/task-1/2025-03-10/1.png"
    assert seen["content_type"] == "image/png"
    assert url == "https://demo.supabase.co/storage/v1/object/public/task-files/task-1/2025-03-10/1.png"


async def test_storage_upload_failure():
    storage = SupabaseStorage(
        "https://demo.supabase.co",
        "anon-key",
        transport=httpx.MockTransport(lambda request: httpx.Response(413, json={"error": "Payload too large"})),
    )

    with pytest.raises(MediaUploadError):
        await storage.upload(b"big", "task-1/2025-03-10/1.mp4", "video/mp4")
