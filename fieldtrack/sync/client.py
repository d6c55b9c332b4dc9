"""Remote achievement store client (Supabase / PostgREST over HTTP)."""

import asyncio
import logging
from datetime import date
from typing import Optional

import httpx

from .errors import AuthorizationError, ConflictError, NetworkError, RemoteStoreError, ValidationError
from .models import AchievementRow

logger = logging.getLogger(__name__)

# Postgres / PostgREST error codes
_DUPLICATE_CODES = {"23505"}
_AUTH_CODES = {"42501", "PGRST301", "PGRST302"}
_VALIDATION_CODES = {"22P02", "23502", "23514", "22007", "PGRST204"}


def classify_response(response: httpx.Response) -> Optional[RemoteStoreError]:
    """
    Map a failed HTTP response onto the error taxonomy.

    Args:
        response: Response from the remote store

    Returns:
        The error to raise, or None for a successful response
    """
    if response.is_success:
        return None

    status = response.status_code
    code = None
    message = response.reason_phrase
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("code")
        message = body.get("message") or body.get("error") or body.get("msg") or message

    text = f"{status}: {message}"
    if status == 409 or code in _DUPLICATE_CODES:
        return ConflictError(text, status, code)
    if status in (401, 403) or code in _AUTH_CODES:
        return AuthorizationError(text, status, code)
    if status in (400, 422) or code in _VALIDATION_CODES:
        # Validation is a local-kind error even when the server reports it
        return ValidationError(text)
    if status == 408 or status == 429 or status >= 500:
        return NetworkError(text, status, code)
    return RemoteStoreError(text, status, code)


class AchievementStoreClient:
    """HTTP client for the remote `daily_achievements` table."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "daily_achievements",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Project URL (e.g., https://xyz.supabase.co)
            api_key: API key sent as `apikey` and bearer token
            table: Achievements table name
            timeout: Per-request timeout in seconds
            transport: Optional transport override (used in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self.transport = transport
        self.http: Optional[httpx.AsyncClient] = None

    async def connect(self):
        """Open the HTTP session."""
        if self.http is None:
            self.http = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Prefer": "return=representation",
                },
                timeout=self.timeout,
                transport=self.transport,
            )
            logger.info(f"Connected to remote store at {self.base_url}")

    async def disconnect(self):
        """Close the HTTP session."""
        if self.http:
            await self.http.aclose()
            self.http = None
            logger.info("Disconnected from remote store")

    async def _request(self, method: str, params: Optional[dict] = None, json: Optional[dict] = None) -> list[dict]:
        """
        Send a request to the table endpoint.

        Returns:
            Rows from the response body

        Raises:
            NetworkError, ConflictError, AuthorizationError, ValidationError,
            RemoteStoreError
        """
        if self.http is None:
            await self.connect()

        logger.debug(f"{method} /{self.table} params={params}")
        try:
            response = await self.http.request(method, f"/{self.table}", params=params, json=json)
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Remote store unreachable: {e}") from e

        error = classify_response(response)
        if error is not None:
            logger.debug(f"{method} /{self.table} failed: {error}")
            raise error

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def find_by_task_and_date(self, task_id: str, on_date: date) -> Optional[AchievementRow]:
        """Get the row for (task_id, date), if one exists."""
        rows = await self._request(
            "GET",
            params={"task_id": f"eq.{task_id}", "date": f"eq.{on_date.isoformat()}", "select": "*", "limit": "1"},
        )
        return AchievementRow.model_validate(rows[0]) if rows else None

    async def list_for_task(self, task_id: str) -> list[AchievementRow]:
        """Get all rows for a task, oldest date first."""
        rows = await self._request("GET", params={"task_id": f"eq.{task_id}", "select": "*", "order": "date.asc"})
        return [AchievementRow.model_validate(row) for row in rows]

    async def insert(self, row: AchievementRow) -> AchievementRow:
        """Insert a row and return it with its remote id."""
        rows = await self._request("POST", json=row.to_payload())
        if not rows:
            raise RemoteStoreError("Insert returned no representation")
        return AchievementRow.model_validate(rows[0])

    async def update(self, row_id: str, row: AchievementRow) -> AchievementRow:
        """Update a row by remote id."""
        rows = await self._request("PATCH", params={"id": f"eq.{row_id}"}, json=row.to_payload())
        if not rows:
            raise RemoteStoreError(f"Row {row_id} not found for update", 404)
        return AchievementRow.model_validate(rows[0])

    async def delete(self, row_id: str):
        """Delete a row by remote id."""
        await self._request("DELETE", params={"id": f"eq.{row_id}"})


async def test_connection():
    """Test remote store connection."""
    import os
    from dotenv import load_dotenv

    load_dotenv()

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY")

    if not url or not key:
        print("Error: SUPABASE_URL and SUPABASE_KEY must be set in .env file")
        return

    client = AchievementStoreClient(url, key)

    try:
        await client.connect()

        task_id = os.getenv("TASK_ID", "")
        rows = await client.list_for_task(task_id)
        print(f"\nFound {len(rows)} achievements for task {task_id!r}")
        for row in rows:
            print(f"  - {row.date}: {row.value:g} ({len(row.media)} media, {len(row.voice_notes)} voice notes)")

    finally:
        await client.disconnect()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(test_connection())
