"""Async TaskNotes HTTP API client using httpx.

Wraps the TaskNotes plugin's local HTTP API (default http://localhost:8080).
Designed to be used as a lifespan-managed singleton: one httpx.AsyncClient
is created at server start and reused for all requests.
"""

from __future__ import annotations

import logging
import os
from urllib.parse import quote

import httpx
from dotenv import load_dotenv

from tasknotes_mcp.models import TaskRecord

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8080"
REQUEST_TIMEOUT = 30.0
PAGE_LIMIT = 200


class TaskNotesAPIError(Exception):
    """Raised when the TaskNotes API returns an error."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"TaskNotes API error {status_code}: {detail}")


def _task_url(path: str, suffix: str = "") -> str:
    return f"/api/tasks/{quote(path, safe='')}{suffix}"


class TaskNotesClient:
    """Async wrapper around the TaskNotes HTTP API.

    Usage with lifespan:
        client = TaskNotesClient()   # reads URL and token from env
        tasks = await client.get_all_tasks()
        await client.close()
    """

    def __init__(self, base_url: str | None = None, api_token: str | None = None) -> None:
        self.base_url = (base_url or os.getenv("TASKNOTES_API_URL") or DEFAULT_API_URL).rstrip("/")
        token = api_token if api_token is not None else os.getenv("TASKNOTES_API_TOKEN", "")
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
    ) -> dict | list | None:
        """Make an API request and unwrap the {success, data, error} envelope."""
        response = await self._http.request(
            method,
            path,
            json=json_body,
            params=params,
        )
        if response.status_code >= 400:
            detail = response.text or f"HTTP {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("error"):
                    detail = str(body["error"])
            except ValueError:
                pass
            raise TaskNotesAPIError(response.status_code, detail)
        if response.status_code == 204 or not response.text:
            return None
        body = response.json()
        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise TaskNotesAPIError(response.status_code, str(body.get("error") or "Request failed"))
            return body.get("data")
        return body

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def list_tasks(self, offset: int = 0, limit: int = PAGE_LIMIT) -> dict:
        """GET /api/tasks: one page of tasks plus pagination info."""
        params = {"offset": max(offset, 0), "limit": min(max(limit, 1), PAGE_LIMIT)}
        result = await self._request("GET", "/api/tasks", params=params)
        return result if isinstance(result, dict) else {}

    async def get_all_tasks(self) -> list[TaskRecord]:
        """Page through /api/tasks until the server reports no more."""
        tasks: list[TaskRecord] = []
        offset = 0
        while True:
            page = await self.list_tasks(offset=offset, limit=PAGE_LIMIT)
            raw_tasks = page.get("tasks") or []
            for raw in raw_tasks:
                if isinstance(raw, dict) and raw.get("path"):
                    tasks.append(TaskRecord.model_validate(raw))
                else:
                    logger.warning(f"Skipping task without a path: {raw!r:.80}")
            pagination = page.get("pagination") or {}
            if not pagination.get("hasMore") or not raw_tasks:
                break
            offset += len(raw_tasks)
        return tasks

    async def get_all_task_paths(self) -> list[str]:
        return [t.path for t in await self.get_all_tasks()]

    async def get_task_info(self, path: str) -> TaskRecord | None:
        """GET /api/tasks/{path}. Returns None when the task does not exist."""
        try:
            result = await self._request("GET", _task_url(path))
        except TaskNotesAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return TaskRecord.model_validate(result) if isinstance(result, dict) else None

    async def update_task(self, path: str, body: dict) -> TaskRecord:
        """PUT /api/tasks/{path}: update task fields."""
        result = await self._request("PUT", _task_url(path), json_body=body)
        if not isinstance(result, dict):
            raise TaskNotesAPIError(500, "Update returned no task")
        return TaskRecord.model_validate(result)

    async def complete_recurring_instance(self, path: str, instance_date: str | None = None) -> TaskRecord:
        """POST /api/tasks/{path}/complete-instance: toggle one recurring instance."""
        body = {"date": instance_date} if instance_date else {}
        result = await self._request("POST", _task_url(path, "/complete-instance"), json_body=body)
        if not isinstance(result, dict):
            raise TaskNotesAPIError(500, "Toggle returned no task")
        return TaskRecord.model_validate(result)

    async def get_filter_options(self) -> dict:
        """GET /api/filter-options: statuses, priorities, tags, contexts, projects."""
        result = await self._request("GET", "/api/filter-options")
        return result if isinstance(result, dict) else {}
