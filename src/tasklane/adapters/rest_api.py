"""REST API adapters - Repository implementations using the task backend's REST API.

These adapters wrap the API client to implement the repository interfaces.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from tasklane.api.client import APIClient
from tasklane.models import Task, TaskScope, TaskUpdate
from tasklane.repositories.repository import TaskRepository, TimeEntryRepository


def _scope_params(scope: TaskScope) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if scope.project_id:
        params["project_id"] = scope.project_id
    if scope.area_id:
        params["area_id"] = scope.area_id
    if scope.when_type is not None:
        params["when_type"] = scope.when_type.value
    if scope.statuses:
        params["status"] = ",".join(s.value for s in scope.statuses)
    if not scope.include_done:
        params["exclude_status"] = "done"
    return params


def _items(data: Any) -> list[dict]:
    """Accept both a bare list and a wrapped ``{"tasks": [...]}`` body."""
    if isinstance(data, dict):
        return data.get("tasks") or data.get("entries") or data.get("items") or []
    return data or []


class RestApiTaskRepository(TaskRepository):
    """Task repository implementation using the REST API."""

    def __init__(self, client: APIClient | None = None):
        self._client = client

    @property
    def client(self) -> APIClient:
        if self._client is None:
            self._client = APIClient()
        return self._client

    async def list_all(self, scope: TaskScope) -> list[Task]:
        """List the scope's tasks."""
        response = await self.client.get("/v1/tasks", params=_scope_params(scope))
        return [Task.model_validate(item) for item in _items(response.json())]

    async def get(self, task_id: str) -> Task:
        response = await self.client.get(f"/v1/tasks/{task_id}")
        return Task.model_validate(response.json())

    async def add(self, task: Task) -> Task:
        response = await self.client.post("/v1/tasks", json=task.model_dump(mode="json"))
        return Task.model_validate(response.json())

    async def update(self, task_id: str, updates: TaskUpdate) -> Task:
        response = await self.client.patch(
            f"/v1/tasks/{task_id}",
            json=updates.model_dump(mode="json", exclude_unset=True),
        )
        return Task.model_validate(response.json())

    async def soft_delete(self, task_id: str, deleted_at: datetime) -> None:
        await self.client.patch(
            f"/v1/tasks/{task_id}", json={"deleted_at": deleted_at.isoformat()}
        )


class RestApiTimeEntryRepository(TimeEntryRepository):
    """Time entry lookups and manual entries over the REST API."""

    def __init__(self, client: APIClient | None = None):
        self._client = client

    @property
    def client(self) -> APIClient:
        if self._client is None:
            self._client = APIClient()
        return self._client

    async def has_time(self, task_id: str) -> bool:
        response = await self.client.get(
            "/v1/time-entries", params={"task_id": task_id, "limit": 1}
        )
        data = response.json()
        if isinstance(data, dict) and "count" in data:
            return (data["count"] or 0) > 0
        return len(_items(data)) > 0

    async def add_entry(self, task_id: str, duration_seconds: int) -> None:
        await self.client.post(
            "/v1/time-entries",
            json={"task_id": task_id, "duration_seconds": duration_seconds},
        )
