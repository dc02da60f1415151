"""
Cloud storage backend over the Elevatr document REST API.

Cloud accounts keep their data in two collections of the document service:

    sprints        one document per sprint (server-assigned id)
    userProgress   one document per (userId, sprintId), id "{userId}_{sprintId}"

API shape:

    GET    /v1/{collection}?field=value&orderBy=f&direction=desc -> {"documents": [...]}
    GET    /v1/{collection}/{id}                                 -> document (404 when absent)
    POST   /v1/{collection}                                      -> {"id": ...}
    PUT    /v1/{collection}/{id}                                 -> replace
    PATCH  /v1/{collection}/{id}                                 -> merge
    DELETE /v1/{collection}/{id}

Every transport or HTTP failure is raised as CloudStoreError with a
classified ``code``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic.alias_generators import to_camel

from elevatr.core.config import StorageConfig
from elevatr.core.identity import UserKind
from elevatr.core.models import (
    JournalEntry,
    Sprint,
    SprintDraft,
    Task,
    TaskStatus,
    UserProgress,
    utcnow,
)
from elevatr.core.progress_math import derive_tasks, recompute, status_from_task_update

from .backend import register_backend
from .errors import (
    CloudStoreError,
    InvalidInputError,
    RecordNotFoundError,
    StorageError,
    validate_sprint_id,
    validate_sprint_title,
    validate_updates,
    validate_user_id,
)
from .local import pick_active_sprint

logger = logging.getLogger(__name__)

SPRINTS = "sprints"
USER_PROGRESS = "userProgress"


def classify_status(status_code: int) -> str:
    """Map an HTTP status code to a CloudStoreError code."""
    if status_code in (401, 403):
        return "permission-denied"
    if status_code == 404:
        return "not-found"
    if status_code == 429:
        return "quota-exceeded"
    if status_code >= 500:
        return "unavailable"
    return "unknown-error"


def progress_document_id(user_id: str, sprint_id: str) -> str:
    return f"{user_id}_{sprint_id}"


class DocumentClient:
    """
    Thin async client for the document REST API.

    A fresh ``httpx.AsyncClient`` is opened per request so the client can be
    shared across event loops (the CLI runs one loop per command).

    Example:
        >>> client = DocumentClient("https://api.elevatr.app", token="...")
        >>> docs = await client.query("sprints", {"userId": uid}, order_by="createdAt")
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        allow_missing: bool = False,
    ) -> httpx.Response:
        """
        Send one request.

        With ``allow_missing`` a 404 response is returned to the caller
        instead of raising; every other status >= 400 raises CloudStoreError.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            raise CloudStoreError(f"{method} {path} timed out: {e}", "timeout") from e
        except httpx.RequestError as e:
            raise CloudStoreError(f"{method} {path} failed: {e}", "network") from e

        if response.status_code >= 400 and not (allow_missing and response.status_code == 404):
            code = classify_status(response.status_code)
            logger.debug("%s %s -> %d (%s)", method, path, response.status_code, code)
            raise CloudStoreError(
                f"{method} {path} returned HTTP {response.status_code}",
                code,
                status_code=response.status_code,
            )
        return response

    async def query(
        self,
        collection: str,
        filters: dict[str, str],
        order_by: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        params = dict(filters)
        if order_by:
            params["orderBy"] = order_by
            params["direction"] = "desc" if descending else "asc"
        response = await self._request("GET", f"/v1/{collection}", params=params)
        return list(response.json().get("documents", []))

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/v1/{collection}/{doc_id}", allow_missing=True)
        if response.status_code == 404:
            return None
        return response.json()

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        response = await self._request("POST", f"/v1/{collection}", json=data)
        doc_id = response.json().get("id")
        if not doc_id:
            raise CloudStoreError(f"POST /v1/{collection} returned no document id", "unknown-error")
        return str(doc_id)

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._request("PUT", f"/v1/{collection}/{doc_id}", json=data)

    async def patch(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._request("PATCH", f"/v1/{collection}/{doc_id}", json=data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._request("DELETE", f"/v1/{collection}/{doc_id}", allow_missing=True)


@register_backend(UserKind.CLOUD)
class CloudBackend:
    """
    Storage backend for signed-in cloud accounts.

    Progress records of cloud users are created together with their sprint;
    reads of a missing record return None instead of synthesizing one.
    """

    def __init__(self, client: DocumentClient) -> None:
        self.client = client

    @classmethod
    def from_config(cls, storage: StorageConfig) -> "CloudBackend":
        """
        Build a backend for the configured document API.

        Raises:
            StorageError: If no cloud URL is configured
        """
        if not storage.cloud_url:
            raise StorageError("No cloud URL configured", "unavailable")
        client = DocumentClient(
            storage.cloud_url, token=storage.cloud_token, timeout=storage.cloud_timeout
        )
        return cls(client)

    @property
    def backend_name(self) -> str:
        return "cloud"

    # ------------------------------------------------------------------
    # Sprints
    # ------------------------------------------------------------------

    async def get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        validate_user_id(user_id)
        documents = await self.client.query(SPRINTS, {"userId": user_id}, order_by="createdAt")
        return [Sprint.model_validate(doc) for doc in documents]

    async def get_active_sprint(self, user_id: str) -> Sprint | None:
        return pick_active_sprint(await self.get_sprints_by_user(user_id))

    async def get_sprint(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        validate_sprint_id(sprint_id)
        document = await self.client.get(SPRINTS, sprint_id)
        if document is None:
            return None
        return Sprint.model_validate({**document, "id": document.get("id", sprint_id)})

    async def create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        """
        Create a sprint and its empty progress record.

        If the sprint id cannot be stamped or the progress record cannot be
        written, the sprint is deleted again and the error re-raised.
        """
        validate_user_id(user_id)
        validate_sprint_title(draft.title)

        now = utcnow()
        document = draft.model_copy(
            update={"user_id": user_id, "created_at": now, "updated_at": now}
        ).to_document()
        sprint_id = await self.client.create(SPRINTS, document)

        try:
            await self.client.patch(SPRINTS, sprint_id, {"id": sprint_id})
            await self.save_progress(UserProgress.empty(user_id, sprint_id))
        except CloudStoreError:
            logger.error("Failed to finish creating sprint %s, rolling back", sprint_id)
            await self.client.delete(SPRINTS, sprint_id)
            raise
        return sprint_id

    async def update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        validate_sprint_id(sprint_id)
        validate_updates(updates)

        current = await self.get_sprint(sprint_id)
        if current is None:
            raise RecordNotFoundError(f"Sprint {sprint_id} not found")

        merged = current.with_updates({**updates, "updated_at": utcnow()}).to_document()
        fields = [to_camel(key) for key in updates] + ["updatedAt"]
        await self.client.patch(SPRINTS, sprint_id, {field: merged[field] for field in fields})

    async def put_sprint(self, sprint: Sprint) -> None:
        validate_user_id(sprint.user_id)
        validate_sprint_id(sprint.id)
        await self.client.put(SPRINTS, sprint.id, sprint.to_document())

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_tasks_by_user(self, user_id: str) -> list[Task]:
        validate_user_id(user_id)
        progress_docs = await self.client.query(USER_PROGRESS, {"userId": user_id})
        sprints = await self.get_sprints_by_user(user_id)
        return derive_tasks(sprints, [UserProgress.model_validate(doc) for doc in progress_docs])

    async def update_task(self, user_id: str, task_id: str, updates: dict[str, Any]) -> None:
        validate_updates(updates)
        try:
            sprint_id, status = status_from_task_update(task_id, updates)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        await self.update_task_status(user_id, sprint_id, status)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        validate_user_id(user_id)
        validate_sprint_id(sprint_id)
        documents = await self.client.query(
            USER_PROGRESS, {"userId": user_id, "sprintId": sprint_id}
        )
        if not documents:
            return None
        return UserProgress.model_validate(documents[0])

    async def save_progress(self, progress: UserProgress) -> None:
        await self.client.put(
            USER_PROGRESS,
            progress_document_id(progress.user_id, progress.sprint_id),
            progress.to_document(),
        )

    async def _require_progress(self, user_id: str, sprint_id: str) -> UserProgress:
        progress = await self.get_progress(user_id, sprint_id)
        if progress is None:
            raise RecordNotFoundError("User progress not found")
        return progress

    async def update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        progress = await self._require_progress(user_id, sprint_id)
        progress = progress.upsert_task_status(status.model_copy(update={"updated_at": utcnow()}))
        progress = recompute(progress, await self.get_sprint(sprint_id))

        document = progress.to_document()
        await self.client.patch(
            USER_PROGRESS,
            progress_document_id(user_id, sprint_id),
            {key: document[key] for key in ("taskStatuses", "stats", "streaks")},
        )

    async def update_journal_entry(
        self, user_id: str, sprint_id: str, entry: JournalEntry
    ) -> None:
        progress = await self._require_progress(user_id, sprint_id)
        progress = progress.upsert_journal_entry(entry.model_copy(update={"updated_at": utcnow()}))
        progress = recompute(progress, await self.get_sprint(sprint_id))

        document = progress.to_document()
        await self.client.patch(
            USER_PROGRESS,
            progress_document_id(user_id, sprint_id),
            {key: document[key] for key in ("journalEntries", "streaks")},
        )
