"""
Tests for the cloud backend and its document API client.

The document service is simulated in memory behind ``httpx.MockTransport``.
"""

import json

import httpx
import pytest

from elevatr.core.models import JournalEntry, TaskState, TaskStatus, TaskType
from elevatr.core.storage import CloudBackend, CloudStoreError, DocumentClient, RecordNotFoundError
from elevatr.core.storage.cloud import SPRINTS, USER_PROGRESS, classify_status, progress_document_id

USER = "Zk81hFq2cloud"
OTHER_USER = "Qp77aaBBcloud"
BASE_URL = "https://api.example.test"


class DocumentServer:
    """In-memory stand-in for the document REST API."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict]] = {SPRINTS: {}, USER_PROGRESS: {}}
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], int] = {}
        self._next_id = 0

    def fail(self, method: str, collection: str, status_code: int) -> None:
        self.failures[(method, collection)] = status_code

    def last(self, method: str) -> httpx.Request:
        return [r for r in self.requests if r.method == method][-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        collection = parts[1]
        doc_id = parts[2] if len(parts) > 2 else None

        status_code = self.failures.get((request.method, collection))
        if status_code:
            return httpx.Response(status_code, json={"error": "injected"})

        docs = self.collections.setdefault(collection, {})
        body = json.loads(request.content) if request.content else None

        if request.method == "GET" and doc_id is None:
            params = dict(request.url.params)
            order_by = params.pop("orderBy", None)
            direction = params.pop("direction", "desc")
            matches = [d for d in docs.values() if all(d.get(k) == v for k, v in params.items())]
            if order_by:
                matches.sort(key=lambda d: d.get(order_by, ""), reverse=direction == "desc")
            return httpx.Response(200, json={"documents": matches})
        if request.method == "GET":
            if doc_id not in docs:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=docs[doc_id])
        if request.method == "POST":
            self._next_id += 1
            new_id = f"doc{self._next_id}"
            docs[new_id] = body
            return httpx.Response(201, json={"id": new_id})
        if request.method == "PUT":
            docs[doc_id] = body
            return httpx.Response(200, json={})
        if request.method == "PATCH":
            if doc_id not in docs:
                return httpx.Response(404, json={"error": "not found"})
            docs[doc_id].update(body)
            return httpx.Response(200, json={})
        if request.method == "DELETE":
            if docs.pop(doc_id, None) is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def server():
    return DocumentServer()


@pytest.fixture
def client(server):
    return DocumentClient(BASE_URL, token="tok", transport=httpx.MockTransport(server))


@pytest.fixture
def backend(client):
    return CloudBackend(client)


# ==============================================================================
# DocumentClient
# ==============================================================================


class TestClassifyStatus:
    """Tests for HTTP status classification."""

    @pytest.mark.parametrize(
        "status_code,code",
        [
            (401, "permission-denied"),
            (403, "permission-denied"),
            (404, "not-found"),
            (429, "quota-exceeded"),
            (500, "unavailable"),
            (503, "unavailable"),
            (400, "unknown-error"),
        ],
    )
    def test_classify(self, status_code, code):
        assert classify_status(status_code) == code


class TestDocumentClient:
    """Tests for request handling and error mapping."""

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, client, server):
        """Test the Authorization header carries the token."""
        await client.query(SPRINTS, {"userId": USER})
        assert server.requests[-1].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_query_params(self, client, server):
        """Test filters and ordering are sent as query params."""
        await client.query(SPRINTS, {"userId": USER}, order_by="createdAt", descending=False)
        params = dict(server.requests[-1].url.params)
        assert params == {"userId": USER, "orderBy": "createdAt", "direction": "asc"}

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, client):
        """Test a 404 on get is None, not an error."""
        assert await client.get(SPRINTS, "nope") is None

    @pytest.mark.asyncio
    async def test_http_error_classified(self, client, server):
        """Test HTTP failures carry code and status."""
        server.fail("GET", SPRINTS, 403)

        with pytest.raises(CloudStoreError) as exc_info:
            await client.query(SPRINTS, {"userId": USER})

        assert exc_info.value.code == "permission-denied"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test transport failures map to 'network'."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = DocumentClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(CloudStoreError) as exc_info:
            await client.get(SPRINTS, "s1")
        assert exc_info.value.code == "network"
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test timeouts map to 'timeout'."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = DocumentClient(BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(CloudStoreError) as exc_info:
            await client.query(SPRINTS, {})
        assert exc_info.value.code == "timeout"

    @pytest.mark.asyncio
    async def test_create_without_id(self):
        """Test a create response without an id is an error."""
        client = DocumentClient(
            BASE_URL, transport=httpx.MockTransport(lambda r: httpx.Response(201, json={}))
        )
        with pytest.raises(CloudStoreError, match="no document id"):
            await client.create(SPRINTS, {})


# ==============================================================================
# CloudBackend
# ==============================================================================


class TestCloudSprints:
    """Tests for sprint operations."""

    def test_backend_name(self, backend):
        assert backend.backend_name == "cloud"

    @pytest.mark.asyncio
    async def test_create_writes_sprint_and_progress(self, backend, server, make_draft):
        """Test create stores the sprint with its id and an empty progress record."""
        sprint_id = await backend.create_sprint(USER, make_draft(user_id=USER))

        sprint_doc = server.collections[SPRINTS][sprint_id]
        assert sprint_doc["id"] == sprint_id
        assert sprint_doc["userId"] == USER

        progress_doc = server.collections[USER_PROGRESS][progress_document_id(USER, sprint_id)]
        assert progress_doc["sprintId"] == sprint_id
        assert progress_doc["taskStatuses"] == []

    @pytest.mark.asyncio
    async def test_create_rolls_back_sprint(self, backend, server, make_draft):
        """Test a failed progress write deletes the new sprint again."""
        server.fail("PUT", USER_PROGRESS, 503)

        with pytest.raises(CloudStoreError) as exc_info:
            await backend.create_sprint(USER, make_draft(user_id=USER))

        assert exc_info.value.code == "unavailable"
        assert server.collections[SPRINTS] == {}
        assert server.last("DELETE").url.path.startswith(f"/v1/{SPRINTS}/")

    @pytest.mark.asyncio
    async def test_create_rolls_back_when_id_stamp_fails(self, backend, server, make_draft):
        """Test a failed id stamp deletes the new sprint and writes no progress."""
        server.fail("PATCH", SPRINTS, 503)

        with pytest.raises(CloudStoreError):
            await backend.create_sprint(USER, make_draft(user_id=USER))

        assert server.collections[SPRINTS] == {}
        assert server.collections[USER_PROGRESS] == {}

    @pytest.mark.asyncio
    async def test_put_sprint(self, backend, server, make_sprint):
        """Test put_sprint stores the whole sprint under its own id."""
        await backend.put_sprint(make_sprint("s1", user_id=USER, title="Copied"))

        assert server.collections[SPRINTS]["s1"]["title"] == "Copied"
        assert server.last("PUT").url.path == f"/v1/{SPRINTS}/s1"

    @pytest.mark.asyncio
    async def test_list_only_own_sprints(self, backend, make_draft):
        """Test sprints are filtered by owner."""
        mine = await backend.create_sprint(USER, make_draft(user_id=USER))
        await backend.create_sprint(OTHER_USER, make_draft(user_id=OTHER_USER))

        assert [s.id for s in await backend.get_sprints_by_user(USER)] == [mine]
        assert (await backend.get_active_sprint(USER)).id == mine

    @pytest.mark.asyncio
    async def test_get_missing_sprint(self, backend):
        """Test a missing sprint is None."""
        assert await backend.get_sprint("nope") is None

    @pytest.mark.asyncio
    async def test_update_patches_changed_fields(self, backend, server, make_draft):
        """Test only the updated fields and updatedAt are sent."""
        sprint_id = await backend.create_sprint(USER, make_draft(user_id=USER))

        await backend.update_sprint(USER, sprint_id, {"title": "Renamed", "start_date": "2026-02-01"})

        patch = json.loads(server.last("PATCH").content)
        assert set(patch) == {"title", "startDate", "updatedAt"}
        assert (await backend.get_sprint(sprint_id)).title == "Renamed"

    @pytest.mark.asyncio
    async def test_update_missing_sprint(self, backend):
        """Test updating an unknown sprint raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await backend.update_sprint(USER, "nope", {"title": "x"})


class TestCloudProgress:
    """Tests for progress operations."""

    @pytest.mark.asyncio
    async def test_missing_progress_is_none(self, backend):
        """Test cloud reads never synthesize a record."""
        assert await backend.get_progress(USER, "s1") is None

    @pytest.mark.asyncio
    async def test_status_write_requires_record(self, backend):
        """Test writes against a missing record fail."""
        with pytest.raises(RecordNotFoundError, match="User progress not found"):
            await backend.update_task_status(
                USER, "s1", TaskStatus.build("1", TaskType.CORE, 0, True)
            )

    @pytest.mark.asyncio
    async def test_status_write_patches_derived_fields(self, backend, server, make_draft):
        """Test a status write sends statuses, stats and streaks."""
        sprint_id = await backend.create_sprint(USER, make_draft(user_id=USER, days=5))

        await backend.update_task_status(
            USER, sprint_id, TaskStatus.build("1", TaskType.CORE, 0, True)
        )

        patch = json.loads(server.last("PATCH").content)
        assert set(patch) == {"taskStatuses", "stats", "streaks"}
        progress = await backend.get_progress(USER, sprint_id)
        assert progress.stats.total_tasks_completed == 1
        assert progress.stats.completion_percentage == 7

    @pytest.mark.asyncio
    async def test_journal_write(self, backend, server, make_draft):
        """Test a journal write sends entries and streaks."""
        sprint_id = await backend.create_sprint(USER, make_draft(user_id=USER))
        entry = JournalEntry(id=f"{sprint_id}_1", user_id=USER, day_id="1", content="notes")

        await backend.update_journal_entry(USER, sprint_id, entry)

        patch = json.loads(server.last("PATCH").content)
        assert set(patch) == {"journalEntries", "streaks"}
        progress = await backend.get_progress(USER, sprint_id)
        assert progress.streaks.current_journal_streak == 1

    @pytest.mark.asyncio
    async def test_tasks(self, backend, make_draft):
        """Test derived tasks and task updates."""
        sprint_id = await backend.create_sprint(USER, make_draft(user_id=USER))
        task_id = f"{sprint_id}-2-special-0"

        await backend.update_task(USER, task_id, {"status": TaskState.COMPLETED})

        tasks = await backend.get_tasks_by_user(USER)
        assert [(t.id, t.status) for t in tasks] == [(task_id, TaskState.COMPLETED)]
