"""Test doubles: in-memory Redis, fake clock and a fake Xero provider."""

import base64
import re
import time
from typing import Any
from urllib.parse import parse_qs

import httpx
import orjson
from redis.exceptions import ConnectionError as RedisConnectionError

from xerolink.auth.models import Credential, Tenant


TENANT_A = "tenant-a"
TENANT_B = "tenant-b"
USER = "user-1"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the credential store."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}
        self.available = True
        self.closed = False

    def _check(self) -> None:
        if not self.available:
            raise RedisConnectionError("connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, name: str) -> Any:
        self._check()
        return self.data.get(name)

    async def set(self, name: str, value: Any, ex: int | None = None) -> bool:
        self._check()
        if isinstance(value, bytes):
            value = value.decode()
        self.data[name] = value
        self.ttls[name] = ex
        return True

    async def delete(self, *names: str) -> int:
        self._check()
        removed = 0
        for name in names:
            if self.data.pop(name, None) is not None:
                removed += 1
            self.ttls.pop(name, None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Deterministic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds


def make_task(task_id: str, name: str, **overrides: Any) -> dict[str, Any]:
    task = {
        "taskId": task_id,
        "name": name,
        "rate": {"currency": "USD", "value": 10.0},
        "chargeType": "TIME",
        "estimateMinutes": 60,
        "status": "ACTIVE",
        "totalAmount": {"currency": "USD", "value": 100.0},
    }
    task.update(overrides)
    return task


def make_project(index: int) -> dict[str, Any]:
    return {
        "projectId": f"proj-{index:04d}",
        "name": f"NY{2400 + index} - Project {index}",
        "status": "INPROGRESS",
        "totalTaskAmount": {"currency": "USD", "value": 100.0},
        "totalExpenseAmount": {"currency": "USD", "value": 5.5},
    }


class FakeXero:
    """MockTransport handler emulating the identity, connections and projects APIs."""

    TOKEN_URL = "https://identity.xero.com/connect/token"
    CONNECTIONS_URL = "https://api.xero.com/connections"
    TASKS_PATH = re.compile(r"^/projects\.xro/2\.0/Projects/([^/]+)/Tasks$")

    def __init__(self) -> None:
        self.tenants = [
            {"tenantId": TENANT_A, "tenantName": "Demo Company", "tenantType": "ORGANISATION"},
            {"tenantId": TENANT_B, "tenantName": "Second Org", "tenantType": "ORGANISATION"},
        ]
        self.projects: list[dict[str, Any]] = []
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.valid_tokens: set[str] = {"access-0"}
        self.token_statuses: list[int] = []
        self.rotate_refresh_token = True
        self.refresh_calls = 0
        self.refresh_tokens_seen: list[str] = []
        self.task_failures: dict[str, int] = {}
        self.task_fetch_calls: dict[str, int] = {}
        self.idempotency_keys: list[str] = []
        self.created_by_key: dict[str, dict[str, Any]] = {}
        self.response_headers: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.issued: list[str] = []
        self.reject_all_tokens = False
        # Statuses returned (in order) by the next resource calls, with Retry-After: 1
        self.status_queue: list[int] = []
        self.page_failures: dict[int, int] = {}
        self.create_failures: set[str] = set()

    def add_projects(self, count: int, tasks_per_project: int = 2) -> None:
        for index in range(len(self.projects), len(self.projects) + count):
            project = make_project(index)
            self.projects.append(project)
            self.tasks[project["projectId"]] = [
                make_task(f"{project['projectId']}-t{n}", f"Task {n}")
                for n in range(tasks_per_project)
            ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _json(self, status: int, body: Any) -> httpx.Response:
        return httpx.Response(status, content=orjson.dumps(body), headers={
            "content-type": "application/json",
            **self.response_headers,
        })

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(self.TOKEN_URL):
            return self._token(request)
        if not self._authorized(request):
            return self._json(401, {"Title": "Unauthorized"})
        if url.startswith(self.CONNECTIONS_URL):
            return self._json(200, self.tenants)
        if self.status_queue:
            status = self.status_queue.pop(0)
            response = self._json(status, {"Title": "Queued"})
            response.headers["Retry-After"] = "1"
            return response

        path = request.url.path
        if path == "/projects.xro/2.0/Projects" and request.method == "GET":
            return self._projects_page(request)
        match = self.TASKS_PATH.match(path)
        if match:
            project_id = match.group(1)
            if request.method == "POST":
                return self._create_task(project_id, request)
            return self._tasks(project_id)
        return self._json(404, {"Title": "Not Found"})

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("authorization", "")
        if self.reject_all_tokens:
            return False
        return header.startswith("Bearer ") and header[len("Bearer "):] in self.valid_tokens

    def _token(self, request: httpx.Request) -> httpx.Response:
        self.refresh_calls += 1
        auth = request.headers.get("authorization", "")
        assert auth == "Basic " + base64.b64encode(b"client-id:client-secret").decode()
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        self.refresh_tokens_seen.append(form["refresh_token"][0])

        status = self.token_statuses.pop(0) if self.token_statuses else 200
        if status != 200:
            return self._json(status, {"error": "invalid_grant" if status < 500 else "server"})

        access = f"access-{self.refresh_calls}"
        self.valid_tokens.add(access)
        self.issued.append(access)
        body: dict[str, Any] = {
            "access_token": access,
            "expires_in": 1800,
            "token_type": "Bearer",
            "scope": "offline_access projects",
        }
        if self.rotate_refresh_token:
            body["refresh_token"] = f"refresh-{self.refresh_calls}"
        return self._json(200, body)

    def _projects_page(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        if page in self.page_failures:
            return self._json(self.page_failures[page], {"Title": "Page failure"})
        page_size = int(request.url.params.get("pageSize", "50"))
        start = (page - 1) * page_size
        items = self.projects[start:start + page_size]
        page_count = max((len(self.projects) + page_size - 1) // page_size, 1)
        return self._json(200, {
            "pagination": {
                "page": page,
                "pageSize": page_size,
                "pageCount": page_count,
                "itemCount": len(self.projects),
            },
            "items": items,
        })

    def _tasks(self, project_id: str) -> httpx.Response:
        self.task_fetch_calls[project_id] = self.task_fetch_calls.get(project_id, 0) + 1
        if project_id in self.task_failures:
            return self._json(self.task_failures[project_id], {"Title": "Failure"})
        if project_id not in self.tasks:
            return self._json(404, {"Title": "Not Found"})
        return self._json(200, {"items": self.tasks[project_id]})

    def _create_task(self, project_id: str, request: httpx.Request) -> httpx.Response:
        key = request.headers.get("idempotency-key", "")
        self.idempotency_keys.append(key)
        if project_id in self.create_failures:
            return self._json(500, {"Title": "Create failed"})
        if key and key in self.created_by_key:
            return self._json(201, self.created_by_key[key])
        body = orjson.loads(request.content)
        task = make_task(
            f"{project_id}-new{len(self.created_by_key)}",
            body["name"],
            rate=body["rate"],
            chargeType=body["chargeType"],
            estimateMinutes=body["estimateMinutes"],
        )
        self.tasks.setdefault(project_id, []).append(task)
        if key:
            self.created_by_key[key] = task
        return self._json(201, task)


def make_credential(
    access_token: str = "access-0",
    refresh_token: str | None = "refresh-0",
    expires_in: float = 1800,
    tenants: list[str] | None = None,
    **overrides: Any,
) -> Credential:
    tenant_ids = [TENANT_A, TENANT_B] if tenants is None else tenants
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=time.time() + expires_in,
        scope="offline_access projects",
        tenant_id=tenant_ids[0] if tenant_ids else None,
        tenants=[Tenant(tenant_id=t, tenant_name=t) for t in tenant_ids],
        **overrides,
    )


