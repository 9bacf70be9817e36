# tests/conftest.py
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from askboard.services.task_client import TaskClient

BASE_URL = "http://tasks.test/api/v1"


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTaskService:
    """
    In-process stand-in for the chat task service, served via httpx.MockTransport.

    ``statuses`` is consumed one entry per GET; the last entry repeats. An entry
    may be a dict (200 JSON body) or an httpx.Response.
    """

    def __init__(
        self,
        initiate: Optional[Any] = None,
        statuses: Optional[List[Any]] = None,
        stream_lines: Optional[List[str]] = None,
        tasks: Optional[Any] = None,
    ):
        self.initiate_body = initiate or {"success": True, "task_id": "t1", "status": "processing"}
        self.statuses = list(statuses or [{"task_id": "t1", "status": "processing", "progress": 0}])
        self.stream_lines = stream_lines or []
        self.tasks = tasks if tasks is not None else []
        self.requests: List[httpx.Request] = []

    def calls(self, method: str, fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and fragment in r.url.path]

    @property
    def initiate_calls(self) -> int:
        return len(self.calls("POST", "/chat/initiate/"))

    @property
    def status_calls(self) -> int:
        return len(self.calls("GET", "/chat/response/"))

    @property
    def cancelled_task_ids(self) -> List[str]:
        return [r.url.path.rstrip("/").rsplit("/", 1)[-1] for r in self.calls("POST", "/chat/cancel/")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/chat/initiate/"):
            body = self.initiate_body(request) if callable(self.initiate_body) else self.initiate_body
            return httpx.Response(200, json=body)
        if "/chat/response/" in path:
            index = min(self.status_calls - 1, len(self.statuses) - 1)
            entry = self.statuses[index]
            if isinstance(entry, httpx.Response):
                return httpx.Response(entry.status_code, content=entry.content, headers=entry.headers)
            if isinstance(entry, Exception):
                raise entry
            return httpx.Response(200, json=entry)
        if "/chat/cancel/" in path:
            return httpx.Response(200, json={"success": True, "message": "Task cancelled"})
        if path.endswith("/chat/cancel-all/"):
            return httpx.Response(200, json={"cancelled_count": 2, "message": "Cancelled 2 tasks"})
        if path.endswith("/chat/tasks/"):
            return httpx.Response(200, json=self.tasks)
        if path.endswith("/chat/stream/"):
            content = "".join(line + "\n" for line in self.stream_lines).encode()
            return httpx.Response(200, content=content, headers={"Content-Type": "text/event-stream"})
        return httpx.Response(404, json={"detail": "Not Found"})

    def client(self, token: Optional[str] = None) -> TaskClient:
        return TaskClient(
            base_url=BASE_URL,
            token=token,
            timeout=5,
            transport=httpx.MockTransport(self.handler),
        )


def sse(event: Dict[str, Any]) -> str:
    return "data: " + json.dumps(event)


def legacy_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "success": True,
        "analysis": {"query_intent": "Count customers by region", "data_requirements": ["customers"]},
        "insights": {"key_findings": ["North has the most customers"], "recommendations": []},
        "dataset": [
            {
                "description": "Customers by region",
                "columns": ["region", "customers"],
                "data": [{"region": "North", "customers": 12}, {"region": "South", "customers": 7}],
                "row_count": 2,
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
