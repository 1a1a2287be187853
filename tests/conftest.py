"""Shared fixtures: a scriptable fake reconstruction server and wired-up client pieces."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from splat_scanner.work.client import APIClient
from splat_scanner.work.registry import TaskRegistry
from splat_scanner.work.storage import LocalStore

Reply = Union[Dict[str, Any], httpx.Response, Exception]


class FakeServer:
    """
    In-memory stand-in for the reconstruction server, served through
    httpx.MockTransport. Status replies are queued per task id; the last
    queued reply repeats.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.statuses: Dict[str, List[Reply]] = {}
        self.artifacts: Dict[str, bytes] = {}
        self.task_ids: List[str] = []
        self.overrides: Dict[Tuple[str, str], Reply] = {}
        self.health: Dict[str, Any] = {"status": "ok", "message": "ready"}
        self.upload_gate: Optional[asyncio.Event] = None
        self.status_gate: Optional[asyncio.Event] = None
        self.status_started: Optional[asyncio.Event] = None
        self.download_gate: Optional[asyncio.Event] = None
        self._counter = 0

    def calls(self, method: str, prefix: str = "/") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(prefix)]

    @staticmethod
    def _reply(reply: Reply, default_code: int = 200) -> httpx.Response:
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(default_code, json=reply)

    def _next_status(self, task_id: str) -> Optional[Reply]:
        queue = self.statuses.get(task_id)
        if not queue:
            return None
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        if (method, path) in self.overrides:
            return self._reply(self.overrides[(method, path)])

        if method == "GET" and path == "/health":
            return httpx.Response(200, json=self.health)

        if method == "POST" and path in ("/upload", "/upload_images"):
            if self.upload_gate is not None:
                await self.upload_gate.wait()
            self._counter += 1
            task_id = self.task_ids.pop(0) if self.task_ids else f"task{self._counter}"
            self.statuses.setdefault(task_id, [{"status": "queued", "progress": 0, "message": "queued"}])
            return httpx.Response(202, json={"message": "accepted", "task_id": task_id})

        if method == "GET" and path.startswith("/status/"):
            task_id = path[len("/status/"):]
            if self.status_started is not None:
                self.status_started.set()
            if self.status_gate is not None:
                await self.status_gate.wait()
            reply = self._next_status(task_id)
            if reply is None:
                return httpx.Response(404, json={"error": "task not found"})
            return self._reply(reply)

        if method == "GET" and path.startswith("/download/"):
            task_id = path[len("/download/"):]
            if self.download_gate is not None:
                await self.download_gate.wait()
            if task_id not in self.artifacts:
                return httpx.Response(404, json={"error": "result not ready"})
            return httpx.Response(200, content=self.artifacts[task_id])

        if method == "DELETE" and path.startswith("/task/"):
            return httpx.Response(200, json={"message": "deleted"})

        if method == "GET" and path == "/tasks":
            return httpx.Response(200, json={tid: q[0] for tid, q in self.statuses.items() if isinstance(q[0], dict)})

        return httpx.Response(404, json={"error": f"no route {method} {path}"})


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def artifacts(tmp_path):
    d = tmp_path / "models"
    d.mkdir()
    return d


@pytest.fixture
def make_client(server, artifacts):
    def _make(**kwargs: Any) -> APIClient:
        kwargs.setdefault("request_timeout", 5)
        kwargs.setdefault("resource_timeout", 5)
        return APIClient(
            "http://recon.test",
            artifacts=artifacts,
            transport=httpx.MockTransport(server.handler),
            **kwargs,
        )

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "models.json")


@pytest.fixture
async def registry(client, store):
    reg = TaskRegistry(client, store, poll_interval=0.01)
    yield reg
    await reg.close()
    await client.aclose()


@pytest.fixture
def video_file(tmp_path):
    p = tmp_path / "garden.mp4"
    p.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 64)
    return p


@pytest.fixture
def image_files(tmp_path):
    paths = []
    for i in range(3):
        p = tmp_path / f"shot_{i}.jpg"
        p.write_bytes(b"\xff\xd8\xff" + bytes([i]) * 32)
        paths.append(p)
    return paths


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait
