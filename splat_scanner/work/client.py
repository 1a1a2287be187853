from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from splat_scanner.work import settings
from splat_scanner.work.encoder import encode_upload, validate_sources
from splat_scanner.work.errors import (
    MalformedResponse,
    ServerError,
    TaskNotFound,
    TransportError,
)
from splat_scanner.work.models import Job, SourceType, UploadRequest, UploadResponse
from splat_scanner.work.storage import artifact_path, artifacts_dir

logger = logging.getLogger(__name__)


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponse(
            f"{response.request.method} {response.request.url.path}: undecodable body"
        ) from e


def _server_error(response: httpx.Response) -> ServerError:
    """Prefer the server's `error` field, fall back to the status code."""
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        message = body["error"]
    return ServerError(message or f"HTTP {response.status_code}", response.status_code)


class APIClient:
    """
    Async wrapper around the reconstruction server's HTTP API.

    Health, status, delete and list use the request timeout; uploads and
    artifact downloads use the much longer resource timeout.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        artifacts: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_timeout: Optional[float] = None,
        resource_timeout: Optional[float] = None,
        max_file_size: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url or settings.server_url()).rstrip("/")
        self._artifacts = artifacts
        self._resource_timeout = resource_timeout or settings.resource_timeout()
        self._max_file_size = max_file_size
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=request_timeout or settings.request_timeout(),
            transport=transport,
        )

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def artifacts_dir(self) -> Path:
        if self._artifacts is None:
            return artifacts_dir()
        self._artifacts.mkdir(parents=True, exist_ok=True)
        return self._artifacts

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    # ---------- health ----------
    async def check_health(self) -> bool:
        response = await self._request("GET", "/health")
        if not response.is_success:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("status") == "ok"

    # ---------- uploads ----------
    async def _upload(self, url: str, field_name: str, request: UploadRequest, fast: bool) -> UploadResponse:
        encoded = await asyncio.to_thread(
            encode_upload,
            field_name,
            request.sources,
            iterations=request.iterations,
            resolution=request.resolution,
            fast=fast,
        )
        response = await self._request(
            "POST",
            url,
            content=encoded.body,
            headers={"Content-Type": encoded.content_type},
            timeout=self._resource_timeout,
        )
        if response.status_code not in (200, 202):
            raise _server_error(response)
        return UploadResponse.from_dict(_json(response))

    async def upload_video(self, request: UploadRequest) -> UploadResponse:
        validate_sources(SourceType.VIDEO, request.sources, self._max_file_size)
        return await self._upload("/upload", "file", request, fast=request.fast)

    async def upload_images(self, request: UploadRequest) -> UploadResponse:
        validate_sources(SourceType.BURST, request.sources, self._max_file_size)
        return await self._upload("/upload_images", "files", request, fast=False)

    async def upload(self, request: UploadRequest) -> UploadResponse:
        if request.source_type is SourceType.VIDEO:
            return await self.upload_video(request)
        return await self.upload_images(request)

    # ---------- tasks ----------
    async def get_status(self, task_id: str) -> Job:
        response = await self._request("GET", f"/status/{task_id}")
        if response.status_code == 404:
            raise TaskNotFound(task_id)
        if response.status_code != 200:
            raise _server_error(response)
        return Job.from_dict(_json(response))

    async def download_artifact(self, task_id: str) -> Path:
        directory = self.artifacts_dir()
        target = artifact_path(task_id, directory)
        url = f"/download/{task_id}"
        try:
            async with self._http.stream("GET", url, timeout=self._resource_timeout) as response:
                if response.status_code == 404:
                    raise TaskNotFound(task_id)
                if response.status_code != 200:
                    await response.aread()
                    raise _server_error(response)

                fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}.", suffix=".part", dir=directory)
                tmp = Path(tmp_name)
                try:
                    with os.fdopen(fd, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
                    os.replace(tmp, target)
                except BaseException:
                    tmp.unlink(missing_ok=True)
                    raise
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} failed: {e}") from e
        logger.info("downloaded artifact for task %s to %s", task_id, target)
        return target

    async def delete_task(self, task_id: str) -> bool:
        response = await self._request("DELETE", f"/task/{task_id}")
        if response.status_code != 200:
            logger.warning("remote delete of task %s returned HTTP %s", task_id, response.status_code)
            return False
        return True

    async def list_tasks(self) -> Dict[str, Job]:
        response = await self._request("GET", "/tasks")
        if response.status_code != 200:
            raise _server_error(response)
        body = _json(response)
        if not isinstance(body, dict):
            raise MalformedResponse(f"/tasks returned {type(body).__name__}, expected an object")
        return {str(task_id): Job.from_dict(status) for task_id, status in body.items()}
