from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Set

from splat_scanner.work.client import APIClient
from splat_scanner.work.errors import APIError, ModelNotFound, ModelNotReady, ServerError
from splat_scanner.work.models import (
    Job,
    JobStatus,
    Model,
    ModelStatus,
    UploadProgress,
    UploadRequest,
)
from splat_scanner.work.poller import PollScheduler
from splat_scanner.work.storage import LocalStore

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Ordered list of submitted models (newest first) and the only thing that
    mutates it.

    Everything runs on one event loop. Each mutation is written through to
    the store in the same synchronous step, with no await in between, so the
    in-memory list and models.json never diverge. A failed write during
    polling is logged and the next write catches the document up.
    """

    def __init__(self, client: APIClient, store: LocalStore, *, poll_interval: Optional[float] = None) -> None:
        self.client = client
        self.store = store
        self.scheduler = PollScheduler(client, self.on_poll_result, poll_interval)
        self.upload_progress: Optional[UploadProgress] = None
        self.server_online = False
        self._models: List[Model] = []
        self._background: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """Load the persisted list and resume polling for unfinished tasks."""
        self._models = self.store.load()
        resumed = 0
        for model in self._models:
            if model.task_id and not model.status.is_terminal:
                if self.scheduler.start(model.task_id):
                    resumed += 1
        # pruned records release their server tasks
        for model in self.store.pruned:
            if model.task_id:
                self._spawn(self._delete_remote(model.task_id))
        logger.info("loaded %d models, resumed polling for %d", len(self._models), resumed)

    async def close(self) -> None:
        await self.scheduler.shutdown()
        pending = list(self._background)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ---------- views ----------
    def list_models(self) -> List[Model]:
        return list(self._models)

    def get(self, model_id: str) -> Optional[Model]:
        return next((m for m in self._models if m.id == model_id), None)

    def select(self, model_id: str) -> Model:
        # callers decide whether a non-completed model may be opened
        model = self.get(model_id)
        if model is None:
            raise ModelNotFound(model_id)
        return model

    def _find_by_task(self, task_id: str) -> Optional[Model]:
        return next((m for m in self._models if m.task_id == task_id), None)

    def _persist(self) -> None:
        self.store.save(self._models)

    def _persist_or_log(self) -> None:
        # a later successful write carries whatever this one missed
        try:
            self._persist()
        except OSError:
            logger.exception("could not write %s", self.store.path)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ---------- submission ----------
    async def submit(self, request: UploadRequest) -> Model:
        model = Model(name=request.display_name(), type=request.source_type, stage="uploading")
        progress = UploadProgress(file_name=model.name)
        self.upload_progress = progress
        try:
            response = await self.client.upload(request)
        finally:
            if self.upload_progress is progress:
                self.upload_progress = None

        if self._find_by_task(response.task_id) is not None:
            raise ServerError(f"server returned task id {response.task_id} which is already tracked")

        model.task_id = response.task_id
        model.advance(ModelStatus.QUEUED)
        model.stage = "queued"
        self._models.insert(0, model)
        self._persist()
        self.scheduler.start(model.task_id)
        logger.info("submitted %s as task %s", model.name, model.task_id)
        return model

    async def submit_video(self, path: Path | str, **params: Any) -> Model:
        return await self.submit(UploadRequest.video(path, **params))

    async def submit_images(self, paths: Sequence[Path | str], **params: Any) -> Model:
        return await self.submit(UploadRequest.images(list(paths), **params))

    def cancel_upload(self) -> None:
        """Forget the upload progress record; the transfer itself keeps going."""
        self.upload_progress = None

    # ---------- polling ----------
    def on_poll_result(self, task_id: str, job: Job) -> None:
        model = self._find_by_task(task_id)
        if model is None:
            logger.debug("status for unknown task %s ignored", task_id)
            return
        if model.status.is_terminal:
            self.scheduler.stop(task_id)
            return

        model.stage = job.stage or job.message or model.stage

        if job.status is JobStatus.COMPLETED:
            model.advance(ModelStatus.COMPLETED)
            self.scheduler.stop(task_id)
            self._persist_or_log()
            logger.info("task %s completed, fetching artifact", task_id)
            self._spawn(self._fetch_artifact(task_id))
        elif job.status is JobStatus.FAILED:
            model.advance(ModelStatus.FAILED)
            model.error_message = job.error or job.message or None
            self.scheduler.stop(task_id)
            self._persist_or_log()
            logger.info("task %s failed: %s", task_id, model.error_message)
        else:
            model.advance(ModelStatus.PROCESSING)
            self._persist_or_log()

    # ---------- artifacts ----------
    def _attach_artifact(self, task_id: str, path: Path) -> Optional[Path]:
        model = self._find_by_task(task_id)
        if model is None:
            # deleted while the download was running
            path.unlink(missing_ok=True)
            logger.info("task %s no longer tracked, removed %s", task_id, path)
            return None
        if model.status is not ModelStatus.COMPLETED or not path.is_file():
            logger.warning("not attaching %s to task %s (status %s)", path, task_id, model.status.value)
            return None
        model.ply_path = str(path)
        self._persist_or_log()
        return path

    async def _fetch_artifact(self, task_id: str) -> Optional[Path]:
        try:
            path = await self.client.download_artifact(task_id)
        except (APIError, OSError) as e:
            logger.warning("artifact download for task %s failed: %s", task_id, e)
            return None
        return self._attach_artifact(task_id, path)

    async def retry_download(self, model_id: str) -> Path:
        model = self.select(model_id)
        if model.status is not ModelStatus.COMPLETED:
            raise ModelNotReady(f"model {model_id} is {model.status.value}, not completed")
        if model.ply_path and Path(model.ply_path).is_file():
            return Path(model.ply_path)
        path = await self.client.download_artifact(model.task_id)
        attached = self._attach_artifact(model.task_id, path)
        if attached is None:
            raise ModelNotFound(model_id)
        return attached

    # ---------- deletion ----------
    async def delete(self, model_id: str) -> bool:
        model = self.get(model_id)
        if model is None:
            return False

        self.scheduler.stop(model.task_id)
        if model.ply_path:
            try:
                Path(model.ply_path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("could not remove artifact %s: %s", model.ply_path, e)
        self._models.remove(model)
        self._persist()
        logger.info("deleted model %s (task %s)", model.name, model.task_id)

        if model.task_id:
            await self._delete_remote(model.task_id)
        return True

    async def _delete_remote(self, task_id: str) -> bool:
        try:
            return await self.client.delete_task(task_id)
        except APIError as e:
            logger.warning("remote delete of task %s failed: %s", task_id, e)
            return False

    # ---------- server ----------
    async def refresh_server_health(self) -> bool:
        try:
            online = await self.client.check_health()
        except APIError as e:
            logger.warning("health check failed: %s", e)
            online = False
        self.server_online = online
        return online

    async def remote_tasks(self) -> Dict[str, Job]:
        return await self.client.list_tasks()
