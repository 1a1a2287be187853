from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from splat_scanner.work import settings
from splat_scanner.work.client import APIClient
from splat_scanner.work.errors import APIError
from splat_scanner.work.models import Job

logger = logging.getLogger(__name__)

ResultHandler = Callable[[str, Job], None]


class PollScheduler:
    """
    One repeating status check per task id.

    Entries map task id -> asyncio.Task. A tick whose entry was stopped (or
    replaced) while its request was in flight drops the result.
    """

    def __init__(self, client: APIClient, on_result: ResultHandler, interval: Optional[float] = None) -> None:
        self._client = client
        self._on_result = on_result
        self.interval = settings.poll_interval() if interval is None else interval
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_running(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and not task.done()

    def active(self) -> List[str]:
        return [tid for tid in self._tasks if self.is_running(tid)]

    def start(self, task_id: str) -> bool:
        """Start polling `task_id`. Returns False if it is already polled."""
        if self.is_running(task_id):
            return False
        self._tasks[task_id] = asyncio.get_running_loop().create_task(
            self._run(task_id), name=f"poll:{task_id}"
        )
        logger.debug("polling started for task %s", task_id)
        return True

    def stop(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        logger.debug("polling stopped for task %s", task_id)
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _owns(self, task_id: str) -> bool:
        return self._tasks.get(task_id) is asyncio.current_task()

    async def _run(self, task_id: str) -> None:
        while self._owns(task_id):
            await asyncio.sleep(self.interval)
            await self._tick(task_id)

    async def _tick(self, task_id: str) -> None:
        try:
            job = await self._client.get_status(task_id)
        except APIError as e:
            logger.warning("status check for task %s failed: %s", task_id, e)
            return
        if not self._owns(task_id):
            logger.debug("discarding late status for stopped task %s", task_id)
            return
        try:
            self._on_result(task_id, job)
        except Exception:
            logger.exception("handling status for task %s failed", task_id)
