from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from splat_scanner.web.deps import get_registry, http_error
from splat_scanner.work.errors import APIError
from splat_scanner.work.registry import TaskRegistry

router = APIRouter(prefix="/server")


@router.get("/health")
async def health(registry: TaskRegistry = Depends(get_registry)):
    online = await registry.refresh_server_health()
    return {"online": online, "url": registry.client.base_url}


@router.get("/tasks")
async def tasks(registry: TaskRegistry = Depends(get_registry)):
    try:
        remote = await registry.remote_tasks()
    except APIError as e:
        raise http_error(e)
    return {task_id: {**asdict(job), "status": job.status.value} for task_id, job in remote.items()}
