from __future__ import annotations

from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, Form, HTTPException

from splat_scanner.web.deps import get_registry, http_error
from splat_scanner.work.errors import APIError
from splat_scanner.work.registry import TaskRegistry

router = APIRouter(prefix="/upload")


@router.post("/video")
async def upload_video(
    path: str = Form(...),
    iterations: int = Form(default=7000),
    resolution: int = Form(default=2),
    fast: bool = Form(default=True),
    registry: TaskRegistry = Depends(get_registry),
):
    if not path.strip():
        raise HTTPException(status_code=400, detail="missing path")
    try:
        model = await registry.submit_video(path, iterations=iterations, resolution=resolution, fast=fast)
    except (APIError, OSError, ValueError) as e:
        raise http_error(e)
    return model.to_dict()


@router.post("/images")
async def upload_images(
    paths: List[str] = Form(...),
    iterations: int = Form(default=7000),
    resolution: int = Form(default=2),
    registry: TaskRegistry = Depends(get_registry),
):
    try:
        model = await registry.submit_images(paths, iterations=iterations, resolution=resolution)
    except (APIError, OSError, ValueError) as e:
        raise http_error(e)
    return model.to_dict()


@router.get("/progress")
async def progress(registry: TaskRegistry = Depends(get_registry)):
    if registry.upload_progress is None:
        return None
    return asdict(registry.upload_progress)


@router.delete("/progress")
async def cancel(registry: TaskRegistry = Depends(get_registry)):
    registry.cancel_upload()
    return {"cancelled": True}
