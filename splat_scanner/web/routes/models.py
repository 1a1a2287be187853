from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from splat_scanner.web.deps import get_registry, http_error
from splat_scanner.work.errors import APIError, ModelNotFound, ModelNotReady
from splat_scanner.work.models import ModelStatus
from splat_scanner.work.registry import TaskRegistry

router = APIRouter(prefix="/models")


@router.get("")
async def list_models(registry: TaskRegistry = Depends(get_registry)):
    return [m.to_dict() for m in registry.list_models()]


@router.get("/{model_id}")
async def get_model(model_id: str, registry: TaskRegistry = Depends(get_registry)):
    model = registry.get(model_id)
    if model is None:
        raise HTTPException(status_code=404, detail="model not found")
    return model.to_dict()


@router.post("/{model_id}/select")
async def select_model(model_id: str, registry: TaskRegistry = Depends(get_registry)):
    try:
        model = registry.select(model_id)
    except ModelNotFound:
        raise HTTPException(status_code=404, detail="model not found")
    if model.status is not ModelStatus.COMPLETED:
        raise HTTPException(status_code=409, detail=f"model is {model.status.value}")
    if not model.ply_path or not Path(model.ply_path).is_file():
        raise HTTPException(status_code=409, detail="artifact not downloaded yet")
    return model.to_dict()


@router.post("/{model_id}/download")
async def download_model(model_id: str, registry: TaskRegistry = Depends(get_registry)):
    try:
        path = await registry.retry_download(model_id)
    except ModelNotFound:
        raise HTTPException(status_code=404, detail="model not found")
    except ModelNotReady as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (APIError, OSError) as e:
        raise http_error(e)
    return {"id": model_id, "plyPath": str(path)}


@router.delete("/{model_id}")
async def delete_model(model_id: str, registry: TaskRegistry = Depends(get_registry)):
    if not await registry.delete(model_id):
        raise HTTPException(status_code=404, detail="model not found")
    return {"removed": True}
