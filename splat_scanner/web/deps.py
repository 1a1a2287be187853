from __future__ import annotations

from fastapi import HTTPException, Request

from splat_scanner.work.errors import (
    FileTooLarge,
    InsufficientMedia,
    MalformedResponse,
    ServerError,
    TaskNotFound,
    TransportError,
)
from splat_scanner.work.registry import TaskRegistry


def get_registry(request: Request) -> TaskRegistry:
    return request.app.state.registry


def http_error(e: Exception) -> HTTPException:
    """Translate a client-side failure into the response the UI sees."""
    if isinstance(e, (InsufficientMedia, FileTooLarge, FileNotFoundError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, TaskNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ServerError):
        return HTTPException(status_code=502, detail=e.message)
    if isinstance(e, (TransportError, MalformedResponse)):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
