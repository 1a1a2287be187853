import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from splat_scanner.web.api import api_router
from splat_scanner.work.client import APIClient
from splat_scanner.work.registry import TaskRegistry
from splat_scanner.work.storage import LocalStore


def build_registry() -> TaskRegistry:
    return TaskRegistry(APIClient(), LocalStore())


def create_app(registry: Optional[TaskRegistry] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reg = registry or build_registry()
        app.state.registry = reg
        await reg.start()
        try:
            yield
        finally:
            await reg.close()
            await reg.client.aclose()

    app = FastAPI(title="splat_scanner", version="0.1.0", lifespan=lifespan)
    app.include_router(api_router, prefix="/api")
    return app


def run() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("splat_scanner.server:create_app", factory=True, host=host, port=port, reload=False)
