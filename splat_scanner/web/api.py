from fastapi import APIRouter

from splat_scanner.web.routes.models import router as models_router
from splat_scanner.web.routes.server import router as server_router
from splat_scanner.web.routes.upload import router as upload_router

api_router = APIRouter()
api_router.include_router(upload_router)
api_router.include_router(models_router)
api_router.include_router(server_router)
