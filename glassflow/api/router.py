"""Central router that includes all sub-routers."""

from fastapi import APIRouter

from glassflow.api.public import router as public_router
from glassflow.api.job_response import router as job_response_router
from glassflow.api.auth import router as auth_router
from glassflow.api.insurer import router as insurer_router
from glassflow.api.shop import router as shop_router
from glassflow.api.internal import router as internal_router
from glassflow.api.websocket import router as websocket_router

api_router = APIRouter()
api_router.include_router(public_router)
api_router.include_router(job_response_router)
api_router.include_router(auth_router)
api_router.include_router(insurer_router)
api_router.include_router(shop_router)
api_router.include_router(internal_router)
api_router.include_router(websocket_router)
