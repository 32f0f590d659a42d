"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from glassflow.api.router import api_router
from glassflow.db.engine import create_all, engine
from glassflow.errors import RateLimitedError, WorkflowError
from glassflow.services.notifications import dispatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_all()
    yield
    await dispatcher.drain()
    await engine.dispose()


app = FastAPI(
    title="GlassFlow",
    description="Windshield repair job workflow: damage reports, shop shortlists, offers, pricing and scheduling.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    if field:
        message = f"{field}: {message}"
    return JSONResponse(status_code=400, content={"error": message, "reason": "invalid_input"})


app.include_router(api_router)


@app.get("/health")
async def health():
    return {"ok": True}
