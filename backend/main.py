import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from core.auth import auth_backend, fastapi_users
from core.config import settings
from core.exception_handlers import setup_exception_handlers
from core.logging_config import LogContext, configure_logging, get_logger
from db.database import create_db_and_tables
from routers.inventory import router as inventory_router
from routers.items import router as items_router
from routers.owners import router as owners_router
from routers.transfers import router as transfers_router
from routers.users import router as users_router

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(
        level=getattr(logging, settings.log_level, logging.INFO),
        log_file=settings.log_file or None,
    )
    await create_db_and_tables()
    logger.info("startup_complete")
    yield


app = FastAPI(
    title="Skladisce API",
    description="API for tracking items and their movement between people and locations",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    LogContext.clear()
    LogContext.set(request_id=request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id

    if response.status_code >= 400:
        extra = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "user": getattr(request.state, "actor", None),
        }
        if response.status_code >= 500:
            logger.error("request_failed", extra=extra)
        else:
            logger.warning("request_rejected", extra=extra)
    return response


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/api/auth/jwt", tags=["auth"])

app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(owners_router, prefix="/api/owners", tags=["owners"])
app.include_router(items_router, prefix="/api/items", tags=["items"])
app.include_router(transfers_router, prefix="/api/transfers", tags=["transfers"])
app.include_router(inventory_router, prefix="/api/inventory", tags=["inventory"])


@app.get("/api/health", tags=["health"])
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
