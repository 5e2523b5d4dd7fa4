from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from chat_sync.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_sync.api.v1.routers import auth, groups, health, users, ws
from chat_sync.application.exceptions import (
    ConflictError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from chat_sync.application.ports.clock import SystemClock
from chat_sync.config import settings
from chat_sync.infrastructure.auth.hs256_verifier import HS256TokenService
from chat_sync.infrastructure.blob.local import LocalBlobStore
from chat_sync.infrastructure.db.session import build_engine, build_session_factory
from chat_sync.infrastructure.sync.conversation_store import SqlConversationStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    logger.info("Database engine and Redis connection pool created")

    app.state.conversation_store = SqlConversationStore(
        app.state.session_factory,
        app.state.redis,
        settings.REDIS_CHANGES_CHANNEL,
    )

    yield

    await app.state.redis.aclose()
    await app.state.engine.dispose()
    logger.info("Database engine and Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Chat Sync Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.clock = SystemClock()
    app.state.tokens = HS256TokenService(
        settings.JWT_SECRET,
        settings.JWT_ALGORITHM,
        ttl_seconds=settings.JWT_TTL_SECONDS,
    )
    app.state.blobs = LocalBlobStore(settings.BLOB_ROOT, settings.BLOB_BASE_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(groups.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(UnauthorizedError)
    async def _unauthorized(_req: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": exc.detail})

    @app.exception_handler(ConflictError)
    async def _conflict(_req: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(NetworkError)
    async def _unavailable(_req: Request, exc: NetworkError) -> JSONResponse:
        logger.warning("Backend unavailable: %s", exc.detail)
        return JSONResponse(status_code=503, content={"detail": exc.detail})

    @app.exception_handler(SQLAlchemyError)
    async def _database(_req: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error", exc_info=exc)
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})
