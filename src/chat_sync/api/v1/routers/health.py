from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chat_sync.infrastructure.db.session import ping

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    errors: list[str] = []

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        errors.append("postgres: not initialised")
    else:
        try:
            await ping(engine)
        except Exception as exc:  # noqa: BLE001
            errors.append(f"postgres: {exc}")

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        errors.append("redis: not initialised")
    else:
        try:
            await redis.ping()
        except Exception as exc:  # noqa: BLE001
            errors.append(f"redis: {exc}")

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": errors},
        )
    return JSONResponse(content={"status": "ready"})
