"""健康检查 API."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from briefings import __version__
from briefings.api.deps import get_context
from briefings.core.context import PipelineContext
from briefings.core.messages import QUEUE_NAMES
from briefings.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


@router.get("/health")
async def health(context: PipelineContext = Depends(get_context)) -> JSONResponse:
    """检查数据库、归档存储和队列绑定."""
    checks = {"database": False, "archive": False, "queues": False}
    errors: list[str] = []

    try:
        checks["database"] = await context.database.ping()
    except Exception as e:
        errors.append(f"Database: {e}")

    try:
        ping = getattr(context.archive.store, "ping", None)
        if ping is None:
            await context.archive.store.list(context.archive.prefix, limit=1)
            checks["archive"] = True
        else:
            checks["archive"] = await ping()
    except Exception as e:
        errors.append(f"Archive: {e}")

    missing = [name for name in QUEUE_NAMES if name not in context.dispatcher.bindings]
    if missing:
        errors.append(f"Queues: Missing bindings - {', '.join(missing)}")
    else:
        checks["queues"] = True

    if all(checks.values()):
        status = "healthy"
    elif not any(checks.values()):
        status = "unhealthy"
    else:
        status = "degraded"

    if errors:
        logger.warning(f"健康检查异常: {errors}")

    body = {
        "status": status,
        "timestamp": utcnow().isoformat() + "Z",
        "version": __version__,
        "environment": context.settings.environment,
        "checks": checks,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(
        status_code=503 if status == "unhealthy" else 200,
        content=body,
        headers=NO_CACHE,
    )
