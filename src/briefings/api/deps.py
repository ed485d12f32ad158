"""API 公共依赖：鉴权、上下文、响应封装."""

import hmac
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from briefings.core.context import PipelineContext
from briefings.core.errors import BriefingsError
from briefings.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class RequestError(Exception):
    """以错误信封返回的请求错误."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


def _now_iso() -> str:
    return utcnow().isoformat(timespec="milliseconds") + "Z"


def success_response(
    message: str,
    data: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """成功响应."""
    body: dict[str, Any] = {"success": True, "message": message, "timestamp": _now_iso()}
    if data is not None:
        body["data"] = data
    if request_id:
        body["requestId"] = request_id
    return body


def error_response(
    message: str,
    status_code: int = 400,
    code: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """错误响应."""
    body: dict[str, Any] = {"success": False, "error": message, "timestamp": _now_iso()}
    if code:
        body["code"] = code
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def get_context(request: Request) -> PipelineContext:
    """获取流水线上下文（用于依赖注入）."""
    context: PipelineContext | None = getattr(request.app.state, "context", None)
    if context is None:
        msg = "Pipeline context not initialized"
        raise RequestError(msg, 503, "SERVICE_UNAVAILABLE")
    return context


def is_authenticated(request: Request) -> bool:
    """X-API-Key 是否有效（常量时间比较）."""
    provided = request.headers.get(API_KEY_HEADER)
    expected = get_context(request).settings.api_key
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_api_key(request: Request) -> None:
    """要求有效的 X-API-Key."""
    provided = request.headers.get(API_KEY_HEADER)
    if not provided:
        msg = "Missing API key. Please provide X-API-Key header."
        raise RequestError(msg, 401, "MISSING_API_KEY")

    settings = get_context(request).settings
    if not settings.api_key:
        if settings.environment == "development":
            logger.warning("未配置 API_KEY，开发环境放行")
            return
        msg = "Authentication not configured"
        raise RequestError(msg, 500, "AUTH_NOT_CONFIGURED")

    if not hmac.compare_digest(provided.encode(), settings.api_key.encode()):
        msg = "Invalid API key"
        raise RequestError(msg, 401, "INVALID_API_KEY")


def require_authenticated(request: Request) -> None:
    """GET 文档接口的鉴权."""
    if not is_authenticated(request):
        msg = "Authentication required. Please provide X-API-Key header."
        raise RequestError(msg, 401, "AUTHENTICATION_REQUIRED")


def register_exception_handlers(app: FastAPI) -> None:
    """统一错误信封."""

    @app.exception_handler(RequestError)
    async def _request_error(request: Request, exc: RequestError) -> JSONResponse:
        return error_response(exc.message, exc.status_code, exc.code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(p) for p in err["loc"] if p != "body"),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return error_response(
            "Request validation failed", 400, "VALIDATION_ERROR", {"errors": errors}
        )

    @app.exception_handler(BriefingsError)
    async def _briefings_error(request: Request, exc: BriefingsError) -> JSONResponse:
        logger.error(f"请求失败: {exc.to_dict()}")
        return error_response(exc.message, exc.status_code, exc.code.value, exc.context or None)
