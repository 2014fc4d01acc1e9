# mailgate/core/errors.py
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from mailgate.core import messages
from mailgate.core.messages import ResponseMessage


class AppError(Exception):
    """
    路由層統一拋出的錯誤：帶 HTTP status、訊息目錄中的 ResponseMessage，
    以及選擇性的 data（例如 Gmail 授權頁網址）。
    """

    def __init__(
        self,
        response: ResponseMessage,
        status_code: int = 400,
        data: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(reason or response.message)
        self.response = response
        self.status_code = status_code
        self.data = data
        self.headers = headers


def error_body(response: ResponseMessage, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "message": response.message,
        "error_code": response.response_code,
        "data": data,
    }


def describe_validation_error(exc) -> str:
    """取第一個驗證錯誤組成訊息（RequestValidationError 或 pydantic ValidationError）"""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path", "header")]
    field = ".".join(loc)
    msg = first.get("msg", "is invalid")
    return f"{field} {msg}".strip() if field else msg


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.opt(exception=exc).error(
                "Error on the endpoint, {} {} ======> {}", request.method, request.url.path, exc
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(error_body(exc.response, exc.data)),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            response = messages.resource_not_found("Resource")
        else:
            response = messages.bad_request_error(str(exc.detail)) if exc.status_code < 500 else messages.ERROR
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(response),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        # 驗證錯誤一律回 400，訊息只取第一個錯誤
        return JSONResponse(
            status_code=400,
            content=error_body(messages.bad_request_error(describe_validation_error(exc))),
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "Error on the endpoint, {} {} ======> {}", request.method, request.url.path, exc
        )
        return JSONResponse(status_code=500, content=error_body(messages.UNABLE_TO_COMPLETE_REQUEST))

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        return resp
