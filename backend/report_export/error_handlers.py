import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from report_export.errors import AdmissionDenied, ExportError

logger = structlog.get_logger("report_export.errors")


def register_error_handlers(app: FastAPI):
    @app.exception_handler(AdmissionDenied)
    async def admission_denied_handler(request: Request, exc: AdmissionDenied):
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(ExportError)
    async def export_error_handler(request: Request, exc: ExportError):
        if exc.status_code >= 500:
            logger.error("export_error", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # SlowAPIMiddleware calls this one synchronously
    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("http_rate_limit_exceeded", path=request.url.path, detail=exc.detail)
        return JSONResponse(
            status_code=429,
            content={"error": f"Rate limit exceeded: {exc.detail}", "code": "HTTP_RATE_LIMITED"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        logger.warning("http_exception", path=request.url.path, status=exc.status_code, detail=exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail) if exc.detail else "HTTP error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        logger.warning("validation_error", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(
            status_code=422,
            content={"error": "Validation error", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )
