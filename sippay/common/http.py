"""FastAPI wiring shared by every service: request metrics, trace ids, error rendering."""

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sippay.common.config import settings
from sippay.common.errors import SipPayError, ValidationError
from sippay.common.logging import handler_ctx, logger, trace_id_ctx
from sippay.common.metrics import http_request_duration_seconds, http_requests_total


def _error_response(exc: SipPayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


async def sippay_error_handler(request: Request, exc: SipPayError) -> JSONResponse:
    """Render typed failures with their sanitized message; the detail is only logged."""

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed path=%s code=%s status=%s detail=%s",
        request.url.path,
        exc.code,
        exc.status_code,
        exc.detail,
    )
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    message = f"Invalid or missing field '{field}': {first.get('msg', 'invalid value')}"
    logger.warning("request_invalid path=%s detail=%s", request.url.path, message)
    return _error_response(ValidationError(message))


def install_http_support(app: FastAPI) -> None:
    """Attach metrics middleware and typed error handlers to `app`."""

    app.add_exception_handler(SipPayError, sippay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency for every HTTP call."""

        trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
        handler_ctx.set(request.url.path)
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()
