"""FastAPI application entrypoint for workspace_guard."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from workspace_guard.audit.router import router as audit_router
from workspace_guard.auth.middleware import (
    AUTH_CONTEXT_KEY,
    resolve_request_auth_context,
    resolve_request_workspace_id,
)
from workspace_guard.auth.router import router as auth_router
from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import WorkspaceGuardError
from workspace_guard.core.logger import bind_request_context, clear_request_context, get_logger
from workspace_guard.core.metrics import record_http_request, record_rate_limit_block, render_prometheus_metrics
from workspace_guard.core.observability import capture_exception, init_sentry, sentry_scope
from workspace_guard.core.rate_limit import RateLimitDecision, get_ip_rate_limiter
from workspace_guard.invitations.router import router as invitations_router
from workspace_guard.resources.router import router as resources_router
from workspace_guard.storage.db import load_models
from workspace_guard.storage.db import test_connection as test_db_connection
from workspace_guard.storage.redis_client import test_connection as test_redis_connection
from workspace_guard.workspaces.router import router as workspaces_router


settings = get_settings()
logger = get_logger("workspace_guard.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


def _resolve_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _apply_rate_limit_headers(response: Response, decision: RateLimitDecision) -> None:
    response.headers["x-rate-limit-limit"] = str(decision.limit)
    response.headers["x-rate-limit-remaining"] = str(decision.remaining)
    response.headers["x-rate-limit-reset"] = str(decision.reset_seconds)


@app.exception_handler(WorkspaceGuardError)
async def workspace_guard_error_handler(request: Request, exc: WorkspaceGuardError) -> JSONResponse:
    if exc.status_code >= 500:
        capture_exception(exc)
        logger.error("request_failed", code=exc.code, path=request.url.path, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)

    actor_id = auth_context.user_id if auth_context is not None else None
    workspace_id = resolve_request_workspace_id(request)
    bind_request_context(request_id=request_id, actor_id=actor_id, workspace_id=workspace_id)

    response = None
    decision = None
    status_code = 500

    try:
        with sentry_scope(actor_id=actor_id, request_id=request_id, workspace_id=workspace_id):
            if settings.ip_rate_limit_enabled and settings.env.lower() in {"prod", "production"}:
                limiter = get_ip_rate_limiter()
                decision = limiter.check(ip=_resolve_client_ip(request))
                if not decision.allowed:
                    record_rate_limit_block(kind="ip")
                    response = JSONResponse(
                        status_code=429,
                        content={
                            "detail": "Rate limit exceeded",
                            "code": "rate_limited",
                            "limit": decision.limit,
                            "remaining": decision.remaining,
                            "reset_seconds": decision.reset_seconds,
                        },
                    )
                else:
                    response = await call_next(request)
            else:
                response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    if decision is not None:
        _apply_rate_limit_headers(response, decision)
    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
        ip_rate_limit_enabled=settings.ip_rate_limit_enabled,
        invitation_email_enabled=settings.invitation_email_enabled,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    redis_ok, redis_error = test_redis_connection()

    healthy = db_ok and redis_ok
    status = "ok" if healthy else "degraded"

    payload = {
        "status": status,
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
            "redis": {"ok": redis_ok, "error": redis_error},
        },
    }

    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router)
app.include_router(workspaces_router)
app.include_router(invitations_router)
app.include_router(resources_router)
app.include_router(audit_router)
