import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workforce.db import Base, SessionLocal, engine
from workforce.errors import ApiError, DataIntegrityError, DependencyError, error_response
from workforce.logging_utils import setup_json_logging
from workforce.routers import admin, attendance, auth, employees, leaves, payroll
from workforce.services.employees import ensure_bootstrap_admin
from workforce.services.field_cipher import get_field_cipher, key_status
from workforce.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from workforce.settings import get_cors_origins, get_settings

setup_json_logging()
logger = logging.getLogger("workforce.request")
startup_logger = logging.getLogger("workforce.startup")
settings = get_settings()


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor_id = getattr(request.state, "actor_id", "anonymous")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor_id": getattr(request.state, "actor_id", "anonymous"),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if isinstance(exc, (DependencyError, DataIntegrityError)):
        logger.error(
            "request_failed",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "method": request.method,
                "code": exc.code,
            },
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "UNAUTHENTICATED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(item.get("loc", [])), "msg": item.get("msg"), "type": item.get("type")}
        for item in exc.errors()
    ]
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(errors),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(auth.router)
app.include_router(employees.router)
app.include_router(attendance.router)
app.include_router(leaves.router)
app.include_router(payroll.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def check_field_key() -> str:
    status = key_status()
    try:
        get_field_cipher()
    except ValueError as exc:
        startup_logger.error("field_encryption_key_invalid", extra={"reason": str(exc)})
        raise RuntimeError("FIELD_KEY_INVALID") from exc
    if status != "configured":
        startup_logger.warning("field_encryption_key_not_configured", extra={"key_status": status})
    return status


def bootstrap_admin() -> None:
    email = (settings.bootstrap_admin_email or "").strip()
    password_hash = (settings.bootstrap_admin_password_hash or "").strip()
    if not email or not password_hash:
        return
    with SessionLocal() as db:
        created = ensure_bootstrap_admin(db, email=email, password_hash=password_hash)
    if created is not None:
        startup_logger.info("bootstrap_admin_created", extra={"identity_id": created.id})


@app.on_event("startup")
async def prepare_runtime() -> None:
    check_field_key()

    if settings.auto_create_schema:
        await asyncio.to_thread(Base.metadata.create_all, engine)

    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
    else:
        startup_logger.error("schema_guard_failed", extra=result.to_dict())
        if settings.schema_guard_strict:
            joined_issues = "; ".join(result.issues)
            raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")

    await asyncio.to_thread(bootstrap_admin)


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "field_encryption_key": key_status(),
    }
