import os

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, engine
from .errors import DomainError
from .logging import setup_logging, RequestIdMiddleware
from .services.escalation import start_sweeper
from .services.permissions import build_permission_checker
from .auth.router import router as auth_router
from .routes.tasks import router as tasks_router
from .routes.approvals import router as approvals_router
from .routes.employees import router as employees_router
from .routes.horses import router as horses_router
from .routes.notifications import router as notifications_router
from .routes.audit_logs import router as audit_logs_router
from .routes.attendance import router as attendance_router
from .routes.grooming import router as grooming_router
from .routes.seed import router as seed_router


log = structlog.get_logger(__name__)


def _error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)
    app.state.permissions = build_permission_checker()

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Seed-Token"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Error mapping
    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError):
        if exc.status_code >= 500:
            log.error("domain_error", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
        return JSONResponse(status_code=400, content=_error_body(message, "validation_error"))

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        log.exception("unhandled_error", path=request.url.path, method=request.method)
        return JSONResponse(status_code=500, content=_error_body("Internal server error", "internal_error"))

    # Routers
    app.include_router(auth_router)
    app.include_router(tasks_router)
    app.include_router(approvals_router)
    app.include_router(employees_router)
    app.include_router(horses_router)
    app.include_router(notifications_router)
    app.include_router(attendance_router)
    app.include_router(grooming_router)
    app.include_router(audit_logs_router)
    app.include_router(seed_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("startup_tables_verified", tables=len(Base.metadata.tables))
        app.state.sweeper = start_sweeper(settings.escalation_sweep_seconds, app.state.permissions)

    @app.on_event("shutdown")
    def _shutdown():
        stop = getattr(app.state, "sweeper", None)
        if stop is not None:
            stop.set()

    return app


app = create_app()
