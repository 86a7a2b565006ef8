from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trustgate.api.error_handling import register_exception_handlers
from trustgate.api.routes import router
from trustgate.api.schemas import Envelope, ErrorBody
from trustgate.logging import get_logger, set_correlation_id
from trustgate.service.runtime import Runtime
from trustgate.storage.errors import BackendUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the HTTP app around ``runtime`` (built from the environment if omitted)."""
    runtime = runtime or Runtime.from_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup", version=__version__)
        yield
        try:
            await runtime.close()
            logger.info("runtime_cleanup_complete")
        except BackendUnavailable as exc:
            logger.error("shutdown_failed", error=exc.message)

    app = FastAPI(title="Trustgate", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime.settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Session-ID",
            "X-CSRF-Token",
            "X-Request-ID",
        ],
        expose_headers=["X-Request-ID", "X-CSRF-Token"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith("/api/"):
            response.headers.setdefault(
                "Cache-Control", "no-store, no-cache, must-revalidate, private"
            )
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag the request with ``X-Request-ID`` (client supplied or generated)."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health", response_model=Envelope, tags=["health"])
    async def health():
        try:
            await runtime.backend.ping()
        except BackendUnavailable as exc:
            logger.error("health_check_failed", error=exc.message)
            envelope = Envelope(
                status="error",
                error=ErrorBody(code="service_unavailable", message="backend unreachable"),
            )
            return JSONResponse(status_code=503, content=envelope.model_dump())
        return Envelope(status="ok", data={"status": "healthy", "version": __version__})

    return app
