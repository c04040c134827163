from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from govauth.api.error_handling import register_exception_handlers
from govauth.api.routes import router
from govauth.config import Settings, get_settings
from govauth.logging import get_logger, set_correlation_id
from govauth.service.runtime import Runtime
from govauth.storage.errors import StoreUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


def _allowed_origins(settings: Settings) -> List[str]:
    if settings.cors_allow_origins:
        return settings.cors_allow_origins
    # Common local dev hosts; no wildcard
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


def create_app(
    runtime: Optional[Runtime] = None, *, settings: Optional[Settings] = None
) -> FastAPI:
    """Build the application.

    Pass ``runtime`` to inject a prebuilt service graph (tests do); otherwise
    one is constructed at startup and closed at shutdown.
    """
    settings = settings or (runtime.settings if runtime is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        app.state.runtime = runtime if runtime is not None else Runtime(settings)
        logger.info("app_started", version=__version__, owned_runtime=owned)
        try:
            yield
        finally:
            if owned:
                try:
                    await app.state.runtime.close()
                except Exception as exc:
                    logger.error("shutdown_failed", error=str(exc))
            logger.info("app_stopped")

    app = FastAPI(title="GovAuth SIWE Service", version=__version__, lifespan=lifespan)
    # Also available before lifespan runs so injected runtimes work without startup
    if runtime is not None:
        app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "API-Version"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Propagate X-Request-ID into structured logs and back to the client."""
        client_request_id = request.headers.get("X-Request-ID")
        correlation_id = set_correlation_id(client_request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("API-Version", __version__)
        if request.url.path.startswith("/v1/auth/") or request.url.path == "/healthz":
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/healthz")
    async def health(request: Request) -> Dict[str, Any]:
        """Report key/value store reachability."""
        active = getattr(request.app.state, "runtime", None)
        store_status = "not_initialized"
        if active is not None:
            try:
                await asyncio.wait_for(active.kv.ping(), HEALTH_CHECK_TIMEOUT_SECONDS)
                store_status = "healthy"
            except asyncio.TimeoutError:
                logger.error("health_check_timeout", timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
                store_status = "unhealthy"
            except StoreUnavailable as exc:
                logger.error("health_check_store_failed", error=exc.message)
                store_status = "unhealthy"
        return {
            "status": "healthy" if store_status == "healthy" else "unhealthy",
            "store": store_status,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
