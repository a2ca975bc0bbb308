import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIASGIMiddleware

from sticky_cart.auth.router import router as session_router
from sticky_cart.core.config import Settings, get_settings
from sticky_cart.core.limiter import limiter
from sticky_cart.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from sticky_cart.core.tasks import DeferredTaskRunner
from sticky_cart.shopify.install import InstallationCoordinator
from sticky_cart.shopify.router import router as shopify_router
from sticky_cart.shopify.schemas import HealthResponse
from sticky_cart.shopify.signatures import OAuthQueryVerifier, WebhookVerifier
from sticky_cart.shopify.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    # Missing SHOPIFY_API_KEY / SHOPIFY_API_SECRET / HOST raises here, before
    # any route exists.
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.task_runner.shutdown()

    _app = FastAPI(
        title="Sticky Add to Cart API",
        description="OAuth install and webhook endpoints for the Sticky Add to Cart Shopify app",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # Components: built once, shared read-only by every request
    # ---------------------------------------------------------------------------
    runner = DeferredTaskRunner()
    _app.state.settings = settings
    _app.state.task_runner = runner
    _app.state.webhook_dispatcher = WebhookDispatcher(
        WebhookVerifier(settings.secret_bytes), runner
    )
    _app.state.installation_coordinator = InstallationCoordinator(
        settings, OAuthQueryVerifier(settings.secret_bytes), runner
    )

    # ---------------------------------------------------------------------------
    # Rate limiter state: SlowAPI reads limiter from app.state
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ---------------------------------------------------------------------------
    # Middleware (registered innermost → outermost). No body-parsing
    # middleware: /api/webhooks must see the raw body.
    # ---------------------------------------------------------------------------
    _app.add_middleware(SlowAPIASGIMiddleware)
    _app.add_middleware(SecurityHeadersMiddleware)
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from sticky_cart.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    # ---------------------------------------------------------------------------
    # Logging
    # ---------------------------------------------------------------------------
    from sticky_cart.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Error handlers: never echo exception details to the caller
    # ---------------------------------------------------------------------------

    # A known path with the wrong method is just as unmatched as an unknown one.
    @_app.exception_handler(404)
    @_app.exception_handler(405)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"error": "Not Found", "path": request.url.path},
        )

    @_app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @_app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="success",
            message="Sticky Add to Cart App is running",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    _app.include_router(shopify_router)
    _app.include_router(session_router)

    return _app


app = create_app()
