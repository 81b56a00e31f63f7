"""
Mailbridge proxy application.

WHAT: Builds the FastAPI app that fronts Gmail, Outlook and Postmark for the
quoting widget, plus the quote and reminder endpoints the workflow engine
drives.

WHY: The proxy keeps no state between requests. Everything a request needs
arrives with it (API key, bearer token, provider), so one app instance can
serve every tenant and tests can build a fresh one per case.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailbridge import __version__
from mailbridge.api import labels, messages, meta, profile, quote, webhooks
from mailbridge.core.config import get_settings
from mailbridge.core.exception_handlers import register_exception_handlers
from mailbridge.middleware import RequestContextMiddleware, SecurityHeadersMiddleware

API_ROUTERS = (
    messages.router,
    messages.threads_router,
    labels.router,
    profile.router,
    quote.router,
    webhooks.router,
    meta.router,
)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Stateless mail proxy for Gmail, Outlook and Postmark",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    register_exception_handlers(app)

    # Added first, so it sits innermost: the request id is set before
    # routing and the AppException handlers run.
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # The Origin allow-list is enforced again per request by get_credential,
    # so clients that ignore CORS still get 403 from a disallowed origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=not settings.allows_any_origin,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness check; needs no key and calls no backend."""
        return {"status": "healthy", "version": __version__}

    for router in API_ROUTERS:
        app.include_router(router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    debug = get_settings().DEBUG
    uvicorn.run(
        "mailbridge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=debug,
        log_level="info" if debug else "warning",
    )
