"""FastAPI application factory and server runner.

The app owns one CredentialLifecycleManager for its lifetime: the lifespan
starts the refresh scheduler on startup and stops it (letting an in-flight
sweep finish) on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from kubeoauth import __version__
from kubeoauth.config import Settings, get_settings
from kubeoauth.manager import CredentialLifecycleManager

logger = logging.getLogger(__name__)


class HealthCheckFilter(logging.Filter):
    """Keep /health requests out of the access log."""

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            # args[2] is the full path, query string included
            return str(args[2]).split("?", 1)[0] != "/health"
        return "/health" not in record.getMessage()


def create_app(
    settings: Settings | None = None,
    manager: CredentialLifecycleManager | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the web app around a (possibly injected) lifecycle manager."""
    settings = settings or (manager.settings if manager else get_settings())
    manager = manager or CredentialLifecycleManager.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            manager.scheduler.start()
        try:
            yield
        finally:
            await manager.close()

    app = FastAPI(
        title="kubeoauth",
        description="Per-tenant OAuth credentials on Kubernetes.",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.manager = manager

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="kubeoauth_session",
        https_only=settings.base_url.startswith("https://"),
        same_site="lax",
    )

    from kubeoauth.web.routes import router

    app.include_router(router)
    return app


def run_server(
    settings: Settings,
    host: str = "0.0.0.0",
    port: int = 8443,
    tls: bool = True,
    cert_file: str = "tls.crt",
    key_file: str = "tls.key",
) -> None:
    """Serve the app with uvicorn until interrupted."""
    import uvicorn

    settings.validate_for_serving()
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())

    app = create_app(settings)
    ssl_kwargs = {"ssl_certfile": cert_file, "ssl_keyfile": key_file} if tls else {}
    scheme = "https" if tls else "http"
    logger.info("Serving on %s://%s:%d (public URL %s)", scheme, host, port, settings.base_url)

    uvicorn.run(app, host=host, port=port, log_config=None, **ssl_kwargs)
