"""FastAPI application factory with lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from credvault.config import CredVaultConfig, config as default_config, configure_logging
from credvault.version import __version__

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    cfg: CredVaultConfig = app.state.config
    configure_logging(cfg.log_level)

    # ── Startup ──
    logger.info("credvault v%s starting...", __version__)

    # 1. Database
    from credvault.db.database import create_engine_from_config, create_session_factory, init_db
    engine = create_engine_from_config(cfg)
    await init_db(engine)
    async_session = create_session_factory(engine)
    app.state.async_session = async_session

    # 2. Master keys (injected via config, never read from the database)
    from credvault.credentials.keys import KeyRegistry
    registry = KeyRegistry.from_config(cfg)

    # 3. Vault components
    from credvault.vault import build_vault
    vault = build_vault(async_session, registry, cfg)
    app.state.vault = vault

    logger.info("credvault v%s ready (active key version: %s)", __version__, registry.active_version)

    yield

    # ── Shutdown ──
    logger.info("credvault shutting down...")
    vault.close()
    await engine.dispose()


def create_app(cfg: CredVaultConfig = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    cfg = cfg or default_config
    app = FastAPI(
        title="credvault",
        description="Multi-tenant encrypted credential vault.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # Auth middleware (tenant lookup goes through app.state.vault per request)
    from credvault.auth.middleware import AuthMiddleware
    from credvault.auth.jwt import JWTManager
    app.add_middleware(AuthMiddleware, jwt_manager=JWTManager(cfg))

    # Security headers: outermost, applied to every response
    app.add_middleware(SecurityHeadersMiddleware)

    from credvault.api.errors import register_error_handlers
    register_error_handlers(app)

    # Routes
    from credvault.api.routes import audit, credentials, health
    app.include_router(health.router, prefix="/v1")
    app.include_router(credentials.router, prefix="/v1")
    app.include_router(audit.router, prefix="/v1")

    return app


app = create_app()
