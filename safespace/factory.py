"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.redis import close_redis
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="SafeSpace",
        description="Streaming conversational support gateway",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting SafeSpace (env=%s)", settings.env)

        from .core.flags import get_flags
        flags = get_flags()
        logger.info("Flags: redis=%s llm=%s", flags.use_redis, flags.llm_provider)

        from .services.llm import get_provider_config
        if not get_provider_config()[1]:
            # Not fatal: chat requests answer 500 until a key is configured
            logger.warning("No API key for LLM provider '%s'", flags.llm_provider)

        logger.info("SafeSpace is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.llm import close_client
        await close_client()
        await close_redis()
        logger.info("SafeSpace shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
