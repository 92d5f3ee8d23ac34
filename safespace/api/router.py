"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/")
async def root():
    return {"status": "SafeSpace backend running"}


@router.get("/health")
async def health():
    from ..core.flags import get_flags

    flags = get_flags()
    return {
        "status": "ok",
        "service": "safespace",
        "llm_provider": flags.llm_provider,
        "cache": "redis" if flags.use_redis else "memory",
    }


# ── API routes ───────────────────────────────────────────────────────

from .chat import chat_router

router.include_router(chat_router, prefix="/api")
