from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from app import models  # noqa: F401
from app.api.routes.internal import router as internal_router
from app.api.routes.leaderboard import router as leaderboard_router
from app.api.routes.me import router as me_router
from app.api.routes.sessions import router as sessions_router
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import setup_json_logging
from app.core.rate_limit import RateLimitMiddleware
from app.core.request_logging import RequestLoggingMiddleware
from app.services.sessions import GameLinkResolver

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    resolver = GameLinkResolver()
    app.state.redis = redis
    app.state.link_resolver = resolver
    try:
        yield
    finally:
        resolver.close()
        await redis.aclose()


app = FastAPI(title="squadlink api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-Id", "X-Request-Id"],
)

app.include_router(sessions_router)
app.include_router(leaderboard_router)
app.include_router(me_router)
app.include_router(internal_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "env": settings.app_env,
        "commit": settings.git_sha or "unknown",
    }
