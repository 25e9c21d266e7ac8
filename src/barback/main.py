"""FastAPI application factory and coordinator lifecycle."""

import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from barback.core.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from barback.core.avatar import AvatarProvider
    from barback.core.generation import Generator

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = get_logger(__name__)

GRANT_SWEEP_INTERVAL_SECONDS = int(os.getenv("GRANT_SWEEP_INTERVAL_SECONDS", "300"))
SESSION_SWEEP_INTERVAL_SECONDS = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "300"))


def build_lifespan(
    engine: Optional[AsyncEngine] = None,
    avatar: Optional["AvatarProvider"] = None,
    generator: Optional["Generator"] = None,
):
    """Lifespan that owns one instance of every coordinator.

    ``engine`` overrides DATABASE_URL and ``avatar``/``generator`` replace the
    HTTP providers (tests pass a SQLite engine and in-process fakes).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        from barback.api.health import set_app_start_time
        from barback.core.avatar import DIDAvatarProvider
        from barback.core.catalog import DEFAULT_SEGMENT_KEYS, CatalogChangeFeed, CatalogLoader
        from barback.core.catalog_cache import CatalogCache
        from barback.core.context import ContextBuilder
        from barback.core.db import create_engine, create_session_factory
        from barback.core.generation import GeminiGenerator
        from barback.core.grants import GrantWorkflow
        from barback.core.notifications import NotificationHub
        from barback.core.scheduler import Scheduler
        from barback.core.sessions import SessionRegistry

        start_time = datetime.now()
        logger.info("app.startup", message="Barback starting up", timestamp=start_time.isoformat())
        set_app_start_time(start_time)

        owns_engine = engine is None
        db_engine = engine or create_engine()
        session_factory = create_session_factory(db_engine)

        change_feed = CatalogChangeFeed()
        change_feed.install()
        catalog_cache = CatalogCache(CatalogLoader(session_factory), DEFAULT_SEGMENT_KEYS)
        catalog_cache.attach_change_feed(change_feed)

        notifications = NotificationHub()
        grants = GrantWorkflow(session_factory, notifier=notifications)

        http_clients = []
        avatar_provider = avatar
        if avatar_provider is None:
            avatar_provider = DIDAvatarProvider()
            http_clients.append(avatar_provider)
        text_generator = generator
        if text_generator is None:
            text_generator = GeminiGenerator()
            http_clients.append(text_generator)

        sessions = SessionRegistry(
            provider=avatar_provider,
            generator=text_generator,
            context_builder=ContextBuilder(catalog_cache),
            session_factory=session_factory,
        )

        scheduler = Scheduler()
        scheduler.register(
            "catalog_refresh", catalog_cache.ttl.total_seconds(), catalog_cache.refresh_all
        )
        scheduler.register("grant_sweep", GRANT_SWEEP_INTERVAL_SECONDS, grants.sweep_expired)
        scheduler.register("session_sweep", SESSION_SWEEP_INTERVAL_SECONDS, sessions.sweep_idle)
        scheduler.start()

        app.state.engine = db_engine
        app.state.session_factory = session_factory
        app.state.catalog_cache = catalog_cache
        app.state.notifications = notifications
        app.state.grants = grants
        app.state.sessions = sessions
        app.state.scheduler = scheduler

        try:
            yield
        finally:
            logger.info("app.shutdown", message="Barback shutting down gracefully")
            await scheduler.stop()
            closed = await sessions.close_all()
            logger.info("app.sessions_closed", closed=closed)
            for client in http_clients:
                await client.aclose()
            await notifications.close()
            await catalog_cache.close()
            change_feed.uninstall()
            if owns_engine:
                await db_engine.dispose()

    return lifespan


def _setup_middleware(app: FastAPI) -> None:
    """Configure all middleware in correct order."""
    # Last added runs first: request ids are assigned before Sentry tags them
    from barback.middleware.logging import RequestIDMiddleware
    from barback.middleware.sentry import SentryContextMiddleware

    app.add_middleware(SentryContextMiddleware)
    app.add_middleware(RequestIDMiddleware)


def _register_routers(app: FastAPI) -> None:
    """Register all API routers."""
    from barback.api.grants import router as grants_router
    from barback.api.health import router as health_router
    from barback.api.notifications import router as notifications_router
    from barback.api.streams import router as streams_router

    app.include_router(health_router)
    app.include_router(grants_router)
    app.include_router(notifications_router)
    app.include_router(streams_router)


def create_app(
    engine: Optional[AsyncEngine] = None,
    avatar: Optional["AvatarProvider"] = None,
    generator: Optional["Generator"] = None,
) -> FastAPI:
    """Application factory for Barback."""
    from barback.core.exception_handlers import register_exception_handlers
    from barback.core.sentry import init_sentry

    init_sentry()

    app = FastAPI(
        title="Barback API",
        description="Venue coordination: catalog cache, ultra shelf grants, owner alerts, avatar streams",
        version="0.1.0",
        lifespan=build_lifespan(engine, avatar, generator),
    )

    register_exception_handlers(app)
    _setup_middleware(app)
    _register_routers(app)

    logger.info("app.configured", message="FastAPI application created successfully")

    return app


def run() -> None:
    """Development server entrypoint."""
    uvicorn.run(
        "barback.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
