from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from gigcalc.app import App
from gigcalc.config import Config
from gigcalc.errors import UserError
from gigcalc.web.error_handlers import (
    TRANSIENT_ERRORS,
    general_exception_handler,
    transient_error_handler,
    user_error_handler,
)
from gigcalc.web.openapi import set_custom_openapi
from gigcalc.web.routers import auth_router, calculations_router, user_router

OAUTH_STATE_MAX_AGE = 10 * 60


def create_fastapi_app(app_instance: App, config: Config) -> FastAPI:
    """Create and configure FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        """FastAPI application lifespan management."""
        app.state.app = app_instance
        app.state.config = config
        async with app_instance.lifespan():
            yield

    app = FastAPI(
        title="GigCalc API",
        lifespan=lifespan,
        openapi_tags=[],  # Tags will be added by custom OpenAPI function
    )

    # Signed cookie holding only the OAuth state between /auth/login and /auth/callback
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret_key,
        session_cookie="gigcalc_oauth",
        max_age=OAUTH_STATE_MAX_AGE,
        same_site="lax",
        https_only=config.session_cookie_secure,
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Liveness plus database reachability; answers 200 even when the database is down."""
        connected = await app_instance.check_database()
        return {"status": "healthy", "database": "connected" if connected else "disconnected"}

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(calculations_router)

    # Register error handlers
    app.add_exception_handler(UserError, user_error_handler)
    for exc_class in TRANSIENT_ERRORS:
        app.add_exception_handler(exc_class, transient_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    set_custom_openapi(app, config)

    return app
