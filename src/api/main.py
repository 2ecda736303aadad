from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from config.settings import Settings, settings
from src.api.auth import SessionProvider
from src.api.dependencies import build_services
from src.api.routes import router
from src.calls.errors import CallTrackingError
from src.database.db import SessionLocal, init_db
from src.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(
    app_settings: Settings = settings,
    session_factory: Optional[sessionmaker] = None,
    session_provider: Optional[SessionProvider] = None,
) -> FastAPI:
    factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting call tracking service in %s mode", app_settings.environment)
        init_db(factory.kw["bind"])
        yield
        logger.info("Call tracking service stopped")

    app = FastAPI(title="Call Tracking", version="0.1.0", debug=app_settings.debug, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.services = build_services(app_settings, factory, session_provider)
    app.include_router(router)

    @app.exception_handler(CallTrackingError)
    async def call_tracking_error_handler(request: Request, exc: CallTrackingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "internal_error", "detail": "Internal server error"},
        )

    return app


app = create_app()
