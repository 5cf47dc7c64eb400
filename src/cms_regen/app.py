"""
FastAPI application factory for CMS Regen
"""
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from .billing_routes import router as billing_router
from .config import config
from .content_routes import router as content_router
from .exceptions import general_exception_handler, http_exception_handler, validation_exception_handler
from .logging_config import RequestIDMiddleware

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the API application with routers, middleware and error handlers"""
    app = FastAPI(title="CMS Regen API", version=config.BUILD_VERSION)

    cors_origins = [config.APP_URL]
    if config.CORS_ORIGINS:
        cors_origins.extend(origin.strip() for origin in config.CORS_ORIGINS.split(",") if origin.strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(billing_router)
    app.include_router(content_router)

    @app.get("/health")
    async def health():
        """Health check endpoint for monitoring"""
        return {"status": "healthy", "service": "cms-regen", "version": config.BUILD_VERSION}

    return app
