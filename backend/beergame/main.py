"""FastAPI application for the Beer Game settlement service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beergame.api.api_v1.api import api_router
from beergame.api.errors import register_exception_handlers
from beergame.core.config import settings
from beergame.core.logging import setup_logging
from beergame.db.session import init_db

logger = setup_logging("beergame")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    logger.info("%s %s started (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)
    yield
    logger.info("%s shutting down", settings.PROJECT_NAME)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    def root():
        return {"name": settings.PROJECT_NAME, "docs": "/docs"}

    return app


app = create_app()
