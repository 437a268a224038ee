"""
Semantic Search - FastAPI Application Entry Point

Indexes a Python source tree into function/class/method embeddings stored in
PostgreSQL + pgvector and serves nearest-neighbour search over them.
"""

import traceback
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from semantic_search.config import Settings, get_settings
from semantic_search.dependencies import ServiceContainer
from semantic_search.utils.logger import setup_logging, get_logger, set_request_id
from semantic_search.routes import health, index, search

ContainerFactory = Callable[[Settings], Awaitable[ServiceContainer]]


def create_app(
    settings: Optional[Settings] = None,
    container_factory: ContainerFactory = ServiceContainer.start,
) -> FastAPI:
    """Build the application; the container is created at startup and released at shutdown."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown."""
        setup_logging(debug=settings.debug)
        logger = get_logger("main")

        logger.info(
            "starting_semantic_search",
            version=settings.app_version,
            embedding_provider=settings.embedding_provider,
            embedding_model=settings.openai_embedding_model,
            database=settings.db_name,
            project_root=str(settings.project_root),
        )

        # Configuration and store errors propagate and abort startup.
        container = await container_factory(settings)
        app.state.container = container

        if settings.index_on_startup:
            container.start_background_index(settings.project_root)

        yield

        logger.info("shutting_down_semantic_search")
        await container.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Semantic search over functions, classes and methods",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add request_id to each request for tracing."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(health.router)
    app.include_router(index.router)
    app.include_router(search.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler to ensure JSON response."""
        logger = get_logger("main")
        logger.error("unhandled_exception", error=str(exc), traceback=traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": f"Internal Server Error: {str(exc)}"},
        )

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": "Welcome to Semantic Search", "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    _settings = get_settings()
    uvicorn.run(
        "semantic_search.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug
    )
