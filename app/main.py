from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.cors import CORSMiddleware

from app.api.v1 import api_router
from app.api.v1.exception_handlers import register_exception_handlers
from app.core.config import AppSettings, get_settings
from app.core.container import Container
from app.middlewares.logging_middleware import LoggingMiddleware
from app.utils.logger import configure_logging, get_logger


logger = get_logger("main")


def create_app(
    container: Optional[Container] = None,
    settings: Optional[AppSettings] = None,
) -> FastAPI:
    """Build the API. Tests pass a ready ``container``; otherwise one is
    created from settings at startup and closed at shutdown."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        if owned:
            configure_logging(settings.log_level)
            # a startup ConfigurationError propagates and aborts the server
            app.state.container = Container.for_api(settings)
        logger.info("Product API is ready")
        try:
            yield
        finally:
            if owned:
                app.state.container.close()
                app.state.container = None

    app = FastAPI(title="Product Image Pipeline API", lifespan=lifespan)
    app.state.settings = settings
    app.state.container = container

    allowed_origins = settings.allowed_hosts_list or [
        "http://localhost:3000",
        "http://localhost:8000",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    register_exception_handlers(app)

    # Prometheus instrumentation, one registry per app instance
    Instrumentator(registry=CollectorRegistry()).instrument(app).expose(app)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        cache_ok = app.state.container is not None and app.state.container.cache.ping()
        return {"status": "healthy", "cache": "up" if cache_ok else "down"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8082)
