"""
Main application entry point for the cache engine service.

Usage:
    - Direct: python -m snipecache.main
    - ASGI server: uvicorn snipecache.main:app
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snipecache import __version__
from snipecache.api import router
from snipecache.common.config import AppConfig, get_config
from snipecache.common.logger import configure_logger
from snipecache.engine import CacheEngine


def create_app(config: Optional[AppConfig] = None, engine: Optional[CacheEngine] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Engine and API settings (default: loaded configuration)
        engine: Pre-built engine; one is built from ``config`` if omitted

    Returns:
        The application; its lifespan starts and closes the engine
    """
    config = config or get_config()

    logger = configure_logger(
        name=config.app_name,
        level=config.logging.level,
        use_json=config.logging.json_format,
        log_file=config.logging.file_path
    ).getChild("main")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or CacheEngine(config)
        try:
            await app.state.engine.start()
            logger.info("Application startup complete")
        except Exception as e:
            logger.error(f"Failed to start cache engine: {e}")
            raise

        yield

        try:
            await app.state.engine.close()
            logger.info("Application shutdown complete")
        finally:
            app.state.engine = None

    app = FastAPI(
        title="snipecache",
        description="Adaptive caching and prefetch engine",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix=config.api.prefix, tags=["cache"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": "snipecache is running", "version": __version__}

    logger.info(f"Application initialized with {len(app.routes)} routes")
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    config = get_config()
    host = os.environ.get("HOST", config.api.host)
    port = int(os.environ.get("PORT", config.api.port))

    uvicorn.run(
        "snipecache.main:app",
        host=host,
        port=port,
        log_level=config.logging.level.lower()
    )
