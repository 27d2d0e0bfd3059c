"""Flowstream daemon application package.

Creates the FastAPI app, registers routers, and wires up lifecycle events.
Re-exports `app` so uvicorn can load `flowstream.daemon.app:app`.
"""

import os
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowstream import __version__
from ..utils.logging_config import setup_logging

load_dotenv()
setup_logging(os.getenv("FLOWSTREAM_LOG_LEVEL", "INFO"))


def _split_csv_env(name: str) -> list[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


# --- Lifecycle ---
from .lifecycle import startup_event, shutdown_event

# --- Routers ---
from .control import router as control_router
from .ops import router as ops_router
from .streaming import router as streaming_router


def create_app() -> FastAPI:
    app = FastAPI(title="Flowstream", version=__version__)

    cors_origins = _split_csv_env("FLOWSTREAM_CORS_ORIGINS")
    if cors_origins:
        allow_credentials = "*" not in cors_origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=allow_credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    async def _startup():
        await startup_event(app)

    @app.on_event("shutdown")
    async def _shutdown():
        await shutdown_event()

    app.include_router(control_router)
    app.include_router(streaming_router)
    app.include_router(ops_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
