"""FastAPI app factory + lifespan (startup/shutdown)."""

import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from attache.core import create_assistant
from .streaming import EventBroadcaster
from . import routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Startup
    assistant = create_assistant()
    routes.assistant = assistant
    routes.broadcaster = EventBroadcaster(assistant.bus)
    routes._start_time = time.time()
    await assistant.start()

    yield

    # Shutdown
    routes.broadcaster.close()
    await assistant.stop()


def create_app() -> FastAPI:
    """Build and return the configured FastAPI application."""
    app = FastAPI(
        title="Attache API",
        description="Personal assistant that delegates work to background agents",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS: restrict origins in production, allow the dev frontend otherwise
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    return app
