from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bowlbuilder.api.v1.sessions import router as sessions_router
from bowlbuilder.config import Settings
from bowlbuilder.services.backend import BowlBackend
from bowlbuilder.services.http_backend import HttpBowlBackend
from bowlbuilder.services.registry import SessionRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure data dir exists so the store-selection repo and metrics can write
    os.makedirs(app.state.settings.data_dir, exist_ok=True)
    yield
    app.state.sessions.close_all()
    await app.state.backend.aclose()


def create_app(settings: Optional[Settings] = None, backend: Optional[BowlBackend] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Bowl Builder API", version="1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.backend = backend or HttpBowlBackend(settings)
    app.state.sessions = SessionRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(sessions_router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    def readyz():
        return {"status": "ready", "sessions": len(app.state.sessions)}

    logger.info("Bowl Builder API configured against %s", settings.api_base_url)
    return app


app = create_app()
