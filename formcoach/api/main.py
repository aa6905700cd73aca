"""FastAPI application exposing the coaching engine over REST.

Endpoints:
- GET /rules/{exercise_id}, POST /validate-rep: rule documents and stateless validation
- /coach/session...: per-athlete frame-driven coaching sessions
- POST /tts: text-to-speech proxy with per-phrase limits
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from formcoach import __version__
from formcoach.api import deps
from formcoach.api.routers.coach import router as coach_router
from formcoach.api.routers.rules import router as rules_router
from formcoach.api.routers.tts import router as tts_router
from formcoach.core.config import get_settings
from formcoach.core.logging_config import add_file_sink

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sink_id = add_file_sink(Path(settings.logs_dir))
    logger.info(
        "Form coach API starting (rules: {}, tts: {})",
        ", ".join(deps.registry.store.available()) or "none",
        "on" if deps.speech_provider.available else "off",
    )
    yield
    deps.registry.clear()
    logger.remove(sink_id)


app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.exposed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict:
    """Return API health status."""

    return {"status": "ok", "sessions": len(deps.registry.ids())}


app.include_router(rules_router, prefix="", tags=["rules"])
app.include_router(coach_router, prefix="", tags=["coach"])
app.include_router(tts_router, prefix="", tags=["tts"])
