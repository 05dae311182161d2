"""Particle Vision – FastAPI application entry-point."""

from contextlib import asynccontextmanager
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from starlette.middleware.cors import CORSMiddleware

from src.particlevision.config import UPLOAD_DIR, settings
from src.particlevision.dependencies import build_services
from src.particlevision.router import health, models, predictions
from src.particlevision.services.model_service import check_model_files

# Configure logging from settings
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Lifespan: check model files on startup, release session on shutdown
# ──────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    services = app.state.services
    if services.engine is not None:
        logger.info("🚀 Checking model %s …", services.engine.model_id)
        check_model_files(services.engine.model_id)
    yield
    if services.engine is not None:
        logger.info("🛑 Shutting down – releasing model session …")
        services.engine.reset()


# ──────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────
app = FastAPI(
    title="Particle Vision API",
    description="Classify particle-detector images and keep a log of predictions.",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.services = build_services(settings)

# ── CORS middleware (configured from environment variables) ──
app.add_middleware(
    middleware_class=CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.cors_headers_list,
)

logger.info("CORS configured with origins: %s", settings.cors_origins_list)

# ── register routers ──
app.get('/')(lambda: {"message": "Welcome to the Particle Vision API! Visit /docs for API documentation."})
app.include_router(health.router)
app.include_router(models.router)
app.include_router(predictions.router)

# ── serve uploaded images statically ──
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")
