"""Service wiring – builds the shared services from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fastapi import Request

from src.particlevision.config import MODEL_REGISTRY, UPLOAD_DIR, Settings
from src.particlevision.services.model_service import InferenceEngine
from src.particlevision.services.pipeline_service import PredictionPipeline
from src.particlevision.services.record_service import RecordBuilder
from src.particlevision.services.storage_service import BlobStore, LocalBlobStore
from src.particlevision.services.store_service import (
    InMemoryPredictionStore,
    PredictionStore,
    RedisPredictionStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: InferenceEngine | None
    store: PredictionStore
    blob_store: BlobStore
    pipeline: PredictionPipeline


def build_store(settings: Settings) -> PredictionStore:
    if settings.store_backend == "redis":
        logger.info("Using Redis prediction store at %s (key %r)", settings.redis_url, settings.predictions_key)
        return RedisPredictionStore.from_url(settings.redis_url, key=settings.predictions_key)
    logger.info("Using in-memory prediction store")
    return InMemoryPredictionStore()


def build_services(settings: Settings, upload_dir: Path = UPLOAD_DIR) -> Services:
    if settings.model_id not in MODEL_REGISTRY:
        raise KeyError(f"Unknown model_id: {settings.model_id}")

    engine = InferenceEngine(settings.model_id) if settings.inference_enabled else None
    if engine is None:
        logger.warning("Inference disabled – predictions will be stored as unavailable.")

    store = build_store(settings)
    blob_store = LocalBlobStore(upload_dir, base_url=settings.public_base_url)
    pipeline = PredictionPipeline(
        blob_store=blob_store,
        store=store,
        builder=RecordBuilder(MODEL_REGISTRY[settings.model_id]["classes"]),
        engine=engine,
        degraded_mode=settings.degraded_mode,
        strict_invariants=settings.environment == "development",
        max_concurrency=settings.max_concurrency,
    )
    return Services(
        settings=settings, engine=engine, store=store, blob_store=blob_store, pipeline=pipeline,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
