"""Shared fixtures – synthetic images, fake engines, wired services."""

import io

import pytest
from PIL import Image

from src.particlevision.config import MODEL_REGISTRY, Settings
from src.particlevision.dependencies import Services
from src.particlevision.services.model_service import InferenceEngine
from src.particlevision.services.pipeline_service import PredictionPipeline
from src.particlevision.services.record_service import RecordBuilder
from src.particlevision.services.storage_service import LocalBlobStore
from src.particlevision.services.store_service import InMemoryPredictionStore
from tests.fakes import CountingLoader, FakeSession, one_hot


@pytest.fixture
def make_image_bytes():
    """Factory: encode a solid-colour image in the given format."""

    def _make(color=(255, 0, 0), size=(8, 8), mode="RGB", fmt="PNG") -> bytes:
        buffer = io.BytesIO()
        Image.new(mode, size, color=color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_engine():
    """Factory: an engine for a registered model backed by a fake session."""

    def _make(output, model_id: str = "particles10", **loader_kwargs) -> InferenceEngine:
        loader = CountingLoader(FakeSession(output), **loader_kwargs)
        return InferenceEngine(model_id, loader=loader)

    return _make


@pytest.fixture
def store() -> InMemoryPredictionStore:
    return InMemoryPredictionStore()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "uploads", base_url="http://testserver")


@pytest.fixture
def make_pipeline(blob_store, store):
    """Factory: pipeline over the in-memory store and a temp blob directory."""

    def _make(engine=None, model_id: str = "particles10", **kwargs) -> PredictionPipeline:
        return PredictionPipeline(
            blob_store=blob_store,
            store=store,
            builder=RecordBuilder(MODEL_REGISTRY[model_id]["classes"]),
            engine=engine,
            **kwargs,
        )

    return _make


@pytest.fixture
def services(make_engine, make_pipeline, store, blob_store) -> Services:
    engine = make_engine(one_hot(2))
    return Services(
        settings=Settings(model_id="particles10"),
        engine=engine,
        store=store,
        blob_store=blob_store,
        pipeline=make_pipeline(engine),
    )
