"""Service layer – per-batch orchestration of upload → preprocess → infer → persist.

Every image runs its own state machine::

    received → uploaded → preprocessed → classified → persisted
                  │             │             │            │
            upload_failed  preprocess_failed  classify_failed  persist_failed

Images in a batch are processed concurrently and independently; a failure is
recorded on that image only.  When inference is disabled or the model cannot
be loaded, images are persisted in *degraded mode* with the ``unavailable``
placeholder label and confidence 0.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from src.particlevision.errors import (
    BlobUnavailable,
    DecodeError,
    InvariantViolation,
    ModelUnavailable,
    StoreUnavailable,
)
from src.particlevision.schemas.prediction import (
    BatchReport,
    Decision,
    ImageResult,
    ImageState,
    Unavailable,
)
from src.particlevision.schemas.upload import ImageUpload
from src.particlevision.services.model_service import InferenceEngine
from src.particlevision.services.preprocess_service import preprocess_image
from src.particlevision.services.record_service import RecordBuilder
from src.particlevision.services.storage_service import BlobStore
from src.particlevision.services.store_service import PredictionStore

logger = logging.getLogger(__name__)


class PredictionPipeline:
    def __init__(
        self,
        blob_store: BlobStore,
        store: PredictionStore,
        builder: RecordBuilder,
        engine: InferenceEngine | None = None,
        degraded_mode: bool = True,
        strict_invariants: bool = False,
        max_concurrency: int = 4,
    ) -> None:
        self.blob_store = blob_store
        self.store = store
        self.builder = builder
        self.engine = engine
        self.degraded_mode = degraded_mode
        # raise InvariantViolation instead of falling back (development)
        self.strict_invariants = strict_invariants
        self.max_concurrency = max(1, max_concurrency)

    async def process_batch(self, uploads: Sequence[ImageUpload]) -> BatchReport:
        """Run every upload through the pipeline and summarise the outcome."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(upload: ImageUpload) -> ImageResult:
            async with semaphore:
                return await self.process_one(upload)

        results = list(await asyncio.gather(*(run(upload) for upload in uploads)))
        succeeded = sum(1 for result in results if result.succeeded)

        logger.info("Batch of %d processed: %d persisted, %d failed",
                    len(results), succeeded, len(results) - succeeded)
        return BatchReport(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    async def process_one(self, upload: ImageUpload) -> ImageResult:
        if upload.rejected:
            return self._failed(upload, ImageState.UPLOAD_FAILED, upload.rejected)

        # ── upload ──
        try:
            blob = await asyncio.to_thread(self.blob_store.store, upload.name, upload.data)
        except BlobUnavailable as exc:
            return self._failed(upload, ImageState.UPLOAD_FAILED, exc)
        except Exception as exc:
            return self._crashed(upload, ImageState.UPLOAD_FAILED, exc)
        logger.debug("%s: %s → %s", upload.name, ImageState.RECEIVED.value, ImageState.UPLOADED.value)

        # ── preprocess & classify ──
        decision: Decision
        if self.engine is None:
            if not self.degraded_mode:
                return self._failed(upload, ImageState.CLASSIFY_FAILED, "Inference is disabled")
            decision = Unavailable(reason="Inference is disabled")
        else:
            try:
                tensor = await asyncio.to_thread(
                    preprocess_image, upload.data, self.engine.input_shape,
                )
            except DecodeError as exc:
                return self._failed(upload, ImageState.PREPROCESS_FAILED, exc)
            except Exception as exc:
                return self._crashed(upload, ImageState.PREPROCESS_FAILED, exc)
            logger.debug("%s: %s", upload.name, ImageState.PREPROCESSED.value)

            try:
                decision = await asyncio.to_thread(self.engine.classify, tensor)
            except ModelUnavailable as exc:
                if not self.degraded_mode:
                    return self._failed(upload, ImageState.CLASSIFY_FAILED, exc)
                logger.warning("⚠️  %s persisted without a prediction: %s", upload.name, exc)
                decision = Unavailable(reason=str(exc))
            except InvariantViolation as exc:
                decision = self._fallback(upload, exc)
            except Exception as exc:
                return self._crashed(upload, ImageState.CLASSIFY_FAILED, exc)
            logger.debug("%s: %s", upload.name, ImageState.CLASSIFIED.value)

        # ── build & persist ──
        try:
            record = self.builder.build(decision, blob, upload.size)
        except InvariantViolation as exc:
            decision = self._fallback(upload, exc)
            record = self.builder.build(decision, blob, upload.size)

        try:
            await asyncio.to_thread(self.store.append, record)
        except StoreUnavailable as exc:
            return self._failed(upload, ImageState.PERSIST_FAILED, exc)
        except Exception as exc:
            return self._crashed(upload, ImageState.PERSIST_FAILED, exc)

        logger.info("Prediction saved for %s: %s (%.4f)",
                    record.file_name, record.predicted_class, record.confidence)
        return ImageResult(
            file_name=upload.name,
            state=ImageState.PERSISTED,
            degraded=isinstance(decision, Unavailable),
            record=record,
        )

    def _fallback(self, upload: ImageUpload, exc: InvariantViolation) -> Unavailable:
        if self.strict_invariants:
            raise exc
        logger.error("Invariant violated for %s, storing placeholder: %s", upload.name, exc)
        return Unavailable(reason=str(exc))

    @staticmethod
    def _failed(upload: ImageUpload, state: ImageState, reason: object) -> ImageResult:
        logger.warning("❌ %s: %s (%s)", upload.name, state.value, reason)
        return ImageResult(file_name=upload.name, state=state, error=str(reason))

    @staticmethod
    def _crashed(upload: ImageUpload, state: ImageState, exc: Exception) -> ImageResult:
        logger.exception("❌ %s: %s after unexpected error", upload.name, state.value)
        return ImageResult(file_name=upload.name, state=state, error=f"Unexpected error: {exc}")
