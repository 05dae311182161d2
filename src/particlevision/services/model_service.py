"""Service layer – model session lifecycle and inference decisions.

Supports both **full TensorFlow** (development, ``.keras`` models) and
**tflite-runtime** (production, ``.tflite`` models).  The runtime is imported
only when the first session is loaded, so the API can start in degraded mode
without either package installed.

One :class:`InferenceEngine` owns one model session.  The session is loaded
lazily on first use, at most once: concurrent first callers block on the
same lock and share the result.  A failed load leaves the engine empty so the
next call retries.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np

from src.particlevision.config import MODEL_REGISTRY
from src.particlevision.errors import InvariantViolation, ModelUnavailable
from src.particlevision.schemas.prediction import Classified
from src.particlevision.services.preprocess_service import to_batch

logger = logging.getLogger(__name__)

BINARY_THRESHOLD = 0.5


# ──────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────
class ModelSession:
    """A loaded model able to score one ``(1, H, W, C)`` batch."""

    #: whether ``run`` may be called from several threads at once
    thread_safe: bool = True

    def run(self, batch: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class KerasSession(ModelSession):
    def __init__(self, model: Any) -> None:
        self.model = model

    def run(self, batch: np.ndarray) -> np.ndarray:
        preds: np.ndarray = self.model.predict(batch, verbose=0)
        return preds[0]


class TFLiteSession(ModelSession):
    # a tflite Interpreter keeps its tensors in shared buffers
    thread_safe = False

    def __init__(self, interpreter: Any) -> None:
        self.interpreter = interpreter

    def run(self, batch: np.ndarray) -> np.ndarray:
        interpreter = self.interpreter

        # ---------- INPUT ----------
        input_info = interpreter.get_input_details()[0]

        if input_info["dtype"] == np.uint8:
            scale, zero_point = input_info["quantization"]
            batch = batch / scale + zero_point
            batch = batch.astype(np.uint8)
        else:
            batch = batch.astype(np.float32)

        interpreter.set_tensor(input_info["index"], batch)
        interpreter.invoke()

        # ---------- OUTPUT ----------
        output_info = interpreter.get_output_details()[0]
        output_data = interpreter.get_tensor(output_info["index"])[0]

        if output_info["dtype"] == np.uint8:
            scale, zero_point = output_info["quantization"]
            output_data = (output_data.astype(np.float32) - zero_point) * scale

        return output_data


SessionLoader = Callable[[str, dict], ModelSession]


def load_session(model_id: str, meta: dict) -> ModelSession:
    """Load the model files registered for *model_id*.

    A ``.keras`` file is preferred when full TensorFlow is installed;
    otherwise the ``.tflite`` file is used.
    """
    from src.particlevision.compat import HAS_TF, Interpreter, tf

    keras_path = meta.get("keras_path")
    tflite_path = meta.get("tflite_path")

    if HAS_TF and keras_path and Path(keras_path).exists():
        logger.info("Loading Keras model %s from %s …", model_id, keras_path)
        model = tf.keras.models.load_model(str(keras_path))
        logger.info("✅ Keras model %s loaded successfully.", model_id)
        return KerasSession(model)

    if tflite_path and Path(tflite_path).exists():
        logger.info("Loading TFLite model %s from %s …", model_id, tflite_path)
        interpreter = Interpreter(model_path=str(tflite_path))
        interpreter.allocate_tensors()
        logger.info("✅ TFLite model %s loaded successfully.", model_id)
        return TFLiteSession(interpreter)

    raise FileNotFoundError(f"No model file on disk for '{model_id}'.")


def check_model_files(model_id: str) -> bool:
    """Report (without loading) whether *model_id* has a file on disk."""
    meta = MODEL_REGISTRY[model_id]
    paths = [meta.get("keras_path"), meta.get("tflite_path")]
    if any(path and Path(path).exists() for path in paths):
        logger.info("✅ Model %s found on disk (lazy load).", model_id)
        return True
    logger.error("No model file found for %s. Expected one of: %s", model_id, paths)
    return False


# ──────────────────────────────────────────────
# Decision policy
# ──────────────────────────────────────────────
def softmax(logits: np.ndarray) -> np.ndarray:
    exp = np.exp(logits - np.max(logits))
    return exp / exp.sum()


def decide_multiclass(scores: np.ndarray) -> tuple[int, float]:
    """Arg-max decision; on ties the lowest index wins."""
    index = int(np.argmax(scores))  # first occurrence
    return index, float(scores[index])


def decide_binary(p: float) -> tuple[int, float]:
    """Sigmoid decision; ``p == 0.5`` resolves to label 0."""
    if p > BINARY_THRESHOLD:
        return 1, p
    return 0, 1.0 - p


# ──────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────
class InferenceEngine:
    """Owns the lazily loaded session of one registered model."""

    def __init__(
        self,
        model_id: str,
        meta: dict | None = None,
        loader: SessionLoader = load_session,
    ) -> None:
        if meta is None:
            if model_id not in MODEL_REGISTRY:
                raise KeyError(f"Unknown model_id: {model_id}")
            meta = MODEL_REGISTRY[model_id]

        self.model_id = model_id
        self.meta = meta
        self.classes: tuple[str, ...] = tuple(meta["classes"])
        self.input_shape: tuple[int, int, int] = tuple(meta["input_shape"])
        self.decision: str = meta["decision"]
        self.logits: bool = meta.get("logits", False)

        self._loader = loader
        self._session: ModelSession | None = None
        self._last_error: str | None = None
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock()

    # ── lifecycle ──
    def session(self) -> ModelSession:
        """Return the shared session, loading it on first use."""
        session = self._session
        if session is not None:
            return session

        with self._init_lock:
            if self._session is None:
                try:
                    self._session = self._loader(self.model_id, self.meta)
                except Exception as exc:
                    self._last_error = str(exc) or type(exc).__name__
                    logger.error("Failed to load model %s: %s", self.model_id, exc)
                    raise ModelUnavailable(
                        f"Model '{self.model_id}' could not be loaded: {self._last_error}"
                    ) from exc
                self._last_error = None
            return self._session

    def reset(self) -> None:
        """Drop the session; the next call loads it again."""
        with self._init_lock:
            self._session = None
            self._last_error = None
        logger.info("Model %s session released.", self.model_id)

    def status(self) -> str:
        if self._session is not None:
            return "ready"
        if self._last_error is not None:
            return "failed"
        return "unloaded"

    # ── scoring ──
    def classify(self, tensor: np.ndarray) -> Classified:
        """Run one forward pass on a ``(H, W, C)`` tensor and decide a label."""
        if tensor.shape != self.input_shape:
            raise ValueError(
                f"Tensor shape {tensor.shape} does not match model input {self.input_shape}"
            )

        session = self.session()
        batch = to_batch(tensor.astype(np.float32))
        try:
            if session.thread_safe:
                output = session.run(batch)
            else:
                with self._run_lock:
                    output = session.run(batch)
        except Exception as exc:
            raise ModelUnavailable(f"Forward pass failed on '{self.model_id}': {exc}") from exc

        return self.decide(np.asarray(output, dtype=np.float32).reshape(-1))

    def decide(self, scores: np.ndarray) -> Classified:
        """Turn a raw output vector into a :class:`Classified` decision."""
        if self.decision == "binary":
            if scores.size not in (1, 2):
                raise InvariantViolation(
                    f"Binary model '{self.model_id}' returned {scores.size} outputs"
                )
            # two-unit heads carry P(label 1) in the second unit
            index, confidence = decide_binary(float(scores[-1]))
        else:
            if scores.size != len(self.classes):
                raise InvariantViolation(
                    f"Model '{self.model_id}' returned {scores.size} scores "
                    f"for {len(self.classes)} classes"
                )
            if self.logits:
                scores = softmax(scores)
            index, confidence = decide_multiclass(scores)

        return Classified(
            label_index=index,
            label=self.classes[index],
            confidence=confidence,
            scores=tuple(float(s) for s in scores),
        )
