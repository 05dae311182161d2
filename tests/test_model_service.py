"""Tests for the inference engine: session lifecycle and decision policy."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from src.particlevision.config import MODEL_REGISTRY
from src.particlevision.errors import InvariantViolation, ModelUnavailable
from src.particlevision.services.model_service import (
    InferenceEngine,
    ModelSession,
    decide_binary,
    decide_multiclass,
    load_session,
)

from tests.fakes import CountingLoader, FakeSession, one_hot

RGB_TENSOR = np.full(MODEL_REGISTRY["particles10"]["input_shape"], 0.5, dtype=np.float32)
GRAY_TENSOR = np.full(MODEL_REGISTRY["wboson"]["input_shape"], 0.5, dtype=np.float32)


# ──────────────────────────────────────────────
# Multi-class decisions
# ──────────────────────────────────────────────
def test_multiclass_picks_argmax(make_engine) -> None:
    result = make_engine(one_hot(7)).classify(RGB_TENSOR)
    assert result.label_index == 7
    assert result.label == MODEL_REGISTRY["particles10"]["classes"][7]
    assert result.confidence == pytest.approx(1.0)
    assert len(result.scores) == 10


def test_multiclass_tie_goes_to_lowest_index(make_engine) -> None:
    scores = [0.05, 0.3, 0.05, 0.3, 0.1, 0.05, 0.05, 0.05, 0.03, 0.02]
    engine = make_engine(scores)
    labels = {engine.classify(RGB_TENSOR).label_index for _ in range(20)}
    assert labels == {1}


def test_decide_multiclass_first_occurrence() -> None:
    assert decide_multiclass(np.array([0.2, 0.4, 0.4])) == (1, pytest.approx(0.4))


def test_multiclass_applies_softmax_to_logits() -> None:
    meta = {**MODEL_REGISTRY["particles10"], "logits": True}
    logits = [0.0] * 10
    logits[4] = 3.0
    engine = InferenceEngine("particles10", meta=meta, loader=CountingLoader(FakeSession(logits)))

    result = engine.classify(RGB_TENSOR)

    assert result.label_index == 4
    assert 0.0 < result.confidence < 1.0
    assert sum(result.scores) == pytest.approx(1.0, abs=1e-5)


def test_multiclass_output_size_mismatch_is_invariant_violation(make_engine) -> None:
    with pytest.raises(InvariantViolation):
        make_engine([0.5, 0.5]).classify(RGB_TENSOR)


def test_classify_rejects_wrong_tensor_shape(make_engine) -> None:
    with pytest.raises(ValueError):
        make_engine(one_hot(0)).classify(np.zeros((32, 32, 1), dtype=np.float32))


# ──────────────────────────────────────────────
# Binary decisions
# ──────────────────────────────────────────────
@pytest.mark.parametrize(
    "p, label_index, confidence",
    [
        (0.9, 1, 0.9),
        (0.51, 1, 0.51),
        (0.5, 0, 0.5),
        (0.2, 0, 0.8),
        (0.0, 0, 1.0),
        (1.0, 1, 1.0),
    ],
)
def test_binary_decision(make_engine, p, label_index, confidence) -> None:
    result = make_engine([p], model_id="wboson").classify(GRAY_TENSOR)
    assert result.label_index == label_index
    assert result.label == MODEL_REGISTRY["wboson"]["classes"][label_index]
    assert result.confidence == pytest.approx(confidence, abs=1e-6)


def test_binary_boundary_is_stable(make_engine) -> None:
    engine = make_engine([0.5], model_id="wboson")
    results = {engine.classify(GRAY_TENSOR).label for _ in range(20)}
    assert results == {"QCD Background"}
    assert decide_binary(0.5) == (0, 0.5)


def test_binary_two_unit_head_uses_second_unit(make_engine) -> None:
    result = make_engine([0.3, 0.7], model_id="wboson").classify(GRAY_TENSOR)
    assert result.label == "W Boson Signal"
    assert result.confidence == pytest.approx(0.7, abs=1e-6)


def test_binary_wrong_output_size_is_invariant_violation(make_engine) -> None:
    with pytest.raises(InvariantViolation):
        make_engine([0.1, 0.2, 0.7], model_id="wboson").classify(GRAY_TENSOR)


# ──────────────────────────────────────────────
# Session lifecycle
# ──────────────────────────────────────────────
def test_session_is_loaded_lazily_and_once() -> None:
    loader = CountingLoader(FakeSession(one_hot(0)))
    engine = InferenceEngine("particles10", loader=loader)
    assert engine.status() == "unloaded"
    assert loader.calls == 0

    for _ in range(5):
        engine.classify(RGB_TENSOR)

    assert loader.calls == 1
    assert engine.status() == "ready"


def test_concurrent_first_use_loads_model_once() -> None:
    loader = CountingLoader(FakeSession(one_hot(3)), delay=0.05)
    engine = InferenceEngine("particles10", loader=loader)
    workers = 16
    barrier = threading.Barrier(workers)

    def first_call() -> int:
        barrier.wait()
        return engine.classify(RGB_TENSOR).label_index

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda _: first_call(), range(workers)))

    assert results == [3] * workers
    assert loader.calls == 1


def test_failed_load_is_not_cached_and_can_retry() -> None:
    loader = CountingLoader(FakeSession(one_hot(1)), failures=1)
    engine = InferenceEngine("particles10", loader=loader)

    with pytest.raises(ModelUnavailable):
        engine.classify(RGB_TENSOR)
    assert engine.status() == "failed"

    assert engine.classify(RGB_TENSOR).label_index == 1
    assert loader.calls == 2
    assert engine.status() == "ready"


def test_reset_forces_reload() -> None:
    loader = CountingLoader(FakeSession(one_hot(1)))
    engine = InferenceEngine("particles10", loader=loader)
    engine.classify(RGB_TENSOR)
    engine.reset()
    assert engine.status() == "unloaded"
    engine.classify(RGB_TENSOR)
    assert loader.calls == 2


def test_forward_pass_error_is_model_unavailable() -> None:
    class BrokenSession(ModelSession):
        def run(self, batch):
            raise RuntimeError("segfault-ish")

    engine = InferenceEngine("particles10", loader=CountingLoader(BrokenSession()))
    with pytest.raises(ModelUnavailable, match="Forward pass failed"):
        engine.classify(RGB_TENSOR)


def test_non_thread_safe_sessions_are_serialized() -> None:
    class ExclusiveSession(ModelSession):
        thread_safe = False

        def __init__(self) -> None:
            self.active = 0
            self.max_active = 0
            self._lock = threading.Lock()

        def run(self, batch):
            with self._lock:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
            time.sleep(0.01)
            with self._lock:
                self.active -= 1
            return np.asarray(one_hot(0), dtype=np.float32)

    session = ExclusiveSession()
    engine = InferenceEngine("particles10", loader=CountingLoader(session))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: engine.classify(RGB_TENSOR), range(16)))

    assert session.max_active == 1


def test_session_receives_batched_float32_tensor() -> None:
    session = FakeSession(one_hot(0))
    engine = InferenceEngine("particles10", loader=CountingLoader(session))
    engine.classify(RGB_TENSOR.astype(np.float64))
    assert session.batches[0].shape == (1, 32, 32, 3)
    assert session.batches[0].dtype == np.float32


def test_unknown_model_id() -> None:
    with pytest.raises(KeyError):
        InferenceEngine("nonexistent_model")


def test_missing_model_files_surface_as_model_unavailable(tmp_path) -> None:
    meta = {
        **MODEL_REGISTRY["particles10"],
        "keras_path": tmp_path / "missing.keras",
        "tflite_path": tmp_path / "missing.tflite",
    }
    engine = InferenceEngine("particles10", meta=meta, loader=load_session)
    with pytest.raises(ModelUnavailable):
        engine.classify(RGB_TENSOR)
