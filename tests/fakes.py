"""Test doubles for model sessions."""

import threading
import time

import numpy as np

from src.particlevision.services.model_service import ModelSession


class FakeSession(ModelSession):
    """Returns a fixed output vector for every batch."""

    def __init__(self, output, thread_safe: bool = True) -> None:
        self.output = np.asarray(output, dtype=np.float32)
        self.thread_safe = thread_safe
        self.batches: list[np.ndarray] = []

    def run(self, batch: np.ndarray) -> np.ndarray:
        self.batches.append(batch)
        return self.output


class CountingLoader:
    """Session loader that records how often it is invoked."""

    def __init__(self, session: ModelSession, delay: float = 0.0, failures: int = 0) -> None:
        self.session = session
        self.delay = delay
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, model_id: str, meta: dict) -> ModelSession:
        with self._lock:
            self.calls += 1
            attempt = self.calls
        time.sleep(self.delay)
        if attempt <= self.failures:
            raise FileNotFoundError(f"No model file on disk for '{model_id}'.")
        return self.session


def one_hot(index: int, size: int = 10) -> list[float]:
    scores = [0.0] * size
    scores[index] = 1.0
    return scores
