"""Service layer – building prediction records."""

from __future__ import annotations

import math
import threading
import time
import uuid
from collections.abc import Callable, Sequence

from src.particlevision.config import UNAVAILABLE_LABEL
from src.particlevision.errors import InvariantViolation
from src.particlevision.schemas.prediction import Decision, PredictionRecord, Unavailable
from src.particlevision.schemas.upload import StoredBlob


class MonotonicClock:
    """Wall-clock milliseconds that never go backwards within the process."""

    def __init__(self, source: Callable[[], int] = time.time_ns) -> None:
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            self._last = max(self._last, self._source() // 1_000_000)
            return self._last


def new_record_id(created_at: int) -> str:
    return f"pred_{created_at}_{uuid.uuid4().hex}"


def blob_file_name(path: str) -> str:
    """Last segment of a blob path, or the path itself if it has none."""
    return path.rstrip("/").rsplit("/", 1)[-1] or path


class RecordBuilder:
    """Assembles validated :class:`PredictionRecord` values."""

    def __init__(self, classes: Sequence[str], clock: MonotonicClock | None = None) -> None:
        self.classes = frozenset(classes)
        self.clock = clock or MonotonicClock()

    def build(self, decision: Decision, blob: StoredBlob, file_size: int) -> PredictionRecord:
        if isinstance(decision, Unavailable):
            label, confidence = UNAVAILABLE_LABEL, 0.0
        else:
            label, confidence = decision.label, decision.confidence
            if label not in self.classes:
                raise InvariantViolation(f"Label '{label}' is not in the class vocabulary")

        if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
            raise InvariantViolation(f"Confidence {confidence!r} is outside [0, 1]")
        if file_size < 0:
            raise InvariantViolation(f"File size {file_size} is negative")

        created_at = self.clock.now_ms()
        return PredictionRecord(
            id=new_record_id(created_at),
            file_name=blob_file_name(blob.path),
            file_size=file_size,
            image_url=blob.url,
            predicted_class=label,
            confidence=confidence,
            created_at=created_at,
        )
