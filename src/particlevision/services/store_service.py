"""Service layer – the prediction record store.

Records form one ordered list with a **prepend** insertion policy: the most
recently appended record is listed first.  Position only reflects append
order; ``createdAt`` is the source of truth for time-based sorting.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable
from operator import attrgetter
from typing import Literal

import redis
from pydantic import ValidationError

from src.particlevision.errors import StoreUnavailable
from src.particlevision.schemas.prediction import PredictionRecord

logger = logging.getLogger(__name__)

SortKey = Literal["time", "confidence", "class"]

_SORT_KEYS = {
    "time": attrgetter("created_at"),
    "confidence": attrgetter("confidence"),
    "class": lambda record: record.predicted_class.lower(),
}


class PredictionStore:
    """Append / list / clear contract shared by every backend."""

    def append(self, record: PredictionRecord) -> None:
        raise NotImplementedError

    def list_all(self) -> list[PredictionRecord]:
        raise NotImplementedError

    def clear_all(self) -> int:
        """Remove every record and return how many were removed."""
        raise NotImplementedError


class InMemoryPredictionStore(PredictionStore):
    def __init__(self) -> None:
        self._records: deque[PredictionRecord] = deque()
        self._lock = threading.Lock()

    def append(self, record: PredictionRecord) -> None:
        with self._lock:
            self._records.appendleft(record)

    def list_all(self) -> list[PredictionRecord]:
        with self._lock:
            return list(self._records)

    def clear_all(self) -> int:
        with self._lock:
            deleted = len(self._records)
            self._records.clear()
        return deleted


class RedisPredictionStore(PredictionStore):
    """Redis list backend: one JSON document per element, ``LPUSH`` to the head."""

    def __init__(self, client: redis.Redis, key: str = "predictions") -> None:
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "predictions") -> RedisPredictionStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), key=key)

    def append(self, record: PredictionRecord) -> None:
        payload = record.model_dump_json(by_alias=True)
        try:
            self.client.lpush(self.key, payload)
        except redis.RedisError as exc:
            logger.error("Failed to append prediction %s: %s", record.id, exc)
            raise StoreUnavailable(f"Could not save prediction: {exc}") from exc

    def list_all(self) -> list[PredictionRecord]:
        try:
            raw_items = self.client.lrange(self.key, 0, -1)
        except redis.RedisError as exc:
            logger.error("Failed to fetch predictions: %s", exc)
            raise StoreUnavailable(f"Could not fetch predictions: {exc}") from exc

        try:
            records = [PredictionRecord.model_validate_json(item) for item in raw_items]
        except ValidationError as exc:
            logger.error("Unreadable prediction in list %r: %s", self.key, exc)
            raise StoreUnavailable("Prediction list contains an unreadable record") from exc

        logger.info("Fetched %d predictions.", len(records))
        return records

    def clear_all(self) -> int:
        try:
            with self.client.pipeline(transaction=True) as pipe:
                pipe.llen(self.key)
                pipe.delete(self.key)
                deleted, _ = pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to clear predictions: %s", exc)
            raise StoreUnavailable(f"Could not clear predictions: {exc}") from exc

        logger.info("Cleared %d predictions.", deleted)
        return int(deleted)


def sort_records(
    records: Iterable[PredictionRecord],
    by: SortKey = "time",
    descending: bool = True,
) -> list[PredictionRecord]:
    """Re-sort records client-side; the sort is stable."""
    return sorted(records, key=_SORT_KEYS[by], reverse=descending)
