"""Service layer – CSV export of prediction records."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from src.particlevision.schemas.prediction import PredictionRecord

CSV_HEADERS = [
    "Timestamp",
    "Filename",
    "File_Size_MB",
    "Predicted_Particle",
    "Confidence_Score",
    "Confidence_Percentage",
    "Storage_ID",
]


def format_timestamp(created_at_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2024-05-01T12:00:00.000Z``."""
    seconds, millis = divmod(created_at_ms, 1000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def record_to_row(record: PredictionRecord) -> list[str]:
    return [
        format_timestamp(record.created_at),
        record.file_name,
        f"{record.file_size / 1024 / 1024:.3f}",
        record.predicted_class,
        f"{record.confidence:.4f}",
        f"{record.confidence * 100:.2f}%",
        record.id,
    ]


def export_csv(records: Iterable[PredictionRecord]) -> str:
    """Render *records* as CSV, one fully quoted row per record, no trailing newline."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(record_to_row(record) for record in records)
    return buffer.getvalue().removesuffix("\n")


def export_filename(today: datetime | None = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"particle-predictions-{today.date().isoformat()}.csv"
