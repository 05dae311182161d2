from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PredictionRecord(BaseModel):
    """A persisted prediction. Serialized with camelCase keys."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    file_name: str
    file_size: int = Field(ge=0)
    image_url: str
    predicted_class: str
    confidence: float = Field(ge=0.0, le=1.0)
    created_at: int = Field(ge=0)  # ms since epoch


class Classified(BaseModel):
    """Outcome of a successful forward pass."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["classified"] = "classified"
    label_index: int
    label: str
    confidence: float
    scores: tuple[float, ...]


class Unavailable(BaseModel):
    """Classification was skipped or could not run."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unavailable"] = "unavailable"
    reason: str


Decision = Union[Classified, Unavailable]


class ImageState(str, Enum):
    RECEIVED = "received"
    UPLOADED = "uploaded"
    PREPROCESSED = "preprocessed"
    CLASSIFIED = "classified"
    PERSISTED = "persisted"
    UPLOAD_FAILED = "upload_failed"
    PREPROCESS_FAILED = "preprocess_failed"
    CLASSIFY_FAILED = "classify_failed"
    PERSIST_FAILED = "persist_failed"


class ImageResult(BaseModel):
    """Terminal state of one image in a batch."""

    file_name: str
    state: ImageState
    degraded: bool = False
    record: PredictionRecord | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ImageState.PERSISTED


class BatchReport(BaseModel):
    """Response schema for POST /predictions."""
    total: int
    succeeded: int
    failed: int
    results: list[ImageResult]


class ClearResponse(BaseModel):
    """Response schema for DELETE /predictions."""
    deleted: int
