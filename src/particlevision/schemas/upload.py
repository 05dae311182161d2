from pydantic import BaseModel, Field


class StoredBlob(BaseModel):
    """Locator returned by the blob store for one upload."""
    url: str
    path: str


class ImageUpload(BaseModel):
    """One image submitted to the pipeline."""
    name: str
    data: bytes = Field(repr=False)
    # set when the upload was refused before reaching the blob store
    rejected: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)
