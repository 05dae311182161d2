"""Service layer – blob storage for uploaded images."""

from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path

from src.particlevision.errors import BlobUnavailable
from src.particlevision.schemas.upload import StoredBlob

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp"}


class BlobStore:
    """Stores raw bytes and returns a stable locator for them."""

    def store(self, name_hint: str, data: bytes) -> StoredBlob:
        raise NotImplementedError

    def clear(self) -> int:
        """Delete every stored blob and return how many were removed."""
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Writes uploads to *directory*, served under ``<base_url>/uploads/``.

    The name hint is kept but suffixed with a random token, so two uploads
    of ``track.png`` never overwrite each other.  Files live as long as the
    records that point at them and are only removed by :meth:`clear`.
    """

    def __init__(self, directory: Path, base_url: str = "") -> None:
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self.directory.mkdir(parents=True, exist_ok=True)

    def store(self, name_hint: str, data: bytes) -> StoredBlob:
        hint = Path(name_hint).name or "uploaded_image"
        stem, suffix = Path(hint).stem, Path(hint).suffix.lower()
        unique_name = f"{stem}-{uuid.uuid4().hex[:8]}{suffix}"
        file_path = self.directory / unique_name

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(data)
        except OSError as exc:
            logger.error("Failed to store %s: %s", hint, exc)
            raise BlobUnavailable(f"Could not store '{hint}': {exc}") from exc

        logger.info("Stored upload %s (%d bytes)", unique_name, len(data))
        return StoredBlob(url=f"{self.base_url}/uploads/{unique_name}", path=f"uploads/{unique_name}")

    def clear(self) -> int:
        with self._lock:
            return remove_stored_images(self.directory)


def remove_stored_images(directory: Path) -> int:
    """
    Delete every image file in *directory*.

    Files that vanish or cannot be removed are logged and skipped.
    """
    try:
        files = [f for f in directory.iterdir() if f.suffix.lower() in IMAGE_EXTENSIONS]
    except FileNotFoundError:
        return 0
    except OSError as exc:
        raise BlobUnavailable(f"Could not list stored images: {exc}") from exc

    deleted = 0
    for file in files:
        try:
            file.unlink()
            deleted += 1
            logger.info("🗑️  Deleted stored image: %s", file.name)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", file.name, exc)
    return deleted
