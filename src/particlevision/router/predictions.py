"""Router – batch classification and the prediction list."""

import logging
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response

from src.particlevision.dependencies import Services, get_services
from src.particlevision.errors import BlobUnavailable, StoreUnavailable
from src.particlevision.schemas.prediction import BatchReport, ClearResponse, PredictionRecord
from src.particlevision.schemas.upload import ImageUpload
from src.particlevision.services.export_service import export_csv, export_filename
from src.particlevision.services.store_service import sort_records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/predictions", tags=["Predictions"])


async def read_upload(file: UploadFile, services: Services) -> ImageUpload:
    """Read one multipart file, flagging it as rejected when it breaks upload rules."""
    settings = services.settings
    name = file.filename or "uploaded_image"
    content = await file.read()

    file_ext = Path(name).suffix.lower()
    if file_ext not in settings.allowed_extensions_set:
        return ImageUpload(
            name=name,
            data=content,
            rejected=f"File type '{file_ext}' not allowed. "
                     f"Allowed: {', '.join(sorted(settings.allowed_extensions_set))}",
        )
    if len(content) > settings.max_upload_size:
        return ImageUpload(
            name=name,
            data=content,
            rejected=f"File too large ({len(content)} bytes). "
                     f"Maximum size: {settings.max_upload_size} bytes.",
        )
    return ImageUpload(name=name, data=content)


@router.post("", response_model=BatchReport)
async def classify_images(
    files: list[UploadFile] = File(...),
    services: Services = Depends(get_services),
) -> BatchReport:
    """
    Upload and classify a batch of images.

    Each file is stored, preprocessed, classified and saved independently;
    the report lists the terminal state of every file and a reason for
    each failure.
    """
    uploads = [await read_upload(file, services) for file in files]
    return await services.pipeline.process_batch(uploads)


@router.get("", response_model=list[PredictionRecord])
def list_predictions(
    sort_by: Literal["store", "time", "confidence", "class"] = "store",
    order: Literal["asc", "desc"] = "desc",
    services: Services = Depends(get_services),
) -> list[PredictionRecord]:
    """Return every stored prediction, newest append first unless re-sorted."""
    try:
        records = services.store.list_all()
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    if sort_by == "store":
        return records if order == "desc" else records[::-1]
    return sort_records(records, by=sort_by, descending=order == "desc")


@router.delete("", response_model=ClearResponse)
def clear_predictions(services: Services = Depends(get_services)) -> ClearResponse:
    """Delete every stored prediction together with the uploaded images."""
    try:
        deleted = services.store.clear_all()
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    try:
        removed = services.blob_store.clear()
    except BlobUnavailable as exc:
        logger.warning("Predictions cleared but stored images were kept: %s", exc)
    else:
        logger.info("Cleared %d predictions and %d stored images", deleted, removed)
    return ClearResponse(deleted=deleted)


@router.get("/export")
def export_predictions(services: Services = Depends(get_services)) -> Response:
    """Download every stored prediction as CSV."""
    try:
        records = services.store.list_all()
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Failed to generate CSV: {exc}")

    return Response(
        content=export_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )
