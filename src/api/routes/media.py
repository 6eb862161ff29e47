"""
Media upload and delete endpoints.

Uploads are spooled to a temp file first: the Stream client needs a
file it can stat and re-read from the start on every retry, and the
size limit is enforced while spooling rather than after reading the
whole body into memory.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ...core.media.models import ErrorKind, MediaKind, MediaOwner, UploadRequest
from ..dependencies import AuthenticatedUser, MediaRouterDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()

SPOOL_CHUNK_SIZE = 1024 * 1024
DEFAULT_UPLOAD_NAME = "upload.bin"


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadResponse(BaseModel):
    """Normalized upload outcome."""
    success: bool
    media_kind: MediaKind
    primary_url: Optional[str] = Field(default=None, description="Canonical URL to store in the catalog")
    thumbnail_url: Optional[str] = None
    backend_media_id: Optional[str] = None
    variant_urls: dict[str, str] = Field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


class DeleteResponse(BaseModel):
    deleted: bool


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def safe_file_name(file_name: str) -> str:
    """Basename usable inside the spool directory."""
    name = Path(file_name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return DEFAULT_UPLOAD_NAME
    return name


async def spool_upload(upload: UploadFile, destination: Path, max_bytes: int) -> int:
    """
    Copy an uploaded file to disk, enforcing a size limit.

    Returns the number of bytes written. Raises 413 once the limit is
    exceeded; the partial file is left for the caller's temp dir cleanup.
    """
    written = 0
    with open(destination, "wb") as fh:
        while True:
            chunk = await upload.read(SPOOL_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large. Maximum size: {max_bytes // (1024 * 1024)}MB",
                )
            fh.write(chunk)
    return written


def failure_status(error_kind: Optional[ErrorKind]) -> int:
    if error_kind is ErrorKind.NOT_CONFIGURED:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_502_BAD_GATEWAY


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a media file",
    description="Routes the file to Stream, Images or R2 by kind and returns its canonical URL.",
    responses={
        413: {"description": "File exceeds the upload size limit"},
        502: {"description": "Backend upload failed", "model": UploadResponse},
        503: {"description": "Backend not configured", "model": UploadResponse},
    },
)
async def upload_media(
    file: Annotated[UploadFile, File(description="Video, image or other file")],
    owner_id: Annotated[str, Form(description="User that owns the record")],
    record_id: Annotated[str, Form(description="Catalog record the media belongs to")],
    api_key: AuthenticatedUser,
    media_router: MediaRouterDep,
    settings: SettingsDep,
    folder: Annotated[Optional[str], Form()] = None,
    media_kind: Annotated[Optional[MediaKind], Form()] = None,
):
    file_name = file.filename or DEFAULT_UPLOAD_NAME

    logger.info(
        "Media upload received",
        extra={
            "upload_filename": file_name,
            "content_type": file.content_type,
            "user_id": owner_id,
            "record_id": record_id,
        }
    )

    max_bytes = settings.max_upload_size_mb * 1024 * 1024
    temp_dir = Path(tempfile.mkdtemp(prefix="media-upload-"))
    try:
        source = temp_dir / safe_file_name(file_name)
        size = await spool_upload(file, source, max_bytes)

        request = UploadRequest(
            source_location=source,
            file_name=file_name,
            owner=MediaOwner(user_id=owner_id, record_id=record_id),
            media_kind_hint=media_kind,
            folder=folder,
        )
        result = await media_router.upload(request)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    if not result.success:
        return JSONResponse(
            status_code=failure_status(result.error_kind),
            content=result.to_dict(),
        )

    logger.info(
        "Media upload stored",
        extra={
            "media_kind": result.media_kind.value,
            "primary_url": result.primary_url,
            "size_bytes": size,
        }
    )
    return UploadResponse(**result.to_dict())


@router.delete(
    "",
    response_model=DeleteResponse,
    summary="Delete previously uploaded media",
    description="Deletes the object behind a URL returned by the upload endpoint. Missing objects count as deleted.",
)
async def delete_media(
    api_key: AuthenticatedUser,
    media_router: MediaRouterDep,
    url: Annotated[str, Query(min_length=1, description="URL returned by a previous upload")],
    media_kind: Annotated[Optional[MediaKind], Query()] = None,
) -> DeleteResponse:
    deleted = await media_router.delete(url, media_kind)
    return DeleteResponse(deleted=deleted)
