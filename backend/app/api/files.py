"""API routes for file uploads."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field

from app.storage import FileStore, StoredFile, get_file_store, key_from_path

logger = logging.getLogger(__name__)

router = APIRouter()


class DeleteFileRequest(BaseModel):
    """Request to delete a stored file."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")


class DeleteFileResponse(BaseModel):
    success: bool
    message: str


@router.post("/files/upload", response_model=list[StoredFile])
async def upload_files(
    file: Annotated[list[UploadFile], File(description="Files to upload")],
    store: Annotated[FileStore, Depends(get_file_store)],
) -> list[StoredFile]:
    """Upload one or more files for file-upload sub-blocks."""
    if not file:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No files provided",
        )

    stored: list[StoredFile] = []
    for upload in file:
        if not upload.filename:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="File must have a filename",
            )

        content = await upload.read()
        try:
            stored.append(await store.save(upload.filename, content, upload.content_type))
        except ValueError as e:
            # Remove what this request already stored
            for saved in stored:
                await store.delete(saved.key)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Uploaded {len(stored)} file(s)")
    return stored


@router.get("/files/serve/{key}")
async def serve_file(
    key: str,
    store: Annotated[FileStore, Depends(get_file_store)],
) -> FileResponse:
    """Stream a stored file."""
    try:
        path = await store.get_path(key)
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(path, media_type=store.guess_type(key))


@router.post("/files/delete", response_model=DeleteFileResponse)
async def delete_file(
    request: DeleteFileRequest,
    store: Annotated[FileStore, Depends(get_file_store)],
) -> DeleteFileResponse:
    """Delete a stored file. Deleting a missing file succeeds."""
    key = key_from_path(request.file_path)
    deleted = await store.delete(key)
    message = "File deleted successfully" if deleted else "File already deleted"
    return DeleteFileResponse(success=True, message=message)
