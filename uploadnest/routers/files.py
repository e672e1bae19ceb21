import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uploadnest import file_service, schemas, storage
from uploadnest.config import Settings, get_settings
from uploadnest.database import get_db, get_session_factory
from uploadnest.deps import Principal, get_current_user, get_principal
from uploadnest.errors import BadRequestException
from uploadnest.logging_config import get_logger
from uploadnest.models import User
from uploadnest.object_store import ObjectStore, get_object_store
from uploadnest.utils import format_bytes

logger = get_logger(__name__)

router = APIRouter(
    tags=["files"],
)

STREAM_CHUNK_SIZE = 64 * 1024

async def read_upload_batch(files: Optional[List[UploadFile]], current_settings: Settings) -> List[file_service.IncomingFile]:
    """Reads the multipart batch and enforces count, size and MIME limits."""
    if not files:
        raise BadRequestException("No files provided")
    if len(files) > current_settings.MAX_FILES:
        raise BadRequestException(f"Too many files. Maximum is {current_settings.MAX_FILES}")

    batch = []
    for upload in files:
        name = upload.filename or "untitled"
        content_type = upload.content_type or "application/octet-stream"
        if content_type not in current_settings.ALLOWED_MIME_TYPES:
            raise BadRequestException(f"File type {content_type} is not allowed")
        try:
            data = await upload.read(current_settings.MAX_FILE_SIZE + 1)
        finally:
            await upload.close()
        if len(data) > current_settings.MAX_FILE_SIZE:
            raise BadRequestException(
                f"File '{name}' exceeds the maximum size of {format_bytes(current_settings.MAX_FILE_SIZE)}"
            )
        if not data:
            raise BadRequestException(f"File '{name}' is empty")
        batch.append(file_service.IncomingFile(original_name=name, content_type=content_type, data=data))
    return batch

@router.post("/upload", response_model=schemas.UploadResponse)
async def upload_files(
    files: Optional[List[UploadFile]] = File(default=None),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    store: ObjectStore = Depends(get_object_store),
    current_settings: Settings = Depends(get_settings)
):
    batch = await read_upload_batch(files, current_settings)
    total_bytes = sum(incoming.size for incoming in batch)
    logger.info(f"Upload request from user {principal.user.id}: {len(batch)} file(s), {total_bytes} bytes")

    await storage.validate_upload(db, principal.user.id, total_bytes)
    return await file_service.upload_files(session_factory, store, principal.user.id, batch, principal.via)

@router.get("/all", response_model=schemas.FileListResponse)
async def list_files(
    keyword: Optional[str] = Query(default=None),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    page_number: int = Query(default=1, ge=1, alias="pageNumber"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    current_settings: Settings = Depends(get_settings)
):
    return await file_service.list_files(
        db, store, current_user.id, keyword, page_size, page_number, current_settings
    )

@router.delete("/bulk-delete", response_model=schemas.DeleteFilesResponse)
async def bulk_delete(
    body: schemas.FileIdsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    logger.info(f"Bulk delete request from user {current_user.id} for {len(body.file_ids)} file(s)")
    result = await file_service.delete_files(db, store, current_user.id, body.file_ids)
    return schemas.DeleteFilesResponse(
        message=f"Deleted {result.deleted_count} file(s)",
        deleted_count=result.deleted_count,
        failed_count=result.failed_count
    )

@router.post("/download", response_model=schemas.DownloadFilesResponse)
async def download_files(
    body: schemas.FileIdsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    current_settings: Settings = Depends(get_settings)
):
    logger.info(f"Download request from user {current_user.id} for {len(body.file_ids)} file(s)")
    result = await file_service.download_files(db, store, current_user.id, body.file_ids, current_settings)
    return schemas.DownloadFilesResponse(
        message="File download URL generated successfully",
        download_url=result.url,
        is_zip=result.is_zip
    )

def _iter_and_close(stream):
    try:
        yield from stream.iter_chunks(chunk_size=STREAM_CHUNK_SIZE)
    finally:
        stream.close()

@router.get("/public/{file_id}")
async def stream_public_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store)
):
    served = await file_service.resolve_for_serving(db, store, file_id)
    headers = {
        "Content-Length": str(served.size_bytes),
        "Cache-Control": "public, max-age=3600",
        "Content-Disposition": "inline",
        "X-Content-Type-Options": "nosniff",
    }
    return StreamingResponse(_iter_and_close(served.stream), media_type=served.content_type, headers=headers)
