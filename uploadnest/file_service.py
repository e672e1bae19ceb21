import asyncio
import math
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uploadnest import crud, models, schemas
from uploadnest.config import Settings
from uploadnest.errors import BadRequestException, NotFoundError, UnauthorizedException
from uploadnest.logging_config import get_logger
from uploadnest.object_store import ObjectStore
from uploadnest.utils import build_storage_key, format_bytes, split_extension
from uploadnest.zip_stream import PipeAborted, StreamPipe, unique_entry_names, write_archive

logger = get_logger(__name__)

ZIP_CONTENT_TYPE = "application/zip"

@dataclass
class IncomingFile:
    original_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

@dataclass
class ServedFile:
    stream: object
    content_type: str
    size_bytes: int

# --- upload ---

async def _upload_one(
    session_factory: async_sessionmaker,
    store: ObjectStore,
    user_id: uuid.UUID,
    incoming: IncomingFile,
    upload_source: models.UploadSource
) -> schemas.UploadResult:
    storage_key = build_storage_key(user_id, incoming.original_name)
    await store.put(storage_key, incoming.data, incoming.content_type)

    _, ext = split_extension(incoming.original_name)
    record_in = schemas.FileRecordCreate(
        user_id=user_id,
        original_name=incoming.original_name,
        storage_key=storage_key,
        mime_type=incoming.content_type,
        size_bytes=incoming.size,
        extension=ext[1:].lower(),
        upload_source=upload_source
    )
    try:
        async with session_factory() as session:
            record = await crud.create_file_record(session, record_in)
    except BaseException:
        logger.error(f"Metadata write failed for {storage_key}; removing uploaded object")
        try:
            await store.delete(storage_key)
        except Exception:
            logger.error(f"Orphaned object left at {storage_key} for user {user_id}")
        raise

    return schemas.UploadResult(
        file_id=record.id,
        original_name=record.original_name,
        size=record.size_bytes,
        ext=record.extension,
        mime_type=record.mime_type
    )

async def upload_files(
    session_factory: async_sessionmaker,
    store: ObjectStore,
    user_id: uuid.UUID,
    files: Sequence[IncomingFile],
    upload_source: models.UploadSource
) -> schemas.UploadResponse:
    """Uploads every file independently; a failed file never stops the others.

    Each file gets its own session because the per-file writes run concurrently.
    """
    async with session_factory() as session:
        user = await crud.get_user_by_id(session, user_id)
    if user is None:
        raise UnauthorizedException("Unauthorized access")
    if not files:
        raise BadRequestException("No files provided")

    logger.info(f"Uploading {len(files)} file(s) for user {user_id} via {upload_source.value}")
    outcomes = await asyncio.gather(
        *(_upload_one(session_factory, store, user_id, incoming, upload_source) for incoming in files),
        return_exceptions=True
    )

    succeeded: List[schemas.UploadResult] = []
    failed = 0
    for incoming, outcome in zip(files, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            failed += 1
            logger.error(f"Error uploading '{incoming.original_name}' for user {user_id}: {outcome!r}")
        else:
            succeeded.append(outcome)

    if failed:
        logger.warning(f"Failed to upload {failed} of {len(files)} file(s) for user {user_id}")

    return schemas.UploadResponse(
        message=f"Uploaded successfully {len(succeeded)} out of {len(files)} files",
        data=succeeded,
        failed_count=failed
    )

# --- listing ---

async def list_files(
    db: AsyncSession,
    store: ObjectStore,
    user_id: uuid.UUID,
    keyword: Optional[str],
    page_size: int,
    page_number: int,
    settings: Settings
) -> schemas.FileListResponse:
    records, total_count = await crud.list_file_records(db, user_id, keyword, page_size, page_number)

    urls = await asyncio.gather(*(
        store.get_signed_url(
            record.storage_key,
            expires_in=settings.SIGNED_URL_EXTENDED_EXPIRES,
            content_type=record.mime_type
        )
        for record in records
    ))

    files = [
        schemas.FileRecordView(
            id=record.id,
            original_name=record.original_name,
            mime_type=record.mime_type,
            size=record.size_bytes,
            formatted_size=format_bytes(record.size_bytes),
            ext=record.extension,
            upload_via=record.upload_source,
            url=url,
            created_at=record.created_at,
            updated_at=record.updated_at
        )
        for record, url in zip(records, urls)
    ]
    return schemas.FileListResponse(
        message="All files retrieved successfully",
        files=files,
        pagination=schemas.Pagination(
            page_size=page_size,
            page_number=page_number,
            total_count=total_count,
            total_pages=math.ceil(total_count / page_size),
            skip=(page_number - 1) * page_size
        )
    )

# --- bulk delete ---

async def delete_files(
    db: AsyncSession,
    store: ObjectStore,
    user_id: uuid.UUID,
    file_ids: Sequence[uuid.UUID]
) -> schemas.DeleteResult:
    records = await crud.get_file_records_by_ids(db, file_ids)
    if not records:
        raise NotFoundError("No files found")

    owned = [record for record in records if record.user_id == user_id]
    if len(owned) < len(records):
        logger.warning(f"User {user_id} asked to delete {len(records) - len(owned)} file(s) they do not own; skipped")

    outcomes = await asyncio.gather(
        *(store.delete(record.storage_key) for record in owned),
        return_exceptions=True
    )

    deletable_ids = []
    failed_keys = []
    for record, outcome in zip(owned, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.error(f"Failed to delete {record.storage_key} from S3: {outcome!r}")
            failed_keys.append(record.storage_key)
        else:
            deletable_ids.append(record.id)

    deleted_count = await crud.delete_file_records(db, deletable_ids, user_id)

    if failed_keys:
        logger.warning(f"Failed to delete {len(failed_keys)} file(s) from S3 for user {user_id}")

    return schemas.DeleteResult(deleted_count=deleted_count, failed_count=len(failed_keys))

# --- download ---

async def download_files(
    db: AsyncSession,
    store: ObjectStore,
    user_id: uuid.UUID,
    file_ids: Sequence[uuid.UUID],
    settings: Settings
) -> schemas.DownloadResult:
    records = await crud.get_file_records_by_ids(db, file_ids)
    if not records:
        raise NotFoundError("No files found")

    owned = [record for record in records if record.user_id == user_id]
    if not owned:
        logger.warning(f"User {user_id} requested download of files they do not own")
        raise NotFoundError("No files found")

    if len(owned) == 1:
        url = await store.get_signed_url(owned[0].storage_key, download_filename=owned[0].original_name)
        return schemas.DownloadResult(url=url, is_zip=False)

    url = await build_zip_download(store, user_id, owned, settings)
    return schemas.DownloadResult(url=url, is_zip=True)

def _upload_from_pipe(store: ObjectStore, pipe: StreamPipe, zip_key: str) -> None:
    try:
        store.upload_stream(zip_key, pipe, ZIP_CONTENT_TYPE)
    except BaseException as exc:
        pipe.fail_reader(exc)
        raise

async def build_zip_download(
    store: ObjectStore,
    user_id: uuid.UUID,
    records: Sequence[models.FileRecord],
    settings: Settings
) -> str:
    timestamp = int(time.time() * 1000)
    zip_key = f"temp-zips/{user_id}/{timestamp}.zip"
    zip_filename = f"uploadnest-{timestamp}.zip"

    names = unique_entry_names(record.original_name for record in records)
    entries = [(name, record.storage_key) for name, record in zip(names, records)]

    logger.info(f"Building zip {zip_key} with {len(entries)} file(s) for user {user_id}")
    pipe = StreamPipe(capacity=settings.ZIP_PIPE_CAPACITY)
    writer = asyncio.ensure_future(
        run_in_threadpool(write_archive, pipe, entries, store.open_read_stream, settings.ZIP_COMPRESSION_LEVEL)
    )
    uploader = asyncio.ensure_future(run_in_threadpool(_upload_from_pipe, store, pipe, zip_key))
    try:
        await asyncio.wait([writer, uploader])
    except asyncio.CancelledError:
        logger.info(f"Zip build for {zip_key} cancelled")
        pipe.abort(PipeAborted("zip download cancelled"))
        # worker threads cannot be interrupted; they stop at their next pipe call
        await asyncio.gather(writer, uploader, return_exceptions=True)
        raise

    # report the root cause rather than the echo from the other end of the pipe
    errors = [task.exception() for task in (writer, uploader) if task.exception() is not None]
    if errors:
        root = next((error for error in errors if not isinstance(error, PipeAborted)), errors[0])
        logger.error(f"Zip build for {zip_key} failed: {root!r}")
        raise root

    return await store.get_signed_url(
        zip_key,
        expires_in=settings.SIGNED_URL_EXTENDED_EXPIRES,
        download_filename=zip_filename
    )

# --- public stream ---

async def resolve_for_serving(db: AsyncSession, store: ObjectStore, file_id: uuid.UUID) -> ServedFile:
    record = await crud.get_file_record_by_id(db, file_id)
    if record is None:
        raise NotFoundError("File not found")

    stream = await store.get_read_stream(record.storage_key)
    return ServedFile(stream=stream, content_type=record.mime_type, size_bytes=record.size_bytes)
