"""Per-user storage quota accounting.

Usage is never stored: every call aggregates the owner's file sizes afresh, so
a failed upload or delete can never leave a counter out of step with the
records. ``validate_upload`` is a check, not a reservation; two concurrent
uploads by the same user can both pass it against the same remaining space.
"""
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from uploadnest import crud, schemas
from uploadnest.errors import InsufficientStorageError, InvalidInputError, NotFoundError
from uploadnest.logging_config import get_logger
from uploadnest.utils import format_bytes

logger = get_logger(__name__)

async def get_storage_metrics(db: AsyncSession, user_id: uuid.UUID) -> schemas.StorageMetrics:
    account = await crud.get_storage_account(db, user_id)
    if account is None:
        logger.warning(f"No storage account found for user {user_id}")
        raise NotFoundError("Storage account not found")

    usage = await crud.sum_file_sizes(db, user_id)
    return schemas.StorageMetrics(
        quota=account.storage_quota,
        usage=usage,
        remaining=account.storage_quota - usage
    )

async def validate_upload(db: AsyncSession, user_id: uuid.UUID, total_bytes: int) -> schemas.UploadValidation:
    if total_bytes < 0:
        raise InvalidInputError("File size must be positive")

    metrics = await get_storage_metrics(db, user_id)
    if metrics.remaining < total_bytes:
        shortfall = total_bytes - metrics.remaining
        logger.info(f"Upload of {total_bytes} bytes rejected for user {user_id}: short by {shortfall} bytes")
        raise InsufficientStorageError(f"Insufficient storage. {format_bytes(shortfall)} needed.", shortfall=shortfall)

    return schemas.UploadValidation(
        allowed=True,
        new_usage=metrics.usage + total_bytes,
        remaining_after_upload=metrics.remaining - total_bytes
    )
