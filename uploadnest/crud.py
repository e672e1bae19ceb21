import uuid as py_uuid
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from uploadnest import models, schemas

# --- users & storage accounts ---

async def get_user_by_id(db: AsyncSession, user_id: py_uuid.UUID) -> Optional[models.User]:
    result = await db.execute(select(models.User).filter(models.User.id == user_id))
    return result.scalars().first()

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[models.User]:
    result = await db.execute(select(models.User).filter(models.User.email == email))
    return result.scalars().first()

async def create_user_with_storage(
    db: AsyncSession,
    user_in: schemas.RegisterRequest,
    hashed_password: str,
    storage_quota: int
) -> models.User:
    db_user = models.User(
        name=user_in.name,
        email=user_in.email,
        password=hashed_password,
        profile_picture=user_in.profile_picture
    )
    db.add(db_user)
    await db.flush()
    db.add(models.StorageAccount(user_id=db_user.id, storage_quota=storage_quota))
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(db_user)
    return db_user

async def get_storage_account(db: AsyncSession, user_id: py_uuid.UUID) -> Optional[models.StorageAccount]:
    result = await db.execute(select(models.StorageAccount).filter(models.StorageAccount.user_id == user_id))
    return result.scalars().first()

# --- file records ---

async def create_file_record(db: AsyncSession, record: schemas.FileRecordCreate) -> models.FileRecord:
    db_record = models.FileRecord(**record.model_dump())
    db.add(db_record)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(db_record)
    return db_record

async def get_file_record_by_id(db: AsyncSession, file_id: py_uuid.UUID) -> Optional[models.FileRecord]:
    result = await db.execute(select(models.FileRecord).filter(models.FileRecord.id == file_id))
    return result.scalars().first()

async def get_file_records_by_ids(db: AsyncSession, file_ids: Sequence[py_uuid.UUID]) -> List[models.FileRecord]:
    if not file_ids:
        return []
    result = await db.execute(select(models.FileRecord).filter(models.FileRecord.id.in_(list(file_ids))))
    records = {record.id: record for record in result.scalars().all()}
    # keep the caller's order; unknown ids simply drop out
    ordered = []
    for file_id in dict.fromkeys(file_ids):
        if file_id in records:
            ordered.append(records[file_id])
    return ordered

def _escape_like(keyword: str) -> str:
    return keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

async def list_file_records(
    db: AsyncSession,
    user_id: py_uuid.UUID,
    keyword: Optional[str],
    page_size: int,
    page_number: int
) -> Tuple[List[models.FileRecord], int]:
    conditions = [models.FileRecord.user_id == user_id]
    if keyword:
        conditions.append(models.FileRecord.original_name.ilike(f"%{_escape_like(keyword)}%", escape="\\"))

    skip = (page_number - 1) * page_size
    result = await db.execute(
        select(models.FileRecord)
        .filter(*conditions)
        .order_by(models.FileRecord.created_at.desc(), models.FileRecord.id)
        .offset(skip)
        .limit(page_size)
    )
    total = await db.execute(select(func.count(models.FileRecord.id)).filter(*conditions))
    return list(result.scalars().all()), total.scalar_one()

async def delete_file_records(db: AsyncSession, file_ids: Sequence[py_uuid.UUID], user_id: py_uuid.UUID) -> int:
    if not file_ids:
        return 0
    result = await db.execute(
        delete(models.FileRecord)
        .where(models.FileRecord.id.in_(list(file_ids)), models.FileRecord.user_id == user_id)
    )
    await db.commit()
    return result.rowcount

async def sum_file_sizes(db: AsyncSession, user_id: py_uuid.UUID) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(models.FileRecord.size_bytes), 0))
        .filter(models.FileRecord.user_id == user_id)
    )
    return int(result.scalar_one())

async def count_file_records(db: AsyncSession, user_id: py_uuid.UUID) -> int:
    result = await db.execute(select(func.count(models.FileRecord.id)).filter(models.FileRecord.user_id == user_id))
    return result.scalar_one()

async def get_upload_stats_by_day(
    db: AsyncSession,
    user_id: py_uuid.UUID,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None
) -> List[Tuple[str, int, int]]:
    day = func.date(models.FileRecord.created_at)
    conditions = [models.FileRecord.user_id == user_id]
    if date_from is not None:
        conditions.append(models.FileRecord.created_at >= date_from)
    if date_to is not None:
        conditions.append(models.FileRecord.created_at <= date_to)

    result = await db.execute(
        select(day, func.count(models.FileRecord.id), func.coalesce(func.sum(models.FileRecord.size_bytes), 0))
        .filter(*conditions)
        .group_by(day)
        .order_by(day)
    )
    return [(str(row[0]), int(row[1]), int(row[2])) for row in result.all()]

# --- api keys ---

async def create_api_key(
    db: AsyncSession,
    user_id: py_uuid.UUID,
    name: str,
    display_key: str,
    hashed_key: str
) -> models.ApiKey:
    db_key = models.ApiKey(user_id=user_id, name=name, display_key=display_key, hashed_key=hashed_key)
    db.add(db_key)
    await db.commit()
    await db.refresh(db_key)
    return db_key

async def get_api_key_by_hash(db: AsyncSession, hashed_key: str) -> Optional[models.ApiKey]:
    result = await db.execute(select(models.ApiKey).filter(models.ApiKey.hashed_key == hashed_key))
    return result.scalars().first()

async def list_api_keys(
    db: AsyncSession,
    user_id: py_uuid.UUID,
    page_size: int,
    page_number: int
) -> Tuple[List[models.ApiKey], int]:
    skip = (page_number - 1) * page_size
    result = await db.execute(
        select(models.ApiKey)
        .filter(models.ApiKey.user_id == user_id)
        .order_by(models.ApiKey.created_at.desc(), models.ApiKey.id)
        .offset(skip)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    total = await db.execute(select(func.count(models.ApiKey.id)).filter(models.ApiKey.user_id == user_id))
    return list(result.scalars().all()), total.scalar_one()

async def delete_api_key(db: AsyncSession, key_id: py_uuid.UUID, user_id: py_uuid.UUID) -> Optional[models.ApiKey]:
    result = await db.execute(
        select(models.ApiKey).filter(models.ApiKey.id == key_id, models.ApiKey.user_id == user_id)
    )
    db_key = result.scalars().first()
    if db_key is None:
        return None
    await db.delete(db_key)
    await db.commit()
    return db_key

async def touch_api_key(db: AsyncSession, key_id: py_uuid.UUID) -> None:
    await db.execute(
        update(models.ApiKey)
        .where(models.ApiKey.id == key_id)
        .values(last_used_at=datetime.utcnow())
    )
    await db.commit()
