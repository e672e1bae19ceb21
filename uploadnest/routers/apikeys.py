import math
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from uploadnest import crud, schemas
from uploadnest.database import get_db
from uploadnest.deps import get_current_user
from uploadnest.errors import NotFoundError
from uploadnest.logging_config import get_logger
from uploadnest.models import User
from uploadnest.security import generate_api_key, hash_api_key

logger = get_logger(__name__)

router = APIRouter(
    tags=["apikeys"],
)

@router.post("/create", response_model=schemas.ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    key_in: schemas.ApiKeyCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    raw_key, display_key = generate_api_key()
    db_key = await crud.create_api_key(db, current_user.id, key_in.name, display_key, hash_api_key(raw_key))
    logger.info(f"Created API key {db_key.id} for user {current_user.id}")
    return schemas.ApiKeyCreatedResponse(message="API key created successfully", key=raw_key)

@router.get("/all", response_model=schemas.ApiKeyListResponse)
async def list_api_keys(
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    page_number: int = Query(default=1, ge=1, alias="pageNumber"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    keys, total_count = await crud.list_api_keys(db, current_user.id, page_size, page_number)
    return schemas.ApiKeyListResponse(
        message="API keys retrieved successfully",
        api_keys=[schemas.ApiKeyPublic.model_validate(key) for key in keys],
        pagination=schemas.Pagination(
            page_size=page_size,
            page_number=page_number,
            total_count=total_count,
            total_pages=math.ceil(total_count / page_size),
            skip=(page_number - 1) * page_size
        )
    )

@router.delete("/{key_id}", response_model=schemas.ApiKeyDeleteResponse)
async def delete_api_key(
    key_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    db_key = await crud.delete_api_key(db, key_id, current_user.id)
    if db_key is None:
        raise NotFoundError("API key not found")
    logger.info(f"Deleted API key {key_id} for user {current_user.id}")
    return schemas.ApiKeyDeleteResponse(message="API key deleted successfully", data=schemas.ApiKeyPublic.model_validate(db_key))
