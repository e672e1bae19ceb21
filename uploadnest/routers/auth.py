from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from uploadnest import crud, schemas
from uploadnest.config import Settings, get_settings
from uploadnest.database import get_db
from uploadnest.deps import get_current_user
from uploadnest.errors import ConflictError, ErrorCode, NotFoundError, UnauthorizedException
from uploadnest.logging_config import get_logger
from uploadnest.models import User
from uploadnest.security import create_access_token, hash_password, verify_password

logger = get_logger(__name__)

router = APIRouter(
    tags=["auth"],
)

@router.post("/register", response_model=schemas.RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_in: schemas.RegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_settings: Settings = Depends(get_settings)
):
    if await crud.get_user_by_email(db, user_in.email):
        raise ConflictError("Email already exists", error_code=ErrorCode.AUTH_EMAIL_ALREADY_EXISTS)

    try:
        user = await crud.create_user_with_storage(
            db, user_in, hash_password(user_in.password), current_settings.DEFAULT_STORAGE_QUOTA
        )
    except IntegrityError:
        raise ConflictError("Email already exists", error_code=ErrorCode.AUTH_EMAIL_ALREADY_EXISTS)

    logger.info(f"Registered user {user.id}")
    return schemas.RegisterResponse(message="User created successfully", user=schemas.UserPublic.model_validate(user))

@router.post("/login", response_model=schemas.LoginResponse)
async def login(
    credentials: schemas.LoginRequest,
    db: AsyncSession = Depends(get_db),
    current_settings: Settings = Depends(get_settings)
):
    user = await crud.get_user_by_email(db, credentials.email)
    if user is None:
        raise NotFoundError("Email/password not found", error_code=ErrorCode.AUTH_USER_NOT_FOUND)
    if not verify_password(credentials.password, user.password):
        logger.info(f"Failed login for user {user.id}")
        raise UnauthorizedException("Invalid email or password")

    access_token, expires_at = create_access_token(user.id, current_settings)
    return schemas.LoginResponse(
        message="User logged in successfully",
        user=schemas.UserPublic.model_validate(user),
        access_token=access_token,
        expires_at=expires_at
    )

@router.get("/me", response_model=schemas.UserPublic)
async def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user
