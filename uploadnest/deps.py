from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uploadnest import crud, models
from uploadnest.config import Settings, get_settings
from uploadnest.database import get_db, get_session_factory
from uploadnest.errors import ErrorCode, UnauthorizedException
from uploadnest.logging_config import get_logger
from uploadnest.security import decode_access_token, hash_api_key

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

@dataclass
class Principal:
    user: models.User
    via: models.UploadSource

async def _principal_from_api_key(db: AsyncSession, session_factory: async_sessionmaker, raw_key: str) -> Principal:
    api_key = await crud.get_api_key_by_hash(db, hash_api_key(raw_key))
    if api_key is None:
        raise UnauthorizedException("Invalid API key", error_code=ErrorCode.AUTH_INVALID_API_KEY)

    user = await crud.get_user_by_id(db, api_key.user_id)
    if user is None:
        raise UnauthorizedException("Invalid API key", error_code=ErrorCode.AUTH_INVALID_API_KEY)

    try:
        async with session_factory() as session:
            await crud.touch_api_key(session, api_key.id)
    except Exception as e:
        logger.warning(f"Could not update last_used_at for API key {api_key.id}: {e}")

    return Principal(user=user, via=models.UploadSource.API)

async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_api_key: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    current_settings: Settings = Depends(get_settings)
) -> Principal:
    """Authenticates a request by bearer token, falling back to the x-api-key header."""
    if credentials is not None:
        user_id = decode_access_token(credentials.credentials, current_settings)
        if user_id is None:
            raise UnauthorizedException("Invalid or expired token", error_code=ErrorCode.AUTH_INVALID_TOKEN)
        user = await crud.get_user_by_id(db, user_id)
        if user is None:
            raise UnauthorizedException("User not found", error_code=ErrorCode.AUTH_USER_NOT_FOUND)
        return Principal(user=user, via=models.UploadSource.WEB)

    if x_api_key:
        return await _principal_from_api_key(db, session_factory, x_api_key)

    raise UnauthorizedException("Authentication required", error_code=ErrorCode.AUTH_TOKEN_NOT_FOUND)

async def get_current_user(principal: Principal = Depends(get_principal)) -> models.User:
    return principal.user
