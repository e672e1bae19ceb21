import hashlib
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple

import bcrypt
from jose import JWTError, jwt

from uploadnest.config import Settings

API_KEY_PREFIX = "sk_live_"

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False

def create_access_token(user_id: uuid.UUID, settings: Settings) -> Tuple[str, datetime]:
    expires_at = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": str(user_id), "exp": expires_at}
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_at

def decode_access_token(token: str, settings: Settings) -> Optional[uuid.UUID]:
    """Returns the user id carried by a valid token, or None."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
        return uuid.UUID(subject)
    except (JWTError, ValueError):
        return None

def generate_api_key() -> Tuple[str, str]:
    """Returns (raw_key, display_key). The raw key is shown to the caller once."""
    raw_key = API_KEY_PREFIX + secrets.token_urlsafe(32)
    display_key = f"{raw_key[:len(API_KEY_PREFIX) + 4]}{'*' * 12}{raw_key[-4:]}"
    return raw_key, display_key

def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
